import uuid

import redis
from redis.exceptions import RedisError

from checkout.utils.retry import redis_retry
from checkout.utils.settings import REDIS_URL, CHECKOUT_LOCK_TTL_SECONDS
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje skrypt lua atomowo, nikt nie wcisnie sie miedzy GET a DEL
#wiec nie zwolnimy locka, ktory po wygasnieciu TTL przejal ktos inny


class LockService:
    """
    -lock "checkout w toku" per user (drugi rownolegly checkout tego samego usera = 409)
    -zwalnianie locka tylko przez wlasciciela (token)
    -to tylko bezpiecznik, poprawnosc stocku i ledgera trzyma baza
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @redis_retry()
    def acquire_checkout_lock(self, user_id: str, ttl: int = CHECKOUT_LOCK_TTL_SECONDS) -> str | None:
        key = f"checkout:{user_id}:lock"
        token = uuid.uuid4().hex
        logger.info(f"Acquire lock {key}")
        #SET checkout:42:lock "<token>" NX EX 120
        if self.redis.set(name=key, value=token, nx=True, ex=ttl):
            return token
        return None

    def release_checkout_lock(self, user_id: str, token: str) -> bool:
        key = f"checkout:{user_id}:lock"
        logger.info(f"Release lock {key}")
        try:
            res = self._release(key, token)
        except RedisError as e:
            # lock i tak wygasnie po TTL
            logger.warning(f"Failed to release lock {key}: {e}")
            return False
        return bool(res)

    @redis_retry()
    def _release(self, key: str, token: str):
        return self.redis.eval(_RELEASE_LUA, 1, key, token)
