# checkout/utils/retry.py
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
import redis

from checkout.domain.errors import ProviderVerificationFailed
from checkout.utils.settings import PROVIDER_RETRY_ATTEMPTS


#tylko bledy sieciowe/timeouty providera, InvalidResponse nie ma sensu powtarzac
def http_retry(attempts: int = PROVIDER_RETRY_ATTEMPTS):
    return retry(
        reraise=True,
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type(ProviderVerificationFailed),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )
