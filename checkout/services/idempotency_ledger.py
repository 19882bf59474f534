# checkout/services/idempotency_ledger.py
import enum
import hashlib
import json

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from checkout.data.models.idempotency import IdempotencyRecordModel
from checkout.domain.errors import StorageError
from checkout.repos.ledger_repo import LedgerRepo
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class LedgerOutcome(str, enum.Enum):
    FRESH = "fresh"
    DUPLICATE = "duplicate"


def payload_digest(payload) -> str:
    canonical = json.dumps(payload or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IdempotencyLedger:
    """
    Straznik jednokrotnego przetworzenia potwierdzen platnosci.

    - check_and_record: INSERT pilnowany przez unique (provider, event_id),
      nigdy check-then-insert
    - DUPLICATE to nie blad, tylko "juz przetworzone"
    - rekordow sie nie usuwa, linked_tx_ref mozna przepiac tylko przez CAS
    """

    def __init__(self, db: Session):
        self.repo = LedgerRepo(db)

    def check_and_record(
        self,
        provider: str,
        event_id: str,
        payload=None,
        linked_tx_ref: str | None = None,
    ) -> LedgerOutcome:
        record = IdempotencyRecordModel(
            provider=provider,
            provider_event_id=str(event_id),
            linked_tx_ref=linked_tx_ref,
            payload_digest=payload_digest(payload),
        )
        try:
            self.repo.insert(record)
        except IntegrityError:
            logger.info(f"Ledger duplicate {provider}:{event_id}")
            return LedgerOutcome.DUPLICATE
        except SQLAlchemyError as e:
            logger.error(f"Ledger write failed for {provider}:{event_id}: {e}")
            raise StorageError() from e

        logger.info(f"Ledger recorded {provider}:{event_id}")
        return LedgerOutcome.FRESH

    def linked_ref(self, provider: str, event_id: str) -> str | None:
        record = self.repo.get(provider, str(event_id))
        return record.linked_tx_ref if record else None

    def claim(self, provider: str, event_id: str, attempt_ref: str) -> bool:
        """Przejmij rekord zapisany wczesniej bez powiazania (np. przez webhook)."""
        try:
            return self.repo.set_link(provider, str(event_id), None, attempt_ref) == 1
        except SQLAlchemyError as e:
            raise StorageError() from e

    def unlink(self, provider: str, event_id: str, attempt_ref: str) -> bool:
        """Kompensacja: oddaj claim gdy proba checkoutu padla przed commitem."""
        try:
            return self.repo.set_link(provider, str(event_id), attempt_ref, None) == 1
        except SQLAlchemyError as e:
            logger.warning(f"Ledger unlink failed for {provider}:{event_id}: {e}")
            return False
