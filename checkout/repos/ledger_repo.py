# checkout/repos/ledger_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from checkout.data.models.idempotency import IdempotencyRecordModel


class LedgerRepo:
    def __init__(self, db: Session):
        self.db = db

    def insert(self, record: IdempotencyRecordModel):
        # savepoint, zeby IntegrityError nie wywalil calej transakcji wolajacego
        with self.db.begin_nested():
            self.db.add(record)
            self.db.flush()

    def get(self, provider: str, event_id: str) -> IdempotencyRecordModel | None:
        # populate_existing, bo set_link idzie bokiem przez UPDATE
        return self.db.execute(
            select(IdempotencyRecordModel)
            .where(
                IdempotencyRecordModel.provider == provider,
                IdempotencyRecordModel.provider_event_id == event_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def set_link(self, provider: str, event_id: str, expected: str | None, new_ref: str | None) -> int:
        # compare-and-set na linked_tx_ref
        cond = (
            IdempotencyRecordModel.linked_tx_ref.is_(None)
            if expected is None
            else IdempotencyRecordModel.linked_tx_ref == expected
        )
        result = self.db.execute(
            update(IdempotencyRecordModel)
            .where(
                IdempotencyRecordModel.provider == provider,
                IdempotencyRecordModel.provider_event_id == event_id,
                cond,
            )
            .values(linked_tx_ref=new_ref)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
