# checkout/repos/reconciliation_repo.py
from sqlalchemy import select
from sqlalchemy.orm import Session

from checkout.data.models.reconciliation import ReconciliationRecordModel

REFUND_SUBMITTED = "submitted"
REFUND_FAILED = "failed"
REFUND_MANUAL = "manual"


def record_status(pending_releases: list, payment_refs: list) -> str:
    """open: stock do oddania, review: pieniadze do recznego zwrotu, resolved: nic nie zostalo."""
    if pending_releases:
        return "open"
    if any(p.get("refund") != REFUND_SUBMITTED for p in payment_refs or []):
        return "review"
    return "resolved"


class ReconciliationRepo:
    def __init__(self, db: Session):
        self.db = db

    def add(self, record: ReconciliationRecordModel) -> ReconciliationRecordModel:
        self.db.add(record)
        self.db.flush()
        return record

    def list_open(self, limit: int = 100):
        return self.db.execute(
            select(ReconciliationRecordModel)
            .where(ReconciliationRecordModel.status == "open")
            .order_by(ReconciliationRecordModel.id)
            .limit(limit)
        ).scalars().all()
