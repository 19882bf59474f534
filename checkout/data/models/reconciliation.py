from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String

from checkout.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class ReconciliationRecordModel(Base):
    """Checkout ktory padl po rezerwacji stocku i nie udalo sie wszystkiego oddac."""

    __tablename__ = "reconciliation_records"

    id = Column(Integer, primary_key=True)
    attempt_ref = Column(String(40), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    reason = Column(String(500), nullable=False)

    # [{"product_id": 1, "quantity": 2, "is_nft": false}, ...]
    pending_releases = Column(JSON, nullable=False, default=list)
    # [{"provider": "stripe", "reference": "pi_..."}] - do przegladu/zwrotu
    payment_refs = Column(JSON, nullable=False, default=list)

    status = Column(String(20), nullable=False, default="open")  # open, review, resolved
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
