from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from checkout.data.database import Base


class IdempotencyRecordModel(Base):
    """
    Append-only. Para (provider, provider_event_id) jest unikalna na poziomie bazy,
    to ona (a nie sprawdzenie w aplikacji) gwarantuje jednokrotne przetworzenie.
    """

    __tablename__ = "idempotency_records"

    id = Column(Integer, primary_key=True)
    provider = Column(String(20), nullable=False)
    provider_event_id = Column(String(128), nullable=False)
    linked_tx_ref = Column(String(128), nullable=True, index=True)
    payload_digest = Column(String(64), nullable=False)
    first_seen_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (UniqueConstraint("provider", "provider_event_id", name="u_provider_event"),)
