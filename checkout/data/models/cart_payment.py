from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer, ForeignKey, String
from sqlalchemy.orm import relationship

from checkout.data.database import Base


class CartPaymentModel(Base):
    """Append-only historia platnosci koszyka (jeden wpis per proba per waluta)."""

    __tablename__ = "cart_payments"

    id = Column(Integer, primary_key=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)

    provider = Column(String(20), nullable=False)
    currency = Column(String(10), nullable=False)
    amount_minor = Column(BigInteger, nullable=False)
    provider_charge_ref = Column(String(128), nullable=False)
    tx_ref = Column(String(128), nullable=True)
    provider_status = Column(String(40), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    cart = relationship("CartModel", back_populates="payments")
