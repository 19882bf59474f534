from sqlalchemy import Boolean, Column, Integer, ForeignKey, String, DateTime, Numeric, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from checkout.data.database import Base

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "completed", "cancelled", "refunded")


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(40), nullable=False, unique=True)
    user_id = Column(String(64), nullable=False, index=True)

    status = Column(String(20), nullable=False, default="pending")
    total_amount = Column(Numeric(20, 8), nullable=False)
    currency = Column(String(10), nullable=False)
    totals = Column(JSON, nullable=False, default=dict)  # waluta -> kwota (string)

    payment_method = Column(String(20), nullable=False)
    payment_details = Column(JSON, nullable=False)
    tx_ref = Column(String(128), nullable=True, index=True)

    tracking_number = Column(String(100), nullable=True)
    carrier = Column(String(100), nullable=True)
    notes = Column(String(1000), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    processing_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship("OrderItemModel", back_populates="order", cascade="all, delete-orphan")


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)

    name = Column(String(200), nullable=False)
    unit_price = Column(Numeric(20, 8), nullable=False)
    quantity = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False)
    is_nft = Column(Boolean, nullable=False, default=False)

    order = relationship("OrderModel", back_populates="items")
