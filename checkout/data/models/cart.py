#checkout/data/models/cart.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.orm import relationship

from checkout.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, unique=True)

    version = Column(Integer, nullable=False, default=1)

    #pola pochodne, zapisuje je tylko Cart Aggregate
    total_items = Column(Integer, nullable=False, default=0)
    total_amount = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItemModel.added_at",
    )
    payments = relationship(
        "CartPaymentModel",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartPaymentModel.id",
    )
