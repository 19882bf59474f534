# checkout/services/order_service.py
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy.orm import Session

from checkout.data.models.order import ORDER_STATUSES, OrderModel
from checkout.domain.errors import InvalidOperation, NotFound
from checkout.domain.money import format_amount
from checkout.repos.order_repo import OrderRepo
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

#status -> kolumna z czasem przejscia
_TIMESTAMP_FOR = {
    "processing": "processing_at",
    "completed": "completed_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
    "refunded": "refunded_at",
}

CANCELLABLE = ("pending", "processing")


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}".upper()


def order_to_dict(order: OrderModel) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
        "total_amount": format_amount(order.total_amount),
        "currency": order.currency,
        "totals": order.totals,
        "payment_method": order.payment_method,
        "payment_details": order.payment_details,
        "tx_ref": order.tx_ref,
        "items": [
            {
                "product_id": i.product_id,
                "name": i.name,
                "unit_price": format_amount(i.unit_price),
                "quantity": i.quantity,
                "currency": i.currency,
                "is_nft": i.is_nft,
            }
            for i in order.items
        ],
        "tracking_number": order.tracking_number,
        "carrier": order.carrier,
        "created_at": order.created_at,
        "completed_at": order.completed_at,
        "shipped_at": order.shipped_at,
        "delivered_at": order.delivered_at,
        "cancelled_at": order.cancelled_at,
    }


class OrderService:
    """
    Serwis odpowiedzialny za domene zamowien.
    Zamowienie tworzy tylko checkout, tutaj sa odczyty i przejscia statusow.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = OrderRepo(db)

    @staticmethod
    def transition(order: OrderModel, status: str):
        if status not in ORDER_STATUSES:
            raise ValueError(f"Unknown order status {status}")
        order.status = status
        column = _TIMESTAMP_FOR.get(status)
        if column:
            setattr(order, column, datetime.now(timezone.utc))

    def _owned(self, order_number: str, user_id: str) -> OrderModel:
        order = self.repo.get_order_by_number(order_number)
        if not order or order.user_id != user_id:
            raise NotFound("Order not found")
        return order

    def get_order(self, order_number: str, user_id: str) -> Dict[str, Any]:
        return order_to_dict(self._owned(order_number, user_id))

    def list_orders(self, user_id: str, page: int = 1, limit: int = 10, status: str | None = None) -> Dict[str, Any]:
        page = max(1, page)
        limit = min(max(1, limit), 100)
        orders, total = self.repo.list_orders(user_id, (page - 1) * limit, limit, status)
        return {
            "orders": [order_to_dict(o) for o in orders],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    def cancel_order(self, order_number: str, user_id: str) -> Dict[str, Any]:
        order = self._owned(order_number, user_id)
        if order.status not in CANCELLABLE:
            raise InvalidOperation("Order cannot be cancelled")

        self.transition(order, "cancelled")
        self.repo.commit()
        logger.info(f"Order {order.order_number} cancelled by user {user_id}")
        return order_to_dict(order)

    def mark_settled(self, order: OrderModel, tx_ref: str | None = None) -> bool:
        """Webhook: potwierdzenie rozliczenia. Zwraca False gdy nie bylo nic do zmiany."""
        if order.status in ("completed", "shipped", "delivered"):
            return False
        if order.status in ("cancelled", "refunded"):
            logger.warning(f"Settlement for {order.status} order {order.order_number}, leaving status")
            return False

        self.transition(order, "completed")
        if tx_ref and not order.tx_ref:
            order.tx_ref = tx_ref
        self.repo.commit()
        logger.info(f"Order {order.order_number} marked as completed via webhook")
        return True
