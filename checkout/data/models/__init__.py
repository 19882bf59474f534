#import wszystkich modeli zeby SQLAlchemy je zarejestrowal w base metadata

from checkout.data.models.product import ProductModel
from checkout.data.models.cart import CartModel
from checkout.data.models.cart_item import CartItemModel
from checkout.data.models.cart_payment import CartPaymentModel
from checkout.data.models.order import OrderModel, OrderItemModel
from checkout.data.models.idempotency import IdempotencyRecordModel
from checkout.data.models.reconciliation import ReconciliationRecordModel

__all__ = [
    "ProductModel",
    "CartModel",
    "CartItemModel",
    "CartPaymentModel",
    "OrderModel",
    "OrderItemModel",
    "IdempotencyRecordModel",
    "ReconciliationRecordModel",
]
