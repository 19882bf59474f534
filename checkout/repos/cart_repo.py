# checkout/repos/cart_repo.py
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from checkout.data.models.cart import CartModel
from checkout.data.models.cart_item import CartItemModel
from checkout.data.models.cart_payment import CartPaymentModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart_by_user(self, user_id: str) -> CartModel | None:
        return self.db.execute(
            select(CartModel)
            .where(CartModel.user_id == user_id)
            .options(selectinload(CartModel.items), selectinload(CartModel.payments))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.flush()
        return cart

    def replace_items(self, cart: CartModel, items: list[CartItemModel]):
        cart.items = items

    def add_payment(self, cart: CartModel, payment: CartPaymentModel):
        cart.payments.append(payment)

    def update_cart_version(self, cart_id: int, old_version: int, new_data: dict) -> int:
        # update carts set version = v+1 ... where id = :id and version = :v
        new_data = dict(new_data, updated_at=datetime.now(timezone.utc))
        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.version == old_version)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def touch_cart(self, cart_id: int, new_data: dict) -> int:
        # bez warunku na wersje, tylko podbicie (commit checkoutu)
        new_data = dict(new_data, version=CartModel.version + 1, updated_at=datetime.now(timezone.utc))
        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def flush(self):
        self.db.flush()

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
