# checkout/repos/order_repo.py
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from checkout.data.models.order import OrderModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def get_order_by_number(self, order_number: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .where(OrderModel.order_number == order_number)
            .options(selectinload(OrderModel.items))
        ).scalar_one_or_none()

    def list_orders(self, user_id: str, offset: int, limit: int, status: str | None = None):
        query = select(OrderModel).where(OrderModel.user_id == user_id)
        count = select(func.count()).select_from(OrderModel).where(OrderModel.user_id == user_id)
        if status:
            query = query.where(OrderModel.status == status)
            count = count.where(OrderModel.status == status)

        rows = self.db.execute(
            query.options(selectinload(OrderModel.items))
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        return rows, self.db.execute(count).scalar_one()

    def find_by_tx_ref(self, tx_ref: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .where(OrderModel.tx_ref == tx_ref)
            .order_by(OrderModel.id.desc())
        ).scalars().first()

    def commit(self):
        self.db.commit()
