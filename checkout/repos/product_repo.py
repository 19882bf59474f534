# checkout/repos/product_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from checkout.data.models.product import ProductModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id, populate_existing=True)

    def get_products(self, product_ids) -> dict:
        rows = self.db.execute(
            select(ProductModel)
            .where(ProductModel.id.in_(list(product_ids)))
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {p.id: p for p in rows}

    def decrement_stock(self, product_id: int, quantity: int) -> int:
        # jeden warunkowy UPDATE, baza rozstrzyga wyscig o ostatnia sztuke
        result = self.db.execute(
            update(ProductModel)
            .where(
                ProductModel.id == product_id,
                ProductModel.is_active.is_(True),
                ProductModel.is_nft.is_(False),
                ProductModel.stock >= quantity,
            )
            .values(
                stock=ProductModel.stock - quantity,
                sales=ProductModel.sales + quantity,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def increment_stock(self, product_id: int, quantity: int) -> int:
        result = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.is_nft.is_(False))
            .values(
                stock=ProductModel.stock + quantity,
                sales=ProductModel.sales - quantity,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def transition_availability(self, product_id: int, from_state: str, to_state: str) -> int:
        result = self.db.execute(
            update(ProductModel)
            .where(
                ProductModel.id == product_id,
                ProductModel.is_nft.is_(True),
                ProductModel.availability == from_state,
            )
            .values(availability=to_state)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
