# checkout/data/models/product.py
from sqlalchemy import Boolean, CheckConstraint, Column, Integer, Numeric, String

from checkout.data.database import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)

    price = Column(Numeric(20, 8), nullable=False)
    currency = Column(String(10), nullable=False, default="USD")

    stock = Column(Integer, nullable=False, default=1)
    sales = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)
    is_nft = Column(Boolean, nullable=False, default=False)
    # available, reserved, sold, unavailable, limited
    availability = Column(String(20), nullable=False, default="available")

    __table_args__ = (CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),)
