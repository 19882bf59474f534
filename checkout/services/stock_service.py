# checkout/services/stock_service.py
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from checkout.domain.errors import OutOfStock, StorageError
from checkout.repos.product_repo import ProductRepo
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Reservation:
    product_id: int
    quantity: int
    is_nft: bool = False

    def as_dict(self) -> dict:
        return {"product_id": self.product_id, "quantity": self.quantity, "is_nft": self.is_nft}


class StockService:
    """
    Rezerwacja stocku.

    reserve to jeden warunkowy UPDATE (stock >= qty -> stock -= qty), NFT to
    przejscie available -> reserved. Kazda operacja jest od razu commitowana,
    wiec release jest prawdziwa akcja kompensujaca, a nie rollbackiem sesji.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = ProductRepo(db)

    def reserve(self, product_id: int, quantity: int, is_nft: bool = False) -> Reservation:
        if quantity <= 0:
            raise ValueError("Quantity must be at least 1")

        try:
            if is_nft:
                rowcount = self.repo.transition_availability(product_id, "available", "reserved")
            else:
                rowcount = self.repo.decrement_stock(product_id, quantity)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Reserve failed for product {product_id}: {e}")
            raise StorageError() from e

        if rowcount == 0:
            logger.info(f"Out of stock: product {product_id}, requested {quantity}")
            raise OutOfStock(product_id, quantity)

        logger.info(f"Reserved product {product_id} x{quantity}")
        return Reservation(product_id=product_id, quantity=quantity, is_nft=is_nft)

    def release(self, reservation: Reservation) -> bool:
        """Best-effort, nigdy nie rzuca (leci w trakcie rollbacku)."""
        try:
            if reservation.is_nft:
                rowcount = self.repo.transition_availability(reservation.product_id, "reserved", "available")
            else:
                rowcount = self.repo.increment_stock(reservation.product_id, reservation.quantity)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Release failed for product {reservation.product_id} x{reservation.quantity}: {e}"
            )
            return False

        if rowcount == 0:
            logger.error(f"Release matched no row for product {reservation.product_id}")
            return False

        logger.info(f"Released product {reservation.product_id} x{reservation.quantity}")
        return True

    def finalize(self, reservation: Reservation):
        """NFT reserved -> sold. Nie commituje, jest czescia transakcji zamowienia."""
        if not reservation.is_nft:
            return
        if self.repo.transition_availability(reservation.product_id, "reserved", "sold") == 0:
            raise StorageError(f"NFT {reservation.product_id} is no longer reserved")
