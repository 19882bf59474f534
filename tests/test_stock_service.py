import threading

import pytest
from sqlalchemy.orm import Session

from checkout.data.database import Base
from checkout.data.models.product import ProductModel
from checkout.domain.errors import OutOfStock, StorageError
from checkout.services.stock_service import Reservation, StockService
from tests.conftest import fresh_product, sqlite_engine


def test_reserve_decrements_stock_and_counts_sales(db, make_product):
    product = make_product(stock=5)

    reservation = StockService(db).reserve(product.id, 3)

    assert reservation == Reservation(product.id, 3, False)
    p = fresh_product(db, product.id)
    assert (p.stock, p.sales) == (2, 3)


def test_reserve_never_goes_negative(db, make_product):
    product = make_product(stock=2)

    with pytest.raises(OutOfStock):
        StockService(db).reserve(product.id, 3)

    assert fresh_product(db, product.id).stock == 2


def test_reserve_inactive_product(db, make_product):
    product = make_product(stock=5, is_active=False)

    with pytest.raises(OutOfStock):
        StockService(db).reserve(product.id, 1)


def test_release_is_inverse_of_reserve(db, make_product):
    product = make_product(stock=5)
    stock = StockService(db)

    reservation = stock.reserve(product.id, 4)
    assert stock.release(reservation) is True

    p = fresh_product(db, product.id)
    assert (p.stock, p.sales) == (5, 0)


def test_release_of_unknown_product_reports_failure(db):
    assert StockService(db).release(Reservation(9999, 1)) is False


def test_nft_reserve_release_finalize(db, make_product):
    nft = make_product(name="Ape", price="0.5", currency="ETH", is_nft=True)
    stock = StockService(db)

    reservation = stock.reserve(nft.id, 1, is_nft=True)
    assert fresh_product(db, nft.id).availability == "reserved"

    with pytest.raises(OutOfStock):
        stock.reserve(nft.id, 1, is_nft=True)

    assert stock.release(reservation) is True
    assert fresh_product(db, nft.id).availability == "available"

    reservation = stock.reserve(nft.id, 1, is_nft=True)
    stock.finalize(reservation)
    db.commit()
    assert fresh_product(db, nft.id).availability == "sold"

    with pytest.raises(StorageError):
        stock.finalize(reservation)


@pytest.mark.concurrent
def test_concurrent_reservations_never_oversell(tmp_path):
    engine = sqlite_engine(f"sqlite:///{tmp_path / 'stock.db'}", begin="BEGIN IMMEDIATE")
    Base.metadata.create_all(bind=engine)
    with Session(bind=engine) as setup:
        product = ProductModel(name="Last ones", price=1, currency="USD", stock=3)
        setup.add(product)
        setup.commit()
        product_id = product.id

    workers = 10
    barrier = threading.Barrier(workers)
    won, lost = [], []

    def worker():
        session = Session(bind=engine, autoflush=False, expire_on_commit=False)
        try:
            barrier.wait()
            won.append(StockService(session).reserve(product_id, 1))
        except OutOfStock:
            lost.append(product_id)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(won) == 3
    assert len(lost) == workers - 3
    with Session(bind=engine) as check:
        assert check.get(ProductModel, product_id).stock == 0
    engine.dispose()
