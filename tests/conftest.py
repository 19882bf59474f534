# Checkout test suite - shared fixtures
#
# - sqlite in-memory per test (StaticPool, one connection)
# - fake provider HTTP session wstrzykiwany do ProviderAdapter
# - fake lock / notification zamiast redisa i celery
# - TestClient z dependency_overrides

import os

os.environ["DATABASE_URL"] = "sqlite://"

import json
from decimal import Decimal
from typing import Any, Dict, List

import pytest
import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import checkout.data.models  # noqa: F401
from checkout.data.database import Base
from checkout.data.models.product import ProductModel
from checkout.services.provider_adapter import ProviderAdapter

STRIPE_BASE = "https://api.stripe.com"
FLW_BASE = "https://api.flutterwave.com"
RPC_URL = "https://rpc.test/mainnet"

WALLET = "0x" + "ab" * 20
TX_HASH = "0x" + "1f" * 32


# =============================================================================
# DATABASE
# =============================================================================

def sqlite_engine(url: str, begin: str = "BEGIN", **kwargs):
    """pysqlite + SAVEPOINT: transakcje zaczynamy sami (przepis z dokumentacji SQLAlchemy)."""
    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30}, **kwargs)

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql(begin)

    return engine


@pytest.fixture
def engine():
    engine = sqlite_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_product(db):
    def _make(
        name: str = "Widget",
        price: str = "10.00",
        currency: str = "USD",
        stock: int = 10,
        is_nft: bool = False,
        availability: str = "available",
        is_active: bool = True,
    ) -> ProductModel:
        product = ProductModel(
            name=name,
            price=Decimal(price),
            currency=currency,
            stock=1 if is_nft else stock,
            is_nft=is_nft,
            availability=availability,
            is_active=is_active,
        )
        db.add(product)
        db.commit()
        return product

    return _make


def fresh_product(db, product_id: int) -> ProductModel:
    return db.get(ProductModel, product_id, populate_existing=True)


# =============================================================================
# PROVIDER HTTP
# =============================================================================

class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str | None = None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body


class FakeHttp:
    """
    Zamiennik requests.Session dla ProviderAdapter.
    Trasa -> lista odpowiedzi (kolejne wywolania zdejmuja kolejne, ostatnia zostaje).
    Wyjatek w liscie jest rzucany zamiast odpowiedzi.
    """

    def __init__(self):
        self.routes: Dict[tuple, List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, url: str, *responses):
        self.routes.setdefault((method, url), []).extend(responses)

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        if method == "POST" and url == RPC_URL:
            key = (method, url, kwargs["json"]["method"])
        else:
            key = (method, url)
        queue = self.routes.get(key)
        if not queue:
            raise AssertionError(f"unexpected request {method} {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def calls_to(self, url: str) -> int:
        return sum(1 for c in self.calls if c["url"] == url)

    # helpers

    def stripe_intent(self, intent_id: str, amount: int, currency: str = "usd", status: str = "succeeded"):
        self.add(
            "GET",
            f"{STRIPE_BASE}/v1/payment_intents/{intent_id}",
            FakeResponse(200, {"id": intent_id, "amount": amount, "currency": currency, "status": status}),
        )

    def stripe_refunds(self, *responses):
        self.add(
            "POST",
            f"{STRIPE_BASE}/v1/refunds",
            *(responses or (FakeResponse(200, {"id": "re_test", "object": "refund", "status": "succeeded"}),)),
        )

    def refunded_intents(self) -> List[str]:
        return [c["data"]["payment_intent"] for c in self.calls if c["url"] == f"{STRIPE_BASE}/v1/refunds"]

    def flutterwave_tx(self, tx_id, tx_ref: str, amount, currency: str = "NGN", status: str = "successful"):
        self.add(
            "GET",
            f"{FLW_BASE}/v3/transactions/{tx_id}/verify",
            FakeResponse(
                200,
                {
                    "status": "success",
                    "data": {"id": tx_id, "tx_ref": tx_ref, "amount": amount, "currency": currency, "status": status},
                },
            ),
        )

    def crypto_tx(self, value_wei: int, status: str = "0x1", sender: str = WALLET):
        self.routes[("POST", RPC_URL, "eth_getTransactionReceipt")] = [
            FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": {"status": status}})
        ]
        self.routes[("POST", RPC_URL, "eth_getTransactionByHash")] = [
            FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": {"from": sender, "value": hex(value_wei)}})
        ]


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def adapter(http):
    return ProviderAdapter(
        http=http,
        stripe_secret_key="sk_test_123",
        flw_secret_key="FLWSECK_TEST-123",
        rpc_urls={1: RPC_URL},
        timeout=5,
    )


def network_error():
    return requests.ConnectionError("connection reset")


# =============================================================================
# LOCK / NOTIFICATIONS
# =============================================================================

class FakeLock:
    def __init__(self):
        self.held: Dict[str, str] = {}
        self.acquired = 0
        self.released = 0

    def acquire_checkout_lock(self, user_id: str, ttl: int = 120):
        if user_id in self.held:
            return None
        self.acquired += 1
        self.held[user_id] = f"token-{self.acquired}"
        return self.held[user_id]

    def release_checkout_lock(self, user_id: str, token: str) -> bool:
        if self.held.get(user_id) != token:
            return False
        del self.held[user_id]
        self.released += 1
        return True


class FakeNotifier:
    def __init__(self):
        self.sent: List[tuple] = []

    def send_order_notification(self, user_id: str, order_number: str):
        self.sent.append((user_id, order_number))


@pytest.fixture
def lock():
    return FakeLock()


@pytest.fixture
def notifier():
    return FakeNotifier()


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def client(db, adapter, lock, notifier):
    from checkout.api.deps import get_lock_service, get_notification_service, get_provider_adapter
    from checkout.data.database import get_db
    from checkout.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_provider_adapter] = lambda: adapter
    app.dependency_overrides[get_lock_service] = lambda: lock
    app.dependency_overrides[get_notification_service] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth(user_id: str = "user-1") -> Dict[str, str]:
    return {"X-User-Id": user_id}


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    config.addinivalue_line("markers", "concurrent: tests running real threads against a file database")
