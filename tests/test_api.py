import json

from checkout.data.models.order import OrderModel
from tests.conftest import FLW_BASE, STRIPE_BASE, FakeResponse, auth, fresh_product


def add(client, product_id, quantity=1, user="user-1"):
    return client.post("/cart/add", json={"productId": product_id, "quantity": quantity}, headers=auth(user))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_identity_is_required(client):
    response = client.get("/cart")

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Authentication required"}


def test_get_cart_creates_empty_cart(client):
    response = client.get("/cart", headers=auth())

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["items"] == []
    assert data["summary"] == {"total_items": 0, "totals": {}, "currencies": [], "has_nfts": False}


def test_add_update_remove_clear(client, make_product):
    mug = make_product(name="Mug", price="12.50")
    pen = make_product(name="Pen", price="2.00", currency="EUR")

    response = add(client, mug.id, 2)
    assert response.status_code == 200
    item_id = response.json()["data"]["items"][0]["id"]
    assert response.json()["data"]["summary"]["totals"] == {"USD": "25"}

    response = client.put(f"/cart/item/{item_id}", json={"quantity": 3}, headers=auth())
    assert response.json()["data"]["summary"]["total_items"] == 3

    add(client, pen.id, 1)
    response = client.delete(f"/cart/item/{item_id}", headers=auth())
    assert [i["product_id"] for i in response.json()["data"]["items"]] == [pen.id]

    response = client.delete("/cart/clear", headers=auth())
    assert response.json()["data"]["items"] == []


def test_add_validation(client, make_product):
    sold_out = make_product(availability="unavailable")

    assert add(client, 9999).status_code == 404
    assert add(client, sold_out.id).status_code == 400
    assert client.post("/cart/add", json={"productId": 1, "quantity": 0}, headers=auth()).status_code == 422


def test_nft_added_twice_is_not_an_error(client, make_product):
    nft = make_product(name="Ape", price="0.5", currency="ETH", is_nft=True)
    add(client, nft.id)

    response = add(client, nft.id)

    assert response.status_code == 200
    assert response.json()["alreadyInCart"] is True
    assert response.json()["data"]["summary"]["total_items"] == 1


def test_nft_quantity_cannot_change(client, make_product):
    nft = make_product(name="Ape", price="0.5", currency="ETH", is_nft=True)
    item_id = add(client, nft.id).json()["data"]["items"][0]["id"]

    response = client.put(f"/cart/item/{item_id}", json={"quantity": 2}, headers=auth())

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_cart_is_private(client, make_product):
    mug = make_product()
    item_id = add(client, mug.id, user="user-1").json()["data"]["items"][0]["id"]

    response = client.delete(f"/cart/item/{item_id}", headers=auth("user-2"))

    assert response.status_code == 404


def test_checkout_success_shape(client, http, make_product):
    a = make_product(name="Mug", price="20.00")
    b = make_product(name="Poster", price="15.00")
    add(client, a.id, 1)
    add(client, b.id, 2)
    http.stripe_intent("pi_ok", 5000, "usd")

    response = client.post(
        "/cart/checkout",
        json={"paymentMethod": "stripe", "paymentDetails": [{"currency": "USD", "paymentIntentId": "pi_ok"}]},
        headers=auth(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["orderNumber"].startswith("ORD-")
    assert isinstance(body["data"]["orderId"], int)
    items = body["data"]["processedItems"]
    assert [i["name"] for i in items] == ["Mug", "Poster"]
    assert items[1]["unitPrice"] == "15"
    assert items[1]["paymentMethod"] == "stripe"
    assert client.get("/cart", headers=auth()).json()["data"]["items"] == []


def test_checkout_error_statuses(client, db, http, make_product):
    a = make_product(price="20.00", stock=1)
    add(client, a.id, 1)
    body = {"paymentMethod": "stripe", "paymentDetails": {"currency": "USD", "paymentIntentId": "pi_x"}}

    # kwota sie nie zgadza -> 402
    http.stripe_intent("pi_x", 1999, "usd")
    response = client.post("/cart/checkout", json=body, headers=auth())
    assert response.status_code == 402
    assert response.json() == {"success": False, "message": "Payment not completed or invalid for USD"}

    # provider lezy -> 502, bez szczegolow providera
    http.routes[("GET", f"{STRIPE_BASE}/v1/payment_intents/pi_x")] = [FakeResponse(500, None, text="stripe exploded")]
    response = client.post("/cart/checkout", json=body, headers=auth())
    assert response.status_code == 502
    assert "exploded" not in response.text

    # brak stocku -> 409
    http.routes[("GET", f"{STRIPE_BASE}/v1/payment_intents/pi_x")] = []
    http.stripe_intent("pi_x", 2000, "usd")
    http.stripe_refunds()
    db.query(type(a)).filter(type(a).id == a.id).update({"stock": 0})
    db.commit()
    response = client.post("/cart/checkout", json=body, headers=auth())
    assert response.status_code == 409
    assert fresh_product(db, a.id).stock == 0


def test_checkout_bad_payment_details(client, make_product):
    add(client, make_product().id)

    response = client.post(
        "/cart/checkout",
        json={"paymentMethod": "stripe", "paymentDetails": [{"paymentIntentId": "not-an-intent"}]},
        headers=auth(),
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_checkout_empty_cart(client):
    response = client.post("/cart/checkout", json={"paymentMethod": "stripe", "paymentDetails": []}, headers=auth())

    assert response.status_code == 400
    assert response.json()["message"] == "Cart is empty"


def test_checkout_in_progress(client, lock, make_product):
    add(client, make_product().id)
    lock.held["user-1"] = "other-request"

    response = client.post("/cart/checkout", json={"paymentMethod": "stripe", "paymentDetails": []}, headers=auth())

    assert response.status_code == 409


def test_start_and_refresh_flutterwave_payment(client, http, make_product):
    add(client, make_product(price="1500.00", currency="NGN").id)
    http.add("POST", f"{FLW_BASE}/v3/payments", FakeResponse(200, {"status": "success", "data": {"link": "https://pay.test/abc"}}))

    response = client.post("/cart/payments/flutterwave/ngn", headers=auth())

    assert response.status_code == 200
    started = response.json()["data"]
    assert started["link"] == "https://pay.test/abc"
    assert started["amount_minor"] == 150000

    http.flutterwave_tx(777, started["tx_ref"], 1500)
    response = client.patch(
        "/cart/payments/status",
        json={
            "paymentMethod": "flutterwave",
            "paymentDetails": {"currency": "NGN", "tx_ref": started["tx_ref"], "flw_tx_id": 777},
        },
        headers=auth(),
    )

    assert response.json()["data"]["status"] == "succeeded"
    payments = client.get("/cart", headers=auth()).json()["data"]["payments"]
    assert [p["provider_status"] for p in payments] == ["pending", "succeeded"]


def test_start_payment_for_missing_group(client, make_product):
    add(client, make_product(currency="USD").id)

    response = client.post("/cart/payments/stripe/EUR", headers=auth())

    assert response.status_code == 400


def test_orders_list_get_cancel(client, db):
    for n, status in enumerate(["processing", "completed"]):
        db.add(
            OrderModel(
                order_number=f"ORD-T-{n}",
                user_id="user-1",
                status=status,
                total_amount=10,
                currency="USD",
                totals={"USD": "10"},
                payment_method="stripe",
                payment_details=[],
            )
        )
    db.commit()

    listing = client.get("/orders", headers=auth()).json()["data"]
    assert listing["pagination"]["total"] == 2
    assert client.get("/orders?status=completed", headers=auth()).json()["data"]["pagination"]["total"] == 1

    assert client.get("/orders/ORD-T-0", headers=auth()).json()["data"]["status"] == "processing"
    assert client.get("/orders/ORD-T-0", headers=auth("user-2")).status_code == 404

    response = client.post("/orders/ORD-T-0/cancel", headers=auth())
    assert response.json()["data"]["status"] == "cancelled"
    assert client.post("/orders/ORD-T-1/cancel", headers=auth()).status_code == 400


def test_webhook_endpoints(client, monkeypatch):
    from checkout.utils import settings

    monkeypatch.setattr(settings, "FLW_SECRET_HASH", "hash-123")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_api")
    payload = json.dumps({"event": "charge.completed", "data": {"id": 1, "status": "failed"}})

    response = client.post("/webhooks/flutterwave", content=payload, headers={"verif-hash": "wrong"})
    assert response.status_code == 400

    response = client.post("/webhooks/flutterwave", content=payload, headers={"verif-hash": "hash-123"})
    assert response.json()["data"]["duplicate"] is False
    response = client.post("/webhooks/flutterwave", content=payload, headers={"verif-hash": "hash-123"})
    assert response.json()["data"] == {"duplicate": True}

    response = client.post("/webhooks/stripe", content="{}", headers={"stripe-signature": "t=1,v1=abc"})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid webhook signature"
