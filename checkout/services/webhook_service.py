# checkout/services/webhook_service.py
"""
Webhooki providerow. Niezalezne od synchronicznego checkoutu, ale ida przez
ten sam ledger, wiec redelivery tego samego eventu nic nie zmienia.
"""
import base64
import hashlib
import hmac
import json
from typing import Any, Dict

import stripe
from pydantic import ValidationError
from sqlalchemy.orm import Session

from checkout.domain.errors import InvalidSignature, ProviderNotConfigured
from checkout.domain.payments import PROVIDER_FLUTTERWAVE, PROVIDER_STRIPE, FlutterwaveProof
from checkout.repos.order_repo import OrderRepo
from checkout.services.idempotency_ledger import IdempotencyLedger, LedgerOutcome
from checkout.services.order_service import OrderService
from checkout.services.provider_adapter import ProviderAdapter
from checkout.utils import settings
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class WebhookService:
    def __init__(
        self,
        db: Session,
        provider_adapter: ProviderAdapter,
        stripe_webhook_secret: str | None = None,
        flw_secret_hash: str | None = None,
    ):
        self.db = db
        self.provider_adapter = provider_adapter
        self.ledger = IdempotencyLedger(db)
        self.orders = OrderRepo(db)
        self.order_service = OrderService(db)
        self.stripe_webhook_secret = (
            settings.STRIPE_WEBHOOK_SECRET if stripe_webhook_secret is None else stripe_webhook_secret
        )
        self.flw_secret_hash = settings.FLW_SECRET_HASH if flw_secret_hash is None else flw_secret_hash

    # =====================================================
    # STRIPE
    # =====================================================
    def handle_stripe(self, payload: bytes, signature: str | None) -> Dict[str, Any]:
        if not self.stripe_webhook_secret:
            raise ProviderNotConfigured("stripe webhook secret")

        try:
            event = stripe.Webhook.construct_event(payload, signature or "", self.stripe_webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook signature invalid: {e}")
            raise InvalidSignature()
        except ValueError as e:
            logger.warning(f"Stripe webhook payload invalid: {e}")
            raise InvalidSignature("Invalid webhook payload")

        event_id = event["id"]
        event_type = event["type"]
        intent = event["data"]["object"]

        outcome = self.ledger.check_and_record(
            PROVIDER_STRIPE, event_id, payload={"type": event_type, "object_id": intent["id"]}
        )
        if outcome is LedgerOutcome.DUPLICATE:
            logger.info(f"Stripe event {event_id} already processed")
            return {"duplicate": True}
        self.db.commit()

        logger.info(f"Stripe event {event_id} ({event_type})")
        result = {"duplicate": False, "event": event_type, "settled": False}
        if event_type == "payment_intent.succeeded":
            result["settled"] = self._settle_intent(intent["id"])
        elif event_type == "payment_intent.payment_failed":
            logger.warning(f"Stripe payment intent {intent['id']} failed")
        return result

    def _settle_intent(self, payment_intent_id: str) -> bool:
        # zapis po payment intencie: jesli checkout jeszcze go nie widzial, pozniej go przejmie (claim)
        seen = self.ledger.check_and_record(
            PROVIDER_STRIPE, payment_intent_id, payload={"source": "webhook"}
        )
        self.db.commit()
        if seen is LedgerOutcome.FRESH:
            logger.info(f"Payment intent {payment_intent_id} settled before checkout")
            return False

        order_number = self.ledger.linked_ref(PROVIDER_STRIPE, payment_intent_id)
        order = self.orders.get_order_by_number(order_number) if order_number else None
        if order is None:
            return False
        return self.order_service.mark_settled(order)

    # =====================================================
    # FLUTTERWAVE
    # =====================================================
    def _check_flutterwave_signature(self, payload: bytes, headers) -> None:
        if not self.flw_secret_hash:
            raise ProviderNotConfigured("flutterwave secret hash")

        secret = self.flw_secret_hash.encode("utf-8")
        verif_hash = headers.get("verif-hash")
        if verif_hash is not None and hmac.compare_digest(verif_hash.encode("utf-8"), secret):
            return

        # HMAC-SHA256 surowego body, hex; starsze integracje wysylaja base64
        signature = headers.get("flutterwave-signature")
        if signature is None:
            raise InvalidSignature()
        mac = hmac.new(secret, payload, hashlib.sha256)
        accepted = (mac.hexdigest(), base64.b64encode(mac.digest()).decode("ascii"))
        if not any(hmac.compare_digest(signature.encode("utf-8"), e.encode("ascii")) for e in accepted):
            raise InvalidSignature()

    def handle_flutterwave(self, payload: bytes, headers) -> Dict[str, Any]:
        self._check_flutterwave_signature(payload, headers)

        try:
            body = json.loads(payload)
        except ValueError:
            raise InvalidSignature("Invalid webhook payload")
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict) or data.get("id") is None:
            raise InvalidSignature("Invalid webhook payload")

        event_id = str(data["id"])
        event_type = body.get("event") or body.get("type")
        successful = str(data.get("status", "")).lower() == "successful"

        # najpierw weryfikacja u providera (tylko odczyt), zeby blad sieci nie "zuzyl" eventu w ledgerze
        verification = None
        if successful and data.get("tx_ref"):
            try:
                proof = FlutterwaveProof(
                    tx_ref=data["tx_ref"], flw_tx_id=event_id, currency=data.get("currency") or "USD"
                )
            except ValidationError:
                proof = None
            if proof is not None:
                verification = self.provider_adapter.verify_charge(proof)

        outcome = self.ledger.check_and_record(PROVIDER_FLUTTERWAVE, event_id, payload=data)
        if outcome is LedgerOutcome.DUPLICATE:
            logger.info(f"Flutterwave event {event_id} already processed")
            return {"duplicate": True}
        self.db.commit()

        logger.info(f"Flutterwave event {event_id} ({event_type}) tx_ref={data.get('tx_ref')}")
        result = {"duplicate": False, "event": event_type, "settled": False}
        if verification is None or not verification.succeeded:
            return result

        order = self.orders.find_by_tx_ref(data["tx_ref"])
        if order is None:
            linked = self.ledger.linked_ref(PROVIDER_FLUTTERWAVE, event_id)
            order = self.orders.get_order_by_number(linked) if linked else None
        if order is not None:
            result["settled"] = self.order_service.mark_settled(order, tx_ref=data["tx_ref"])
        return result
