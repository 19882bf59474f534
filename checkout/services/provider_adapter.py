# checkout/services/provider_adapter.py
"""
Jednolity interfejs do providerow platnosci (Stripe, Flutterwave, crypto RPC).

verify_charge robi dokladnie jedno wywolanie sieciowe per provider (crypto: dwa
zapytania JSON-RPC o ta sama transakcje) i zwraca tylko to, co potwierdzil
provider. Brak retry - polityka retry nalezy do orkiestratora checkoutu.
"""
import uuid
from decimal import Decimal, InvalidOperation

import requests
from requests import RequestException

from checkout.domain.errors import (
    ProviderInvalidResponse,
    ProviderNotConfigured,
    ProviderVerificationFailed,
)
from checkout.domain.money import from_minor_units, normalize_currency, to_minor_units
from checkout.domain.payments import (
    PROVIDER_CRYPTO,
    PROVIDER_FLUTTERWAVE,
    PROVIDER_STRIPE,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SUCCEEDED,
    ChargeInitiation,
    ChargeVerification,
    CryptoProof,
    FlutterwaveProof,
    StripeProof,
)
from checkout.utils import settings
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

_STRIPE_STATUS = {
    "succeeded": STATUS_SUCCEEDED,
    "processing": STATUS_PENDING,
    "requires_payment_method": STATUS_PENDING,
    "requires_confirmation": STATUS_PENDING,
    "requires_action": STATUS_PENDING,
    "requires_capture": STATUS_PENDING,
    "canceled": STATUS_FAILED,
}

_FLW_STATUS = {
    "successful": STATUS_SUCCEEDED,
    "pending": STATUS_PENDING,
}


class ProviderAdapter:
    def __init__(
        self,
        http: requests.Session | None = None,
        stripe_secret_key: str | None = None,
        flw_secret_key: str | None = None,
        rpc_urls: dict | None = None,
        timeout: float | None = None,
    ):
        self.http = http or requests.Session()
        self.stripe_secret_key = settings.STRIPE_SECRET_KEY if stripe_secret_key is None else stripe_secret_key
        self.flw_secret_key = settings.FLW_SECRET_KEY if flw_secret_key is None else flw_secret_key
        self.rpc_urls = settings.CRYPTO_RPC_URLS if rpc_urls is None else rpc_urls
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.stripe_base = settings.STRIPE_API_BASE.rstrip("/")
        self.flw_base = settings.FLW_API_BASE.rstrip("/")

    # =====================================================
    # VERIFY
    # =====================================================
    def verify_charge(self, proof) -> ChargeVerification:
        if isinstance(proof, StripeProof):
            return self._verify_stripe(proof)
        if isinstance(proof, FlutterwaveProof):
            return self._verify_flutterwave(proof)
        if isinstance(proof, CryptoProof):
            return self._verify_crypto(proof)
        raise ValueError(f"Unsupported payment proof {type(proof).__name__}")

    def _verify_stripe(self, proof: StripeProof) -> ChargeVerification:
        if not self.stripe_secret_key:
            raise ProviderNotConfigured("stripe")

        body = self._request(
            "GET",
            f"{self.stripe_base}/v1/payment_intents/{proof.payment_intent_id}",
            provider=PROVIDER_STRIPE,
            headers={"Authorization": f"Bearer {self.stripe_secret_key}"},
        )
        try:
            return ChargeVerification(
                provider=PROVIDER_STRIPE,
                status=_STRIPE_STATUS.get(body["status"], STATUS_FAILED),
                amount_minor=int(body["amount"]),
                currency=normalize_currency(body["currency"]),
                provider_tx_id=str(body["id"]),
                raw=body,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderInvalidResponse(f"stripe payment_intent: {e!r}")

    def _verify_flutterwave(self, proof: FlutterwaveProof) -> ChargeVerification:
        if not self.flw_secret_key:
            raise ProviderNotConfigured("flutterwave")

        body = self._request(
            "GET",
            f"{self.flw_base}/v3/transactions/{proof.flw_tx_id}/verify",
            provider=PROVIDER_FLUTTERWAVE,
            headers={"Authorization": f"Bearer {self.flw_secret_key}"},
        )
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise ProviderInvalidResponse("flutterwave verify: missing data")

        try:
            currency = normalize_currency(data["currency"])
            amount_minor = to_minor_units(Decimal(str(data["amount"])), currency)
            status = _FLW_STATUS.get(str(data.get("status", "")).lower(), STATUS_FAILED)
            tx_id = str(data["id"])
        except (KeyError, TypeError, InvalidOperation) as e:
            raise ProviderInvalidResponse(f"flutterwave verify: {e!r}")

        # transakcja musi nalezec do tego tx_ref, inaczej traktujemy jak nieudana
        if str(data.get("tx_ref")) != proof.tx_ref:
            logger.warning(f"Flutterwave tx {tx_id} tx_ref mismatch (expected {proof.tx_ref})")
            status = STATUS_FAILED

        return ChargeVerification(
            provider=PROVIDER_FLUTTERWAVE,
            status=status,
            amount_minor=amount_minor,
            currency=currency,
            provider_tx_id=tx_id,
            raw=data,
        )

    def _verify_crypto(self, proof: CryptoProof) -> ChargeVerification:
        url = self.rpc_urls.get(proof.network_id)
        if not url:
            raise ProviderNotConfigured(f"crypto network {proof.network_id}")

        receipt = self._rpc(url, "eth_getTransactionReceipt", proof.tx_hash)
        tx = self._rpc(url, "eth_getTransactionByHash", proof.tx_hash)

        if receipt is None or tx is None:
            status = STATUS_PENDING
        elif not isinstance(receipt, dict) or not isinstance(tx, dict):
            raise ProviderInvalidResponse("crypto rpc: unexpected result shape")
        elif receipt.get("status") == "0x1":
            status = STATUS_SUCCEEDED
        else:
            status = STATUS_FAILED

        amount_minor = 0
        if isinstance(tx, dict):
            try:
                amount_minor = int(tx.get("value", "0x0"), 16)
            except (TypeError, ValueError) as e:
                raise ProviderInvalidResponse(f"crypto rpc value: {e!r}")
            sender = str(tx.get("from", "")).lower()
            if status == STATUS_SUCCEEDED and sender != proof.wallet_address.lower():
                logger.warning(f"Crypto tx {proof.tx_hash} sent from {sender}, not {proof.wallet_address}")
                status = STATUS_FAILED

        return ChargeVerification(
            provider=PROVIDER_CRYPTO,
            status=status,
            amount_minor=amount_minor,
            currency="ETH",
            provider_tx_id=proof.reference,
            raw={"receipt": receipt, "tx": tx},
        )

    # =====================================================
    # CREATE
    # =====================================================
    def create_charge(self, provider: str, currency: str, amount_minor: int, user_id: str) -> ChargeInitiation:
        currency = normalize_currency(currency)
        if provider == PROVIDER_STRIPE:
            return self._create_stripe(currency, amount_minor, user_id)
        if provider == PROVIDER_FLUTTERWAVE:
            return self._create_flutterwave(currency, amount_minor, user_id)
        raise ValueError(f"Provider {provider} does not support server-side charge creation")

    def _create_stripe(self, currency: str, amount_minor: int, user_id: str) -> ChargeInitiation:
        if not self.stripe_secret_key:
            raise ProviderNotConfigured("stripe")

        body = self._request(
            "POST",
            f"{self.stripe_base}/v1/payment_intents",
            provider=PROVIDER_STRIPE,
            headers={"Authorization": f"Bearer {self.stripe_secret_key}"},
            data={
                "amount": amount_minor,
                "currency": currency.lower(),
                "automatic_payment_methods[enabled]": "true",
                "metadata[userId]": user_id,
                "metadata[currencyGroup]": currency,
            },
        )
        try:
            return ChargeInitiation(
                provider=PROVIDER_STRIPE,
                currency=currency,
                amount_minor=int(body["amount"]),
                reference=str(body["id"]),
                status=str(body["status"]),
                client_secret=body.get("client_secret"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderInvalidResponse(f"stripe create: {e!r}")

    def _create_flutterwave(self, currency: str, amount_minor: int, user_id: str) -> ChargeInitiation:
        if not self.flw_secret_key:
            raise ProviderNotConfigured("flutterwave")

        tx_ref = f"cart-{user_id}-{currency}-{uuid.uuid4().hex[:12]}"
        body = self._request(
            "POST",
            f"{self.flw_base}/v3/payments",
            provider=PROVIDER_FLUTTERWAVE,
            headers={"Authorization": f"Bearer {self.flw_secret_key}"},
            json={
                "tx_ref": tx_ref,
                "amount": str(from_minor_units(amount_minor, currency)),
                "currency": currency,
                "redirect_url": settings.FLW_REDIRECT_URL,
                "meta": {"userId": user_id, "currencyGroup": currency},
                "customer": {"email": f"{user_id}@users.invalid"},
            },
        )
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict) or not data.get("link"):
            raise ProviderInvalidResponse("flutterwave init: missing payment link")

        return ChargeInitiation(
            provider=PROVIDER_FLUTTERWAVE,
            currency=currency,
            amount_minor=amount_minor,
            reference=tx_ref,
            status="pending",
            link=data["link"],
            tx_ref=tx_ref,
        )

    # =====================================================
    # REFUND
    # =====================================================
    def refund_charge(self, provider: str, reference: str, amount_minor: int) -> str:
        """Zwrot pobranej platnosci, gdy checkout padl po weryfikacji. Zwraca id refundu."""
        if provider != PROVIDER_STRIPE:
            raise ValueError(f"Provider {provider} does not support automatic refunds")
        if not self.stripe_secret_key:
            raise ProviderNotConfigured("stripe")

        body = self._request(
            "POST",
            f"{self.stripe_base}/v1/refunds",
            provider=PROVIDER_STRIPE,
            headers={"Authorization": f"Bearer {self.stripe_secret_key}"},
            data={"payment_intent": reference, "amount": amount_minor},
        )
        try:
            return str(body["id"])
        except KeyError as e:
            raise ProviderInvalidResponse(f"stripe refund: {e!r}")

    # =====================================================
    # HTTP
    # =====================================================
    def _request(self, method: str, url: str, provider: str, **kwargs) -> dict:
        logger.info(f"{provider} {method} {url}")
        try:
            resp = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except RequestException as e:
            raise ProviderVerificationFailed(f"{provider}: {e.__class__.__name__}")

        if not resp.ok:
            raise ProviderVerificationFailed(f"{provider} {resp.status_code}: {resp.text[:200]}")

        try:
            body = resp.json()
        except ValueError:
            raise ProviderInvalidResponse(f"{provider}: body is not JSON")
        if not isinstance(body, dict):
            raise ProviderInvalidResponse(f"{provider}: unexpected body")
        return body

    def _rpc(self, url: str, method: str, *params):
        body = self._request(
            "POST",
            url,
            provider=PROVIDER_CRYPTO,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": list(params)},
        )
        if body.get("error"):
            raise ProviderVerificationFailed(f"crypto rpc {method}: {body['error']}")
        if "result" not in body:
            raise ProviderInvalidResponse(f"crypto rpc {method}: missing result")
        return body["result"]
