# checkout/domain/payments.py
"""
Dowody platnosci per provider (tagged union po `provider`) oraz
znormalizowane odpowiedzi z adaptera providerow.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from checkout.domain.money import normalize_currency

PROVIDER_STRIPE = "stripe"
PROVIDER_FLUTTERWAVE = "flutterwave"
PROVIDER_CRYPTO = "crypto"

PAYMENT_METHODS = ("stripe", "flutterwave", "crypto", "nft")

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
STATUS_PENDING = "pending"
# platnosc wykorzystana przez zamowienie, nie moze juz zastapic dowodu
STATUS_CONSUMED = "consumed"

SUPPORTED_NETWORKS = (1, 5, 137, 80001)


class _Proof(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    currency: str = "USD"

    @field_validator("currency")
    @classmethod
    def _upper(cls, v: str) -> str:
        return normalize_currency(v)


class StripeProof(_Proof):
    provider: Literal["stripe"] = PROVIDER_STRIPE
    payment_intent_id: str = Field(..., alias="paymentIntentId", pattern=r"^pi_")

    @property
    def reference(self) -> str:
        return self.payment_intent_id


class FlutterwaveProof(_Proof):
    provider: Literal["flutterwave"] = PROVIDER_FLUTTERWAVE
    tx_ref: str = Field(..., min_length=8)
    flw_tx_id: str

    @field_validator("flw_tx_id", mode="before")
    @classmethod
    def _stringify(cls, v):
        # flutterwave oddaje id jako liczbe albo string
        return str(v) if v is not None else v

    @property
    def reference(self) -> str:
        return self.flw_tx_id


class CryptoProof(_Proof):
    provider: Literal["crypto"] = PROVIDER_CRYPTO
    currency: str = "ETH"
    tx_hash: str = Field(..., alias="txHash", pattern=r"^0x[a-fA-F0-9]{64}$")
    wallet_address: str = Field(..., alias="walletAddress", pattern=r"^0x[a-fA-F0-9]{40}$")
    network_id: int = Field(..., alias="networkId")

    @field_validator("network_id")
    @classmethod
    def _network(cls, v: int) -> int:
        if v not in SUPPORTED_NETWORKS:
            raise ValueError(f"unsupported network {v}")
        return v

    @property
    def reference(self) -> str:
        return self.tx_hash.lower()


PaymentProof = Union[StripeProof, FlutterwaveProof, CryptoProof]

_PROOF_BY_METHOD = {
    "stripe": StripeProof,
    "flutterwave": FlutterwaveProof,
    "crypto": CryptoProof,
    "nft": CryptoProof,
}


def provider_for_method(payment_method: str) -> str:
    if payment_method not in _PROOF_BY_METHOD:
        raise ValueError("Invalid payment method")
    return _PROOF_BY_METHOD[payment_method].model_fields["provider"].default


def parse_proofs(payment_method: str, details: Any) -> List[PaymentProof]:
    """
    paymentDetails moze byc pojedynczym obiektem albo lista (po jednym na walute).
    Zwraca liste dowodow, ValueError gdy ksztalt sie nie zgadza z metoda.
    """
    if payment_method not in _PROOF_BY_METHOD:
        raise ValueError("Invalid payment method")
    if details is None:
        return []
    raw = details if isinstance(details, list) else [details]
    model = _PROOF_BY_METHOD[payment_method]
    proofs = []
    for entry in raw:
        try:
            proofs.append(model.model_validate(entry))
        except ValidationError as e:
            raise ValueError(f"Invalid {payment_method} payment details: {e.errors()[0]['msg']}")
    return proofs


@dataclass(frozen=True)
class ChargeVerification:
    status: str
    amount_minor: int
    currency: str
    provider_tx_id: str
    provider: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED


@dataclass(frozen=True)
class ChargeInitiation:
    provider: str
    currency: str
    amount_minor: int
    reference: str
    status: str
    client_secret: str | None = None
    link: str | None = None
    tx_ref: str | None = None


@dataclass(frozen=True)
class PaymentRecord:
    provider: str
    currency: str
    amount_minor: int
    provider_charge_ref: str
    provider_status: str
    tx_ref: str | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_proof(self) -> PaymentProof | None:
        """Rebuilds a proof from a stored record (checkout fallback)."""
        if self.provider == PROVIDER_STRIPE:
            return StripeProof(currency=self.currency, payment_intent_id=self.provider_charge_ref)
        # rekord z inicjalizacji flutterwave ma tylko tx_ref, bez id transakcji
        if self.provider == PROVIDER_FLUTTERWAVE and self.tx_ref and self.provider_charge_ref != self.tx_ref:
            return FlutterwaveProof(currency=self.currency, tx_ref=self.tx_ref, flw_tx_id=self.provider_charge_ref)
        return None
