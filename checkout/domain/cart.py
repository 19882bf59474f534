# checkout/domain/cart.py
"""
Cart Aggregate.

Trzyma pozycje koszyka i historie platnosci jednego usera. Wszystkie
mutacje ida przez metody tej klasy i kazda konczy sie przeliczeniem
total_items / totals, wiec pola pochodne nigdy nie rozjada sie z pozycjami.
Klasa nie wie nic o bazie danych, CartService laduje ja z repo i zapisuje.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Tuple

from checkout.domain.money import normalize_currency, to_minor_units
from checkout.domain.payments import STATUS_CONSUMED, PaymentRecord


class AddOutcome(str, enum.Enum):
    ADDED = "added"
    MERGED = "merged"
    ALREADY_OWNED = "already_owned"


@dataclass
class CartLine:
    id: str
    product_id: int
    quantity: int
    unit_price: Decimal
    currency: str
    is_nft: bool = False
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class LineSnapshot:
    id: str
    product_id: int
    quantity: int
    unit_price: Decimal
    currency: str
    is_nft: bool

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CurrencyGroup:
    currency: str
    items: Tuple[LineSnapshot, ...]
    total: Decimal

    @property
    def total_minor(self) -> int:
        return to_minor_units(self.total, self.currency)

    @property
    def has_nft(self) -> bool:
        return any(i.is_nft for i in self.items)


@dataclass(frozen=True)
class CartSnapshot:
    user_id: str
    version: int
    items: Tuple[LineSnapshot, ...]
    payments: Tuple[PaymentRecord, ...]

    @property
    def is_empty(self) -> bool:
        return not self.items

    def groups(self) -> List[CurrencyGroup]:
        by_currency: Dict[str, List[LineSnapshot]] = {}
        for item in self.items:
            by_currency.setdefault(item.currency, []).append(item)
        return [
            CurrencyGroup(
                currency=cur,
                items=tuple(lines),
                total=sum((l.line_total for l in lines), Decimal("0")),
            )
            for cur, lines in sorted(by_currency.items())
        ]

    def fallback_proof(self, provider: str, currency: str):
        """Newest recorded payment for provider/currency that can stand in for a proof.

        Charges already consumed by an earlier order are skipped.
        """
        consumed = {
            (r.provider, r.provider_charge_ref) for r in self.payments if r.provider_status == STATUS_CONSUMED
        }
        for record in reversed(self.payments):
            if record.provider != provider or record.currency != currency:
                continue
            if (record.provider, record.provider_charge_ref) in consumed:
                continue
            proof = record.to_proof()
            if proof is not None:
                return proof
        return None


class Cart:
    def __init__(self, user_id: str, items=None, payments=None, version: int = 1):
        self.user_id = user_id
        self.version = version
        self._items: List[CartLine] = list(items or [])
        self._payments: List[PaymentRecord] = list(payments or [])
        self.total_items = 0
        self.totals: Dict[str, Decimal] = {}
        self._recompute()

    @property
    def items(self) -> Tuple[CartLine, ...]:
        return tuple(self._items)

    @property
    def payments(self) -> Tuple[PaymentRecord, ...]:
        return tuple(self._payments)

    @property
    def currencies(self) -> List[str]:
        return sorted(self.totals)

    @property
    def has_nfts(self) -> bool:
        return any(i.is_nft for i in self._items)

    def find(self, item_id: str) -> CartLine | None:
        return next((i for i in self._items if i.id == item_id), None)

    def _find_product(self, product_id: int) -> CartLine | None:
        return next((i for i in self._items if i.product_id == product_id), None)

    def _recompute(self):
        totals: Dict[str, Decimal] = {}
        for item in self._items:
            totals[item.currency] = totals.get(item.currency, Decimal("0")) + item.line_total
        self.totals = totals
        self.total_items = sum(i.quantity for i in self._items)

    # mutacje

    def add_item(self, product_id: int, product, quantity: int = 1) -> AddOutcome:
        """
        `product` to cokolwiek z atrybutami price, currency, is_nft
        (model SQLAlchemy albo obiekt testowy). Cena jest kopiowana w chwili
        dodania, pozniejsze zmiany ceny produktu nie zmieniaja koszyka.
        """
        if quantity <= 0:
            raise ValueError("Quantity must be at least 1")

        existing = self._find_product(product_id)
        if existing is not None:
            if existing.is_nft:
                return AddOutcome.ALREADY_OWNED
            existing.quantity += quantity
            self._recompute()
            return AddOutcome.MERGED

        is_nft = bool(product.is_nft)
        self._items.append(
            CartLine(
                id=uuid.uuid4().hex,
                product_id=product_id,
                quantity=1 if is_nft else quantity,
                unit_price=Decimal(str(product.price)),
                currency=normalize_currency(product.currency),
                is_nft=is_nft,
            )
        )
        self._recompute()
        return AddOutcome.ADDED

    def remove_item(self, item_id: str) -> bool:
        before = len(self._items)
        self._items = [i for i in self._items if i.id != item_id]
        self._recompute()
        return len(self._items) != before

    def update_quantity(self, item_id: str, quantity: int) -> bool:
        item = self.find(item_id)
        if item is None or quantity <= 0:
            return False
        if item.is_nft and quantity != 1:
            return False
        item.quantity = quantity
        self._recompute()
        return True

    def clear(self):
        self._items = []
        self._recompute()

    def record_payment(self, record: PaymentRecord):
        self._payments.append(record)

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            user_id=self.user_id,
            version=self.version,
            items=tuple(
                LineSnapshot(
                    id=i.id,
                    product_id=i.product_id,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                    currency=i.currency,
                    is_nft=i.is_nft,
                )
                for i in self._items
            ),
            payments=tuple(self._payments),
        )
