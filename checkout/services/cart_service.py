from decimal import Decimal
from typing import Any, Dict, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from checkout.data.models.cart import CartModel
from checkout.data.models.cart_item import CartItemModel
from checkout.data.models.cart_payment import CartPaymentModel
from checkout.domain.cart import AddOutcome, Cart, CartLine, CartSnapshot
from checkout.domain.errors import ConcurrencyConflict, InvalidOperation, NotFound, StorageError
from checkout.domain.money import format_amount, normalize_currency
from checkout.domain.payments import PaymentRecord
from checkout.repos.cart_repo import CartRepo
from checkout.repos.product_repo import ProductRepo
from checkout.services.provider_adapter import ProviderAdapter
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

UNAVAILABLE = ("sold", "unavailable", "reserved")


def cart_to_dict(cart: Cart) -> Dict[str, Any]:
    return {
        "user_id": cart.user_id,
        "version": cart.version,
        "items": [
            {
                "id": i.id,
                "product_id": i.product_id,
                "quantity": i.quantity,
                "unit_price": format_amount(i.unit_price),
                "currency": i.currency,
                "is_nft": i.is_nft,
                "added_at": i.added_at,
            }
            for i in cart.items
        ],
        "payments": [
            {
                "provider": p.provider,
                "currency": p.currency,
                "amount_minor": p.amount_minor,
                "provider_charge_ref": p.provider_charge_ref,
                "tx_ref": p.tx_ref,
                "provider_status": p.provider_status,
                "updated_at": p.updated_at,
            }
            for p in cart.payments
        ],
        "summary": {
            "total_items": cart.total_items,
            "totals": {cur: format_amount(amount) for cur, amount in cart.totals.items()},
            "currencies": cart.currencies,
            "has_nfts": cart.has_nfts,
        },
    }


class CartService:
    """
    Prosta implementacja cqrs i proste use case dla domeny cart
    commands (add, update, remove, clear, payments) modyfikuja stan przez Cart Aggregate
    query (get, snapshot) tylko odczyt
    """

    def __init__(self, db: Session, provider_adapter: ProviderAdapter | None = None):
        self.db = db
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)
        self.provider_adapter = provider_adapter

    # ladowanie / zapis agregatu

    @staticmethod
    def _to_aggregate(model: CartModel) -> Cart:
        return Cart(
            user_id=model.user_id,
            version=model.version,
            items=[
                CartLine(
                    id=i.id,
                    product_id=i.product_id,
                    quantity=i.quantity,
                    unit_price=Decimal(i.unit_price),
                    currency=i.currency,
                    is_nft=i.is_nft,
                    added_at=i.added_at,
                )
                for i in model.items
            ],
            payments=[
                PaymentRecord(
                    provider=p.provider,
                    currency=p.currency,
                    amount_minor=p.amount_minor,
                    provider_charge_ref=p.provider_charge_ref,
                    provider_status=p.provider_status,
                    tx_ref=p.tx_ref,
                    updated_at=p.updated_at,
                )
                for p in model.payments
            ],
        )

    def load(self, user_id: str, create: bool = False) -> Tuple[CartModel | None, Cart | None]:
        model = self.repo.get_cart_by_user(user_id)
        if model is None:
            if not create:
                return None, None
            # koszyk tworzony leniwie przy pierwszym uzyciu
            try:
                model = self.repo.create_cart(CartModel(user_id=user_id, version=1, total_items=0, total_amount={}))
                self.repo.commit()
            except IntegrityError:
                # rownolegle pierwsze dodanie, unique na user_id
                self.repo.rollback()
                model = self.repo.get_cart_by_user(user_id)
                return model, self._to_aggregate(model)
            logger.info(f"Utworzono nowy koszyk {model.id} dla uzytkownika {user_id}")
        return model, self._to_aggregate(model)

    def apply_to_model(self, model: CartModel, cart: Cart):
        """Przepisuje stan agregatu na wiersze (bez commita)."""
        existing = {i.id: i for i in model.items}
        rows = []
        for line in cart.items:
            row = existing.get(line.id)
            if row is None:
                row = CartItemModel(id=line.id, cart_id=model.id, added_at=line.added_at)
            row.product_id = line.product_id
            row.quantity = line.quantity
            row.unit_price = line.unit_price
            row.currency = line.currency
            row.is_nft = line.is_nft
            rows.append(row)
        self.repo.replace_items(model, rows)

        for record in cart.payments[len(model.payments):]:
            self.repo.add_payment(
                model,
                CartPaymentModel(
                    provider=record.provider,
                    currency=record.currency,
                    amount_minor=record.amount_minor,
                    provider_charge_ref=record.provider_charge_ref,
                    tx_ref=record.tx_ref,
                    provider_status=record.provider_status,
                    updated_at=record.updated_at,
                ),
            )

    def _save(self, model: CartModel, cart: Cart) -> Cart:
        try:
            self.apply_to_model(model, cart)
            self.repo.flush()

            # Optimistic locking, update ... where version = stara wersja
            rowcount = self.repo.update_cart_version(
                cart_id=model.id,
                old_version=cart.version,
                new_data={
                    "version": cart.version + 1,
                    "total_items": cart.total_items,
                    "total_amount": {cur: format_amount(v) for cur, v in cart.totals.items()},
                },
            )
            if rowcount == 0:
                self.repo.rollback()
                raise ConcurrencyConflict()

            self.repo.commit()
        except SQLAlchemyError as e:
            self.repo.rollback()
            logger.error(f"Blad zapisu koszyka uzytkownika {cart.user_id}: {e}")
            raise StorageError() from e

        cart.version += 1
        return cart

    # query

    def get_cart(self, user_id: str) -> Dict[str, Any]:
        _, cart = self.load(user_id, create=True)
        return cart_to_dict(cart)

    def load_snapshot(self, user_id: str) -> CartSnapshot | None:
        _, cart = self.load(user_id)
        return cart.snapshot() if cart else None

    # commands

    def add_product(self, user_id: str, product_id: int, quantity: int = 1) -> Tuple[Dict[str, Any], AddOutcome]:
        if quantity <= 0:
            raise ValueError("Quantity must be at least 1")

        product = self.products.get_product(product_id)
        if not product or not product.is_active:
            raise NotFound("Product not found")
        if product.availability in UNAVAILABLE:
            raise InvalidOperation("Product is not available for purchase")

        model, cart = self.load(user_id, create=True)
        outcome = cart.add_item(product_id, product, quantity)

        if outcome is AddOutcome.ALREADY_OWNED:
            logger.info(f"Produkt NFT {product_id} juz jest w koszyku uzytkownika {user_id}")
            return cart_to_dict(cart), outcome

        self._save(model, cart)
        logger.info(f"Produkt {product_id} ({outcome.value}) w koszyku uzytkownika {user_id}, wersja {cart.version}")
        return cart_to_dict(cart), outcome

    def update_quantity(self, user_id: str, item_id: str, quantity: int) -> Dict[str, Any]:
        model, cart = self.load(user_id)
        if cart is None:
            raise NotFound("Cart not found")

        item = cart.find(item_id)
        if item is None:
            raise NotFound("Cart item not found")
        if not cart.update_quantity(item_id, quantity):
            if item.is_nft:
                raise InvalidOperation("NFT quantity is always 1")
            raise ValueError("Quantity must be at least 1")

        self._save(model, cart)
        return cart_to_dict(cart)

    def remove_item(self, user_id: str, item_id: str) -> Dict[str, Any]:
        model, cart = self.load(user_id)
        if cart is None:
            raise NotFound("Cart not found")

        if cart.remove_item(item_id):
            self._save(model, cart)
            logger.info(f"Usunieto pozycje {item_id} z koszyka uzytkownika {user_id}")
        return cart_to_dict(cart)

    def clear_cart(self, user_id: str) -> Dict[str, Any]:
        model, cart = self.load(user_id)
        if cart is None:
            raise NotFound("Cart not found")

        cart.clear()
        self._save(model, cart)
        return cart_to_dict(cart)

    # platnosci per grupa walutowa

    def start_payment(self, user_id: str, provider: str, currency: str) -> Dict[str, Any]:
        """Tworzy charge u providera na sume jednej grupy walutowej."""
        currency = normalize_currency(currency)
        model, cart = self.load(user_id)
        if cart is None or not cart.items:
            raise InvalidOperation("Cart is empty")

        group = next((g for g in cart.snapshot().groups() if g.currency == currency), None)
        if group is None:
            raise InvalidOperation(f"No eligible items for currency {currency}")
        if group.has_nft:
            raise InvalidOperation("NFT items are paid with crypto")
        if group.total_minor <= 0:
            raise InvalidOperation("Invalid subtotal computed for currency group")

        initiation = self.provider_adapter.create_charge(provider, currency, group.total_minor, user_id)
        cart.record_payment(
            PaymentRecord(
                provider=provider,
                currency=currency,
                amount_minor=initiation.amount_minor,
                provider_charge_ref=initiation.reference,
                provider_status=initiation.status,
                tx_ref=initiation.tx_ref,
            )
        )
        self._save(model, cart)
        logger.info(f"Zainicjowano platnosc {provider} {initiation.reference} dla grupy {currency}")

        return {
            "provider": provider,
            "currency": currency,
            "amount_minor": initiation.amount_minor,
            "reference": initiation.reference,
            "client_secret": initiation.client_secret,
            "link": initiation.link,
            "tx_ref": initiation.tx_ref,
        }

    def refresh_payment(self, user_id: str, proof) -> Dict[str, Any]:
        """Odpytuje providera o status i dopisuje go do historii platnosci koszyka."""
        model, cart = self.load(user_id)
        if cart is None:
            raise NotFound("Cart not found")

        verification = self.provider_adapter.verify_charge(proof)
        cart.record_payment(
            PaymentRecord(
                provider=proof.provider,
                currency=verification.currency,
                amount_minor=verification.amount_minor,
                provider_charge_ref=proof.reference,
                provider_status=verification.status,
                tx_ref=getattr(proof, "tx_ref", None),
            )
        )
        self._save(model, cart)

        return {
            "currency": verification.currency,
            "amount_minor": verification.amount_minor,
            "status": verification.status,
        }
