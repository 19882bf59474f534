# checkout/services/checkout_service.py
"""
Checkout Orchestrator.

INITIATED -> VERIFYING -> RESERVING -> COMMITTING -> COMPLETED | FAILED | PARTIALLY_FAILED

Kolejnosc jest niezmiennikiem: najpierw weryfikacja WSZYSTKICH grup walutowych
u providerow, dopiero potem jakiekolwiek zmiany stocku. Wszystko albo nic dla
calego koszyka. Poprawnosc przy wspolbieznosci trzyma baza (unique w ledgerze,
warunkowy UPDATE stocku), lock w redisie to tylko bezpiecznik per user.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from checkout.data.models.order import OrderItemModel, OrderModel
from checkout.data.models.reconciliation import ReconciliationRecordModel
from checkout.domain.cart import CartSnapshot, CurrencyGroup
from checkout.domain.errors import (
    CheckoutError,
    CheckoutInProgress,
    DuplicatePayment,
    EmptyCart,
    IncompletePayment,
    InsufficientStock,
    InvalidOperation,
    ItemUnavailable,
    OutOfStock,
    PartiallyFailed,
    PaymentNotCompletedOrInvalid,
    ProviderError,
    StorageError,
)
from checkout.domain.money import format_amount
from checkout.domain.payments import (
    PROVIDER_CRYPTO,
    PROVIDER_FLUTTERWAVE,
    PROVIDER_STRIPE,
    STATUS_CONSUMED,
    ChargeVerification,
    PaymentRecord,
    provider_for_method,
)
from checkout.repos.order_repo import OrderRepo
from checkout.repos.product_repo import ProductRepo
from checkout.repos.reconciliation_repo import (
    REFUND_FAILED,
    REFUND_MANUAL,
    REFUND_SUBMITTED,
    ReconciliationRepo,
    record_status,
)
from checkout.services.cart_service import CartService
from checkout.services.idempotency_ledger import IdempotencyLedger, LedgerOutcome
from checkout.services.lock_service import LockService
from checkout.services.notification_service import NotificationService
from checkout.services.order_service import OrderService, generate_order_number
from checkout.services.provider_adapter import ProviderAdapter
from checkout.services.stock_service import Reservation, StockService
from checkout.utils.logging import get_logger
from checkout.utils.retry import http_retry
from checkout.utils.settings import PROVIDER_RETRY_ATTEMPTS

logger = get_logger(__name__)


class CheckoutState(str, enum.Enum):
    INITIATED = "initiated"
    VERIFYING = "verifying"
    RESERVING = "reserving"
    COMMITTING = "committing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_FAILED = "partially_failed"


@dataclass
class _Attempt:
    ref: str
    user_id: str
    payment_method: str
    state: CheckoutState = CheckoutState.INITIATED
    claims: List[Tuple[str, str]] = field(default_factory=list)
    reservations: List[Reservation] = field(default_factory=list)


@dataclass(frozen=True)
class VerifiedGroup:
    group: CurrencyGroup
    proof: Any
    verification: ChargeVerification


@dataclass(frozen=True)
class CheckoutResult:
    order_id: int
    order_number: str
    processed_items: List[Dict[str, Any]]
    state: CheckoutState = CheckoutState.COMPLETED


class CheckoutService:
    def __init__(
        self,
        db: Session,
        provider_adapter: ProviderAdapter,
        lock_service: LockService | None = None,
        notification_service: NotificationService | None = None,
        retry_attempts: int = PROVIDER_RETRY_ATTEMPTS,
    ):
        self.db = db
        self.provider_adapter = provider_adapter
        self.lock_service = lock_service
        self.notification_service = notification_service
        self.retry_attempts = retry_attempts

        self.carts = CartService(db, provider_adapter)
        self.products = ProductRepo(db)
        self.ledger = IdempotencyLedger(db)
        self.stock = StockService(db)
        self.orders = OrderRepo(db)
        self.reconciliation = ReconciliationRepo(db)

    # =====================================================
    # ENTRY
    # =====================================================
    def checkout(self, user_id: str, payment_method: str, proofs: list) -> CheckoutResult:
        token = self._acquire_lock(user_id)
        try:
            return self._run(user_id, payment_method, proofs)
        finally:
            if token:
                self.lock_service.release_checkout_lock(user_id, token)

    def _acquire_lock(self, user_id: str) -> str | None:
        if self.lock_service is None:
            return None
        try:
            token = self.lock_service.acquire_checkout_lock(user_id)
        except RedisError as e:
            # lock to tylko bezpiecznik, spojnosc i tak trzyma baza
            logger.warning(f"Checkout lock unavailable for user {user_id}, continuing without it: {e}")
            return None
        if token is None:
            raise CheckoutInProgress()
        return token

    def _set_state(self, attempt: _Attempt, state: CheckoutState):
        attempt.state = state
        logger.info(f"checkout {attempt.ref} user={attempt.user_id}: {state.value}")

    def _run(self, user_id: str, payment_method: str, proofs: list) -> CheckoutResult:
        attempt = _Attempt(ref=generate_order_number(), user_id=user_id, payment_method=payment_method)
        self._set_state(attempt, CheckoutState.INITIATED)

        try:
            snapshot = self.carts.load_snapshot(user_id)
            if snapshot is None or snapshot.is_empty:
                raise EmptyCart()

            products = self._check_availability(snapshot, payment_method)
            plan = self._match_proofs(snapshot, payment_method, proofs)

            self._set_state(attempt, CheckoutState.VERIFYING)
            verified = [self._verify_group(group, proof) for group, proof in plan]
            self._record_in_ledger(attempt, verified)

            self._set_state(attempt, CheckoutState.RESERVING)
            self._reserve_all(attempt, snapshot, verified)

            self._set_state(attempt, CheckoutState.COMMITTING)
            order, processed = self._commit(attempt, snapshot, products, verified)
        except PartiallyFailed:
            self._set_state(attempt, CheckoutState.PARTIALLY_FAILED)
            raise
        except CheckoutError as e:
            logger.info(f"checkout {attempt.ref} failed in {attempt.state.value}: {e.__class__.__name__}")
            self._set_state(attempt, CheckoutState.FAILED)
            raise

        self._set_state(attempt, CheckoutState.COMPLETED)
        self._notify(user_id, order.order_number)
        return CheckoutResult(order_id=order.id, order_number=order.order_number, processed_items=processed)

    # =====================================================
    # INITIATED
    # =====================================================
    def _check_availability(self, snapshot: CartSnapshot, payment_method: str) -> dict:
        products = self.products.get_products({i.product_id for i in snapshot.items})
        unavailable = []
        for item in snapshot.items:
            product = products.get(item.product_id)
            if product is None or not product.is_active:
                unavailable.append(item.product_id)
            elif item.is_nft and product.availability != "available":
                unavailable.append(item.product_id)
            elif product.availability in ("sold", "unavailable"):
                unavailable.append(item.product_id)
        if unavailable:
            raise ItemUnavailable(unavailable)

        has_nft = any(i.is_nft for i in snapshot.items)
        if has_nft and provider_for_method(payment_method) != PROVIDER_CRYPTO:
            raise InvalidOperation("NFT items must be paid with crypto")
        return products

    def _match_proofs(self, snapshot: CartSnapshot, payment_method: str, proofs: list) -> List[Tuple[CurrencyGroup, Any]]:
        """Jeden dowod na grupe walutowa: z requestu, a jak brak to z historii platnosci koszyka."""
        provider = provider_for_method(payment_method)
        groups = snapshot.groups()

        by_currency = {}
        for proof in proofs:
            if proof.currency in by_currency:
                raise ValueError(f"More than one payment proof for currency {proof.currency}")
            by_currency[proof.currency] = proof

        plan = []
        for group in groups:
            proof = by_currency.get(group.currency)
            if proof is None and len(groups) == 1 and len(proofs) == 1:
                # jeden dowod bez waluty przy jednowalutowym koszyku; walute i tak potwierdza provider
                proof = proofs[0]
            if proof is None:
                proof = snapshot.fallback_proof(provider, group.currency)
            if proof is None:
                raise IncompletePayment(group.currency)
            plan.append((group, proof))

        references = [p.reference for _, p in plan]
        if len(set(references)) != len(references):
            raise ValueError("The same payment cannot cover more than one currency group")
        return plan

    # =====================================================
    # VERIFYING
    # =====================================================
    def _verify_group(self, group: CurrencyGroup, proof) -> VerifiedGroup:
        verify = http_retry(self.retry_attempts)(self.provider_adapter.verify_charge)
        verification = verify(proof)

        if not verification.succeeded:
            raise PaymentNotCompletedOrInvalid(group.currency, f"status {verification.status}")
        if verification.currency != group.currency:
            raise PaymentNotCompletedOrInvalid(
                group.currency, f"currency {verification.currency} != {group.currency}"
            )
        if verification.amount_minor != group.total_minor:
            raise PaymentNotCompletedOrInvalid(
                group.currency, f"amount {verification.amount_minor} != {group.total_minor}"
            )

        logger.info(f"Verified {proof.provider} {proof.reference} for {group.currency} {group.total_minor}")
        return VerifiedGroup(group=group, proof=proof, verification=verification)

    def _record_in_ledger(self, attempt: _Attempt, verified: List[VerifiedGroup]):
        try:
            for v in verified:
                provider, reference = v.proof.provider, v.proof.reference
                outcome = self.ledger.check_and_record(
                    provider,
                    reference,
                    payload={
                        "provider_tx_id": v.verification.provider_tx_id,
                        "amount_minor": v.verification.amount_minor,
                        "currency": v.verification.currency,
                        "status": v.verification.status,
                    },
                    linked_tx_ref=attempt.ref,
                )
                if outcome is LedgerOutcome.DUPLICATE and not self.ledger.claim(provider, reference, attempt.ref):
                    self.db.rollback()
                    logger.warning(
                        f"checkout {attempt.ref}: {provider} {reference} already consumed by "
                        f"{self.ledger.linked_ref(provider, reference)}"
                    )
                    raise DuplicatePayment(provider, reference)
                self.db.commit()
                attempt.claims.append((provider, reference))
        except SQLAlchemyError as e:
            self.db.rollback()
            self._release_claims(attempt)
            raise StorageError() from e
        except CheckoutError:
            self._release_claims(attempt)
            raise

    def _release_claims(self, attempt: _Attempt):
        for provider, reference in attempt.claims:
            if self.ledger.unlink(provider, reference, attempt.ref):
                self.db.commit()
            else:
                self.db.rollback()
                logger.error(f"checkout {attempt.ref}: could not release ledger claim {provider}:{reference}")
        attempt.claims.clear()

    # =====================================================
    # RESERVING
    # =====================================================
    def _reserve_all(self, attempt: _Attempt, snapshot: CartSnapshot, verified: List[VerifiedGroup]):
        for item in snapshot.items:
            try:
                attempt.reservations.append(self.stock.reserve(item.product_id, item.quantity, is_nft=item.is_nft))
            except (OutOfStock, StorageError) as e:
                failed = self._release_reservations(attempt)
                payments = self._refund_payments(attempt, verified)
                self._release_claims(attempt)
                if failed or payments:
                    status = record_status([r.as_dict() for r in failed], payments)
                    self._open_reconciliation(attempt, f"rollback after reserve failure: {e}", failed, status, payments)
                if isinstance(e, OutOfStock):
                    raise InsufficientStock(item.product_id)
                raise

    def _release_reservations(self, attempt: _Attempt) -> List[Reservation]:
        failed = [r for r in reversed(attempt.reservations) if not self.stock.release(r)]
        attempt.reservations.clear()
        return failed

    # =====================================================
    # COMMITTING
    # =====================================================
    def _commit(self, attempt: _Attempt, snapshot: CartSnapshot, products: dict, verified: List[VerifiedGroup]):
        groups = [v.group for v in verified]
        primary = groups[0]

        payment_details = [
            {
                "provider": v.proof.provider,
                "currency": v.group.currency,
                "reference": v.proof.reference,
                "tx_ref": getattr(v.proof, "tx_ref", None),
                "provider_tx_id": v.verification.provider_tx_id,
                "amount_minor": v.verification.amount_minor,
                "status": v.verification.status,
            }
            for v in verified
        ]
        tx_ref = next((d["tx_ref"] for d in payment_details if d["provider"] == PROVIDER_FLUTTERWAVE), None)

        processed = [
            {
                "product_id": item.product_id,
                "name": products[item.product_id].name,
                "quantity": item.quantity,
                "unit_price": format_amount(item.unit_price),
                "amount": format_amount(item.line_total),
                "currency": item.currency,
                "is_nft": item.is_nft,
                "payment_method": attempt.payment_method,
                "status": "completed",
            }
            for item in snapshot.items
        ]

        try:
            order = OrderModel(
                order_number=attempt.ref,
                user_id=attempt.user_id,
                total_amount=primary.total,
                currency=primary.currency,
                totals={g.currency: format_amount(g.total) for g in groups},
                payment_method=attempt.payment_method,
                payment_details=payment_details,
                tx_ref=tx_ref,
                items=[
                    OrderItemModel(
                        product_id=item.product_id,
                        name=products[item.product_id].name,
                        unit_price=item.unit_price,
                        quantity=item.quantity,
                        currency=item.currency,
                        is_nft=item.is_nft,
                    )
                    for item in snapshot.items
                ],
            )
            OrderService.transition(order, "completed")
            self.orders.add_order(order)

            for reservation in attempt.reservations:
                self.stock.finalize(reservation)

            self._clear_purchased(attempt, snapshot, verified)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            self._compensate(attempt, verified, f"{e.__class__.__name__}: {e}")

        logger.info(f"Order {order.order_number} created for user {attempt.user_id}")
        return order, processed

    def _clear_purchased(self, attempt: _Attempt, snapshot: CartSnapshot, verified: List[VerifiedGroup]):
        """Usuwa z koszyka tylko pozycje ze snapshotu, rzeczy dodane w trakcie checkoutu zostaja."""
        model, cart = self.carts.load(attempt.user_id)
        if model is None:
            raise StorageError("cart disappeared during checkout")

        for item in snapshot.items:
            cart.remove_item(item.id)
        for v in verified:
            cart.record_payment(
                PaymentRecord(
                    provider=v.proof.provider,
                    currency=v.group.currency,
                    amount_minor=v.verification.amount_minor,
                    provider_charge_ref=v.proof.reference,
                    provider_status=STATUS_CONSUMED,
                    tx_ref=getattr(v.proof, "tx_ref", None),
                )
            )

        self.carts.apply_to_model(model, cart)
        self.db.flush()
        self.carts.repo.touch_cart(
            model.id,
            {
                "total_items": cart.total_items,
                "total_amount": {cur: format_amount(v) for cur, v in cart.totals.items()},
            },
        )

    def _compensate(self, attempt: _Attempt, verified: List[VerifiedGroup], reason: str):
        """
        Commit padl po zdjeciu stocku. Oddajemy rezerwacje, zlecamy refundy,
        reszte claimow w ledgerze zwalniamy. Slad zostaje w reconciliation_records
        zawsze, bo klient nie dostal zamowienia mimo pobranej platnosci.
        """
        failed = self._release_reservations(attempt)
        payments = self._refund_payments(attempt, verified)
        self._release_claims(attempt)
        status = record_status([r.as_dict() for r in failed], payments)
        record_id = self._open_reconciliation(attempt, reason, failed, status, payments)

        logger.error(
            f"checkout_partially_failed attempt={attempt.ref} user={attempt.user_id} "
            f"unreleased={len(failed)} reconciliation={record_id} reason={reason}"
        )
        raise PartiallyFailed(attempt.ref, record_id)

    def _refund_payments(self, attempt: _Attempt, verified: List[VerifiedGroup]) -> List[dict]:
        """
        Zwrot platnosci zgloszonych przez ten checkout. Stripe dostaje refund od razu,
        a zwrocony payment intent zostaje w ledgerze przypiety do nieudanego checkoutu,
        wiec nie da sie nim zaplacic drugi raz. Inni providerzy i nieudane refundy ida
        do recznego przegladu, a ich claim jest zwalniany.
        """
        payments = []
        for v in verified:
            provider, reference = v.proof.provider, v.proof.reference
            if (provider, reference) not in attempt.claims:
                continue
            entry = {"provider": provider, "reference": reference, "amount_minor": v.verification.amount_minor}
            if provider != PROVIDER_STRIPE:
                entry["refund"] = REFUND_MANUAL
            else:
                refund = http_retry(self.retry_attempts)(self.provider_adapter.refund_charge)
                try:
                    entry["refund_id"] = refund(provider, reference, v.verification.amount_minor)
                    entry["refund"] = REFUND_SUBMITTED
                    attempt.claims.remove((provider, reference))
                    logger.info(f"checkout {attempt.ref}: refund {entry['refund_id']} submitted for {reference}")
                except ProviderError as e:
                    entry["refund"] = REFUND_FAILED
                    logger.error(f"checkout {attempt.ref}: refund for {provider} {reference} failed: {e.detail}")
            payments.append(entry)
        return payments

    def _open_reconciliation(
        self, attempt: _Attempt, reason: str, failed: List[Reservation], status: str, payments: List[dict]
    ):
        record = ReconciliationRecordModel(
            attempt_ref=attempt.ref,
            user_id=attempt.user_id,
            reason=reason[:500],
            pending_releases=[r.as_dict() for r in failed],
            payment_refs=payments,
            status=status,
        )
        try:
            self.reconciliation.add(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.critical(
                f"checkout {attempt.ref}: could not persist reconciliation record "
                f"(pending={[r.as_dict() for r in failed]}): {e}"
            )
            return None
        return record.id

    def _notify(self, user_id: str, order_number: str):
        if self.notification_service is None:
            return
        try:
            self.notification_service.send_order_notification(user_id, order_number)
        except Exception as e:
            # zamowienie juz jest zapisane, powiadomienie nie moze tego cofnac
            logger.warning(f"Order notification for {order_number} not queued: {e}")
