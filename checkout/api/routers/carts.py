# checkout/api/routers/carts.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from checkout.api.deps import (
    current_user,
    get_lock_service,
    get_notification_service,
    get_provider_adapter,
)
from checkout.data.database import get_db
from checkout.domain.cart import AddOutcome
from checkout.domain.payments import parse_proofs
from checkout.domain.schemas import (
    AddItemIn,
    CheckoutIn,
    CheckoutOut,
    RefreshPaymentIn,
    UpdateQuantityIn,
)
from checkout.services.cart_service import CartService
from checkout.services.checkout_service import CheckoutService
from checkout.services.provider_adapter import ProviderAdapter

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(db: Session, provider_adapter: ProviderAdapter | None = None):
    return CartService(db=db, provider_adapter=provider_adapter)


def _proofs(payment_method: str, details):
    try:
        return parse_proofs(payment_method, details)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("")
def get_cart(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    svc = get_service(db)
    return {"success": True, "data": svc.get_cart(user_id)}


@router.post("/add")
def add_to_cart(payload: AddItemIn, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    svc = get_service(db)
    cart, outcome = svc.add_product(user_id, payload.product_id, payload.quantity)
    if outcome is AddOutcome.ALREADY_OWNED:
        return {"success": True, "message": "NFT already in cart", "alreadyInCart": True, "data": cart}
    return {"success": True, "message": "Product added to cart", "data": cart}


@router.put("/item/{item_id}")
def update_cart_item(
    item_id: str,
    payload: UpdateQuantityIn,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return {"success": True, "data": svc.update_quantity(user_id, item_id, payload.quantity)}


@router.delete("/item/{item_id}")
def remove_cart_item(item_id: str, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    svc = get_service(db)
    return {"success": True, "data": svc.remove_item(user_id, item_id)}


@router.delete("/clear")
def clear_cart(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    svc = get_service(db)
    return {"success": True, "message": "Cart cleared", "data": svc.clear_cart(user_id)}


# platnosci per grupa walutowa

@router.post("/payments/{provider}/{currency}")
def start_payment(
    provider: str,
    currency: str,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
    provider_adapter: ProviderAdapter = Depends(get_provider_adapter),
):
    svc = get_service(db, provider_adapter)
    return {"success": True, "data": svc.start_payment(user_id, provider, currency)}


@router.patch("/payments/status")
def refresh_payment(
    payload: RefreshPaymentIn,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
    provider_adapter: ProviderAdapter = Depends(get_provider_adapter),
):
    proof = _proofs(payload.payment_method, payload.payment_details)[0]
    svc = get_service(db, provider_adapter)
    return {"success": True, "data": svc.refresh_payment(user_id, proof)}


# sync endpoint: leci w threadpoolu, rozlaczenie klienta nie przerywa checkoutu
@router.post("/checkout")
def checkout(
    payload: CheckoutIn,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
    provider_adapter: ProviderAdapter = Depends(get_provider_adapter),
    lock_service=Depends(get_lock_service),
    notification_service=Depends(get_notification_service),
):
    proofs = _proofs(payload.payment_method, payload.payment_details)
    svc = CheckoutService(
        db=db,
        provider_adapter=provider_adapter,
        lock_service=lock_service,
        notification_service=notification_service,
    )
    result = svc.checkout(user_id, payload.payment_method, proofs)
    data = CheckoutOut(
        order_id=result.order_id,
        order_number=result.order_number,
        processed_items=result.processed_items,
    )
    return {
        "success": True,
        "message": "Checkout completed successfully",
        "data": data.model_dump(by_alias=True),
    }
