# checkout/api/routers/orders.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from checkout.api.deps import current_user
from checkout.data.database import get_db
from checkout.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(db: Session):
    return OrderService(db)


@router.get("")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: str | None = Query(None),
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    svc = get_service(db)
    return {"success": True, "data": svc.list_orders(user_id, page, limit, status)}


@router.get("/{order_number}")
def get_order(order_number: str, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    """
    Pobiera szczegoly zamowienia (tylko wlasne zamowienia, cudze = 404).
    """
    svc = get_service(db)
    return {"success": True, "data": svc.get_order(order_number, user_id)}


@router.post("/{order_number}/cancel")
def cancel_order(order_number: str, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    svc = get_service(db)
    return {"success": True, "message": "Order cancelled", "data": svc.cancel_order(order_number, user_id)}
