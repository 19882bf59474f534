# checkout/api/routers/webhooks.py
from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from checkout.api.deps import get_provider_adapter
from checkout.data.database import get_db
from checkout.services.provider_adapter import ProviderAdapter
from checkout.services.webhook_service import WebhookService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_service(db: Session, provider_adapter: ProviderAdapter):
    return WebhookService(db=db, provider_adapter=provider_adapter)


# podpis liczony z surowego body, dlatego Request a nie model pydantic
# reszta (baza, http do providera) w threadpoolu

@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    db: Session = Depends(get_db),
    provider_adapter: ProviderAdapter = Depends(get_provider_adapter),
):
    payload = await request.body()
    svc = get_service(db, provider_adapter)
    return {"success": True, "data": await run_in_threadpool(svc.handle_stripe, payload, stripe_signature)}


@router.post("/flutterwave")
async def flutterwave_webhook(
    request: Request,
    db: Session = Depends(get_db),
    provider_adapter: ProviderAdapter = Depends(get_provider_adapter),
):
    payload = await request.body()
    svc = get_service(db, provider_adapter)
    return {"success": True, "data": await run_in_threadpool(svc.handle_flutterwave, payload, request.headers)}
