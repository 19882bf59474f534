# checkout/api/deps.py
from fastapi import Header, HTTPException

from checkout.services.lock_service import LockService
from checkout.services.notification_service import NotificationService
from checkout.services.provider_adapter import ProviderAdapter


def current_user(x_user_id: str | None = Header(None)) -> str:
    """Tozsamosc wola z naglowka X-User-Id (tokeny wydaje inny serwis)."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def get_provider_adapter() -> ProviderAdapter:
    return ProviderAdapter()


def get_lock_service() -> LockService:
    return LockService()


def get_notification_service() -> NotificationService:
    return NotificationService()
