# checkout/services/notification_service.py
from checkout.celery_worker import celery_app
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Serwis do wysylania powiadomien.
    Uzywa Celery do asynchronicznego przetwarzania.
    """

    @staticmethod
    def send_order_notification(user_id: str, order_number: str):
        send_order_notification_task.delay(user_id, order_number)


@celery_app.task(name="checkout.services.notification_service.send_order_notification_task")
def send_order_notification_task(user_id: str, order_number: str):
    logger.info(f"[NOTIFICATION] User {user_id}: Order {order_number} has been placed")
    return {"user_id": user_id, "order_number": order_number, "status": "sent"}
