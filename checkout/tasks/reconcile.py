# checkout/tasks/reconcile.py
from sqlalchemy.orm import Session

from checkout.celery_worker import celery_app
from checkout.data.database import SessionLocal
from checkout.repos.reconciliation_repo import ReconciliationRepo, record_status
from checkout.services.stock_service import Reservation, StockService
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


def reconcile_open_records(db: Session, limit: int = 100) -> dict:
    """
    Ponawia zwrot stocku dla checkoutow, ktore padly po rezerwacji.
    Rekord z oddanym stockiem idzie do "review" (platnosc do recznego zwrotu)
    albo "resolved" (refund juz zlecony), reszta zostaje "open".
    """
    stock = StockService(db)
    records = ReconciliationRepo(db).list_open(limit)
    logger.info(f"Found {len(records)} open reconciliation records")

    summary = {"checked": len(records), "released": 0, "still_open": 0}
    for record in records:
        remaining = []
        for entry in record.pending_releases or []:
            reservation = Reservation(
                product_id=entry["product_id"],
                quantity=entry["quantity"],
                is_nft=entry.get("is_nft", False),
            )
            if stock.release(reservation):
                summary["released"] += 1
            else:
                remaining.append(reservation.as_dict())

        record.pending_releases = remaining
        record.attempts = (record.attempts or 0) + 1
        if remaining:
            summary["still_open"] += 1
            logger.warning(
                f"Reconciliation {record.id} ({record.attempt_ref}) still has {len(remaining)} pending releases"
            )
        else:
            record.status = record_status(remaining, record.payment_refs)
            logger.info(f"Reconciliation {record.id} ({record.attempt_ref}) stock returned, now {record.status}")
        db.commit()

    return summary


@celery_app.task(name="checkout.tasks.reconcile.reconcile_checkouts_task")
def reconcile_checkouts_task():
    logger.info("Reconcile checkouts task started")

    db = SessionLocal()
    try:
        return reconcile_open_records(db)
    finally:
        db.close()
