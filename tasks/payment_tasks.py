import logging

from celery import current_app

from core.db import db_session
from services.payments import expire_stale_payments

logger = logging.getLogger(__name__)


@current_app.task
def expire_stale_payments_task():
    """Periodic sweep: close payments the gateway never answered for."""
    with db_session() as db:
        count = expire_stale_payments(db)
    logger.info("Stale payment sweep done, %s expired", count)
    return {"expired": count}
