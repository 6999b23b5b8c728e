"""Delivery of paid catalog purchases."""
import logging
import os
from datetime import datetime

from sqlalchemy.orm import Session

from models.purchase import Purchase
from services.email import send_after_commit

logger = logging.getLogger(__name__)


def deliver_purchase(db: Session, purchase: Purchase) -> bool:
    """
    Send the purchase to its buyer once. Returns False when there was nothing to do.

    The mail leaves after ``db`` commits, together with ``delivered_at``.
    """
    if purchase.status != "paid" or purchase.delivered_at is not None:
        return False

    product = purchase.product_snapshot or {}
    customer = purchase.customer_snapshot or {}
    email = customer.get("email") or (purchase.user.email if purchase.user else None)
    if not email:
        logger.warning("Purchase %s has no recipient email, delivery skipped", purchase.ref)
        return False

    context = {
        "purchase": purchase,
        "product": product,
        "customer_name": " ".join(p for p in (customer.get("firstName"), customer.get("lastName")) if p),
    }
    if product.get("type") == "file":
        files = [os.path.basename(f) for f in product.get("files") or [] if isinstance(f, str) and f]
        context["files"] = files
        send_after_commit(db, email, f"Vos documents - {purchase.ref}", "emails/purchase_files.txt", context)
        payload = {"mode": "files_mail", "files": files}
    else:
        send_after_commit(db, email, f"Confirmation de commande - {purchase.ref}", "emails/purchase_service.txt", context)
        payload = {"mode": "service_mail"}

    purchase.delivered_at = datetime.utcnow()
    purchase.delivered_payload = payload
    logger.info("Purchase %s delivered to %s (%s)", purchase.ref, email, payload["mode"])
    return True
