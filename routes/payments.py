import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from core.db import atomic, get_db
from models.user import User
from routes.auth import get_optional_user
from schemas.payment import PaymentInitRequest, PaymentInitResponse, PaymentStatusOut
from services.paiementpro import GatewayError
from services.payments import (
    AlreadyPaidError,
    InvalidSignatureError,
    PayableNotFoundError,
    handle_notification,
    initiate_payment,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pay", tags=["payments"])


async def notification_params(request: Request) -> Dict[str, Any]:
    """Gateway callbacks arrive as a form post, JSON or plain query string."""
    params: Dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        if "application/json" in request.headers.get("content-type", ""):
            body = await request.json()
            if isinstance(body, dict):
                params.update(body)
        else:
            form = await request.form()
            params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params


def _status_out(params: Dict[str, Any], payment) -> Dict[str, Any]:
    if payment is None:
        return {"reference": params.get("referenceNumber") or params.get("reference"), "status": "unknown"}
    return {"reference": payment.reference, "status": payment.status}


@router.post("/{payable_type}/{payable_id}", response_model=PaymentInitResponse)
def pay(
    payable_type: str,
    payable_id: int,
    data: PaymentInitRequest,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if not data.customer_email and user is None:
        raise HTTPException(status_code=422, detail="customerEmail is required")

    customer = {
        "email": data.customer_email,
        "first_name": data.customer_first_name,
        "last_name": data.customer_last_name,
        "phone": data.customer_phone,
    }
    try:
        with atomic(db):
            _, redirect = initiate_payment(
                db, payable_type, payable_id, customer, channel=data.channel, user=user, repay=data.repay
            )
    except PayableNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AlreadyPaidError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except GatewayError as exc:
        logger.error("Gateway init failed for %s #%s: %s", payable_type, payable_id, exc)
        raise HTTPException(status_code=502, detail="Payment gateway unavailable")
    return redirect


@router.get("/return", response_model=PaymentStatusOut)
def payment_return(
    request: Request, params: Dict[str, Any] = Depends(notification_params), db: Session = Depends(get_db)
):
    # The browser redirect is not trusted on its own: an unsigned verdict is ignored, not rejected
    with atomic(db):
        payment = handle_notification(
            db, params, "return", request.client.host if request.client else None, require_signature=False
        )
        return _status_out(params, payment)


@router.post("/webhook", response_model=PaymentStatusOut)
def payment_webhook(
    request: Request, params: Dict[str, Any] = Depends(notification_params), db: Session = Depends(get_db)
):
    try:
        with atomic(db):
            payment = handle_notification(db, params, "webhook", request.client.host if request.client else None)
            result = _status_out(params, payment)
    except InvalidSignatureError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return result
