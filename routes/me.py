from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.db import get_db
from models.payment import Payment
from models.purchase import Purchase
from models.user import User
from routes.auth import get_current_user
from schemas.payment import InvoiceOut, PaymentOut
from schemas.purchase import PurchaseOut
from services.invoices import build_invoice_data
from services.payables import resolve_payable
from services.stats import customer_payments_filter

router = APIRouter(prefix="/me", tags=["me"])


def _own_payment(db: Session, user: User, payment_id: int) -> Payment:
    payment = (
        db.query(Payment).filter(Payment.id == payment_id, customer_payments_filter(user)).one_or_none()
    )
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


@router.get("/purchases", response_model=List[PurchaseOut])
def my_purchases(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return db.query(Purchase).filter(Purchase.user_id == user.id).order_by(Purchase.id.desc()).all()


@router.get("/payments", response_model=List[PaymentOut])
def my_payments(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return db.query(Payment).filter(customer_payments_filter(user)).order_by(Payment.id.desc()).all()


@router.get("/payments/{payment_id}/summary", response_model=InvoiceOut)
def payment_summary(payment_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    payment = _own_payment(db, user, payment_id)
    return build_invoice_data(payment, resolve_payable(db, payment.payable_type, payment.payable_id))


@router.get("/payments/{payment_id}/invoice", response_model=InvoiceOut)
def payment_invoice(payment_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    payment = _own_payment(db, user, payment_id)
    if payment.status != Payment.S_SUCCEEDED:
        raise HTTPException(status_code=403, detail="Paiement non payé")
    return build_invoice_data(payment, resolve_payable(db, payment.payable_type, payment.payable_id))
