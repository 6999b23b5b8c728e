"""Invoice data for a payment, served as JSON (rendering happens client side)."""
import re
from typing import Any, Dict, Optional

from core.config import settings
from models.payment import Payment
from services.payables import (
    BoutiquePayable,
    DemandePayable,
    FormationPayable,
    Payable,
    SubscriptionPayable,
    _sentence_from_slug,
)


def _product(payment: Payment, payable: Optional[Payable]) -> Dict[str, Any]:
    product: Dict[str, Any] = {"type": payment.payable_type, "title": "", "details": {}}
    if payable is None:
        product["title"] = (payment.meta or {}).get("label") or "Produit"
        return product

    res = payable.resource
    if isinstance(payable, DemandePayable):
        product["title"] = _sentence_from_slug(res.type_slug)
        product["details"]["produit"] = _sentence_from_slug(res.variant_key)
    elif isinstance(payable, SubscriptionPayable):
        plan = res.plan
        product["title"] = plan.code if plan else ""
        product["details"]["plan"] = _sentence_from_slug(re.sub(r"-\d+$", "", plan.name if plan else ""))
        product["details"]["period"] = res.period
        product["details"]["description"] = (plan.description if plan else None) or (
            "Facturation annuelle" if res.period == "yearly" else "Facturation mensuelle"
        )
    elif isinstance(payable, FormationPayable):
        product["title"] = res.title or "Formation"
        product["details"].update(
            level=res.level or "",
            description=res.description or "",
            type=res.type or "",
            duration=res.duration or "",
            modules=res.modules if isinstance(res.modules, list) else [],
        )
    elif isinstance(payable, BoutiquePayable):
        product["title"] = res.name or "Produit"
        product["details"].update(type=res.type or "", name=res.name or "", description=res.description or "")
    else:
        product["title"] = payable.label()
    return product


def build_invoice_data(payment: Payment, payable: Optional[Payable]) -> Dict[str, Any]:
    stamp = payment.paid_at or payment.created_at
    amount = int(payment.amount or 0)
    return {
        "reference": payment.reference,
        "date": stamp.strftime("%Y-%m-%d %H:%M:%S") if stamp else None,
        "currency": payment.currency or "XOF",
        "amount": amount,
        "totals": {"subtotal": amount, "tax": 0, "total": amount},
        "customer": {
            "name": payment.customer_name,
            "email": payment.customer_email or "",
            "phone": payment.customer_phone or "",
        },
        "company": {
            "name": settings.COMPANY_NAME,
            "email": settings.COMPANY_EMAIL,
            "phone": settings.COMPANY_PHONE,
            "address": settings.COMPANY_ADDRESS,
        },
        "product": _product(payment, payable),
        "status": payment.status,
    }
