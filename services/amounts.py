"""Amount (in XOF) owed for each kind of payable resource."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping, Optional

# Demande forms are schema-less; historical field names in lookup order
DEMANDE_AMOUNT_KEYS = ("amount", "price_cfa", "montant", "total_amount", "total")


class AmountResolutionError(Exception):
    """No usable amount could be determined for a payable resource."""


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(" ", "").replace(",", ".")
        if not value:
            return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def round_xof(value: Any) -> Optional[int]:
    """Round half-up to a whole XOF amount; None when ``value`` is not a positive number."""
    number = _to_decimal(value)
    if number is None or number <= 0:
        return None
    rounded = int(number.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return rounded if rounded > 0 else None


def resolve_demande_amount(data: Optional[Mapping[str, Any]], paid_amount: Any = None) -> int:
    for key in DEMANDE_AMOUNT_KEYS:
        if data and key in data:
            amount = round_xof(data[key])
            if amount is not None:
                return amount
    amount = round_xof(paid_amount)
    if amount is not None:
        return amount
    raise AmountResolutionError("Montant introuvable pour cette demande")


def resolve_fixed_price(price: Any, what: str) -> int:
    amount = round_xof(price)
    if amount is None:
        raise AmountResolutionError(f"Aucun prix défini pour {what}")
    return amount


def resolve_plan_amount(plan: Any, period: Optional[str]) -> int:
    if plan is None:
        raise AmountResolutionError("Aucun plan lié à cet abonnement")
    if (period or "").lower() == "yearly":
        return resolve_fixed_price(plan.yearly_price_cfa, f"le plan {plan.name} (annuel)")
    return resolve_fixed_price(plan.monthly_price_cfa, f"le plan {plan.name} (mensuel)")


def resolve_amount_xof(resource: Any) -> int:
    """Amount owed for a Payable wrapper or a bare payable model instance."""
    if not hasattr(resource, "amount_xof"):
        from services.payables import payable_for

        resource = payable_for(None, resource)
    return resource.amount_xof()
