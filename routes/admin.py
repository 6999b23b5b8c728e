from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from core.db import get_db
from models.boutique import Boutique
from models.plan import Plan
from models.purchase import Purchase
from models.subscription import Subscription
from models.user import User
from routes.auth import require_admin
from schemas.payment import PaymentReviewOut
from schemas.purchase import AdminPurchaseOut
from schemas.stats import (
    BoutiqueDashboard,
    BoutiquePurchaseStats,
    PlanSubscriptionSummary,
    SubscriptionOut,
    UserServicePage,
    UserServicesSummary,
)
from services import stats

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _get_or_404(db: Session, model, obj_id: int, label: str):
    obj = db.get(model, obj_id)
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return obj


@router.get("/boutiques/stats", response_model=BoutiqueDashboard)
def boutique_dashboard(db: Session = Depends(get_db)):
    return stats.boutique_dashboard(db)


@router.get("/boutiques/{boutique_id}/stats", response_model=BoutiquePurchaseStats)
def boutique_stats(boutique_id: int, db: Session = Depends(get_db)):
    boutique = _get_or_404(db, Boutique, boutique_id, "Product")
    return stats.boutique_purchase_stats(db, boutique)


@router.get("/boutiques/{boutique_id}/purchases", response_model=List[AdminPurchaseOut])
def boutique_purchases(boutique_id: int, status: str | None = None, db: Session = Depends(get_db)):
    _get_or_404(db, Boutique, boutique_id, "Product")
    query = db.query(Purchase).filter(Purchase.boutique_id == boutique_id)
    if status:
        query = query.filter(Purchase.status == status)
    return query.order_by(Purchase.id.desc()).all()


@router.get("/plans/{plan_id}/subscriptions", response_model=List[SubscriptionOut])
def plan_subscriptions(plan_id: int, status: str | None = None, db: Session = Depends(get_db)):
    _get_or_404(db, Plan, plan_id, "Plan")
    query = db.query(Subscription).filter(Subscription.plan_id == plan_id)
    if status:
        query = query.filter(Subscription.status == status)
    return query.order_by(Subscription.id.desc()).all()


@router.get("/plans/{plan_id}/subscriptions/summary", response_model=PlanSubscriptionSummary)
def plan_subscriptions_summary(plan_id: int, db: Session = Depends(get_db)):
    plan = _get_or_404(db, Plan, plan_id, "Plan")
    return stats.plan_subscription_summary(db, plan)


@router.get("/users/{user_id}/services", response_model=UserServicePage)
def user_services(
    user_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100, alias="perPage"),
    q: str = "",
    db: Session = Depends(get_db),
):
    _get_or_404(db, User, user_id, "User")
    return stats.user_services(db, user_id, page=page, per_page=per_page, q=q)


@router.get("/users/{user_id}/services/summary", response_model=UserServicesSummary)
def user_services_summary(user_id: int, db: Session = Depends(get_db)):
    _get_or_404(db, User, user_id, "User")
    return stats.user_services_summary(db, user_id)


@router.get("/payments/review", response_model=List[PaymentReviewOut])
def payments_review(db: Session = Depends(get_db)):
    return stats.payments_needing_review(db)
