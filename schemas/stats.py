from datetime import datetime
from pydantic import BaseModel
from typing import List, Optional


class BoutiqueDashboard(BaseModel):
    total_products: int
    active_products: int
    paid_purchases: int
    revenue_cfa: int


class ProductRef(BaseModel):
    id: int
    name: str
    type: str


class BoutiquePurchaseStats(BaseModel):
    product: ProductRef
    purchases: int
    paid_purchases: int
    revenue_cfa: int


class SubscriptionOut(BaseModel):
    id: int
    user_id: int
    plan_id: Optional[int] = None
    period: str
    status: str
    current_cycle_start: Optional[datetime] = None
    current_cycle_end: Optional[datetime] = None
    last_payment_reference: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PlanSubscriptionSummary(BaseModel):
    total: int
    active: int
    pending: int
    inactive: int


class UserServiceOut(BaseModel):
    type: str
    id: int
    label: str
    status: str
    period: Optional[str] = None
    startedAt: Optional[str] = None
    endsAt: Optional[str] = None
    createdAt: Optional[str] = None
    amountXof: Optional[int] = None
    lastPaymentRef: Optional[str] = None
    lastPaymentStatus: Optional[str] = None
    lastPaymentAt: Optional[str] = None


class UserServicePage(BaseModel):
    data: List[UserServiceOut]
    total: int
    page: int
    perPage: int


class UserServicesSummary(BaseModel):
    total: int
    active: int
    pending: int
    expired: int
    inactive: int
