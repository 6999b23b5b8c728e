from datetime import datetime
from pydantic import BaseModel
from typing import Any, Dict, Optional


class PurchaseOut(BaseModel):
    id: int
    ref: str
    boutique_id: int
    payment_id: Optional[int] = None
    status: str
    unit_price_cfa: int
    currency: str
    channel: Optional[str] = None
    product_snapshot: Optional[Dict[str, Any]] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AdminPurchaseOut(PurchaseOut):
    user_id: int
    customer_snapshot: Optional[Dict[str, Any]] = None
