from datetime import datetime
from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, Optional


class PaymentInitRequest(BaseModel):
    channel: Optional[str] = None
    customer_email: Optional[EmailStr] = Field(default=None, alias="customerEmail")
    customer_first_name: Optional[str] = Field(default=None, alias="customerFirstName")
    customer_last_name: Optional[str] = Field(default=None, alias="customerLastName")
    customer_phone: Optional[str] = Field(default=None, alias="customerPhoneNumber")
    repay: bool = False

    class Config:
        populate_by_name = True


class RedirectFields(BaseModel):
    sessionId: str
    referenceNumber: str


class PaymentInitResponse(BaseModel):
    action: str
    method: str
    fields: RedirectFields
    reference: str


class PaymentStatusOut(BaseModel):
    reference: Optional[str] = None
    status: str


class PaymentOut(BaseModel):
    id: int
    payable_type: str
    payable_id: int
    provider: str
    reference: str
    amount: int
    currency: str
    channel: Optional[str] = None
    status: str
    created_at: datetime
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentReviewOut(PaymentOut):
    customer_email: Optional[str] = None
    needs_review: bool = False
    meta: Optional[Dict[str, Any]] = None


class InvoiceTotals(BaseModel):
    subtotal: int
    tax: int
    total: int


class InvoiceOut(BaseModel):
    reference: str
    date: Optional[str] = None
    currency: str
    amount: int
    totals: InvoiceTotals
    customer: Dict[str, str]
    company: Dict[str, str]
    product: Dict[str, Any]
    status: str
