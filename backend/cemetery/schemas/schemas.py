"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict
from pydantic import BaseModel, ConfigDict, Field

from cemetery.models.payment import PaymentMethod, PaymentStatus
from cemetery.models.purchase import PurchaseKind, PurchaseStatus


# ──────────────── Fulfillment details ────────────────

class DeceasedDetails(BaseModel):
    full_name: str = Field(..., min_length=1)
    gender: Optional[str] = None
    address: Optional[str] = None
    relationship: Optional[str] = Field(None, description="Relationship to the buyer")
    cause_of_death: Optional[str] = None
    funeral_parlor: Optional[str] = None
    date_of_birth: Optional[date] = None
    date_of_death: Optional[date] = None
    expected_burial: Optional[date] = None


class NextOfKinDetails(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    relationship: Optional[str] = None
    address: Optional[str] = None
    national_id: Optional[str] = None


# ──────────────── Purchases ────────────────

class PurchaseCreateRequest(BaseModel):
    product_id: str
    kind: PurchaseKind = Field(..., description="IMMEDIATE or FUTURE")
    plan_id: Optional[int] = Field(None, description="Installment plan, required for FUTURE")
    future_for: Optional[str] = Field(None, description="Who a future plan is intended for")
    next_of_kin: Optional[NextOfKinDetails] = None


class ServicePurchaseRequest(BaseModel):
    product_id: str


class StaffPurchaseRequest(BaseModel):
    member_id: str
    product_id: str
    kind: PurchaseKind
    plan_id: Optional[int] = None
    future_for: Optional[str] = None
    deceased: Optional[DeceasedDetails] = None
    next_of_kin: Optional[NextOfKinDetails] = None


class LegacyPlanRequest(BaseModel):
    member_id: str
    product_id: str
    total_amount: Decimal
    paid_amount: Decimal = Decimal("0")
    plan_id: Optional[int] = None
    future_for: Optional[str] = None


class PurchaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    member_id: str
    product_id: str
    kind: PurchaseKind
    year_plan_id: Optional[int] = None
    future_for: Optional[str] = None
    total_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: PurchaseStatus
    paid_at: Optional[datetime] = None
    redeemed_at: Optional[datetime] = None
    created_at: datetime


class RedeemRequest(BaseModel):
    deceased: DeceasedDetails
    next_of_kin: Optional[NextOfKinDetails] = None


class RedeemCheckResponse(BaseModel):
    purchase_id: str
    redeemable: bool = True
    balance: Decimal


class DeceasedRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    purchase_id: str
    full_name: str
    date_of_death: Optional[date] = None
    expected_burial: Optional[date] = None
    next_of_kin_is_buyer: bool = False
    created_at: datetime


class CheckoutCancelResponse(BaseModel):
    purchase_id: str
    status: str
    cancelled: bool
    payments_expired: int = 0
    message: str = ""


# ──────────────── Payments ────────────────

class ImmediatePaymentRequest(BaseModel):
    purchase_id: str
    amount: Decimal
    method: Optional[PaymentMethod] = Field(None, description="CASH (default) or MANUAL")


class StaffPaymentRequest(ImmediatePaymentRequest):
    member_id: str


class PaynowInitiateRequest(BaseModel):
    purchase_id: str
    amount: Decimal


class EcocashInitiateRequest(BaseModel):
    purchase_id: str
    amount: Decimal
    phone: str = Field(..., description="EcoCash number, 07XXXXXXXX")


class DeferredPaymentResponse(BaseModel):
    success: bool = True
    payment_id: str
    reference: str
    redirect_url: Optional[str] = None
    poll_url: Optional[str] = None
    message: str = ""


class PollRequest(BaseModel):
    payment_id: str


class PollResponse(BaseModel):
    payment_id: str
    purchase_id: str
    status: str
    gateway_status: Optional[str] = None
    gateway_reachable: bool = True


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    purchase_id: str
    reference: str
    amount: Decimal
    unapplied_amount: Decimal = Decimal("0")
    currency: str = "USD"
    method: PaymentMethod
    status: PaymentStatus
    created_at: datetime
    paid_at: Optional[datetime] = None


class WebhookAck(BaseModel):
    status: str


# ──────────────── Admin / Audit ────────────────

class CleanupResponse(BaseModel):
    purchases_cancelled: int
    payments_expired: int


class ReconcileResponse(BaseModel):
    checked: int
    finalized: int
    failed: int


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    purchase_id: str
    action: str
    payload: Optional[Dict] = None
    payload_hash: Optional[str] = None
    actor_id: Optional[str] = None
    timestamp: datetime
    log_metadata: Optional[Dict] = None


class AuditVerifyResponse(BaseModel):
    valid: bool
    total_entries: int
    broken_at: Optional[int] = None
    message: Optional[str] = None


class DashboardVersionResponse(BaseModel):
    version: int
    updated_at: Optional[datetime] = None
    reason: Optional[str] = None


# ──────────────── Generic ────────────────

class HealthResponse(BaseModel):
    status: str
    database: str
    scheduler: str
    version: str
    uptime_seconds: float


class ErrorResponse(BaseModel):
    detail: str
    error_code: Optional[str] = None

