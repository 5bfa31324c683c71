"""
Staff Routes — Counter purchases and payments made on a member's behalf.
"""
from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from cemetery.database import get_db
from cemetery.events import SettlementEvents, get_event_bus
from cemetery.schemas.schemas import (
    LegacyPlanRequest, PaymentResponse, PollResponse, PurchaseResponse,
    StaffPaymentRequest, StaffPurchaseRequest,
)
from cemetery.services.payment_service import PaymentService
from cemetery.services.paynow_client import PaynowClient, get_paynow_client
from cemetery.services.purchase_service import PurchaseService

router = APIRouter(prefix="/api/staff", tags=["Staff"])


@router.post("/purchases", response_model=PurchaseResponse, status_code=201)
def staff_purchase(
    payload: StaffPurchaseRequest,
    staff_id: str = Header(..., alias="staff-id"),
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Create a purchase for a member; burial details are kept until the plot is paid."""
    return PurchaseService(db, events).initiate_purchase_for_member(
        staff_id,
        payload.member_id,
        payload.product_id,
        payload.kind,
        plan_id=payload.plan_id,
        future_for=payload.future_for,
        deceased=payload.deceased.model_dump(mode="json") if payload.deceased else None,
        next_of_kin=payload.next_of_kin.model_dump(mode="json") if payload.next_of_kin else None,
    )


@router.post("/payments/cash", response_model=PaymentResponse, status_code=201)
def staff_cash_payment(
    payload: StaffPaymentRequest,
    staff_id: str = Header(..., alias="staff-id"),
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    return PaymentService(db, events=events).record_immediate_payment(
        payload.purchase_id, payload.amount, payload.member_id,
        method=payload.method, recorded_by=staff_id,
    )


@router.post("/payments/{payment_id}/poll", response_model=PollResponse)
def staff_poll(
    payment_id: str,
    staff_id: str = Header(..., alias="staff-id"),
    db: Session = Depends(get_db),
    gateway: PaynowClient = Depends(get_paynow_client),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Poll any member's gateway payment."""
    outcome = PaymentService(db, gateway, events).poll_payment(payment_id)
    return PollResponse(**outcome.__dict__)


@router.post("/legacy-plans", response_model=PurchaseResponse, status_code=201)
def register_legacy_plan(
    payload: LegacyPlanRequest,
    staff_id: str = Header(..., alias="staff-id"),
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Carry a paper plan into the system with what was already paid on it."""
    return PurchaseService(db, events).register_legacy_plan(
        staff_id,
        payload.member_id,
        payload.product_id,
        payload.total_amount,
        payload.paid_amount,
        plan_id=payload.plan_id,
        future_for=payload.future_for,
    )
