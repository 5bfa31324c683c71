"""
Purchase Routes — Member purchases, future-plan redemption, checkout cancel.
"""
from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from cemetery.database import get_db
from cemetery.events import SettlementEvents, get_event_bus
from cemetery.schemas.schemas import (
    CheckoutCancelResponse, DeceasedRecordResponse, PurchaseCreateRequest,
    PurchaseResponse, RedeemCheckResponse, RedeemRequest, ServicePurchaseRequest,
)
from cemetery.services.cleanup_service import CleanupService
from cemetery.services.purchase_service import PurchaseService
from cemetery.services.redemption_service import RedemptionService

router = APIRouter(prefix="/api/purchases", tags=["Purchases"])


@router.post("", response_model=PurchaseResponse, status_code=201)
def create_purchase(
    payload: PurchaseCreateRequest,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Start a grave/memorial purchase, outright or on an installment plan."""
    return PurchaseService(db, events).initiate_purchase(
        payload.product_id,
        payload.kind,
        member_id,
        plan_id=payload.plan_id,
        future_for=payload.future_for,
        next_of_kin=payload.next_of_kin.model_dump(mode="json") if payload.next_of_kin else None,
    )


@router.post("/service", response_model=PurchaseResponse, status_code=201)
def create_service_purchase(
    payload: ServicePurchaseRequest,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Hire a service that is currently available."""
    return PurchaseService(db, events).initiate_service_purchase(payload.product_id, member_id)


@router.get("/my", response_model=list[PurchaseResponse])
def my_purchases(
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
):
    return PurchaseService(db).list_member_purchases(member_id)


@router.get("/{purchase_id}/redeem/verify", response_model=RedeemCheckResponse)
def verify_redeemable(
    purchase_id: str,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
):
    """Pre-check before the deceased details form is shown."""
    purchase = RedemptionService(db).check_redeemable(purchase_id, member_id)
    return RedeemCheckResponse(purchase_id=purchase.id, balance=purchase.balance)


@router.post("/{purchase_id}/redeem", response_model=DeceasedRecordResponse, status_code=201)
def redeem_purchase(
    purchase_id: str,
    payload: RedeemRequest,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Redeem a fully paid future plan by recording the deceased."""
    return RedemptionService(db, events).redeem_future_purchase(
        purchase_id,
        member_id,
        payload.deceased.model_dump(mode="json"),
        payload.next_of_kin.model_dump(mode="json") if payload.next_of_kin else None,
    )


@router.post("/{purchase_id}/checkout/cancel", response_model=CheckoutCancelResponse)
def cancel_checkout(
    purchase_id: str,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Close an abandoned checkout; finalized purchases are left as they are."""
    result = CleanupService(db, events).cancel_checkout_session(purchase_id, member_id)
    return CheckoutCancelResponse(**result.__dict__)
