"""
Payment Routes — Cash/manual intake, Paynow redirect, EcoCash push,
polling, and the Paynow result URL.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.orm import Session, sessionmaker

from cemetery.database import get_db, get_session_factory
from cemetery.events import SettlementEvents, get_event_bus
from cemetery.models.payment import PaymentMethod
from cemetery.schemas.schemas import (
    DeferredPaymentResponse, EcocashInitiateRequest, ImmediatePaymentRequest,
    PaymentResponse, PaynowInitiateRequest, PollRequest, PollResponse, WebhookAck,
)
from cemetery.services.payment_service import (
    PaymentService, parse_webhook_body, process_webhook_in_background, webhook_is_authentic,
)
from cemetery.services.paynow_client import PaynowClient, get_paynow_client
from cemetery.utils.rate_limiter import rate_limit

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("", response_model=PaymentResponse, status_code=201)
def record_payment(
    payload: ImmediatePaymentRequest,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Record a cash or manual payment; it settles immediately."""
    return PaymentService(db, events=events).record_immediate_payment(
        payload.purchase_id, payload.amount, member_id, method=payload.method,
    )


@router.post("/paynow/initiate", response_model=DeferredPaymentResponse)
def initiate_paynow(
    payload: PaynowInitiateRequest,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
    gateway: PaynowClient = Depends(get_paynow_client),
    events: SettlementEvents = Depends(get_event_bus),
    _throttle: bool = Depends(rate_limit(requests=5, window=60)),
):
    """Start a Paynow web checkout and return the redirect URL."""
    result = PaymentService(db, gateway, events).initiate_deferred_payment(
        payload.purchase_id, payload.amount, PaymentMethod.PAYNOW, member_id,
    )
    return DeferredPaymentResponse(**result.__dict__)


@router.post("/paynow/ecocash", response_model=DeferredPaymentResponse)
def initiate_ecocash(
    payload: EcocashInitiateRequest,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
    gateway: PaynowClient = Depends(get_paynow_client),
    events: SettlementEvents = Depends(get_event_bus),
    _throttle: bool = Depends(rate_limit(requests=5, window=60)),
):
    """Send an EcoCash prompt to the member's phone."""
    result = PaymentService(db, gateway, events).initiate_deferred_payment(
        payload.purchase_id, payload.amount, PaymentMethod.PAYNOW_ECOCASH, member_id, phone=payload.phone,
    )
    return DeferredPaymentResponse(**result.__dict__)


@router.post("/paynow/poll", response_model=PollResponse)
def poll_payment(
    payload: PollRequest,
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
    gateway: PaynowClient = Depends(get_paynow_client),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Check a gateway payment now instead of waiting for the webhook."""
    outcome = PaymentService(db, gateway, events).poll_payment(payload.payment_id, member_id)
    return PollResponse(**outcome.__dict__)


@router.post("/paynow/webhook", response_model=WebhookAck)
async def paynow_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    gateway: PaynowClient = Depends(get_paynow_client),
    session_factory: sessionmaker = Depends(get_session_factory),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Paynow result URL. Verified here, settled in the background."""
    payload = parse_webhook_body(await request.body())
    if not webhook_is_authentic(gateway, payload):
        return WebhookAck(status="ignored")

    background_tasks.add_task(process_webhook_in_background, session_factory, gateway, events, payload)
    return WebhookAck(status="ok")


@router.get("/my", response_model=list[PaymentResponse])
def my_payments(
    member_id: str = Header(..., alias="member-id"),
    db: Session = Depends(get_db),
):
    return PaymentService(db).list_member_payments(member_id)
