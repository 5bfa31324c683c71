"""
Payment Service — Intake of immediate (cash/manual) and deferred
(Paynow redirect / EcoCash push) payments, polling, and the result URL.

Immediate payments settle in the same transaction that records them.
Deferred payments are stored INITIATED and settled later through
``SettlementService.finalize``.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Union
from urllib.parse import parse_qsl

from sqlalchemy.orm import Session

from cemetery.config import get_settings
from cemetery.events import SettlementEvents
from cemetery.exceptions import (
    CemeteryError, GatewayError, NotFoundError, OwnershipError, StateConflictError, ValidationError,
)
from cemetery.models.payment import DEFERRED_METHODS, Payment, PaymentMethod, PaymentStatus
from cemetery.models.purchase import Purchase, PurchaseStatus
from cemetery.services.audit_service import AuditService
from cemetery.services.paynow_client import PaynowClient
from cemetery.services.settlement import SettlementService
from cemetery.utils.validators import (
    format_money, validate_amount, validate_ecocash_phone, validate_uuid,
)

logger = logging.getLogger(__name__)

IMMEDIATE_METHODS = (PaymentMethod.CASH, PaymentMethod.MANUAL)


@dataclass
class DeferredPaymentResult:
    payment_id: str
    reference: str
    poll_url: str
    redirect_url: Optional[str] = None
    message: str = ""


@dataclass
class PollOutcome:
    payment_id: str
    purchase_id: str
    status: str                       # Persisted payment status after the poll
    gateway_status: Optional[str] = None
    gateway_reachable: bool = True


def parse_webhook_body(body: Union[bytes, str]) -> Dict[str, str]:
    """Decode an ``application/x-www-form-urlencoded`` result-URL post."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    return dict(parse_qsl(body, keep_blank_values=True))


def new_reference(prefix: str = "GW") -> str:
    return f"{prefix}-{uuid.uuid4().hex.upper()}"


def webhook_is_authentic(gateway: PaynowClient, payload: Dict[str, str]) -> bool:
    """Hash check every result-URL post goes through; failures are logged and ignored."""
    if gateway.verify_webhook_signature(payload):
        return True
    logger.warning("Ignoring Paynow webhook with invalid hash (ref %s)", payload.get("reference"))
    return False


class PaymentService:
    def __init__(self, db: Session, gateway: Optional[PaynowClient] = None, events: Optional[SettlementEvents] = None):
        self.db = db
        self.gateway = gateway
        self.events = events or SettlementEvents()
        self.settlement = SettlementService(db, self.events)

    # ─── Shared checks ───────────────────────────────────────────────
    def _load_payable(self, purchase_id: str, member_id: str, amount: Decimal, lock: bool = True) -> Purchase:
        """Load the purchase (locked by default) and check it can take ``amount``.

        Ownership is checked before any status inspection. With ``lock`` the
        balance check runs against the locked row, so it is authoritative for
        this transaction.
        """
        query = self.db.query(Purchase).filter(Purchase.id == purchase_id)
        if lock:
            query = query.with_for_update()
        purchase = query.populate_existing().first()
        if purchase is None:
            raise NotFoundError("Purchase not found")
        if purchase.member_id != member_id:
            raise OwnershipError("Not your purchase")
        if purchase.status == PurchaseStatus.PAID:
            raise StateConflictError("Purchase already paid")
        if purchase.status == PurchaseStatus.CANCELLED:
            raise StateConflictError("Purchase is cancelled")
        if amount > Decimal(purchase.balance):
            raise ValidationError(
                f"Amount exceeds the remaining balance of ${format_money(purchase.balance)}"
            )
        return purchase

    def _require_gateway(self) -> PaynowClient:
        if self.gateway is None:
            raise GatewayError("Payment gateway is not available")
        return self.gateway

    # ─── Immediate ───────────────────────────────────────────────────
    def record_immediate_payment(
        self,
        purchase_id: str,
        amount,
        member_id: str,
        method: Optional[PaymentMethod] = None,
        recorded_by: Optional[str] = None,
    ) -> Payment:
        """Record a cash or manual payment and settle it in one transaction."""
        validate_uuid(purchase_id, "Purchase ID")
        validate_uuid(member_id, "Member ID")
        amount = validate_amount(amount)
        method = PaymentMethod(method) if method else PaymentMethod.CASH
        if method not in IMMEDIATE_METHODS:
            raise ValidationError(f"{method.value} payments cannot be recorded directly")

        try:
            purchase = self._load_payable(purchase_id, member_id, amount)
            now = datetime.utcnow()
            payment = Payment(
                purchase_id=purchase.id,
                member_id=member_id,
                reference=new_reference(method.value),
                amount=amount,
                method=method,
                status=PaymentStatus.SUCCESS,
                recorded_by=recorded_by,
                paid_at=now,
            )
            self.db.add(payment)
            self.db.flush()

            AuditService.log(
                self.db, purchase.id, "PAYMENT_RECORDED",
                payload={"payment_id": payment.id, "amount": str(amount), "method": method.value},
                actor_id=recorded_by or member_id,
            )
            application = self.settlement.apply_payment(purchase, payment, actor_id=recorded_by or member_id, now=now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "%s payment %s of %s recorded on purchase %s (balance %s)",
            method.value, payment.id, format_money(amount), purchase.id, format_money(purchase.balance),
        )
        self.settlement.publish(purchase, application, payment.id)
        return payment

    # ─── Deferred ────────────────────────────────────────────────────
    def initiate_deferred_payment(
        self,
        purchase_id: str,
        amount,
        method: PaymentMethod,
        member_id: str,
        phone: Optional[str] = None,
    ) -> DeferredPaymentResult:
        """Start a Paynow redirect or EcoCash push for part or all of the balance.

        The purchase is checked, the gateway called with no row lock held, and
        then, in one short locked transaction, the balance is checked again,
        in-flight INITIATED payments are expired so a stale poll URL can never
        settle alongside the new one, and the new payment is stored.
        """
        validate_uuid(purchase_id, "Purchase ID")
        validate_uuid(member_id, "Member ID")
        amount = validate_amount(amount)
        method = PaymentMethod(method)
        if method not in DEFERRED_METHODS:
            raise ValidationError(f"{method.value} is not a gateway payment method")

        if method == PaymentMethod.PAYNOW_ECOCASH:
            self._check_ecocash(amount, phone)

        gateway = self._require_gateway()
        try:
            self._load_payable(purchase_id, member_id, amount, lock=False)
        finally:
            self.db.rollback()

        reference = new_reference()
        if method == PaymentMethod.PAYNOW_ECOCASH:
            initiation = gateway.initiate_push(reference, amount, phone)
            redirect_url = None
            message = "Check your phone and enter your EcoCash PIN to approve the payment."
        else:
            initiation = gateway.initiate_redirect(reference, amount)
            redirect_url = initiation.redirect_url
            message = "Redirecting to Paynow to complete the payment."

        try:
            try:
                purchase = self._load_payable(purchase_id, member_id, amount)
            except CemeteryError:
                logger.warning(
                    "Purchase %s changed while gateway ref %s was being created; abandoning it",
                    purchase_id, reference,
                )
                raise

            expired = (
                self.db.query(Payment)
                .filter(Payment.purchase_id == purchase.id, Payment.status == PaymentStatus.INITIATED)
                .update({"status": PaymentStatus.EXPIRED}, synchronize_session="evaluate")
            )
            if expired:
                logger.info("Expired %d in-flight payment(s) on purchase %s", expired, purchase.id)

            payment = Payment(
                purchase_id=purchase.id,
                member_id=member_id,
                reference=reference,
                amount=amount,
                method=method,
                status=PaymentStatus.INITIATED,
                poll_url=initiation.poll_url,
            )
            self.db.add(payment)
            self.db.flush()

            AuditService.log(
                self.db, purchase.id, "PAYMENT_INITIATED",
                payload={"payment_id": payment.id, "amount": str(amount), "method": method.value},
                actor_id=member_id,
                metadata={"reference": reference, "expired_in_flight": expired},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "%s payment %s of %s initiated on purchase %s (ref %s)",
            method.value, payment.id, format_money(amount), purchase_id, reference,
        )
        return DeferredPaymentResult(
            payment_id=payment.id,
            reference=reference,
            poll_url=payment.poll_url,
            redirect_url=redirect_url,
            message=message,
        )

    def _check_ecocash(self, amount: Decimal, phone: Optional[str]) -> None:
        settings = get_settings()
        if not validate_ecocash_phone(phone):
            raise ValidationError("Invalid EcoCash number. Use the format 07XXXXXXXX")
        if amount < settings.ECOCASH_MIN_AMOUNT:
            raise ValidationError(
                f"EcoCash payments must be at least ${format_money(settings.ECOCASH_MIN_AMOUNT)}"
            )
        if amount > settings.ECOCASH_MAX_AMOUNT:
            cap = format_money(settings.ECOCASH_MAX_AMOUNT)
            raise ValidationError(
                f"EcoCash payment limit is ${cap} per transaction. "
                f"Your amount of ${format_money(amount)} exceeds this limit. "
                f"You can pay ${cap} now, then go to \"My Plans\" to complete the remaining payment."
            )

    # ─── Polling ─────────────────────────────────────────────────────
    def poll_payment(self, payment_id: str, member_id: Optional[str] = None) -> PollOutcome:
        """Ask the gateway about a payment and finalize it if the answer is terminal.

        ``member_id`` is None for staff polls, which skip the ownership check.
        Gateway failures degrade to the last persisted status.
        """
        validate_uuid(payment_id, "Payment ID")
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        if payment is None:
            raise NotFoundError("Payment not found")
        if member_id is not None and payment.member_id != member_id:
            raise OwnershipError("Not your payment")

        purchase_id = payment.purchase_id
        if payment.status != PaymentStatus.INITIATED or not payment.poll_url:
            return PollOutcome(payment_id=payment.id, purchase_id=purchase_id, status=payment.status.value)

        try:
            result = self._require_gateway().poll(payment.poll_url)
        except GatewayError as exc:
            logger.warning("Poll failed for payment %s: %s", payment_id, exc)
            return PollOutcome(
                payment_id=payment_id,
                purchase_id=purchase_id,
                status=payment.status.value,
                gateway_reachable=False,
            )

        status = self.settlement.finalize(payment_id, result.gateway_status)
        return PollOutcome(
            payment_id=payment_id,
            purchase_id=purchase_id,
            status=status.value if status else PaymentStatus.INITIATED.value,
            gateway_status=result.gateway_status,
        )

    # ─── Webhook ─────────────────────────────────────────────────────
    def verify_webhook(self, payload: Dict[str, str]) -> bool:
        return webhook_is_authentic(self._require_gateway(), payload)

    def handle_webhook(self, payload: Dict[str, str]) -> Optional[PaymentStatus]:
        """Verify a result-URL post and finalize its payment.

        Posts with a bad or missing hash are ignored (None), never rejected.
        """
        if not self.verify_webhook(payload):
            return None
        return self.process_webhook(payload)

    def process_webhook(self, payload: Dict[str, str]) -> Optional[PaymentStatus]:
        """Finalize the payment a verified webhook refers to."""
        reference = payload.get("reference")
        if not reference:
            logger.warning("Paynow webhook without a reference")
            return None

        payment = self.db.query(Payment).filter(Payment.reference == reference).first()
        if payment is None:
            logger.warning("Paynow webhook for unknown reference %s", reference)
            return None

        reported = payload.get("amount")
        if reported:
            try:
                if Decimal(reported) != Decimal(payment.amount):
                    logger.warning(
                        "Paynow webhook amount %s differs from payment %s amount %s",
                        reported, payment.id, format_money(payment.amount),
                    )
            except InvalidOperation:
                logger.warning("Paynow webhook with malformed amount %r (ref %s)", reported, reference)

        return self.settlement.finalize(payment.id, payload.get("status"))

    # ─── Listings ────────────────────────────────────────────────────
    def list_member_payments(self, member_id: str) -> List[Payment]:
        """A member's payments, newest first, excluding those of cancelled purchases."""
        validate_uuid(member_id, "Member ID")
        return (
            self.db.query(Payment)
            .join(Purchase, Payment.purchase_id == Purchase.id)
            .filter(Payment.member_id == member_id, Purchase.status != PurchaseStatus.CANCELLED)
            .order_by(Payment.created_at.desc())
            .all()
        )


def process_webhook_in_background(
    session_factory: Callable[[], Session],
    gateway: PaynowClient,
    events: SettlementEvents,
    payload: Dict[str, str],
) -> None:
    """BackgroundTasks entry point: its own session, logs and never raises."""
    db = session_factory()
    try:
        status = PaymentService(db, gateway, events).process_webhook(payload)
        logger.info("Webhook for ref %s processed: %s", payload.get("reference"), status.value if status else "no-op")
    except Exception:
        db.rollback()
        logger.exception("Webhook processing failed for ref %s", payload.get("reference"))
    finally:
        db.close()
