"""
Settlement Service — Applies successful payments to purchase balances.

The only writer of a purchase's money fields. ``finalize`` is idempotent:
the move out of INITIATED is a compare-and-set on the payment row, so of
any number of concurrent or replayed signals for one payment exactly one
performs the balance mutation and the rest are no-ops.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from cemetery.events import SettlementEvents, SettlementOutcome
from cemetery.models.catalog import ProductCategory
from cemetery.models.payment import Payment, PaymentStatus
from cemetery.models.purchase import Purchase, PurchaseKind, PurchaseStatus
from cemetery.services.audit_service import AuditService
from cemetery.utils.validators import format_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

GATEWAY_STATUS_MAP = {
    "paid": PaymentStatus.SUCCESS,
    "awaiting delivery": PaymentStatus.SUCCESS,
    "delivered": PaymentStatus.SUCCESS,
    "failed": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "expired": PaymentStatus.EXPIRED,
}


def map_gateway_status(status: Optional[str]) -> PaymentStatus:
    """Translate a raw gateway status; unknown values are not yet actionable."""
    return GATEWAY_STATUS_MAP.get((status or "").strip().lower(), PaymentStatus.INITIATED)


@dataclass
class Application:
    """Result of applying one payment to one purchase."""

    applied: Decimal
    unapplied: Decimal
    reached_paid: bool
    redeemed: bool


class SettlementService:
    def __init__(self, db: Session, events: Optional[SettlementEvents] = None):
        self.db = db
        self.events = events or SettlementEvents()

    # ─── Balance application ─────────────────────────────────────────
    def apply_payment(
        self,
        purchase: Purchase,
        payment: Payment,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Application:
        """Apply a SUCCESS payment to its purchase inside the caller's transaction.

        Recomputes status from the new balance and auto-redeems an IMMEDIATE
        purchase the moment it becomes PAID. Only the part of the payment that
        fits the remaining balance is applied; any excess is kept on the
        payment as ``unapplied_amount``.
        """
        now = now or datetime.utcnow()
        amount = Decimal(payment.amount)
        balance = max(Decimal(purchase.balance), ZERO)
        was_paid = purchase.status == PurchaseStatus.PAID

        applied = min(amount, balance)
        unapplied = amount - applied

        purchase.paid_amount = Decimal(purchase.paid_amount) + applied
        purchase.balance = Decimal(purchase.total_amount) - purchase.paid_amount

        if purchase.balance <= ZERO:
            purchase.status = PurchaseStatus.PAID
            if purchase.paid_at is None:
                purchase.paid_at = now
                purchase.completed_at = now
        else:
            purchase.status = PurchaseStatus.PARTIALLY_PAID

        reached_paid = purchase.status == PurchaseStatus.PAID and not was_paid
        redeemed = False
        if reached_paid and purchase.kind == PurchaseKind.IMMEDIATE and purchase.redeemed_at is None:
            purchase.redeemed_at = now
            purchase.redeemed_by = purchase.member_id
            redeemed = True

        if unapplied > ZERO:
            payment.unapplied_amount = unapplied
            logger.critical(
                "Payment %s exceeds the remaining balance of purchase %s by %s; refund required",
                payment.id, purchase.id, format_money(unapplied),
            )

        AuditService.log(
            self.db, purchase.id, "PAYMENT_APPLIED",
            payload={"payment_id": payment.id, "amount": str(amount)},
            actor_id=actor_id,
            metadata={
                "applied": applied,
                "unapplied": unapplied,
                "balance": purchase.balance,
                "status": purchase.status.value,
                "redeemed": redeemed,
            },
        )
        return Application(applied=applied, unapplied=unapplied, reached_paid=reached_paid, redeemed=redeemed)

    def publish(self, purchase: Purchase, application: Application, payment_id: Optional[str] = None) -> None:
        """Post-commit effects: dashboard invalidation, then fulfillment for redeemed burial plots."""
        self.events.dashboard_changed("payment_settled")

        category = purchase.product.category if purchase.product else None
        if application.redeemed and category == ProductCategory.BURIAL_PLOT:
            outcome = SettlementOutcome(
                purchase_id=purchase.id,
                member_id=purchase.member_id,
                payment_id=payment_id,
                purchase_status=purchase.status.value,
                applied_amount=application.applied,
                redeemed=True,
                product_category=category.value,
            )
            self.events.redeemed(self.db, outcome)

    # ─── Finalization ────────────────────────────────────────────────
    def finalize(self, payment_id: str, observed_status: Optional[str]) -> Optional[PaymentStatus]:
        """Finalize a deferred payment from a poll result or webhook.

        Args:
            payment_id: Payment to finalize.
            observed_status: Raw gateway status (e.g. "Paid", "Cancelled").

        Returns:
            The payment's status after the call, or None if it does not exist.
            Calls on a payment that already left INITIATED return its current
            status and change nothing.

        Locks are taken purchase first, then payment, the same order used by
        payment initiation and checkout cancellation.
        """
        db = self.db
        payment = db.query(Payment).filter(Payment.id == payment_id).populate_existing().first()
        if payment is None:
            db.rollback()
            logger.warning("Finalize requested for unknown payment %s", payment_id)
            return None

        if payment.status != PaymentStatus.INITIATED:
            current = payment.status
            db.rollback()
            logger.info("Payment %s already %s; ignoring '%s'", payment_id, current.value, observed_status)
            return current

        mapped = map_gateway_status(observed_status)
        if mapped == PaymentStatus.INITIATED:
            db.rollback()
            return PaymentStatus.INITIATED

        now = datetime.utcnow()
        purchase_id = payment.purchase_id

        if mapped != PaymentStatus.SUCCESS:
            if not self._claim(payment_id, mapped):
                return self._lost_race(payment_id)
            self._audit_finalized(purchase_id, payment_id, mapped, observed_status)
            db.commit()
            logger.info("Payment %s finalized as %s", payment_id, mapped.value)
            return mapped

        purchase = (
            db.query(Purchase)
            .filter(Purchase.id == purchase_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if purchase is None:
            db.rollback()
            logger.error("Payment %s references missing purchase %s", payment_id, purchase_id)
            return PaymentStatus.INITIATED

        payment = (
            db.query(Payment)
            .filter(Payment.id == payment_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if payment.status != PaymentStatus.INITIATED:
            return self._lost_race(payment_id)

        if purchase.status == PurchaseStatus.CANCELLED:
            if not self._claim(payment_id, PaymentStatus.EXPIRED):
                return self._lost_race(payment_id)
            self._audit_finalized(purchase_id, payment_id, PaymentStatus.EXPIRED, observed_status)
            db.commit()
            logger.warning(
                "Payment %s succeeded at the gateway but purchase %s is cancelled; marked EXPIRED",
                payment_id, purchase_id,
            )
            return PaymentStatus.EXPIRED

        if not self._claim(payment_id, PaymentStatus.SUCCESS, paid_at=now):
            return self._lost_race(payment_id)

        try:
            application = self.apply_payment(purchase, payment, now=now)
            self._audit_finalized(purchase_id, payment_id, PaymentStatus.SUCCESS, observed_status)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            "Payment %s settled %s on purchase %s (balance %s, %s)",
            payment_id, format_money(application.applied), purchase_id,
            format_money(purchase.balance), purchase.status.value,
        )
        self.publish(purchase, application, payment_id)
        return PaymentStatus.SUCCESS

    # ─── Internals ───────────────────────────────────────────────────
    def _claim(self, payment_id: str, status: PaymentStatus, paid_at: Optional[datetime] = None) -> bool:
        """Compare-and-set INITIATED → status. True only for the caller that won."""
        values = {"status": status}
        if paid_at is not None:
            values["paid_at"] = paid_at
        updated = (
            self.db.query(Payment)
            .filter(Payment.id == payment_id, Payment.status == PaymentStatus.INITIATED)
            .update(values, synchronize_session="evaluate")
        )
        return updated == 1

    def _lost_race(self, payment_id: str) -> Optional[PaymentStatus]:
        self.db.rollback()
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        logger.info("Payment %s was finalized concurrently; no-op", payment_id)
        return payment.status if payment else None

    def _audit_finalized(self, purchase_id: str, payment_id: str, status: PaymentStatus, observed: Optional[str]) -> None:
        AuditService.log(
            self.db, purchase_id, "PAYMENT_FINALIZED",
            payload={"payment_id": payment_id, "status": status.value},
            metadata={"gateway_status": observed},
        )
