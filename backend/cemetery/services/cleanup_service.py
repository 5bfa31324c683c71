"""
Cleanup Service — Garbage collector for abandoned checkout sessions.

Only INITIATED payments and PENDING_PAYMENT purchases are touched, each
through a conditional update, so a sweep can run alongside settlement:
whichever commits first wins and the other finds nothing to change.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from cemetery.config import get_settings
from cemetery.events import SettlementEvents
from cemetery.exceptions import NotFoundError, OwnershipError
from cemetery.models.payment import Payment, PaymentStatus
from cemetery.models.purchase import Purchase, PurchaseStatus
from cemetery.services.audit_service import AuditService
from cemetery.utils.validators import validate_uuid

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    purchases_cancelled: int = 0
    payments_expired: int = 0


@dataclass
class CheckoutCancellation:
    purchase_id: str
    status: str
    cancelled: bool
    payments_expired: int = 0
    message: str = ""


class CleanupService:
    def __init__(self, db: Session, events: Optional[SettlementEvents] = None, ttl_hours: Optional[int] = None):
        self.db = db
        self.events = events or SettlementEvents()
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else get_settings().CHECKOUT_SESSION_TTL_HOURS)

    def _expire_initiated(self, purchase_id: str) -> int:
        return (
            self.db.query(Payment)
            .filter(Payment.purchase_id == purchase_id, Payment.status == PaymentStatus.INITIATED)
            .update({"status": PaymentStatus.EXPIRED}, synchronize_session=False)
        )

    def _cancel_if_pending(self, purchase_id: str) -> bool:
        updated = (
            self.db.query(Purchase)
            .filter(Purchase.id == purchase_id, Purchase.status == PurchaseStatus.PENDING_PAYMENT)
            .update(
                {"status": PurchaseStatus.CANCELLED, "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )
        )
        return updated == 1

    def run_cleanup_sweep(self, now: Optional[datetime] = None) -> CleanupResult:
        """Cancel stale unpaid purchases and expire stale INITIATED payments."""
        now = now or datetime.utcnow()
        cutoff = now - self.ttl
        result = CleanupResult()

        try:
            stale_ids = [
                row.id for row in (
                    self.db.query(Purchase.id)
                    .filter(
                        Purchase.status == PurchaseStatus.PENDING_PAYMENT,
                        Purchase.created_at < cutoff,
                        ~Purchase.payments.any(Payment.status == PaymentStatus.SUCCESS),
                    )
                    .all()
                )
            ]

            for purchase_id in stale_ids:
                if not self._cancel_if_pending(purchase_id):
                    continue
                expired = self._expire_initiated(purchase_id)
                result.payments_expired += expired
                result.purchases_cancelled += 1
                AuditService.log(
                    self.db, purchase_id, "PURCHASE_CANCELLED",
                    payload={"purchase_id": purchase_id, "reason": "checkout_session_expired"},
                    metadata={"payments_expired": expired, "cutoff": cutoff},
                )

            # Stale attempts on purchases that have since moved on
            result.payments_expired += (
                self.db.query(Payment)
                .filter(Payment.status == PaymentStatus.INITIATED, Payment.created_at < cutoff)
                .update({"status": PaymentStatus.EXPIRED}, synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        # Bulk updates bypass the identity map
        self.db.expire_all()
        logger.info(
            "Cleanup sweep: %d purchase(s) cancelled, %d payment(s) expired",
            result.purchases_cancelled, result.payments_expired,
        )
        self.events.dashboard_changed("cleanup_sweep")
        return result

    def cancel_checkout_session(self, purchase_id: str, member_id: str) -> CheckoutCancellation:
        """Close a checkout the member walked away from.

        Purchases that already took money, or were cancelled before, are
        reported as finalized and left untouched.
        """
        validate_uuid(purchase_id, "Purchase ID")
        purchase = (
            self.db.query(Purchase)
            .filter(Purchase.id == purchase_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if purchase is None:
            raise NotFoundError("Purchase not found")
        if purchase.member_id != member_id:
            raise OwnershipError("Not your purchase")

        if purchase.status != PurchaseStatus.PENDING_PAYMENT:
            status = purchase.status.value
            self.db.rollback()
            return CheckoutCancellation(
                purchase_id=purchase_id,
                status=status,
                cancelled=False,
                message=f"Purchase already finalized ({status})",
            )

        try:
            expired = self._expire_initiated(purchase_id)
            cancelled = self._cancel_if_pending(purchase_id)
            if cancelled:
                AuditService.log(
                    self.db, purchase_id, "PURCHASE_CANCELLED",
                    payload={"purchase_id": purchase_id, "reason": "checkout_closed"},
                    actor_id=member_id,
                    metadata={"payments_expired": expired},
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.expire_all()
        logger.info("Checkout closed for purchase %s: %d payment(s) expired", purchase_id, expired)
        if cancelled:
            self.events.dashboard_changed("checkout_cancelled")
        return CheckoutCancellation(
            purchase_id=purchase_id,
            status=PurchaseStatus.CANCELLED.value if cancelled else purchase.status.value,
            cancelled=cancelled,
            payments_expired=expired,
            message="Checkout cancelled" if cancelled else "Purchase already finalized",
        )
