"""
Reconciliation Service — Polls INITIATED payments whose webhook never came.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from cemetery.config import get_settings
from cemetery.events import SettlementEvents
from cemetery.models.payment import Payment, PaymentStatus
from cemetery.services.payment_service import PaymentService
from cemetery.services.paynow_client import PaynowClient

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    checked: int = 0
    finalized: int = 0
    failed: int = 0


def reconcile_stuck_payments(
    db: Session,
    gateway: PaynowClient,
    events: Optional[SettlementEvents] = None,
    now: Optional[datetime] = None,
    min_age_minutes: Optional[int] = None,
) -> ReconcileResult:
    """Poll every INITIATED payment with a poll URL that is older than the minimum age."""
    now = now or datetime.utcnow()
    if min_age_minutes is None:
        min_age_minutes = get_settings().RECONCILE_MIN_AGE_MINUTES
    cutoff = now - timedelta(minutes=min_age_minutes)

    stuck_ids = [
        row.id for row in (
            db.query(Payment.id)
            .filter(
                Payment.status == PaymentStatus.INITIATED,
                Payment.poll_url.isnot(None),
                Payment.created_at < cutoff,
            )
            .order_by(Payment.created_at.asc())
            .all()
        )
    ]

    service = PaymentService(db, gateway, events)
    result = ReconcileResult()
    for payment_id in stuck_ids:
        result.checked += 1
        try:
            outcome = service.poll_payment(payment_id)
        except Exception:
            db.rollback()
            result.failed += 1
            logger.exception("Reconciliation failed for payment %s", payment_id)
            continue
        if outcome.status != PaymentStatus.INITIATED.value:
            result.finalized += 1

    if result.checked:
        logger.info(
            "Reconciliation: %d checked, %d finalized, %d failed",
            result.checked, result.finalized, result.failed,
        )
    return result
