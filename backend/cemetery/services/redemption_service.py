"""
Redemption Service — Explicit redemption of fully paid FUTURE purchases.

IMMEDIATE purchases redeem themselves inside settlement; both paths meet the
same guard: ``redeemed_at`` is set once, and a second attempt is rejected.
"""
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from cemetery.events import SettlementEvents
from cemetery.exceptions import (
    NotFoundError, OwnershipError, RedemptionConflictError, StateConflictError,
)
from cemetery.models.deceased import DeceasedRecord
from cemetery.models.purchase import Purchase, PurchaseKind, PurchaseStatus
from cemetery.services.audit_service import AuditService
from cemetery.services.fulfillment_service import FulfillmentService
from cemetery.utils.validators import validate_uuid

logger = logging.getLogger(__name__)


class RedemptionService:
    def __init__(self, db: Session, events: Optional[SettlementEvents] = None):
        self.db = db
        self.events = events or SettlementEvents()

    def check_redeemable(self, purchase_id: str, member_id: str, lock: bool = False) -> Purchase:
        """Raise unless the member's purchase is a paid, unredeemed FUTURE purchase."""
        validate_uuid(purchase_id, "Purchase ID")

        query = self.db.query(Purchase).filter(Purchase.id == purchase_id)
        if lock:
            query = query.with_for_update()
        purchase = query.first()

        if purchase is None:
            raise NotFoundError("Purchase not found")
        if purchase.member_id != member_id:
            raise OwnershipError("Not your purchase")
        if purchase.kind != PurchaseKind.FUTURE:
            raise StateConflictError("Immediate purchases are redeemed automatically")
        if purchase.status != PurchaseStatus.PAID:
            raise StateConflictError("Purchase not fully paid")
        if purchase.redeemed_at is not None:
            raise RedemptionConflictError("Purchase already redeemed")
        return purchase

    def redeem_future_purchase(
        self,
        purchase_id: str,
        member_id: str,
        deceased: Dict,
        next_of_kin: Optional[Dict] = None,
    ) -> DeceasedRecord:
        """Record the deceased for a paid future plan and mark it redeemed, atomically."""
        purchase = self.check_redeemable(purchase_id, member_id, lock=True)
        now = datetime.utcnow()

        claimed = (
            self.db.query(Purchase)
            .filter(Purchase.id == purchase.id, Purchase.redeemed_at.is_(None))
            .update({"redeemed_at": now, "redeemed_by": member_id}, synchronize_session="evaluate")
        )
        if claimed != 1:
            self.db.rollback()
            raise RedemptionConflictError("Purchase already redeemed")

        fulfillment = FulfillmentService(self.db)
        pending = fulfillment.pending_for(purchase.id)
        if next_of_kin is None and pending is not None:
            next_of_kin = pending.next_of_kin

        try:
            record = fulfillment.build_record(purchase, deceased, next_of_kin, created_by=member_id)
            if pending is not None:
                self.db.delete(pending)
            AuditService.log(
                self.db, purchase.id, "PURCHASE_REDEEMED",
                payload={"purchase_id": purchase.id, "deceased": deceased.get("full_name")},
                actor_id=member_id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Future purchase %s redeemed by member %s", purchase.id, member_id)
        self.events.dashboard_changed("purchase_redeemed")
        return record
