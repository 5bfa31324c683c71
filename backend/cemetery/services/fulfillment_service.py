"""
Fulfillment Service — Creates the deceased record a redeemed burial-plot
purchase delivers, from details captured before payment.
"""
import logging
from datetime import date
from typing import Dict, Optional

from sqlalchemy.orm import Session

from cemetery.events import SettlementOutcome
from cemetery.exceptions import NotFoundError, RedemptionConflictError, StateConflictError
from cemetery.models.deceased import DeceasedRecord
from cemetery.models.member import Member
from cemetery.models.purchase import PendingFulfillment, Purchase, PurchaseStatus
from cemetery.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def _as_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def next_of_kin_is_buyer(next_of_kin: Optional[Dict], member: Optional[Member]) -> bool:
    """The buyer is taken to be the next of kin when both their names appear in the NOK name."""
    if not next_of_kin or not member:
        return False
    name = (next_of_kin.get("full_name") or "").lower()
    return member.first_name.lower() in name and member.last_name.lower() in name


class FulfillmentService:
    def __init__(self, db: Session):
        self.db = db

    def store_pending_details(
        self,
        purchase_id: str,
        deceased_details: Optional[Dict],
        next_of_kin: Optional[Dict],
        captured_by: Optional[str] = None,
    ) -> PendingFulfillment:
        """Persist details inside the caller's transaction, replacing any earlier capture."""
        record = (
            self.db.query(PendingFulfillment)
            .filter(PendingFulfillment.purchase_id == purchase_id)
            .first()
        )
        if record is None:
            record = PendingFulfillment(purchase_id=purchase_id)
            self.db.add(record)
        record.deceased_details = deceased_details
        record.next_of_kin = next_of_kin
        record.captured_by = captured_by
        return record

    def pending_for(self, purchase_id: str) -> Optional[PendingFulfillment]:
        return (
            self.db.query(PendingFulfillment)
            .filter(PendingFulfillment.purchase_id == purchase_id)
            .first()
        )

    def build_record(
        self,
        purchase: Purchase,
        deceased: Dict,
        next_of_kin: Optional[Dict],
        created_by: Optional[str] = None,
    ) -> DeceasedRecord:
        """Add the deceased record for a purchase to the caller's transaction.

        Raises:
            RedemptionConflictError: the purchase already has a deceased record.
        """
        existing = (
            self.db.query(DeceasedRecord)
            .filter(DeceasedRecord.purchase_id == purchase.id)
            .first()
        )
        if existing is not None:
            raise RedemptionConflictError("A deceased record already exists for this purchase")

        member = self.db.get(Member, purchase.member_id)
        record = DeceasedRecord(
            purchase_id=purchase.id,
            full_name=deceased["full_name"],
            gender=deceased.get("gender"),
            address=deceased.get("address"),
            relationship=deceased.get("relationship"),
            cause_of_death=deceased.get("cause_of_death"),
            funeral_parlor=deceased.get("funeral_parlor"),
            date_of_birth=_as_date(deceased.get("date_of_birth")),
            date_of_death=_as_date(deceased.get("date_of_death")),
            expected_burial=_as_date(deceased.get("expected_burial")),
            next_of_kin=next_of_kin or {},
            next_of_kin_is_buyer=next_of_kin_is_buyer(next_of_kin, member),
            created_by=created_by,
        )
        self.db.add(record)
        return record

    def create_deliverable_for_purchase(self, purchase_id: str, member_id: str) -> Optional[DeceasedRecord]:
        """Turn the captured details of a paid, redeemed purchase into its deceased record.

        Returns None when nothing was captured before payment; staff add the
        details later.
        """
        purchase = self.db.get(Purchase, purchase_id)
        if purchase is None:
            raise NotFoundError("Purchase not found")
        if purchase.status != PurchaseStatus.PAID or purchase.redeemed_at is None:
            raise StateConflictError("Purchase must be paid and redeemed before fulfillment")

        pending = self.pending_for(purchase_id)
        if pending is None or not pending.deceased_details:
            logger.warning("No pending deceased details for purchase %s; awaiting manual capture", purchase_id)
            return None

        record = self.build_record(purchase, pending.deceased_details, pending.next_of_kin, created_by=member_id)
        self.db.delete(pending)
        AuditService.log(
            self.db, purchase_id, "DECEASED_RECORDED",
            payload={"purchase_id": purchase_id, "full_name": record.full_name},
            actor_id=member_id,
        )
        self.db.commit()
        logger.info("Deceased record created for purchase %s", purchase_id)
        return record

    @staticmethod
    def handle_redemption(db: Session, outcome: SettlementOutcome) -> None:
        """Redemption listener registered on the settlement event bus."""
        FulfillmentService(db).create_deliverable_for_purchase(outcome.purchase_id, outcome.member_id)
