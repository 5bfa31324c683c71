"""
Purchase Service — Creates purchases: member self-service, services,
staff counter purchases, and paper plans carried over from before.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from cemetery.events import SettlementEvents
from cemetery.exceptions import NotFoundError, StateConflictError, ValidationError
from cemetery.models.catalog import Product, ProductCategory, YearPlan
from cemetery.models.member import Member
from cemetery.models.payment import Payment, PaymentMethod, PaymentStatus
from cemetery.models.purchase import Purchase, PurchaseKind, PurchaseStatus
from cemetery.services.audit_service import AuditService
from cemetery.services.fulfillment_service import FulfillmentService
from cemetery.services.pricing import PriceTable, calculate_age, resolve_monthly_price
from cemetery.services.settlement import SettlementService
from cemetery.utils.validators import format_money, validate_amount, validate_uuid

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class PurchaseService:
    def __init__(self, db: Session, events: Optional[SettlementEvents] = None):
        self.db = db
        self.events = events or SettlementEvents()

    # ─── Lookups ─────────────────────────────────────────────────────
    def _member(self, member_id: str) -> Member:
        validate_uuid(member_id, "Member ID")
        member = self.db.get(Member, member_id)
        if member is None:
            raise NotFoundError("Member not found")
        return member

    def _product(self, product_id: str) -> Product:
        validate_uuid(product_id, "Product ID")
        product = self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if not product.active:
            raise StateConflictError("Product is not available for purchase")
        return product

    def _plan(self, plan_id: Optional[int]) -> YearPlan:
        if plan_id is None:
            raise ValidationError("A payment plan is required for future purchases")
        plan = self.db.get(YearPlan, plan_id)
        if plan is None:
            raise NotFoundError("Payment plan not found")
        return plan

    def quote_total(self, product: Product, kind: PurchaseKind, member: Member,
                    plan: Optional[YearPlan], today: Optional[date] = None) -> Decimal:
        """List price for immediate purchases; monthly price × months for plans."""
        if kind == PurchaseKind.IMMEDIATE:
            return Decimal(product.amount)
        if member.date_of_birth is None:
            raise ValidationError("Date of birth is required for plan pricing")
        today = today or date.today()
        age = calculate_age(member.date_of_birth, today)
        monthly = resolve_monthly_price(product.pricing_section, PriceTable.for_plan(plan), age)
        return monthly * plan.months

    # ─── Initiation ──────────────────────────────────────────────────
    def initiate_purchase(
        self,
        product_id: str,
        kind: PurchaseKind,
        member_id: str,
        plan_id: Optional[int] = None,
        future_for: Optional[str] = None,
        deceased: Optional[Dict] = None,
        next_of_kin: Optional[Dict] = None,
        captured_by: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Purchase:
        """Create a PENDING_PAYMENT purchase at its resolved total.

        Deceased / next-of-kin details, when given, are stored with the
        purchase and turned into the deceased record on redemption.

        Raises:
            NotFoundError: unknown member, product or plan.
            StateConflictError: inactive product.
            PricingConfigurationError: no price for the member's age bracket.
        """
        kind = PurchaseKind(kind)
        member = self._member(member_id)
        product = self._product(product_id)
        plan = self._plan(plan_id) if kind == PurchaseKind.FUTURE else None

        total = self.quote_total(product, kind, member, plan, today)
        purchase = Purchase(
            member_id=member.id,
            product_id=product.id,
            kind=kind,
            year_plan_id=plan.id if plan else None,
            future_for=future_for if kind == PurchaseKind.FUTURE else None,
            total_amount=total,
            paid_amount=ZERO,
            balance=total,
            status=PurchaseStatus.PENDING_PAYMENT,
        )

        try:
            self.db.add(purchase)
            self.db.flush()
            if deceased or next_of_kin:
                FulfillmentService(self.db).store_pending_details(
                    purchase.id,
                    deceased if kind == PurchaseKind.IMMEDIATE else None,
                    next_of_kin,
                    captured_by=captured_by,
                )
            AuditService.log(
                self.db, purchase.id, "PURCHASE_INITIATED",
                payload={"product_id": product.id, "kind": kind.value, "total": str(total)},
                actor_id=captured_by or member.id,
                metadata={"plan": plan.name if plan else None, "captured_by_staff": bool(captured_by)},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Purchase %s initiated: %s %s for member %s, total %s",
            purchase.id, kind.value, product.title, member.id, format_money(total),
        )
        self.events.dashboard_changed("purchase_initiated")
        return purchase

    def initiate_service_purchase(self, product_id: str, member_id: str) -> Purchase:
        """Immediate purchase of a service product that is not currently checked out."""
        product = self._product(product_id)
        if product.category != ProductCategory.SERVICE:
            raise StateConflictError("Product is not a service")
        if not product.is_available:
            raise StateConflictError(f"{product.title} is currently unavailable")
        return self.initiate_purchase(product_id, PurchaseKind.IMMEDIATE, member_id)

    def initiate_purchase_for_member(
        self,
        staff_id: str,
        member_id: str,
        product_id: str,
        kind: PurchaseKind,
        plan_id: Optional[int] = None,
        future_for: Optional[str] = None,
        deceased: Optional[Dict] = None,
        next_of_kin: Optional[Dict] = None,
    ) -> Purchase:
        """Counter purchase made by staff. Immediate burial plots need the deceased and next of kin up front."""
        kind = PurchaseKind(kind)
        product = self._product(product_id)
        if kind == PurchaseKind.IMMEDIATE and product.category == ProductCategory.BURIAL_PLOT:
            if not deceased or not deceased.get("full_name"):
                raise ValidationError("Deceased details are required for an immediate burial plot")
            if not next_of_kin or not next_of_kin.get("full_name"):
                raise ValidationError("Next of kin details are required for an immediate burial plot")
        elif kind == PurchaseKind.FUTURE and deceased:
            raise ValidationError("Deceased details are captured at redemption for future plans")

        return self.initiate_purchase(
            product_id, kind, member_id,
            plan_id=plan_id,
            future_for=future_for,
            deceased=deceased,
            next_of_kin=next_of_kin,
            captured_by=staff_id,
        )

    def register_legacy_plan(
        self,
        staff_id: str,
        member_id: str,
        product_id: str,
        total_amount,
        paid_amount,
        plan_id: Optional[int] = None,
        future_for: Optional[str] = None,
    ) -> Purchase:
        """Carry a paper plan over: a FUTURE purchase plus one LEGACY payment for what was already paid."""
        member = self._member(member_id)
        product = self._product(product_id)
        plan = self.db.get(YearPlan, plan_id) if plan_id is not None else None
        if plan_id is not None and plan is None:
            raise NotFoundError("Payment plan not found")

        total = validate_amount(total_amount)
        paid = ZERO if paid_amount in (None, 0, "0") else validate_amount(paid_amount)
        if paid > total:
            raise ValidationError("Paid amount cannot exceed the plan total")

        now = datetime.utcnow()
        purchase = Purchase(
            member_id=member.id,
            product_id=product.id,
            kind=PurchaseKind.FUTURE,
            year_plan_id=plan.id if plan else None,
            future_for=future_for,
            total_amount=total,
            paid_amount=ZERO,
            balance=total,
            status=PurchaseStatus.PENDING_PAYMENT,
        )

        try:
            self.db.add(purchase)
            self.db.flush()
            AuditService.log(
                self.db, purchase.id, "LEGACY_PLAN_REGISTERED",
                payload={"product_id": product.id, "total": str(total), "paid": str(paid)},
                actor_id=staff_id,
            )
            if paid > ZERO:
                payment = Payment(
                    purchase_id=purchase.id,
                    member_id=member.id,
                    reference=f"LEGACY-{purchase.id}",
                    amount=paid,
                    method=PaymentMethod.LEGACY,
                    status=PaymentStatus.SUCCESS,
                    recorded_by=staff_id,
                    paid_at=now,
                )
                self.db.add(payment)
                self.db.flush()
                SettlementService(self.db, self.events).apply_payment(purchase, payment, actor_id=staff_id, now=now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Legacy plan %s registered for member %s: total %s, paid %s",
            purchase.id, member.id, format_money(total), format_money(paid),
        )
        self.events.dashboard_changed("legacy_plan_registered")
        return purchase

    # ─── Listings ────────────────────────────────────────────────────
    def list_member_purchases(self, member_id: str) -> List[Purchase]:
        validate_uuid(member_id, "Member ID")
        return (
            self.db.query(Purchase)
            .filter(Purchase.member_id == member_id)
            .order_by(Purchase.created_at.desc())
            .all()
        )
