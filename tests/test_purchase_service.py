"""
Purchase initiation: member, service, staff counter and legacy plans.
"""
from datetime import date
from decimal import Decimal

import pytest

from cemetery.exceptions import (
    NotFoundError, PricingConfigurationError, StateConflictError, ValidationError,
)
from cemetery.models import (
    AuditLog, Payment, PaymentMethod, PaymentStatus, PendingFulfillment,
    PurchaseKind, PurchaseStatus,
)
from cemetery.services.purchase_service import PurchaseService

TODAY = date(2026, 1, 1)
DECEASED = {"full_name": "Chipo Moyo", "date_of_death": "2025-12-28", "gender": "F"}
NEXT_OF_KIN = {"full_name": "Tendai Moyo", "phone": "0771234567", "relationship": "Son"}


class TestInitiatePurchase:

    def test_immediate_uses_list_price(self, db, events, member, plot):
        purchase = PurchaseService(db, events).initiate_purchase(plot.id, PurchaseKind.IMMEDIATE, member.id)

        assert purchase.total_amount == Decimal("100.00")
        assert purchase.balance == Decimal("100.00")
        assert purchase.paid_amount == Decimal("0")
        assert purchase.status == PurchaseStatus.PENDING_PAYMENT
        assert events.dashboard_reasons == ["purchase_initiated"]

    def test_immediate_ignores_plan(self, db, member, plot, plan):
        purchase = PurchaseService(db).initiate_purchase(plot.id, "IMMEDIATE", member.id, plan_id=plan.id)

        assert purchase.year_plan_id is None
        assert purchase.total_amount == Decimal("100.00")

    def test_future_plan_priced_by_age(self, db, member, plot, plan):
        purchase = PurchaseService(db).initiate_purchase(
            plot.id, PurchaseKind.FUTURE, member.id, plan_id=plan.id, future_for="Self", today=TODAY,
        )

        assert purchase.total_amount == Decimal("300.00")   # 25.00 x 12
        assert purchase.year_plan_id == plan.id
        assert purchase.future_for == "Self"

    def test_future_plan_senior_bracket(self, db, senior_member, plot, plan):
        purchase = PurchaseService(db).initiate_purchase(
            plot.id, PurchaseKind.FUTURE, senior_member.id, plan_id=plan.id, today=TODAY,
        )

        assert purchase.total_amount == Decimal("360.00")   # 30.00 x 12

    def test_missing_price_rejects_instead_of_zero(self, db, member, family_plot, plan):
        with pytest.raises(PricingConfigurationError):
            PurchaseService(db).initiate_purchase(
                family_plot.id, PurchaseKind.FUTURE, member.id, plan_id=plan.id, today=TODAY,
            )
        assert db.query(AuditLog).count() == 0

    def test_future_requires_plan(self, db, member, plot):
        with pytest.raises(ValidationError, match="plan is required"):
            PurchaseService(db).initiate_purchase(plot.id, PurchaseKind.FUTURE, member.id)

    def test_unknown_product(self, db, member):
        with pytest.raises(NotFoundError):
            PurchaseService(db).initiate_purchase("00000000-0000-4000-8000-000000000000", "IMMEDIATE", member.id)

    def test_inactive_product(self, db, member, plot):
        plot.active = False
        db.commit()

        with pytest.raises(StateConflictError):
            PurchaseService(db).initiate_purchase(plot.id, PurchaseKind.IMMEDIATE, member.id)

    def test_malformed_member_id(self, db, plot):
        with pytest.raises(ValidationError, match="Member ID"):
            PurchaseService(db).initiate_purchase(plot.id, PurchaseKind.IMMEDIATE, "not-a-uuid")

    def test_audit_entry_written(self, db, member, plot):
        purchase = PurchaseService(db).initiate_purchase(plot.id, PurchaseKind.IMMEDIATE, member.id)

        entries = db.query(AuditLog).filter(AuditLog.purchase_id == purchase.id).all()
        assert [e.action for e in entries] == ["PURCHASE_INITIATED"]


class TestServicePurchase:

    def test_available_service(self, db, member, hearse):
        purchase = PurchaseService(db).initiate_service_purchase(hearse.id, member.id)

        assert purchase.kind == PurchaseKind.IMMEDIATE
        assert purchase.total_amount == Decimal("50.00")

    def test_checked_out_service_rejected(self, db, member, hearse):
        hearse.is_available = False
        db.commit()

        with pytest.raises(StateConflictError, match="unavailable"):
            PurchaseService(db).initiate_service_purchase(hearse.id, member.id)

    def test_non_service_rejected(self, db, member, plot):
        with pytest.raises(StateConflictError, match="not a service"):
            PurchaseService(db).initiate_service_purchase(plot.id, member.id)


class TestStaffPurchase:

    def test_immediate_plot_stores_pending_details(self, db, member, plot):
        purchase = PurchaseService(db).initiate_purchase_for_member(
            "staff-1", member.id, plot.id, PurchaseKind.IMMEDIATE,
            deceased=DECEASED, next_of_kin=NEXT_OF_KIN,
        )

        pending = db.query(PendingFulfillment).filter_by(purchase_id=purchase.id).one()
        assert pending.deceased_details["full_name"] == "Chipo Moyo"
        assert pending.next_of_kin["relationship"] == "Son"
        assert pending.captured_by == "staff-1"

    def test_immediate_plot_requires_deceased(self, db, member, plot):
        with pytest.raises(ValidationError, match="Deceased details"):
            PurchaseService(db).initiate_purchase_for_member(
                "staff-1", member.id, plot.id, PurchaseKind.IMMEDIATE, next_of_kin=NEXT_OF_KIN,
            )

    def test_immediate_plot_requires_next_of_kin(self, db, member, plot):
        with pytest.raises(ValidationError, match="Next of kin"):
            PurchaseService(db).initiate_purchase_for_member(
                "staff-1", member.id, plot.id, PurchaseKind.IMMEDIATE, deceased=DECEASED,
            )

    def test_future_plan_takes_next_of_kin_only(self, db, member, plot, plan):
        purchase = PurchaseService(db).initiate_purchase_for_member(
            "staff-1", member.id, plot.id, PurchaseKind.FUTURE, plan_id=plan.id, next_of_kin=NEXT_OF_KIN,
        )

        pending = db.query(PendingFulfillment).filter_by(purchase_id=purchase.id).one()
        assert pending.deceased_details is None
        assert pending.next_of_kin["full_name"] == "Tendai Moyo"

    def test_future_plan_rejects_deceased(self, db, member, plot, plan):
        with pytest.raises(ValidationError):
            PurchaseService(db).initiate_purchase_for_member(
                "staff-1", member.id, plot.id, PurchaseKind.FUTURE, plan_id=plan.id, deceased=DECEASED,
            )


class TestLegacyPlan:

    def test_partially_paid_plan(self, db, events, member, plot):
        purchase = PurchaseService(db, events).register_legacy_plan(
            "staff-1", member.id, plot.id, "600.00", "150.00",
        )

        assert purchase.kind == PurchaseKind.FUTURE
        assert purchase.paid_amount == Decimal("150.00")
        assert purchase.balance == Decimal("450.00")
        assert purchase.status == PurchaseStatus.PARTIALLY_PAID

        payment = db.query(Payment).filter_by(purchase_id=purchase.id).one()
        assert payment.method == PaymentMethod.LEGACY
        assert payment.status == PaymentStatus.SUCCESS
        assert payment.reference == f"LEGACY-{purchase.id}"

    def test_fully_paid_plan_is_not_redeemed(self, db, member, plot):
        purchase = PurchaseService(db).register_legacy_plan("staff-1", member.id, plot.id, "200.00", "200.00")

        assert purchase.status == PurchaseStatus.PAID
        assert purchase.balance == Decimal("0")
        assert purchase.redeemed_at is None

    def test_nothing_paid_has_no_payment(self, db, member, plot):
        purchase = PurchaseService(db).register_legacy_plan("staff-1", member.id, plot.id, "200.00", "0")

        assert purchase.status == PurchaseStatus.PENDING_PAYMENT
        assert db.query(Payment).filter_by(purchase_id=purchase.id).count() == 0

    def test_paid_above_total_rejected(self, db, member, plot):
        with pytest.raises(ValidationError, match="cannot exceed"):
            PurchaseService(db).register_legacy_plan("staff-1", member.id, plot.id, "200.00", "250.00")


class TestListing:

    def test_only_own_purchases(self, db, member, other_member, plot):
        service = PurchaseService(db)
        mine = service.initiate_purchase(plot.id, PurchaseKind.IMMEDIATE, member.id)
        service.initiate_purchase(plot.id, PurchaseKind.IMMEDIATE, other_member.id)

        assert [p.id for p in service.list_member_purchases(member.id)] == [mine.id]
