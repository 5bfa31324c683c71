"""
Purchase Model — A member's commitment to buy a product, outright or on a plan.

Money fields (paid_amount, balance, status) are only written by the
settlement step; ``balance == total_amount - paid_amount`` and never < 0.
"""
import enum
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, Numeric, ForeignKey, Enum as SAEnum,
)
from sqlalchemy.orm import relationship

from cemetery.database import Base


class PurchaseKind(str, enum.Enum):
    IMMEDIATE = "IMMEDIATE"
    FUTURE = "FUTURE"


class PurchaseStatus(str, enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)

    kind = Column(SAEnum(PurchaseKind, native_enum=False, length=16), nullable=False)
    year_plan_id = Column(Integer, ForeignKey("year_plans.id"), nullable=True)
    future_for = Column(String(128))          # Who a future plan is intended for

    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False)

    status = Column(
        SAEnum(PurchaseStatus, native_enum=False, length=24),
        nullable=False,
        default=PurchaseStatus.PENDING_PAYMENT,
        index=True,
    )

    paid_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    redeemed_at = Column(DateTime, nullable=True)
    redeemed_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product")
    year_plan = relationship("YearPlan")
    payments = relationship("Payment", back_populates="purchase", order_by="Payment.created_at")


class PendingFulfillment(Base):
    """
    Deceased / next-of-kin details captured before payment completes.
    Consumed and deleted once the deliverable is created.
    """
    __tablename__ = "pending_fulfillments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    purchase_id = Column(String(36), ForeignKey("purchases.id"), nullable=False, unique=True, index=True)

    deceased_details = Column(JSON, nullable=True)   # Null for future plans until redemption
    next_of_kin = Column(JSON, nullable=True)

    captured_by = Column(String(36))                 # Staff id, when captured at the counter
    created_at = Column(DateTime, default=datetime.utcnow)
