"""
Payment Record Model — One attempt to pay toward a purchase.
"""
import enum
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, String, DateTime, Numeric, ForeignKey, Enum as SAEnum,
)
from sqlalchemy.orm import relationship

from cemetery.database import Base


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    MANUAL = "MANUAL"                  # Paid elsewhere, recorded by staff
    PAYNOW = "PAYNOW"                  # Gateway redirect
    PAYNOW_ECOCASH = "PAYNOW_ECOCASH"  # Mobile push
    LEGACY = "LEGACY"                  # Paper plan carried over


DEFERRED_METHODS = (PaymentMethod.PAYNOW, PaymentMethod.PAYNOW_ECOCASH)


class PaymentStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    purchase_id = Column(String(36), ForeignKey("purchases.id"), nullable=False, index=True)
    member_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)

    reference = Column(String(64), unique=True, nullable=False, index=True)  # Gateway correlation id
    amount = Column(Numeric(12, 2), nullable=False)
    unapplied_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))  # Excess over balance, owed back
    currency = Column(String(3), default="USD")
    method = Column(SAEnum(PaymentMethod, native_enum=False, length=24), nullable=False)

    status = Column(
        SAEnum(PaymentStatus, native_enum=False, length=16),
        nullable=False,
        default=PaymentStatus.INITIATED,
        index=True,
    )
    poll_url = Column(String(512), nullable=True)   # Deferred methods only

    recorded_by = Column(String(36))                # Staff id for counter payments
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    paid_at = Column(DateTime, nullable=True)

    purchase = relationship("Purchase", back_populates="payments")
