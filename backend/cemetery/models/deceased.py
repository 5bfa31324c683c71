"""
Deceased Record Model — The deliverable of a redeemed burial-plot purchase.
One per purchase; its existence is what a second redemption collides with.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Date, DateTime, JSON, ForeignKey, Boolean

from cemetery.database import Base


class DeceasedRecord(Base):
    __tablename__ = "deceased_records"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    purchase_id = Column(String(36), ForeignKey("purchases.id"), nullable=False, unique=True, index=True)

    full_name = Column(String(128), nullable=False)
    gender = Column(String(16))
    address = Column(String(256))
    relationship = Column(String(64))     # Relationship to the buyer
    cause_of_death = Column(String(256))
    funeral_parlor = Column(String(128))

    date_of_birth = Column(Date)
    date_of_death = Column(Date)
    expected_burial = Column(Date, nullable=True)

    next_of_kin = Column(JSON, default=dict)
    next_of_kin_is_buyer = Column(Boolean, default=False)

    created_by = Column(String(36))
    created_at = Column(DateTime, default=datetime.utcnow)
