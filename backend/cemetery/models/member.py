"""
Member Model — A paying customer of the cemetery.
Read-only from the purchase/payment flows; member CRUD lives elsewhere.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime

from cemetery.database import Base


class Member(Base):
    __tablename__ = "members"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)

    first_name = Column(String(64), nullable=False)
    last_name = Column(String(64), nullable=False)
    date_of_birth = Column(Date, nullable=True)   # Required for installment pricing
    phone = Column(String(16))

    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
