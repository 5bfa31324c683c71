"""
Catalog Models — Products (graves, services, memorials) and installment plans.

A plan's monthly prices live in ``plan_prices``: one row per
(pricing section, age bracket) cell instead of one column per cell.
"""
import enum
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, Numeric, ForeignKey,
    Enum as SAEnum, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from cemetery.database import Base


class ProductCategory(str, enum.Enum):
    BURIAL_PLOT = "BURIAL_PLOT"
    SERVICE = "SERVICE"
    MEMORIAL = "MEMORIAL"


class AgeBracket(str, enum.Enum):
    UNDER_60 = "UNDER_60"
    SIXTY_PLUS = "SIXTY_PLUS"


class Product(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)

    title = Column(String(128), nullable=False)
    category = Column(SAEnum(ProductCategory, native_enum=False, length=24), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)       # List price (USD)
    pricing_section = Column(String(32), nullable=True)   # Row key into plan_prices; null = no installments

    active = Column(Boolean, default=True)
    is_available = Column(Boolean, default=True)          # Services: False while hired out

    created_at = Column(DateTime, default=datetime.utcnow)


class YearPlan(Base):
    __tablename__ = "year_plans"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    name = Column(String(64), nullable=False)
    months = Column(Integer, nullable=False)

    prices = relationship("PlanPrice", back_populates="plan", cascade="all, delete-orphan")


class PlanPrice(Base):
    __tablename__ = "plan_prices"
    __table_args__ = (
        UniqueConstraint("plan_id", "pricing_section", "age_bracket", name="uq_plan_price_cell"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_id = Column(Integer, ForeignKey("year_plans.id"), nullable=False, index=True)

    pricing_section = Column(String(32), nullable=False)
    age_bracket = Column(SAEnum(AgeBracket, native_enum=False, length=16), nullable=False)
    monthly_price = Column(Numeric(12, 2), nullable=False)

    plan = relationship("YearPlan", back_populates="prices")
