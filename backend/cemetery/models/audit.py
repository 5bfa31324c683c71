"""
Audit Log Model — Immutable, tamper-evident trail of purchase activity.
Every action is SHA-256 hashed and chained to the previous entry of the same purchase.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey

from cemetery.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    purchase_id = Column(String(36), ForeignKey("purchases.id"), nullable=False, index=True)

    action = Column(String(50), nullable=False)
    # Actions: PURCHASE_INITIATED, PAYMENT_RECORDED, PAYMENT_INITIATED,
    #          PAYMENT_APPLIED, PAYMENT_FINALIZED, PURCHASE_REDEEMED,
    #          DECEASED_RECORDED, PURCHASE_CANCELLED, LEGACY_PLAN_REGISTERED

    payload = Column(JSON, default=dict)     # Hashed data, JSON-normalised
    payload_hash = Column(String(64))       # Chain hash of this entry
    previous_hash = Column(String(64))      # Hash of the previous entry for this purchase

    actor_id = Column(String(36))           # Member or staff id; null for gateway/scheduler

    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)
