"""
Admin Routes — On-demand background jobs and audit trail access.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from cemetery.database import get_db
from cemetery.events import SettlementEvents, get_event_bus
from cemetery.models.purchase import Purchase
from cemetery.schemas.schemas import (
    AuditLogEntry, AuditVerifyResponse, CleanupResponse, ReconcileResponse,
)
from cemetery.services.audit_service import AuditService
from cemetery.services.cleanup_service import CleanupService
from cemetery.services.paynow_client import PaynowClient, get_paynow_client
from cemetery.services.reconciliation_service import reconcile_stuck_payments

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.post("/cleanup", response_model=CleanupResponse)
def run_cleanup(
    db: Session = Depends(get_db),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Run the abandoned-checkout sweep now."""
    result = CleanupService(db, events).run_cleanup_sweep()
    return CleanupResponse(**result.__dict__)


@router.post("/reconcile", response_model=ReconcileResponse)
def run_reconciliation(
    db: Session = Depends(get_db),
    gateway: PaynowClient = Depends(get_paynow_client),
    events: SettlementEvents = Depends(get_event_bus),
):
    """Poll stuck gateway payments now."""
    result = reconcile_stuck_payments(db, gateway, events)
    return ReconcileResponse(**result.__dict__)


@router.get("/audit/{purchase_id}", response_model=list[AuditLogEntry])
def get_audit_trail(purchase_id: str, db: Session = Depends(get_db)):
    """Get the full audit trail for a purchase."""
    if not db.get(Purchase, purchase_id):
        raise HTTPException(status_code=404, detail="Purchase not found")
    return AuditService.get_trail(db, purchase_id)


@router.get("/audit/{purchase_id}/verify", response_model=AuditVerifyResponse)
def verify_audit_chain(purchase_id: str, db: Session = Depends(get_db)):
    """Verify the integrity of a purchase's audit hash chain."""
    return AuditService.verify_chain(db, purchase_id)
