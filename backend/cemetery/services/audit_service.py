"""
Audit Service — Per-purchase, hash-chained record of every money-moving
or status-changing action.

Entries are written inside the caller's transaction, so an action and its
audit entry commit (or roll back) together.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from cemetery.models.audit import AuditLog
from cemetery.utils.hashing import generate_chain_hash

logger = logging.getLogger(__name__)


def _normalise(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    # Decimals, dates and enums as strings, exactly as they read back from the JSON column
    return json.loads(json.dumps(data or {}, default=str))


class AuditService:

    @staticmethod
    def log(
        db: Session,
        purchase_id: str,
        action: str,
        payload: Optional[Dict] = None,
        actor_id: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> AuditLog:
        """Append an entry to the purchase's chain and flush it (no commit).

        Args:
            db: Session of the transaction performing the action.
            purchase_id: Purchase whose chain is extended.
            action: Action name, e.g. PAYMENT_FINALIZED.
            payload: Facts covered by the hash.
            actor_id: Member or staff id; None for gateway callbacks and jobs.
            metadata: Extra context stored alongside, not hashed.
        """
        head = (
            db.query(AuditLog.payload_hash)
            .filter(AuditLog.purchase_id == purchase_id)
            .order_by(AuditLog.id.desc())
            .first()
        )
        previous_hash = head.payload_hash if head else ""
        data = _normalise(payload)

        entry = AuditLog(
            purchase_id=purchase_id,
            action=action,
            payload=data,
            payload_hash=generate_chain_hash(data, previous_hash),
            previous_hash=previous_hash,
            actor_id=actor_id,
            log_metadata=_normalise(metadata),
            timestamp=datetime.utcnow(),
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def get_trail(db: Session, purchase_id: str) -> list[AuditLog]:
        return (
            db.query(AuditLog)
            .filter(AuditLog.purchase_id == purchase_id)
            .order_by(AuditLog.id.asc())
            .all()
        )

    @staticmethod
    def verify_chain(db: Session, purchase_id: str) -> dict:
        """Re-derive every hash of a purchase's chain.

        An entry fails when it does not point at its predecessor's hash or
        when its own hash no longer matches its stored payload.

        Returns:
            dict with 'valid', 'total_entries' and 'broken_at' (entry id or None);
            a failing chain also carries a 'message'.
        """
        entries = AuditService.get_trail(db, purchase_id)

        expected_prev = ""
        for entry in entries:
            if entry.previous_hash != expected_prev:
                problem = "does not link to the previous entry"
            elif entry.payload_hash != generate_chain_hash(entry.payload or {}, entry.previous_hash):
                problem = "payload does not match its hash"
            else:
                expected_prev = entry.payload_hash
                continue

            logger.critical("Audit chain of purchase %s broken at entry %s: %s", purchase_id, entry.id, problem)
            return {
                "valid": False,
                "total_entries": len(entries),
                "broken_at": entry.id,
                "message": f"Entry {entry.id} ({entry.action}) {problem}",
            }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
