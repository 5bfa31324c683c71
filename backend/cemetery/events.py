"""
Settlement events — one-directional signals from the payment flows to the
dashboard and the fulfillment collaborator.

Publishers never hold references to subscribers' services; subscribers
register callables here at startup.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class SettlementOutcome:
    """What a committed settlement did, as seen by subscribers."""

    purchase_id: str
    member_id: str
    payment_id: Optional[str]
    purchase_status: str
    applied_amount: Decimal
    redeemed: bool
    product_category: Optional[str] = None


DashboardListener = Callable[[str], None]
RedemptionListener = Callable[[Session, SettlementOutcome], None]


class SettlementEvents:
    """Fan-out of post-commit signals. Listener failures never reach the publisher."""

    def __init__(self):
        self._dashboard_listeners: List[DashboardListener] = []
        self._redemption_listeners: List[RedemptionListener] = []

    def subscribe_dashboard(self, listener: DashboardListener) -> None:
        self._dashboard_listeners.append(listener)

    def subscribe_redemption(self, listener: RedemptionListener) -> None:
        self._redemption_listeners.append(listener)

    def dashboard_changed(self, reason: str) -> None:
        """Fire-and-forget dashboard invalidation."""
        for listener in list(self._dashboard_listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("Dashboard listener failed for '%s'", reason)

    def redeemed(self, db: Session, outcome: SettlementOutcome) -> None:
        """Run fulfillment for a purchase that was just auto-redeemed.

        The payment is already committed: a failing listener is rolled back
        and reported CRITICAL, never re-raised.
        """
        for listener in list(self._redemption_listeners):
            try:
                listener(db, outcome)
            except Exception:
                db.rollback()
                logger.critical(
                    "CRITICAL: payment %s settled purchase %s but the deliverable was NOT created; "
                    "staff must capture the deceased record manually",
                    outcome.payment_id, outcome.purchase_id,
                    exc_info=True,
                )


@lru_cache()
def get_event_bus() -> SettlementEvents:
    """Process-wide bus with the dashboard notifier and fulfillment subscribed."""
    from cemetery.services.dashboard_notifier import dashboard_notifier
    from cemetery.services.fulfillment_service import FulfillmentService

    bus = SettlementEvents()
    bus.subscribe_dashboard(dashboard_notifier.notify)
    bus.subscribe_redemption(FulfillmentService.handle_redemption)
    return bus
