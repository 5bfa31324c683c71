"""
Background jobs — hourly checkout cleanup and stuck-payment reconciliation.

Each run opens its own session from the factory it was given and closes it;
a failing run is logged and the next one proceeds normally.
"""
import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from cemetery.config import Settings, get_settings
from cemetery.events import SettlementEvents, get_event_bus
from cemetery.services.cleanup_service import CleanupService
from cemetery.services.paynow_client import PaynowClient, get_paynow_client
from cemetery.services.reconciliation_service import reconcile_stuck_payments

logger = logging.getLogger(__name__)


class SettlementScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        gateway: Optional[PaynowClient] = None,
        events: Optional[SettlementEvents] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway or get_paynow_client()
        self.events = events or get_event_bus()
        self.settings = settings or get_settings()
        self.scheduler = BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 120},
            timezone="UTC",
        )

    def setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.run_cleanup,
            trigger=IntervalTrigger(minutes=self.settings.CLEANUP_INTERVAL_MINUTES),
            id="checkout_cleanup",
            name="Expire Abandoned Checkout Sessions",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_reconciliation,
            trigger=IntervalTrigger(minutes=self.settings.RECONCILE_INTERVAL_MINUTES),
            id="payment_reconciliation",
            name="Reconcile Stuck Gateway Payments",
            replace_existing=True,
        )

    def start(self) -> None:
        self.setup_jobs()
        self.scheduler.start()
        logger.info(
            "Scheduler started: cleanup every %d min, reconciliation every %d min",
            self.settings.CLEANUP_INTERVAL_MINUTES, self.settings.RECONCILE_INTERVAL_MINUTES,
        )

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def run_cleanup(self) -> None:
        db = self.session_factory()
        try:
            CleanupService(db, self.events).run_cleanup_sweep()
        except Exception:
            logger.exception("Cleanup sweep failed")
        finally:
            db.close()

    def run_reconciliation(self) -> None:
        db = self.session_factory()
        try:
            reconcile_stuck_payments(db, self.gateway, self.events)
        except Exception:
            logger.exception("Payment reconciliation failed")
        finally:
            db.close()
