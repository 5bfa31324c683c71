"""
Background job wiring: job registration and per-run session handling.
"""
import logging
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from cemetery.config import Settings
from cemetery.jobs.scheduler import SettlementScheduler
from cemetery.models import Purchase, PurchaseStatus


def _settings(**overrides):
    values = {"CLEANUP_INTERVAL_MINUTES": 60, "RECONCILE_INTERVAL_MINUTES": 10}
    values.update(overrides)
    return Settings(**values)


class TestSettlementScheduler:

    def test_jobs_registered(self, session_factory, gateway, events):
        scheduler = SettlementScheduler(session_factory, gateway, events, _settings(RECONCILE_INTERVAL_MINUTES=5))

        scheduler.setup_jobs()

        jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}
        assert set(jobs) == {"checkout_cleanup", "payment_reconciliation"}
        assert jobs["payment_reconciliation"].trigger.interval == timedelta(minutes=5)
        assert jobs["checkout_cleanup"].trigger.interval == timedelta(minutes=60)

    def test_cleanup_run_uses_its_own_session(self, session_factory, gateway, events, member, plot, make_purchase):
        purchase = make_purchase(member, plot, "100.00", created_at=datetime.utcnow() - timedelta(hours=30))

        SettlementScheduler(session_factory, gateway, events, _settings()).run_cleanup()

        with session_factory() as s:
            assert s.get(Purchase, purchase.id).status == PurchaseStatus.CANCELLED
        assert "cleanup_sweep" in events.dashboard_reasons

    def test_failed_run_is_logged_and_session_closed(self, gateway, events, caplog):
        session = MagicMock()
        session.query.side_effect = RuntimeError("database is locked")
        scheduler = SettlementScheduler(lambda: session, gateway, events, _settings())

        with caplog.at_level(logging.ERROR, logger="cemetery.jobs.scheduler"):
            scheduler.run_reconciliation()

        assert "Payment reconciliation failed" in caplog.text
        session.close.assert_called_once()

    def test_shutdown_before_start_is_harmless(self, session_factory, gateway, events):
        SettlementScheduler(session_factory, gateway, events, _settings()).shutdown()
