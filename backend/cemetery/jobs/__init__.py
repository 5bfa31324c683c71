from cemetery.jobs.scheduler import SettlementScheduler

__all__ = ["SettlementScheduler"]
