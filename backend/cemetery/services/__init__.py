from cemetery.services.audit_service import AuditService
from cemetery.services.settlement import SettlementService
from cemetery.services.paynow_client import PaynowClient, get_paynow_client
from cemetery.services.purchase_service import PurchaseService
from cemetery.services.payment_service import PaymentService
from cemetery.services.redemption_service import RedemptionService
from cemetery.services.fulfillment_service import FulfillmentService
from cemetery.services.cleanup_service import CleanupService
from cemetery.services.reconciliation_service import reconcile_stuck_payments

__all__ = [
    "AuditService", "SettlementService", "PaynowClient", "get_paynow_client",
    "PurchaseService", "PaymentService", "RedemptionService", "FulfillmentService",
    "CleanupService", "reconcile_stuck_payments",
]
