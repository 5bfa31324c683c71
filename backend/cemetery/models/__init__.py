from cemetery.models.member import Member
from cemetery.models.catalog import Product, ProductCategory, YearPlan, PlanPrice, AgeBracket
from cemetery.models.purchase import Purchase, PurchaseKind, PurchaseStatus, PendingFulfillment
from cemetery.models.payment import Payment, PaymentMethod, PaymentStatus, DEFERRED_METHODS
from cemetery.models.deceased import DeceasedRecord
from cemetery.models.audit import AuditLog

__all__ = [
    "Member", "Product", "ProductCategory", "YearPlan", "PlanPrice", "AgeBracket",
    "Purchase", "PurchaseKind", "PurchaseStatus", "PendingFulfillment",
    "Payment", "PaymentMethod", "PaymentStatus", "DEFERRED_METHODS",
    "DeceasedRecord", "AuditLog",
]
