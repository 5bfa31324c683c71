from cemetery.routes.purchases import router as purchases_router
from cemetery.routes.payments import router as payments_router
from cemetery.routes.staff import router as staff_router
from cemetery.routes.admin import router as admin_router
from cemetery.routes.dashboard import router as dashboard_router

__all__ = ["purchases_router", "payments_router", "staff_router", "admin_router", "dashboard_router"]
