# Consolidated route imports
from .admin import router as admin_router
from .checkout import router as checkout_router
from .health import router as health_router
from .orders import router as orders_router

# Export all routers for easy importing
__all__ = [
    "admin_router",
    "checkout_router",
    "health_router",
    "orders_router",
]
