"""HTTP routers."""

from .servers import router as servers_router
from .credentials import router as credentials_router
from .subscriptions import router as subscriptions_router
from .admin import router as admin_router

__all__ = ["servers_router", "credentials_router", "subscriptions_router", "admin_router"]
