"""
API Routers
"""
from .auth import router as auth_router
from .threats import router as threats_router
from .ioc import router as ioc_router
from .alerts import router as alerts_router
from .reports import router as reports_router

__all__ = ["auth_router", "threats_router", "ioc_router", "alerts_router", "reports_router"]
