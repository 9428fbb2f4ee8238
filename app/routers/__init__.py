# app/routers/__init__.py

from .auth.auth_router import router as auth_router
from .auth.activity_router import router as activity_router

from .billing.quotation_router import router as quotation_router
from .billing.approval_router import router as approval_router
from .billing.revision_router import router as revision_router


__all__ = [
"auth_router",
"activity_router",

"quotation_router",
"approval_router",
"revision_router",
]
