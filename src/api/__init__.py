"""API routers for the pet health document import service."""

from src.api.audit import router as audit_router
from src.api.documents import router as documents_router

__all__ = [
    "audit_router",
    "documents_router",
]
