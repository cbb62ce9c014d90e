"""API routes."""

from .admin import router as admin_router
from .auth import router as auth_router
from .catalog import router as catalog_router
from .job_seekers import router as job_seekers_router
from .jobs import router as jobs_router
from .kyc import router as kyc_router
from .reviews import router as reviews_router
from .subscriptions import router as subscriptions_router
from .users import router as users_router
from .workers import router as workers_router

__all__ = [
    "admin_router",
    "auth_router",
    "catalog_router",
    "job_seekers_router",
    "jobs_router",
    "kyc_router",
    "reviews_router",
    "subscriptions_router",
    "users_router",
    "workers_router",
]
