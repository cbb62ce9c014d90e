"""Database utilities for Supabase integration."""

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Callable

from dateutil import parser as date_parser
from fastapi import Depends
from postgrest.exceptions import APIError

from supabase import Client, create_client
from supabase.lib.client_options import ClientOptions

from .config import Settings, get_settings
from .errors import BadRequest

_supabase_client: Client | None = None

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"

# Matches PostgREST's default db-max-rows; a page shorter than this is the last
FETCH_PAGE_SIZE = 1000


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        options = ClientOptions(postgrest_client_timeout=settings.database_timeout_seconds)
        _supabase_client = create_client(
            settings.supabase_url, settings.supabase_secret_key, options=options
        )
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names
# =============================================================================

USERS_TABLE = "users"
KYC_TABLE = "kyc_documents"
SUBSCRIPTIONS_TABLE = "subscriptions"
WORKER_PROFILES_TABLE = "worker_profiles"
JOB_SEEKER_PROFILES_TABLE = "job_seeker_profiles"
REVIEWS_TABLE = "reviews"
JOBS_TABLE = "jobs"
JOB_APPLICATIONS_TABLE = "job_applications"
MAIN_CATEGORIES_TABLE = "main_categories"
SUB_CATEGORIES_TABLE = "sub_categories"
SERVICES_TABLE = "services"
RATE_LIMITS_TABLE = "rate_limits"
OTP_REQUESTS_TABLE = "otp_requests"
OTP_CODES_TABLE = "otp_codes"


# =============================================================================
# Helpers
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp, assuming UTC when no offset is present."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = date_parser.isoparse(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_unique_violation(exc: Exception) -> bool:
    """True if a PostgREST error was raised by a unique constraint."""
    return isinstance(exc, APIError) and getattr(exc, "code", None) == UNIQUE_VIOLATION


def ensure_uuid(value: str, label: str = "id") -> str:
    """Validate an id from the path or body; ``BadRequest`` when malformed."""
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        raise BadRequest(f"Invalid {label} format")


def page_bounds(page: int, limit: int) -> tuple[int, int]:
    """Translate a 1-based page into an inclusive PostgREST range."""
    start = (page - 1) * limit
    return start, start + limit - 1


def fetch_all_rows(build_query: Callable[[], Any], page_size: int = FETCH_PAGE_SIZE) -> list[dict]:
    """Read every row a filtered select matches, one ``range`` page at a time.

    ``build_query`` must return a fresh filtered select on each call. Pages
    are ordered by id so they neither overlap nor skip rows.
    """
    rows: list[dict] = []
    start = 0
    while True:
        batch = build_query().order("id").range(start, start + page_size - 1).execute().data or []
        rows.extend(batch)
        if len(batch) < page_size:
            return rows
        start += page_size


async def get_row(db: Client, table: str, row_id: str) -> dict | None:
    """Fetch a single row by primary key."""
    result = db.table(table).select("*").eq("id", row_id).limit(1).execute()
    return result.data[0] if result.data else None


async def increment_counter(
    db: Client,
    table: str,
    row_id: str,
    column: str,
    max_attempts: int = 3,
) -> int | None:
    """Increment an integer column with a compare-and-set on its old value.

    Returns the new value, or None if the row is gone or every attempt lost
    the race. Used for view and application counters where a dropped
    increment is tolerable.
    """
    for _ in range(max_attempts):
        row = await get_row(db, table, row_id)
        if row is None:
            return None
        current = row.get(column) or 0
        result = (
            db.table(table)
            .update({column: current + 1})
            .eq("id", row_id)
            .eq(column, current)
            .execute()
        )
        if result.data:
            return current + 1
    return None


# =============================================================================
# User Operations
# =============================================================================

async def get_user(db: Client, user_id: str) -> dict | None:
    """Get a user by ID."""
    return await get_row(db, USERS_TABLE, user_id)


async def get_user_by_mobile(db: Client, mobile: str) -> dict | None:
    """Get a user by mobile number."""
    result = db.table(USERS_TABLE).select("*").eq("mobile", mobile).limit(1).execute()
    return result.data[0] if result.data else None


async def create_user(db: Client, mobile: str, email: str | None = None) -> dict:
    """Create a user on first OTP verification."""
    now = utc_now().isoformat()
    data = {
        "mobile": mobile,
        "email": email,
        "kyc_status": "pending",
        "is_active": True,
        "is_admin": False,
        "last_login_at": now,
        "created_at": now,
        "updated_at": now,
    }
    result = db.table(USERS_TABLE).insert(data).execute()
    return result.data[0] if result.data else None


async def update_user(db: Client, user_id: str, updates: dict) -> dict | None:
    """Apply a partial update to a user and return the new row."""
    updates = {**updates, "updated_at": utc_now().isoformat()}
    result = db.table(USERS_TABLE).update(updates).eq("id", user_id).execute()
    return result.data[0] if result.data else None


async def set_user_kyc_status(db: Client, user_id: str, kyc_status: str) -> None:
    """Mirror the latest KYC status onto the user row."""
    await update_user(db, user_id, {"kyc_status": kyc_status})


async def deactivate_user(db: Client, user_id: str) -> None:
    """Soft delete: the row stays, the account can no longer sign in."""
    await update_user(db, user_id, {"is_active": False, "fcm_token": None})
