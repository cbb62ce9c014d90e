"""Admin moderation routes.

Profile verification, the category catalogue, job moderation and the
subscription expiry sweep. Every endpoint requires ``users.is_admin``.
KYC moderation lives in ``routes/kyc.py``.
"""

from fastapi import APIRouter, Query
from postgrest.exceptions import APIError
from supabase import Client

from ..auth import AdminUser
from ..database import (
    JOB_SEEKER_PROFILES_TABLE,
    JOBS_TABLE,
    MAIN_CATEGORIES_TABLE,
    SUB_CATEGORIES_TABLE,
    WORKER_PROFILES_TABLE,
    Database,
    ensure_uuid,
    get_row,
    is_unique_violation,
    page_bounds,
    utc_now,
)
from ..errors import BadRequest, InternalError, NotFound
from ..logging_config import get_logger
from ..models import (
    ApiResponse,
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    JobOut,
    JobStatus,
    JobSeekerProfileOut,
    JobStatusUpdate,
    MaintenanceResult,
    Page,
    SubCategoryCreate,
    SubCategoryOut,
    SubCategoryUpdate,
    VerifyProfileRequest,
    WorkerProfileOut,
    ok,
)
from ..subscriptions import SubscriptionService
from .jobs import change_job_status, list_jobs

logger = get_logger("mento.admin")
router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# Helpers
# =============================================================================


async def _paginate(db: Client, table: str, page: int, limit: int, **filters) -> tuple[list[dict], int]:
    query = db.table(table).select("*", count="exact")
    for column, value in filters.items():
        if value is not None:
            query = query.eq(column, value)
    start, end = page_bounds(page, limit)
    result = query.order("created_at", desc=True).range(start, end).execute()
    return result.data or [], result.count or 0


async def _set_verified(db: Client, table: str, row_id: str, is_verified: bool) -> dict:
    result = (
        db.table(table)
        .update({"is_verified": is_verified, "updated_at": utc_now().isoformat()})
        .eq("id", ensure_uuid(row_id, "profile id"))
        .execute()
    )
    if not result.data:
        raise NotFound("Profile not found")
    return result.data[0]


def _insert_unique(db: Client, table: str, data: dict, what: str) -> dict:
    try:
        result = db.table(table).insert(data).execute()
    except APIError as e:
        if is_unique_violation(e):
            raise BadRequest(f"{what} with this name already exists")
        raise
    if not result.data:
        raise InternalError(f"Failed to create {what.lower()}")
    return result.data[0]


def _update_unique(db: Client, table: str, row_id: str, updates: dict, what: str) -> dict:
    if not updates:
        raise BadRequest("No fields to update")
    try:
        result = db.table(table).update(updates).eq("id", row_id).execute()
    except APIError as e:
        if is_unique_violation(e):
            raise BadRequest(f"{what} with this name already exists")
        raise
    if not result.data:
        raise NotFound(f"{what} not found")
    return result.data[0]


# =============================================================================
# Workers / Job Seekers
# =============================================================================


@router.get("/workers", response_model=ApiResponse[Page[WorkerProfileOut]])
async def list_workers(
    admin: AdminUser,
    db: Database,
    is_verified: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    rows, total = await _paginate(db, WORKER_PROFILES_TABLE, page, limit, is_verified=is_verified)
    return ok(Page.build([WorkerProfileOut.model_validate(r) for r in rows], total, page, limit))


@router.put("/workers/{worker_id}/verify", response_model=ApiResponse[WorkerProfileOut])
async def verify_worker(worker_id: str, body: VerifyProfileRequest, admin: AdminUser, db: Database):
    """Mark a worker verified so they appear in search."""
    row = await _set_verified(db, WORKER_PROFILES_TABLE, worker_id, body.is_verified)
    logger.info(f"Worker {worker_id} verified={body.is_verified} | admin={admin.user_id}")
    return ok(WorkerProfileOut.model_validate(row), message="Worker verification updated")


@router.get("/job-seekers", response_model=ApiResponse[Page[JobSeekerProfileOut]])
async def list_job_seekers(
    admin: AdminUser,
    db: Database,
    is_verified: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    rows, total = await _paginate(
        db, JOB_SEEKER_PROFILES_TABLE, page, limit, is_verified=is_verified
    )
    return ok(Page.build([JobSeekerProfileOut.model_validate(r) for r in rows], total, page, limit))


@router.put("/job-seekers/{profile_id}/verify", response_model=ApiResponse[JobSeekerProfileOut])
async def verify_job_seeker(
    profile_id: str, body: VerifyProfileRequest, admin: AdminUser, db: Database
):
    row = await _set_verified(db, JOB_SEEKER_PROFILES_TABLE, profile_id, body.is_verified)
    logger.info(f"Job seeker {profile_id} verified={body.is_verified} | admin={admin.user_id}")
    return ok(JobSeekerProfileOut.model_validate(row), message="Job seeker verification updated")


# =============================================================================
# Categories
# =============================================================================


@router.post("/categories", response_model=ApiResponse[CategoryOut])
async def create_category(body: CategoryCreate, admin: AdminUser, db: Database):
    now = utc_now().isoformat()
    row = _insert_unique(
        db,
        MAIN_CATEGORIES_TABLE,
        {**body.model_dump(), "is_active": True, "created_at": now, "updated_at": now},
        "Category",
    )
    return ok(CategoryOut.model_validate(row), message="Category created")


@router.put("/categories/{category_id}", response_model=ApiResponse[CategoryOut])
async def update_category(category_id: str, body: CategoryUpdate, admin: AdminUser, db: Database):
    updates = body.model_dump(exclude_unset=True)
    if updates:
        updates["updated_at"] = utc_now().isoformat()
    row = _update_unique(
        db, MAIN_CATEGORIES_TABLE, ensure_uuid(category_id, "category id"), updates, "Category"
    )
    return ok(CategoryOut.model_validate(row), message="Category updated")


@router.delete("/categories/{category_id}", response_model=ApiResponse[None])
async def delete_category(category_id: str, admin: AdminUser, db: Database):
    """Delete a category. Refused while it still has subcategories."""
    category_id = ensure_uuid(category_id, "category id")
    if not await get_row(db, MAIN_CATEGORIES_TABLE, category_id):
        raise NotFound("Category not found")
    children = (
        db.table(SUB_CATEGORIES_TABLE)
        .select("id")
        .eq("main_category_id", category_id)
        .limit(1)
        .execute()
    )
    if children.data:
        raise BadRequest("Delete the category's subcategories first")
    db.table(MAIN_CATEGORIES_TABLE).delete().eq("id", category_id).execute()
    return ok(message="Category deleted")


@router.post("/subcategories", response_model=ApiResponse[SubCategoryOut])
async def create_subcategory(body: SubCategoryCreate, admin: AdminUser, db: Database):
    parent_id = ensure_uuid(body.main_category_id, "category id")
    if not await get_row(db, MAIN_CATEGORIES_TABLE, parent_id):
        raise NotFound("Category not found")
    now = utc_now().isoformat()
    row = _insert_unique(
        db,
        SUB_CATEGORIES_TABLE,
        {
            **body.model_dump(),
            "main_category_id": parent_id,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        },
        "Subcategory",
    )
    return ok(SubCategoryOut.model_validate(row), message="Subcategory created")


@router.put("/subcategories/{subcategory_id}", response_model=ApiResponse[SubCategoryOut])
async def update_subcategory(
    subcategory_id: str, body: SubCategoryUpdate, admin: AdminUser, db: Database
):
    updates = body.model_dump(exclude_unset=True)
    if updates:
        updates["updated_at"] = utc_now().isoformat()
    row = _update_unique(
        db,
        SUB_CATEGORIES_TABLE,
        ensure_uuid(subcategory_id, "subcategory id"),
        updates,
        "Subcategory",
    )
    return ok(SubCategoryOut.model_validate(row), message="Subcategory updated")


@router.delete("/subcategories/{subcategory_id}", response_model=ApiResponse[None])
async def delete_subcategory(subcategory_id: str, admin: AdminUser, db: Database):
    result = (
        db.table(SUB_CATEGORIES_TABLE)
        .delete()
        .eq("id", ensure_uuid(subcategory_id, "subcategory id"))
        .execute()
    )
    if not result.data:
        raise NotFound("Subcategory not found")
    return ok(message="Subcategory deleted")


# =============================================================================
# Jobs
# =============================================================================


@router.get("/jobs", response_model=ApiResponse[Page[JobOut]])
async def list_all_jobs(
    admin: AdminUser,
    db: Database,
    status: JobStatus | None = None,
    include_deleted: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    jobs, total = await list_jobs(
        db,
        status_filter=status.value if status else None,
        active_only=not include_deleted,
        page=page,
        limit=limit,
    )
    return ok(Page.build([JobOut.model_validate(j) for j in jobs], total, page, limit))


@router.put("/jobs/{job_id}/status", response_model=ApiResponse[JobOut])
async def moderate_job_status(job_id: str, body: JobStatusUpdate, admin: AdminUser, db: Database):
    """Move a job along its lifecycle on the poster's behalf."""
    job = await get_row(db, JOBS_TABLE, ensure_uuid(job_id, "job id"))
    if not job:
        raise NotFound("Job not found")
    updated = await change_job_status(db, job, body.status.value)
    logger.info(f"Admin {admin.user_id} moved job {job['id']} to {body.status.value}")
    return ok(JobOut.model_validate(updated), message="Job status updated")


@router.delete("/jobs/{job_id}", response_model=ApiResponse[None])
async def remove_job(job_id: str, admin: AdminUser, db: Database):
    """Hide a job from listings."""
    result = (
        db.table(JOBS_TABLE)
        .update({"is_active": False, "updated_at": utc_now().isoformat()})
        .eq("id", ensure_uuid(job_id, "job id"))
        .execute()
    )
    if not result.data:
        raise NotFound("Job not found")
    logger.info(f"Admin {admin.user_id} removed job {job_id}")
    return ok(message="Job removed")


# =============================================================================
# Maintenance
# =============================================================================


@router.post("/maintenance/expire-subscriptions", response_model=ApiResponse[MaintenanceResult])
async def expire_subscriptions(
    admin: AdminUser,
    db: Database,
    dry_run: bool = Query(False, description="Report what would expire without changing anything"),
):
    """
    Expire active subscriptions whose period has ended.

    Reads already treat lapsed subscriptions as expired; this sweep brings
    the stored status (and profile tiers) in line. Call it periodically.
    """
    ids = await SubscriptionService.expire_overdue_subscriptions(db, dry_run=dry_run)
    logger.info(f"Subscription sweep | admin={admin.user_id} | dry_run={dry_run} | expired={len(ids)}")
    return ok(MaintenanceResult(dry_run=dry_run, expired=len(ids), subscription_ids=ids))
