"""Job posting routes.

Posting requires KYC. Jobs move open -> in_progress -> completed, and can
be cancelled from either open or in_progress. Deleting a job only hides it.
"""

from fastapi import APIRouter, Query, Request
from postgrest.exceptions import APIError
from supabase import Client

from ..auth import CurrentUser, KycUser
from ..database import (
    JOB_APPLICATIONS_TABLE,
    JOBS_TABLE,
    Database,
    ensure_uuid,
    get_row,
    increment_counter,
    is_unique_violation,
    page_bounds,
    utc_now,
)
from ..errors import BadRequest, Forbidden, InternalError, NotFound
from ..logging_config import get_logger
from ..models import (
    ApiResponse,
    JobApplicationCreate,
    JobApplicationOut,
    JobCreate,
    JobOut,
    JobStatus,
    JobStatusUpdate,
    Page,
    ok,
)
from ..rate_limit import limiter

logger = get_logger("mento.jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])


# Valid state transitions
VALID_TRANSITIONS = {
    "open": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled"},
}


def can_transition(from_status: str, to_status: str) -> bool:
    """Check if a status transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


# =============================================================================
# Database Operations
# =============================================================================


async def get_active_job(db: Client, job_id: str) -> dict:
    job = await get_row(db, JOBS_TABLE, ensure_uuid(job_id, "job id"))
    if not job or not job.get("is_active", True):
        raise NotFound("Job not found")
    return job


async def list_jobs(
    db: Client,
    status_filter: str | None = None,
    category: str | None = None,
    city: str | None = None,
    posted_by: str | None = None,
    active_only: bool = True,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[dict], int]:
    """List jobs with optional filters, newest first."""
    query = db.table(JOBS_TABLE).select("*", count="exact")
    if active_only:
        query = query.eq("is_active", True)
    if status_filter:
        query = query.eq("status", status_filter)
    if category:
        query = query.eq("category", category)
    if city:
        query = query.eq("city", city)
    if posted_by:
        query = query.eq("posted_by", posted_by)

    start, end = page_bounds(page, limit)
    result = query.order("created_at", desc=True).range(start, end).execute()
    return result.data or [], result.count or 0


async def atomic_update_job_status(
    db: Client,
    job_id: str,
    expected_status: str,
    new_status: str,
) -> tuple[dict | None, str | None]:
    """Atomically update job status with optimistic locking.

    Returns:
        (job, None) on success, (None, "not_found") if the job is gone,
        (None, "conflict") if its status changed underneath us.
    """
    result = (
        db.table(JOBS_TABLE)
        .update({"status": new_status, "updated_at": utc_now().isoformat()})
        .eq("id", job_id)
        .eq("status", expected_status)
        .execute()
    )
    if result.data:
        return result.data[0], None

    job = await get_row(db, JOBS_TABLE, job_id)
    if not job:
        return None, "not_found"

    logger.warning(
        f"Race condition detected on job {job_id}: "
        f"expected status '{expected_status}', found '{job['status']}'"
    )
    return None, "conflict"


async def change_job_status(db: Client, job: dict, new_status: str) -> dict:
    """Validate and apply a transition, mapping failures to API errors."""
    if not can_transition(job["status"], new_status):
        raise BadRequest(f"Cannot change job from {job['status']} to {new_status}")

    updated, error = await atomic_update_job_status(db, job["id"], job["status"], new_status)
    if error == "not_found":
        raise NotFound("Job not found")
    if error == "conflict":
        raise BadRequest("Job status was modified by another request. Please refresh and try again.")
    return updated


# =============================================================================
# Routes
# =============================================================================


@router.post("", response_model=ApiResponse[JobOut])
@limiter.limit("20/minute")
async def create_job(request: Request, body: JobCreate, claim: KycUser, db: Database):
    """Post a job. Requires KYC (approved or submitted)."""
    now = utc_now().isoformat()
    data = {
        **body.model_dump(),
        "posted_by": claim.user_id,
        "status": JobStatus.open.value,
        "is_active": True,
        "views": 0,
        "applications_count": 0,
        "created_at": now,
        "updated_at": now,
    }
    result = db.table(JOBS_TABLE).insert(data).execute()
    if not result.data:
        raise InternalError("Failed to create job")

    logger.info(f"Job created | id={result.data[0]['id']} | poster={claim.user_id}")
    return ok(JobOut.model_validate(result.data[0]), message="Job posted successfully")


@router.get("", response_model=ApiResponse[Page[JobOut]])
async def browse_jobs(
    db: Database,
    status: JobStatus | None = JobStatus.open,
    category: str | None = None,
    city: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Browse active jobs; open jobs by default."""
    jobs, total = await list_jobs(
        db,
        status_filter=status.value if status else None,
        category=category,
        city=city,
        page=page,
        limit=limit,
    )
    return ok(Page.build([JobOut.model_validate(j) for j in jobs], total, page, limit))


@router.get("/mine", response_model=ApiResponse[Page[JobOut]])
async def my_jobs(
    auth: CurrentUser,
    db: Database,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Jobs posted by the caller, in any status."""
    jobs, total = await list_jobs(db, posted_by=auth.user_id, page=page, limit=limit)
    return ok(Page.build([JobOut.model_validate(j) for j in jobs], total, page, limit))


@router.get("/{job_id}", response_model=ApiResponse[JobOut])
async def get_job(job_id: str, db: Database):
    """Job details; counts a view."""
    job = await get_active_job(db, job_id)
    views = await increment_counter(db, JOBS_TABLE, job["id"], "views")
    if views is not None:
        job["views"] = views
    return ok(JobOut.model_validate(job))


@router.put("/{job_id}/status", response_model=ApiResponse[JobOut])
async def update_job_status(job_id: str, body: JobStatusUpdate, auth: CurrentUser, db: Database):
    """Advance or cancel a job. Only the poster can do this."""
    job = await get_active_job(db, job_id)
    if job["posted_by"] != auth.user_id:
        raise Forbidden("Only the job poster can change its status")

    updated = await change_job_status(db, job, body.status.value)
    logger.info(f"Job {job['id']} {job['status']} -> {body.status.value} | by={auth.user_id}")
    return ok(JobOut.model_validate(updated), message="Job status updated")


@router.post("/{job_id}/apply", response_model=ApiResponse[JobApplicationOut])
@limiter.limit("30/minute")
async def apply_to_job(
    request: Request,
    job_id: str,
    body: JobApplicationCreate,
    auth: CurrentUser,
    db: Database,
):
    """Apply to an open job."""
    job = await get_active_job(db, job_id)
    if job["posted_by"] == auth.user_id:
        raise BadRequest("You cannot apply to your own job")
    if job["status"] != JobStatus.open.value:
        raise BadRequest("This job is no longer accepting applications")

    data = {
        "job_id": job["id"],
        "applicant_id": auth.user_id,
        "cover_letter": body.cover_letter,
        "created_at": utc_now().isoformat(),
    }
    try:
        result = db.table(JOB_APPLICATIONS_TABLE).insert(data).execute()
    except APIError as e:
        if is_unique_violation(e):
            raise BadRequest("You have already applied to this job")
        raise
    if not result.data:
        raise InternalError("Failed to apply to job")

    await increment_counter(db, JOBS_TABLE, job["id"], "applications_count")
    return ok(JobApplicationOut.model_validate(result.data[0]), message="Application submitted")


@router.get("/{job_id}/applications", response_model=ApiResponse[list[JobApplicationOut]])
async def list_applications(job_id: str, auth: CurrentUser, db: Database):
    """Applications for one of the caller's jobs."""
    job = await get_active_job(db, job_id)
    if job["posted_by"] != auth.user_id:
        raise Forbidden("Only the job poster can view applications")

    result = (
        db.table(JOB_APPLICATIONS_TABLE)
        .select("*")
        .eq("job_id", job["id"])
        .order("created_at", desc=True)
        .execute()
    )
    return ok([JobApplicationOut.model_validate(row) for row in result.data or []])


@router.delete("/{job_id}", response_model=ApiResponse[None])
async def delete_job(job_id: str, auth: CurrentUser, db: Database):
    """Hide a job. Only the poster can do this."""
    job = await get_active_job(db, job_id)
    if job["posted_by"] != auth.user_id:
        raise Forbidden("Only the job poster can delete it")

    db.table(JOBS_TABLE).update({"is_active": False, "updated_at": utc_now().isoformat()}).eq(
        "id", job["id"]
    ).execute()
    return ok(message="Job deleted successfully")
