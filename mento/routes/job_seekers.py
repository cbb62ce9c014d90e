"""Job seeker profile and search routes.

Profiles carry contact details, so browsing them requires sign-in.
"""

from fastapi import APIRouter, Query
from postgrest.exceptions import APIError
from supabase import Client

from ..auth import CurrentUser, JobSeekerSubscriber
from ..database import (
    JOB_SEEKER_PROFILES_TABLE,
    Database,
    ensure_uuid,
    fetch_all_rows,
    get_row,
    increment_counter,
    is_unique_violation,
    utc_now,
)
from ..errors import BadRequest, InternalError, NotFound
from ..logging_config import get_logger
from ..models import (
    ApiResponse,
    JobSeekerProfileCreate,
    JobSeekerProfileOut,
    JobSeekerProfileUpdate,
    Page,
    ok,
)
from ..subscriptions import plan_tier_rank

logger = get_logger("mento.job_seekers")
router = APIRouter(prefix="/job-seekers", tags=["job-seekers"])


async def get_profile_by_user(db: Client, user_id: str) -> dict | None:
    result = (
        db.table(JOB_SEEKER_PROFILES_TABLE).select("*").eq("user_id", user_id).limit(1).execute()
    )
    return result.data[0] if result.data else None


async def _own_profile(db: Client, user_id: str) -> dict:
    profile = await get_profile_by_user(db, user_id)
    if not profile or not profile.get("is_active", True):
        raise NotFound("Job seeker profile not found")
    return profile


def _search_rank(row: dict) -> tuple:
    # Sorted in reverse: higher tier, more views, newer first
    return (
        plan_tier_rank(row.get("subscription_plan")),
        int(row.get("profile_views") or 0),
        row.get("created_at") or "",
    )


@router.post("/profile", response_model=ApiResponse[JobSeekerProfileOut])
async def create_profile(body: JobSeekerProfileCreate, claim: JobSeekerSubscriber, db: Database):
    """Create the caller's job seeker profile (KYC + active job seeker plan)."""
    existing = await get_profile_by_user(db, claim.user_id)
    if existing:
        raise BadRequest("Job seeker profile already exists")

    now = utc_now().isoformat()
    data = {
        **body.model_dump(),
        "user_id": claim.user_id,
        "phone": claim.kyc.auth.mobile,
        "subscription_plan": claim.subscription.plan_name,
        "is_verified": False,
        "is_active": True,
        "profile_views": 0,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = db.table(JOB_SEEKER_PROFILES_TABLE).insert(data).execute()
    except APIError as e:
        if is_unique_violation(e):
            raise BadRequest("Job seeker profile already exists")
        raise
    if not result.data:
        raise InternalError("Failed to create job seeker profile")

    logger.info(f"Job seeker profile created | user={claim.user_id}")
    return ok(
        JobSeekerProfileOut.model_validate(result.data[0]),
        message="Job seeker profile created successfully",
    )


@router.get("/profile", response_model=ApiResponse[JobSeekerProfileOut])
async def get_own_profile(auth: CurrentUser, db: Database):
    return ok(JobSeekerProfileOut.model_validate(await _own_profile(db, auth.user_id)))


@router.put("/profile", response_model=ApiResponse[JobSeekerProfileOut])
async def update_profile(body: JobSeekerProfileUpdate, auth: CurrentUser, db: Database):
    profile = await _own_profile(db, auth.user_id)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise BadRequest("No fields to update")

    low = updates.get("expected_salary_min", profile.get("expected_salary_min"))
    high = updates.get("expected_salary_max", profile.get("expected_salary_max"))
    if low is not None and high is not None and low > high:
        raise BadRequest("expected_salary_min cannot exceed expected_salary_max")

    updates["updated_at"] = utc_now().isoformat()
    result = db.table(JOB_SEEKER_PROFILES_TABLE).update(updates).eq("id", profile["id"]).execute()
    if not result.data:
        raise NotFound("Job seeker profile not found")
    return ok(
        JobSeekerProfileOut.model_validate(result.data[0]),
        message="Job seeker profile updated successfully",
    )


@router.delete("/profile", response_model=ApiResponse[None])
async def deactivate_profile(auth: CurrentUser, db: Database):
    """Hide the profile from search."""
    profile = await _own_profile(db, auth.user_id)
    db.table(JOB_SEEKER_PROFILES_TABLE).update(
        {"is_active": False, "updated_at": utc_now().isoformat()}
    ).eq("id", profile["id"]).execute()
    return ok(message="Job seeker profile deactivated")


@router.get("/search", response_model=ApiResponse[Page[JobSeekerProfileOut]])
async def search_job_seekers(
    auth: CurrentUser,
    db: Database,
    skills: list[str] | None = Query(None),
    category: str | None = None,
    job_type: str | None = None,
    location: str | None = None,
    min_experience: int | None = Query(None, ge=0),
    max_experience: int | None = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Active job seekers, ordered by plan tier, profile views and recency."""
    if min_experience is not None and max_experience is not None and min_experience > max_experience:
        raise BadRequest("min_experience cannot exceed max_experience")

    def _query():
        query = db.table(JOB_SEEKER_PROFILES_TABLE).select("*").eq("is_active", True)
        if skills:
            query = query.overlaps("skills", skills)
        if category:
            query = query.contains("categories", [category])
        if job_type:
            query = query.contains("preferred_job_types", [job_type])
        if location:
            query = query.contains("preferred_locations", [location])
        if min_experience is not None:
            query = query.gte("experience_years", min_experience)
        if max_experience is not None:
            query = query.lte("experience_years", max_experience)
        return query

    rows = sorted(fetch_all_rows(_query), key=_search_rank, reverse=True)
    start = (page - 1) * limit
    items = [JobSeekerProfileOut.model_validate(row) for row in rows[start : start + limit]]
    return ok(Page.build(items, len(rows), page, limit))


@router.get("/profile/{profile_id}", response_model=ApiResponse[JobSeekerProfileOut])
async def get_profile(profile_id: str, auth: CurrentUser, db: Database):
    """View a job seeker profile; counts a view unless it is the owner's."""
    profile_id = ensure_uuid(profile_id, "profile id")
    profile = await get_row(db, JOB_SEEKER_PROFILES_TABLE, profile_id)
    if not profile or not profile.get("is_active", True):
        raise NotFound("Job seeker profile not found")
    if profile["user_id"] != auth.user_id:
        views = await increment_counter(db, JOB_SEEKER_PROFILES_TABLE, profile_id, "profile_views")
        if views is not None:
            profile["profile_views"] = views
    return ok(JobSeekerProfileOut.model_validate(profile))
