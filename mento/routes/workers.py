"""Worker profile, search and proximity routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from postgrest.exceptions import APIError
from supabase import Client

from ..auth import CurrentUser, WorkerSubscriber
from ..config import Settings, get_settings
from ..database import (
    WORKER_PROFILES_TABLE,
    Database,
    ensure_uuid,
    fetch_all_rows,
    get_row,
    increment_counter,
    is_unique_violation,
    utc_now,
)
from ..errors import BadRequest, InternalError, NotFound
from ..geo import NearbyQuery, find_nearby_workers, to_geojson_point, validate_coordinates
from ..logging_config import get_logger
from ..models import (
    ApiResponse,
    LocationUpdate,
    Page,
    WorkerProfileCreate,
    WorkerProfileOut,
    WorkerProfileUpdate,
    ok,
)
from ..subscriptions import plan_tier_rank

logger = get_logger("mento.workers")
router = APIRouter(prefix="/workers", tags=["workers"])


# =============================================================================
# Database Operations
# =============================================================================


async def get_worker_by_user(db: Client, user_id: str) -> dict | None:
    result = db.table(WORKER_PROFILES_TABLE).select("*").eq("user_id", user_id).limit(1).execute()
    return result.data[0] if result.data else None


async def get_worker(db: Client, worker_id: str) -> dict | None:
    return await get_row(db, WORKER_PROFILES_TABLE, worker_id)


async def update_worker(db: Client, worker_id: str, updates: dict) -> dict | None:
    updates = {**updates, "updated_at": utc_now().isoformat()}
    result = db.table(WORKER_PROFILES_TABLE).update(updates).eq("id", worker_id).execute()
    return result.data[0] if result.data else None


def search_rank(row: dict) -> tuple:
    """Plan tier, then rating, then review count; all descending."""
    return (
        -plan_tier_rank(row.get("subscription_plan")),
        -float(row.get("rating") or 0.0),
        -int(row.get("total_reviews") or 0),
    )


async def _own_worker(db: Client, user_id: str) -> dict:
    worker = await get_worker_by_user(db, user_id)
    if not worker:
        raise NotFound("Worker profile not found")
    return worker


# =============================================================================
# Routes
# =============================================================================


@router.post("/profile", response_model=ApiResponse[WorkerProfileOut])
async def create_profile(body: WorkerProfileCreate, claim: WorkerSubscriber, db: Database):
    """
    Create the caller's worker profile.

    Requires KYC (approved or submitted) and an active worker subscription.
    The profile starts unverified and takes its tier from the subscription.
    """
    if await get_worker_by_user(db, claim.user_id):
        raise BadRequest("Worker profile already exists")

    now = utc_now().isoformat()
    data = {
        **body.model_dump(),
        "user_id": claim.user_id,
        "subscription_plan": claim.subscription.plan_name,
        "is_verified": False,
        "rating": 0.0,
        "total_reviews": 0,
        "profile_views": 0,
        "location": None,
        "latitude": None,
        "longitude": None,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = db.table(WORKER_PROFILES_TABLE).insert(data).execute()
    except APIError as e:
        if is_unique_violation(e):
            raise BadRequest("Worker profile already exists")
        raise
    if not result.data:
        raise InternalError("Failed to create worker profile")

    logger.info(f"Worker profile created | user={claim.user_id} | plan={claim.subscription.plan_name}")
    return ok(WorkerProfileOut.model_validate(result.data[0]), message="Worker profile created successfully")


@router.get("/profile", response_model=ApiResponse[WorkerProfileOut])
async def get_own_profile(auth: CurrentUser, db: Database):
    return ok(WorkerProfileOut.model_validate(await _own_worker(db, auth.user_id)))


@router.put("/profile", response_model=ApiResponse[WorkerProfileOut])
async def update_profile(body: WorkerProfileUpdate, auth: CurrentUser, db: Database):
    worker = await _own_worker(db, auth.user_id)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise BadRequest("No fields to update")
    updated = await update_worker(db, worker["id"], updates)
    if not updated:
        raise NotFound("Worker profile not found")
    return ok(WorkerProfileOut.model_validate(updated), message="Worker profile updated successfully")


@router.put("/location", response_model=ApiResponse[WorkerProfileOut])
async def update_location(body: LocationUpdate, auth: CurrentUser, db: Database):
    """Set the worker's position used by the nearby search."""
    validate_coordinates(body.latitude, body.longitude)
    worker = await _own_worker(db, auth.user_id)
    updated = await update_worker(
        db,
        worker["id"],
        {
            "location": to_geojson_point(body.latitude, body.longitude),
            "latitude": body.latitude,
            "longitude": body.longitude,
        },
    )
    if not updated:
        raise NotFound("Worker profile not found")
    return ok(WorkerProfileOut.model_validate(updated), message="Location updated successfully")


@router.get("/search", response_model=ApiResponse[Page[WorkerProfileOut]])
async def search_workers(
    db: Database,
    category: str | None = None,
    subcategory: str | None = None,
    city: str | None = Query(None, description="Matches a service area"),
    min_rating: float | None = Query(None, ge=0, le=5),
    available_only: bool = True,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Verified workers, ordered by plan tier, rating and review count."""

    def _query():
        query = db.table(WORKER_PROFILES_TABLE).select("*").eq("is_verified", True)
        if available_only:
            query = query.eq("is_available", True)
        if category:
            query = query.contains("categories", [category])
        if subcategory:
            query = query.contains("subcategories", [subcategory])
        if city:
            query = query.contains("service_areas", [city])
        if min_rating is not None:
            query = query.gte("rating", min_rating)
        return query

    # Plan names do not sort as text, so ranking happens over the full match set
    rows = sorted(fetch_all_rows(_query), key=search_rank)
    start = (page - 1) * limit
    items = [WorkerProfileOut.model_validate(row) for row in rows[start : start + limit]]
    return ok(Page.build(items, len(rows), page, limit))


@router.get("/nearby", response_model=ApiResponse[Page[WorkerProfileOut]])
async def nearby_workers(
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
    latitude: float = Query(...),
    longitude: float = Query(...),
    category: str | None = None,
    subcategory: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
):
    """
    Verified, available workers within the search radius.

    Ordered by distance, then plan tier, then rating. Each result carries
    ``distance_m``.
    """
    validate_coordinates(latitude, longitude)
    result = await find_nearby_workers(
        db,
        NearbyQuery(
            latitude=latitude,
            longitude=longitude,
            category=category,
            subcategory=subcategory,
            page=page,
            limit=min(limit, settings.nearby_max_page_size),
        ),
        max_distance_m=settings.nearby_max_distance_m,
    )
    items = [WorkerProfileOut.model_validate(row) for row in result.workers]
    return ok(Page.build(items, result.total, result.page, result.limit))


@router.get("/profile/{worker_id}", response_model=ApiResponse[WorkerProfileOut])
async def get_profile(worker_id: str, db: Database):
    """Public worker profile; counts a profile view."""
    worker_id = ensure_uuid(worker_id, "worker id")
    worker = await get_worker(db, worker_id)
    if not worker:
        raise NotFound("Worker not found")
    views = await increment_counter(db, WORKER_PROFILES_TABLE, worker_id, "profile_views")
    if views is not None:
        worker["profile_views"] = views
    return ok(WorkerProfileOut.model_validate(worker))
