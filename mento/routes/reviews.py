"""Worker review routes. Each write recomputes the worker's rating."""

from fastapi import APIRouter, Query, Request
from postgrest.exceptions import APIError

from ..auth import CurrentUser
from ..database import (
    REVIEWS_TABLE,
    WORKER_PROFILES_TABLE,
    Database,
    ensure_uuid,
    get_row,
    is_unique_violation,
    page_bounds,
    utc_now,
)
from ..errors import BadRequest, Forbidden, InternalError, NotFound
from ..logging_config import get_logger
from ..models import ApiResponse, Page, ReviewCreate, ReviewOut, ok
from ..rate_limit import limiter
from ..ratings import recompute_worker_rating

logger = get_logger("mento.reviews")
router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.post("", response_model=ApiResponse[ReviewOut])
@limiter.limit("20/minute")
async def create_review(request: Request, body: ReviewCreate, auth: CurrentUser, db: Database):
    """Review a worker. One review per user per worker."""
    worker_id = ensure_uuid(body.worker_id, "worker id")
    worker = await get_row(db, WORKER_PROFILES_TABLE, worker_id)
    if not worker:
        raise NotFound("Worker not found")
    if worker["user_id"] == auth.user_id:
        raise BadRequest("You cannot review your own profile")

    data = {
        "worker_id": worker_id,
        "user_id": auth.user_id,
        "rating": body.rating,
        "comment": body.comment,
        "created_at": utc_now().isoformat(),
    }
    try:
        result = db.table(REVIEWS_TABLE).insert(data).execute()
    except APIError as e:
        if is_unique_violation(e):
            raise BadRequest("You have already reviewed this worker")
        raise
    if not result.data:
        raise InternalError("Failed to create review")

    summary = await recompute_worker_rating(db, worker_id)
    logger.info(f"Review created | worker={worker_id} | user={auth.user_id} | rating={summary.average}")
    return ok(ReviewOut.model_validate(result.data[0]), message="Review created successfully")


@router.get("/worker/{worker_id}", response_model=ApiResponse[Page[ReviewOut]])
async def list_worker_reviews(
    worker_id: str,
    db: Database,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    worker_id = ensure_uuid(worker_id, "worker id")
    start, end = page_bounds(page, limit)
    result = (
        db.table(REVIEWS_TABLE)
        .select("*", count="exact")
        .eq("worker_id", worker_id)
        .order("created_at", desc=True)
        .range(start, end)
        .execute()
    )
    items = [ReviewOut.model_validate(row) for row in result.data or []]
    return ok(Page.build(items, result.count or 0, page, limit))


@router.delete("/{review_id}", response_model=ApiResponse[None])
async def delete_review(review_id: str, auth: CurrentUser, db: Database):
    """Delete one of the caller's own reviews."""
    review = await get_row(db, REVIEWS_TABLE, ensure_uuid(review_id, "review id"))
    if not review:
        raise NotFound("Review not found")
    if review["user_id"] != auth.user_id:
        raise Forbidden("You can only delete your own reviews")

    db.table(REVIEWS_TABLE).delete().eq("id", review["id"]).execute()
    await recompute_worker_rating(db, review["worker_id"])
    return ok(message="Review deleted successfully")
