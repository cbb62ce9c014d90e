"""Worker rating aggregation.

Every review create or delete recomputes the mean over all of the
worker's reviews rather than adjusting a running total.
"""

import asyncio
from dataclasses import dataclass
from typing import Sequence

from supabase import Client

from .database import REVIEWS_TABLE, WORKER_PROFILES_TABLE, fetch_all_rows, utc_now
from .logging_config import get_logger

logger = get_logger("mento.ratings")


@dataclass(frozen=True)
class RatingSummary:
    average: float
    total: int


def summarize_ratings(ratings: Sequence[int]) -> RatingSummary:
    """Mean and count; an empty set averages 0.0.

    The mean is rounded to two places, the precision of the numeric(3, 2)
    ``worker_profiles.rating`` column, so the returned summary equals the
    stored value.
    """
    if not ratings:
        return RatingSummary(average=0.0, total=0)
    return RatingSummary(average=round(sum(ratings) / len(ratings), 2), total=len(ratings))


async def recompute_worker_rating(db: Client, worker_id: str) -> RatingSummary:
    """Recompute and persist ``rating``/``total_reviews`` for one worker."""

    def _ratings() -> list[dict]:
        return fetch_all_rows(
            lambda: db.table(REVIEWS_TABLE).select("id, rating").eq("worker_id", worker_id)
        )

    rows = await asyncio.to_thread(_ratings)
    summary = summarize_ratings([int(row["rating"]) for row in rows])

    def _update():
        return (
            db.table(WORKER_PROFILES_TABLE)
            .update(
                {
                    "rating": summary.average,
                    "total_reviews": summary.total,
                    "updated_at": utc_now().isoformat(),
                }
            )
            .eq("id", worker_id)
            .execute()
        )

    await asyncio.to_thread(_update)
    logger.info(f"Worker {worker_id} rating {summary.average} over {summary.total} reviews")
    return summary
