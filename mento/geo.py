"""Geo-proximity search for workers.

Locations are stored as GeoJSON points, ``{"type": "Point",
"coordinates": [longitude, latitude]}``. Candidate rows are pre-filtered
in the database (verified, available, category, bounding box) and ranked here:

    distance ascending, then plan tier descending, then rating descending
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Iterable

from supabase import Client

from .database import WORKER_PROFILES_TABLE, fetch_all_rows
from .errors import BadRequest
from .subscriptions.models import plan_tier_rank

# Mean Earth radius (IUGG)
EARTH_RADIUS_M = 6_371_008.8

DEFAULT_MAX_DISTANCE_M = 10_000.0


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Raise ``BadRequest`` unless latitude/longitude are on the globe."""
    if latitude is None or not math.isfinite(latitude) or not -90.0 <= latitude <= 90.0:
        raise BadRequest("Invalid latitude. Must be between -90 and 90")
    if longitude is None or not math.isfinite(longitude) or not -180.0 <= longitude <= 180.0:
        raise BadRequest("Invalid longitude. Must be between -180 and 180")


def to_geojson_point(latitude: float, longitude: float) -> dict:
    """Build a stored location; coordinates are [longitude, latitude]."""
    validate_coordinates(latitude, longitude)
    return {"type": "Point", "coordinates": [longitude, latitude]}


def point_from_location(location) -> tuple[float, float] | None:
    """Return ``(latitude, longitude)`` from a stored GeoJSON point, if usable."""
    if not isinstance(location, dict):
        return None
    coords = location.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) != 2:
        return None
    try:
        longitude, latitude = float(coords[0]), float(coords[1])
    except (TypeError, ValueError):
        return None
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        return None
    return latitude, longitude


def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


@dataclass
class NearbyQuery:
    latitude: float
    longitude: float
    category: str | None = None
    subcategory: str | None = None
    page: int = 1
    limit: int = 20


@dataclass
class NearbyResult:
    workers: list[dict] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _matches(row: dict, query: NearbyQuery) -> bool:
    if not row.get("is_verified") or not row.get("is_available"):
        return False
    if query.category and query.category not in (row.get("categories") or []):
        return False
    if query.subcategory and query.subcategory not in (row.get("subcategories") or []):
        return False
    return True


def rank_nearby_workers(
    rows: Iterable[dict],
    query: NearbyQuery,
    max_distance_m: float = DEFAULT_MAX_DISTANCE_M,
) -> NearbyResult:
    """Filter, order and paginate candidate worker rows.

    The total is counted over the same filter before pagination. Each
    returned row gains a ``distance_m`` field.
    """
    validate_coordinates(query.latitude, query.longitude)

    ranked = []
    for row in rows:
        if not _matches(row, query):
            continue
        point = point_from_location(row.get("location"))
        if point is None:
            continue
        distance = haversine_distance_m(query.latitude, query.longitude, *point)
        if distance > max_distance_m:
            continue
        ranked.append((distance, row))

    ranked.sort(
        key=lambda item: (
            item[0],
            -plan_tier_rank(item[1].get("subscription_plan")),
            -float(item[1].get("rating") or 0.0),
        )
    )

    start = (query.page - 1) * query.limit
    page_rows = ranked[start : start + query.limit]
    return NearbyResult(
        workers=[{**row, "distance_m": round(distance, 1)} for distance, row in page_rows],
        total=len(ranked),
        page=query.page,
        limit=query.limit,
    )


def _bounding_box(latitude: float, longitude: float, radius_m: float) -> tuple[float, float, float, float]:
    """Approximate lat/lng bounds enclosing a circle; used only to narrow candidates."""
    d_lat = math.degrees(radius_m / EARTH_RADIUS_M)
    cos_lat = math.cos(math.radians(latitude))
    d_lng = 180.0 if cos_lat < 1e-6 else min(180.0, math.degrees(radius_m / (EARTH_RADIUS_M * cos_lat)))
    return latitude - d_lat, latitude + d_lat, longitude - d_lng, longitude + d_lng


def _longitude_ranges(min_lat: float, max_lat: float, min_lng: float, max_lng: float) -> list[tuple[float, float]]:
    """Split a longitude span into ranges within [-180, 180].

    A box that wraps the antimeridian becomes two ranges. A box touching a
    pole, or as wide as the globe, covers every longitude.
    """
    if min_lat <= -90.0 or max_lat >= 90.0 or max_lng - min_lng >= 360.0:
        return [(-180.0, 180.0)]
    if min_lng < -180.0:
        return [(min_lng + 360.0, 180.0), (-180.0, max_lng)]
    if max_lng > 180.0:
        return [(min_lng, 180.0), (-180.0, max_lng - 360.0)]
    return [(min_lng, max_lng)]


async def find_nearby_workers(
    db: Client,
    query: NearbyQuery,
    max_distance_m: float = DEFAULT_MAX_DISTANCE_M,
) -> NearbyResult:
    """Nearest verified, available workers within ``max_distance_m``."""
    validate_coordinates(query.latitude, query.longitude)
    min_lat, max_lat, min_lng, max_lng = _bounding_box(query.latitude, query.longitude, max_distance_m)

    def _candidates(low_lng: float, high_lng: float):
        q = (
            db.table(WORKER_PROFILES_TABLE)
            .select("*")
            .eq("is_verified", True)
            .eq("is_available", True)
            .gte("latitude", max(min_lat, -90.0))
            .lte("latitude", min(max_lat, 90.0))
            .gte("longitude", low_lng)
            .lte("longitude", high_lng)
        )
        if query.category:
            q = q.contains("categories", [query.category])
        if query.subcategory:
            q = q.contains("subcategories", [query.subcategory])
        return q

    def _query() -> list[dict]:
        rows: dict[str, dict] = {}
        for low_lng, high_lng in _longitude_ranges(min_lat, max_lat, min_lng, max_lng):
            for row in fetch_all_rows(lambda lo=low_lng, hi=high_lng: _candidates(lo, hi)):
                rows[row["id"]] = row
        return list(rows.values())

    rows = await asyncio.to_thread(_query)
    return rank_nearby_workers(rows, query, max_distance_m)
