"""Public category and service catalogue."""

from fastapi import APIRouter, Query

from ..database import (
    MAIN_CATEGORIES_TABLE,
    SERVICES_TABLE,
    SUB_CATEGORIES_TABLE,
    Database,
    ensure_uuid,
    get_row,
)
from ..errors import NotFound
from ..models import ApiResponse, CategoryOut, ServiceOut, SubCategoryOut, ok

router = APIRouter(tags=["catalog"])


@router.get("/categories", response_model=ApiResponse[list[CategoryOut]])
async def list_categories(db: Database):
    """Active categories with their active subcategories, in display order."""
    categories = (
        db.table(MAIN_CATEGORIES_TABLE)
        .select("*")
        .eq("is_active", True)
        .order("display_order")
        .execute()
    ).data or []
    subcategories = (
        db.table(SUB_CATEGORIES_TABLE)
        .select("*")
        .eq("is_active", True)
        .order("display_order")
        .execute()
    ).data or []

    by_parent: dict[str, list[dict]] = {}
    for sub in subcategories:
        by_parent.setdefault(sub["main_category_id"], []).append(sub)

    return ok(
        [
            CategoryOut.model_validate({**cat, "subcategories": by_parent.get(cat["id"], [])})
            for cat in categories
        ]
    )


@router.get("/categories/{category_id}/subcategories", response_model=ApiResponse[list[SubCategoryOut]])
async def list_subcategories(category_id: str, db: Database):
    category_id = ensure_uuid(category_id, "category id")
    category = await get_row(db, MAIN_CATEGORIES_TABLE, category_id)
    if not category or not category.get("is_active", True):
        raise NotFound("Category not found")
    result = (
        db.table(SUB_CATEGORIES_TABLE)
        .select("*")
        .eq("main_category_id", category_id)
        .eq("is_active", True)
        .order("display_order")
        .execute()
    )
    return ok([SubCategoryOut.model_validate(row) for row in result.data or []])


@router.get("/services", response_model=ApiResponse[list[ServiceOut]])
async def list_services(db: Database, limit: int = Query(100, ge=1, le=100)):
    result = (
        db.table(SERVICES_TABLE)
        .select("*")
        .eq("is_active", True)
        .order("name")
        .limit(limit)
        .execute()
    )
    return ok([ServiceOut.model_validate(row) for row in result.data or []])


@router.get("/services/search", response_model=ApiResponse[list[ServiceOut]])
async def search_services(
    db: Database,
    q: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(50, ge=1, le=100),
):
    """Case-insensitive name match."""
    pattern = "%" + q.replace("%", r"\%").replace("_", r"\_") + "%"
    result = (
        db.table(SERVICES_TABLE)
        .select("*")
        .eq("is_active", True)
        .ilike("name", pattern)
        .order("name")
        .limit(limit)
        .execute()
    )
    return ok([ServiceOut.model_validate(row) for row in result.data or []])


@router.get("/services/category/{category}", response_model=ApiResponse[list[ServiceOut]])
async def services_by_category(category: str, db: Database):
    result = (
        db.table(SERVICES_TABLE)
        .select("*")
        .eq("is_active", True)
        .eq("category", category)
        .order("name")
        .execute()
    )
    return ok([ServiceOut.model_validate(row) for row in result.data or []])


@router.get("/services/{service_id}", response_model=ApiResponse[ServiceOut])
async def get_service(service_id: str, db: Database):
    service = await get_row(db, SERVICES_TABLE, ensure_uuid(service_id, "service id"))
    if not service or not service.get("is_active", True):
        raise NotFound("Service not found")
    return ok(ServiceOut.model_validate(service))
