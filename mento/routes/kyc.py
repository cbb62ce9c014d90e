"""KYC submission and moderation routes.

A user holds at most one KYC record. Resubmission is only possible after
a rejection (or from a pending record) and replaces the old record.

Moderation moves forward only:

    submitted -> under_review | approved | rejected
    under_review -> approved | rejected
"""

from fastapi import APIRouter, Query
from postgrest.exceptions import APIError
from pydantic import BaseModel
from supabase import Client

from ..auth import AdminUser, CurrentUser
from ..database import (
    KYC_TABLE,
    Database,
    ensure_uuid,
    get_row,
    is_unique_violation,
    page_bounds,
    set_user_kyc_status,
    utc_now,
)
from ..errors import BadRequest, InternalError, NotFound
from ..logging_config import get_logger
from ..models import ApiResponse, KycOut, KycStatusUpdate, KycSubmitRequest, Page, ok

logger = get_logger("mento.kyc")
router = APIRouter(prefix="/kyc", tags=["kyc"])


class KycStatusResponse(BaseModel):
    kyc_status: str
    kyc: KycOut | None = None


# Valid moderation transitions
VALID_TRANSITIONS = {
    "submitted": {"under_review", "approved", "rejected"},
    "under_review": {"approved", "rejected"},
}

# The user row only tracks the coarse status
USER_STATUS_FOR = {
    "under_review": "submitted",
    "approved": "approved",
    "rejected": "rejected",
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, set())


# =============================================================================
# Database Operations
# =============================================================================


async def get_kyc_for_user(db: Client, user_id: str) -> dict | None:
    result = db.table(KYC_TABLE).select("*").eq("user_id", user_id).limit(1).execute()
    return result.data[0] if result.data else None


async def atomic_update_kyc_status(
    db: Client,
    kyc_id: str,
    expected_status: str,
    updates: dict,
) -> tuple[dict | None, str | None]:
    """Update a KYC record only if it still has ``expected_status``.

    Returns (row, None), (None, "not_found") or (None, "conflict").
    """
    result = (
        db.table(KYC_TABLE)
        .update(updates)
        .eq("id", kyc_id)
        .eq("status", expected_status)
        .execute()
    )
    if result.data:
        return result.data[0], None
    if await get_row(db, KYC_TABLE, kyc_id) is None:
        return None, "not_found"
    return None, "conflict"


# =============================================================================
# User Routes
# =============================================================================


@router.post("/submit", response_model=ApiResponse[KycOut])
async def submit_kyc(body: KycSubmitRequest, auth: CurrentUser, db: Database):
    """Submit identity documents for verification."""
    existing = await get_kyc_for_user(db, auth.user_id)
    if existing:
        current = existing["status"]
        if current == "approved":
            raise BadRequest("KYC already approved")
        if current in ("submitted", "under_review"):
            raise BadRequest("KYC already submitted and under review")
        db.table(KYC_TABLE).delete().eq("id", existing["id"]).eq("status", current).execute()

    now = utc_now().isoformat()
    data = {
        "user_id": auth.user_id,
        "document_type": body.document_type.value,
        "document_number": body.document_number.strip().upper(),
        "full_name": body.full_name.strip(),
        "date_of_birth": body.date_of_birth.isoformat(),
        "address": body.address,
        "document_front_url": body.document_front_url,
        "document_back_url": body.document_back_url,
        "selfie_url": body.selfie_url,
        "status": "submitted",
        "submitted_at": now,
        "updated_at": now,
    }
    try:
        result = db.table(KYC_TABLE).insert(data).execute()
    except APIError as e:
        if is_unique_violation(e):
            raise BadRequest("KYC already submitted and under review")
        raise
    if not result.data:
        raise InternalError("Failed to submit KYC")

    await set_user_kyc_status(db, auth.user_id, "submitted")
    logger.info(f"KYC submitted | user={auth.user_id} | type={body.document_type.value}")
    return ok(KycOut.model_validate(result.data[0]), message="KYC submitted successfully")


@router.get("/status", response_model=ApiResponse[KycStatusResponse])
async def kyc_status(auth: CurrentUser, db: Database):
    """Current KYC status and the latest submission, if any."""
    kyc = await get_kyc_for_user(db, auth.user_id)
    return ok(
        KycStatusResponse(
            kyc_status=kyc["status"] if kyc else "pending",
            kyc=KycOut.model_validate(kyc) if kyc else None,
        )
    )


# =============================================================================
# Admin Routes
# =============================================================================


@router.get("/admin/submissions", response_model=ApiResponse[Page[KycOut]])
async def list_submissions(
    admin: AdminUser,
    db: Database,
    status: str | None = Query(None, pattern="^(pending|submitted|under_review|approved|rejected)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """List KYC submissions, newest first."""
    query = db.table(KYC_TABLE).select("*", count="exact")
    if status:
        query = query.eq("status", status)
    start, end = page_bounds(page, limit)
    result = query.order("submitted_at", desc=True).range(start, end).execute()
    items = [KycOut.model_validate(row) for row in result.data or []]
    return ok(Page.build(items, result.count or 0, page, limit))


@router.get("/admin/{kyc_id}", response_model=ApiResponse[KycOut])
async def get_submission(kyc_id: str, admin: AdminUser, db: Database):
    kyc = await get_row(db, KYC_TABLE, ensure_uuid(kyc_id, "KYC id"))
    if not kyc:
        raise NotFound("KYC not found")
    return ok(KycOut.model_validate(kyc))


@router.put("/admin/{kyc_id}/status", response_model=ApiResponse[KycOut])
async def update_submission_status(
    kyc_id: str,
    body: KycStatusUpdate,
    admin: AdminUser,
    db: Database,
):
    """Move a submission forward in review and mirror the result on the user."""
    kyc_id = ensure_uuid(kyc_id, "KYC id")
    kyc = await get_row(db, KYC_TABLE, kyc_id)
    if not kyc:
        raise NotFound("KYC not found")

    new_status = body.status.value
    if not can_transition(kyc["status"], new_status):
        raise BadRequest(f"Cannot change KYC from {kyc['status']} to {new_status}")

    now = utc_now().isoformat()
    updates = {"status": new_status, "updated_at": now}
    if new_status in ("approved", "rejected"):
        updates["verified_by"] = admin.user_id
        updates["verified_at"] = now
    if new_status == "rejected":
        updates["rejection_reason"] = body.rejection_reason

    updated, error = await atomic_update_kyc_status(db, kyc_id, kyc["status"], updates)
    if error == "not_found":
        raise NotFound("KYC not found")
    if error == "conflict":
        raise BadRequest("KYC was modified by another request. Please refresh and try again.")

    await set_user_kyc_status(db, kyc["user_id"], USER_STATUS_FOR[new_status])
    logger.info(f"KYC {kyc_id} {kyc['status']} -> {new_status} | admin={admin.user_id}")
    return ok(KycOut.model_validate(updated), message=f"KYC {new_status}")
