"""Pydantic models for API requests and responses."""

import math
from datetime import date, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

T = TypeVar("T")

MOBILE_PATTERN = r"^[6-9]\d{9}$"
EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
PINCODE_PATTERN = r"^\d{6}$"
OTP_PATTERN = r"^\d{6}$"

# =============================================================================
# Envelope
# =============================================================================


class ApiResponse(BaseModel, Generic[T]):
    """Uniform response body: clients branch on ``success``."""

    success: bool = True
    message: str | None = None
    data: T | None = None


def ok(data: Any = None, message: str | None = None) -> ApiResponse:
    return ApiResponse(success=True, message=message, data=data)


class Page(BaseModel, Generic[T]):
    """One page of results plus the total across all pages."""

    items: list[T]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, items: list, total: int, page: int, limit: int) -> "Page":
        return cls(
            items=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if limit else 0,
        )


# =============================================================================
# Auth Models
# =============================================================================

class SendOtpRequest(BaseModel):
    """Request an OTP for a mobile number."""
    mobile: str = Field(..., pattern=MOBILE_PATTERN)
    email: str | None = Field(None, pattern=EMAIL_PATTERN)


class VerifyOtpRequest(BaseModel):
    mobile: str = Field(..., pattern=MOBILE_PATTERN)
    otp: str = Field(..., pattern=OTP_PATTERN)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


# =============================================================================
# User Models
# =============================================================================

class UserOut(BaseModel):
    """User information."""
    id: str
    mobile: str
    email: str | None = None
    name: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    pincode: str | None = None
    profile_image: str | None = None
    kyc_status: str = "pending"
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AuthResponse(AccessTokenResponse):
    """Tokens issued after a successful OTP verification."""
    refresh_token: str
    is_new_user: bool
    user: UserOut


class UserUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    email: str | None = Field(None, pattern=EMAIL_PATTERN)
    address: str | None = Field(None, max_length=500)
    city: str | None = Field(None, max_length=100)
    state: str | None = Field(None, max_length=100)
    pincode: str | None = Field(None, pattern=PINCODE_PATTERN)
    profile_image: str | None = None


class FcmPlatform(str, Enum):
    android = "android"
    ios = "ios"


class FcmTokenUpdate(BaseModel):
    fcm_token: str = Field(..., min_length=1)
    platform: FcmPlatform


class UserProfileResponse(BaseModel):
    """User with the profile pieces the app home screen needs."""
    user: UserOut
    worker_subscription: dict | None = None
    job_seeker_subscription: dict | None = None
    worker_profile: dict | None = None


# =============================================================================
# KYC Models
# =============================================================================

class DocumentType(str, Enum):
    aadhaar = "aadhaar"
    pan = "pan"
    driving_license = "driving_license"
    voter_id = "voter_id"


class KycSubmitRequest(BaseModel):
    """KYC documents; files are uploaded separately and referenced by URL."""
    document_type: DocumentType
    document_number: str = Field(..., min_length=4, max_length=32)
    full_name: str = Field(..., min_length=1, max_length=100)
    date_of_birth: date
    address: str = Field(..., min_length=1, max_length=500)
    document_front_url: str = Field(..., min_length=1)
    document_back_url: str | None = None
    selfie_url: str | None = None

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _parse_dob(cls, value):
        if isinstance(value, str):
            try:
                return datetime.strptime(value, "%Y-%m-%d").date()
            except ValueError:
                raise ValueError("Invalid date format. Use YYYY-MM-DD")
        return value


class KycOut(BaseModel):
    id: str
    user_id: str
    document_type: DocumentType
    document_number: str
    full_name: str
    date_of_birth: date
    address: str
    document_front_url: str
    document_back_url: str | None = None
    selfie_url: str | None = None
    status: str
    rejection_reason: str | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    submitted_at: datetime | None = None
    updated_at: datetime | None = None


class KycReviewStatus(str, Enum):
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"


class KycStatusUpdate(BaseModel):
    status: KycReviewStatus
    rejection_reason: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def _reason_for_rejection(self) -> "KycStatusUpdate":
        if self.status == KycReviewStatus.rejected and not self.rejection_reason:
            raise ValueError("rejection_reason is required when rejecting")
        return self


# =============================================================================
# Worker Models
# =============================================================================

class WorkerProfileCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    categories: list[str] = Field(..., min_length=1)
    subcategories: list[str] = []
    experience_years: int = Field(0, ge=0, le=60)
    hourly_rate: float | None = Field(None, ge=0)
    bio: str | None = Field(None, max_length=1000)
    skills: list[str] = []
    languages: list[str] = []
    service_areas: list[str] = []
    is_available: bool = True


class WorkerProfileUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    categories: list[str] | None = Field(None, min_length=1)
    subcategories: list[str] | None = None
    experience_years: int | None = Field(None, ge=0, le=60)
    hourly_rate: float | None = Field(None, ge=0)
    bio: str | None = Field(None, max_length=1000)
    skills: list[str] | None = None
    languages: list[str] | None = None
    service_areas: list[str] | None = None
    is_available: bool | None = None

    @field_validator(
        "name",
        "categories",
        "subcategories",
        "experience_years",
        "skills",
        "languages",
        "service_areas",
        "is_available",
    )
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class LocationUpdate(BaseModel):
    latitude: float
    longitude: float


class WorkerProfileOut(BaseModel):
    id: str
    user_id: str
    name: str
    categories: list[str] = []
    subcategories: list[str] = []
    experience_years: int = 0
    hourly_rate: float | None = None
    bio: str | None = None
    skills: list[str] = []
    languages: list[str] = []
    service_areas: list[str] = []
    location: dict | None = None
    subscription_plan: str = "none"
    is_verified: bool = False
    is_available: bool = True
    rating: float = 0.0
    total_reviews: int = 0
    profile_views: int = 0
    distance_m: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# =============================================================================
# Job Seeker Models
# =============================================================================

class _SalaryRange(BaseModel):
    @model_validator(mode="after")
    def _check_salary(self):
        low = getattr(self, "expected_salary_min", None)
        high = getattr(self, "expected_salary_max", None)
        if low is not None and high is not None and low > high:
            raise ValueError("expected_salary_min cannot exceed expected_salary_max")
        return self


class JobSeekerProfileCreate(_SalaryRange):
    full_name: str = Field(..., min_length=1, max_length=100)
    email: str | None = Field(None, pattern=EMAIL_PATTERN)
    skills: list[str] = []
    categories: list[str] = []
    preferred_job_types: list[str] = []
    preferred_locations: list[str] = []
    experience_years: int = Field(0, ge=0, le=60)
    expected_salary_min: int | None = Field(None, ge=0)
    expected_salary_max: int | None = Field(None, ge=0)
    education: str | None = Field(None, max_length=500)
    resume_url: str | None = None
    bio: str | None = Field(None, max_length=1000)


class JobSeekerProfileUpdate(_SalaryRange):
    full_name: str | None = Field(None, min_length=1, max_length=100)
    email: str | None = Field(None, pattern=EMAIL_PATTERN)
    skills: list[str] | None = None
    categories: list[str] | None = None
    preferred_job_types: list[str] | None = None
    preferred_locations: list[str] | None = None
    experience_years: int | None = Field(None, ge=0, le=60)
    expected_salary_min: int | None = Field(None, ge=0)
    expected_salary_max: int | None = Field(None, ge=0)
    education: str | None = Field(None, max_length=500)
    resume_url: str | None = None
    bio: str | None = Field(None, max_length=1000)

    @field_validator(
        "full_name",
        "skills",
        "categories",
        "preferred_job_types",
        "preferred_locations",
        "experience_years",
    )
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class JobSeekerProfileOut(BaseModel):
    id: str
    user_id: str
    full_name: str
    email: str | None = None
    phone: str | None = None
    skills: list[str] = []
    categories: list[str] = []
    preferred_job_types: list[str] = []
    preferred_locations: list[str] = []
    experience_years: int = 0
    expected_salary_min: int | None = None
    expected_salary_max: int | None = None
    education: str | None = None
    resume_url: str | None = None
    bio: str | None = None
    subscription_plan: str = "none"
    is_verified: bool = False
    is_active: bool = True
    profile_views: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


# =============================================================================
# Review Models
# =============================================================================

class ReviewCreate(BaseModel):
    worker_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=1000)


class ReviewOut(BaseModel):
    id: str
    worker_id: str
    user_id: str
    rating: int
    comment: str | None = None
    created_at: datetime | None = None


# =============================================================================
# Job Models
# =============================================================================

class JobStatus(str, Enum):
    open = "open"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class JobCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10, max_length=5000)
    category: str = Field(..., min_length=1)
    subcategory: str | None = None
    location: str | None = Field(None, max_length=200)
    city: str | None = Field(None, max_length=100)
    budget_min: int | None = Field(None, ge=0)
    budget_max: int | None = Field(None, ge=0)
    job_type: str = Field("one_time", max_length=50)

    @model_validator(mode="after")
    def _check_budget(self) -> "JobCreate":
        if self.budget_min is not None and self.budget_max is not None and self.budget_min > self.budget_max:
            raise ValueError("budget_min cannot exceed budget_max")
        return self


class JobStatusUpdate(BaseModel):
    status: JobStatus


class JobOut(BaseModel):
    id: str
    posted_by: str
    title: str
    description: str
    category: str
    subcategory: str | None = None
    location: str | None = None
    city: str | None = None
    budget_min: int | None = None
    budget_max: int | None = None
    job_type: str = "one_time"
    status: JobStatus = JobStatus.open
    is_active: bool = True
    views: int = 0
    applications_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class JobApplicationCreate(BaseModel):
    cover_letter: str | None = Field(None, max_length=2000)


class JobApplicationOut(BaseModel):
    id: str
    job_id: str
    applicant_id: str
    cover_letter: str | None = None
    created_at: datetime | None = None


# =============================================================================
# Catalogue Models
# =============================================================================

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    icon: str | None = None
    display_order: int = 0


class CategoryUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    icon: str | None = None
    display_order: int | None = None
    is_active: bool | None = None

    @field_validator("name", "display_order", "is_active")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class SubCategoryCreate(CategoryCreate):
    main_category_id: str


class SubCategoryUpdate(CategoryUpdate):
    pass


class SubCategoryOut(BaseModel):
    id: str
    main_category_id: str
    name: str
    description: str | None = None
    icon: str | None = None
    display_order: int = 0
    is_active: bool = True


class CategoryOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    icon: str | None = None
    display_order: int = 0
    is_active: bool = True
    subcategories: list[SubCategoryOut] = []


class ServiceOut(BaseModel):
    id: str
    name: str
    category: str
    subcategory: str | None = None
    description: str | None = None
    base_price: float | None = None


# =============================================================================
# Admin Models
# =============================================================================

class VerifyProfileRequest(BaseModel):
    is_verified: bool = True


class MaintenanceResult(BaseModel):
    dry_run: bool
    expired: int
    subscription_ids: list[str]
