"""Pydantic v2 request/response schemas for the gateway API."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gateway.shared.models import (
    PaymentMethodStatus,
    PaymentMethodType,
    PaymentProvider,
    TransactionStatus,
    UserStatus,
)

T = TypeVar("T")

MAX_PAGE_SIZE = 100


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: str
    detail: str | None = None


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class PaginationMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "PaginationMeta":
        page, limit = clamp_page(page, limit)
        total_pages = -(-total // limit)
        return cls(
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


class Paginated(BaseModel, Generic[T]):
    data: list[T]
    meta: PaginationMeta


def clamp_page(page: int | None, limit: int | None) -> tuple[int, int]:
    """Normalise page (>= 1) and limit (1..MAX_PAGE_SIZE)."""
    safe_page = max(1, int(page or 1))
    safe_limit = max(1, min(MAX_PAGE_SIZE, int(limit or 10)))
    return safe_page, safe_limit


# ---------------------------------------------------------------------------
# Users / payment methods
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    full_name: str | None = None


class UserDetail(UserSummary):
    phone: str | None = None


class PaymentMethodSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str
    provider: str | None = None
    last_four: str | None = None


class PaymentMethodDetail(PaymentMethodSummary):
    expiry_month: int | None = None
    expiry_year: int | None = None


class PaymentMethodCreate(BaseModel):
    """Request body for storing a payment method."""

    type: PaymentMethodType
    provider: PaymentProvider | None = None
    token: str = Field(..., min_length=1, max_length=255)
    last_four: str | None = Field(default=None, pattern=r"^[0-9]{4}$")
    expiry_month: int | None = Field(default=None, ge=1, le=12)
    expiry_year: int | None = Field(default=None, ge=2000)
    is_default: bool = False
    status: PaymentMethodStatus = PaymentMethodStatus.active
    metadata: dict[str, Any] | None = None


class PaymentMethodResponse(PaymentMethodDetail):
    user_id: uuid.UUID
    is_default: bool
    status: str
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    created_at: datetime
    updated_at: datetime


class PaymentMethodQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=MAX_PAGE_SIZE)
    status: PaymentMethodStatus | None = None
    type: PaymentMethodType | None = None
    provider: PaymentProvider | None = None
    search: str | None = Field(default=None, description="Matches provider or last four digits")


class PaymentMethodUpdate(BaseModel):
    """Partial update of an owned payment method."""

    type: PaymentMethodType | None = None
    provider: PaymentProvider | None = None
    token: str | None = Field(default=None, min_length=1, max_length=255)
    last_four: str | None = Field(default=None, pattern=r"^[0-9]{4}$")
    expiry_month: int | None = Field(default=None, ge=1, le=12)
    expiry_year: int | None = Field(default=None, ge=2000)
    is_default: bool | None = None
    status: PaymentMethodStatus | None = None
    metadata: dict[str, Any] | None = None


class PaymentMethodDeleted(BaseModel):
    message: str
    payment_method: PaymentMethodSummary


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserCreate(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    full_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    metadata: dict[str, Any] | None = None


class UserUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    email: str | None = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    full_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    status: UserStatus | None = None
    kyc_verified: bool | None = None
    metadata: dict[str, Any] | None = None


class UserQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=MAX_PAGE_SIZE)
    status: UserStatus | None = None
    kyc_verified: bool | None = None
    search: str | None = Field(default=None, description="Matches email or full name")


class UserResponse(UserDetail):
    status: str
    kyc_verified: bool
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    created_at: datetime
    updated_at: datetime


class UserProfile(UserResponse):
    payment_methods: list[PaymentMethodSummary] = Field(default_factory=list)


class UserDeleted(BaseModel):
    message: str
    user: UserSummary


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TransactionCreate(BaseModel):
    """Request body for creating a transaction."""

    payment_method_id: uuid.UUID | None = None
    amount: int = Field(..., gt=0, description="Amount in the smallest currency unit")
    currency: str = Field(default="VND", min_length=3, max_length=3)
    description: str | None = Field(default=None, max_length=1000)
    gateway_provider: str | None = Field(default=None, max_length=50)
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = None
    device_id: str | None = Field(default=None, max_length=255)


class TransactionUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    payment_method_id: uuid.UUID | None = None
    amount: int | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str | None = None
    status: TransactionStatus | None = None
    gateway_provider: str | None = None
    gateway_response: dict[str, Any] | None = None
    external_transaction_id: int | None = None
    fraud_score: int | None = Field(default=None, ge=0, le=100)
    fraud_decision: str | None = None
    fraud_provider: str | None = None
    fraud_metadata: dict[str, Any] | None = None
    job_id: str | None = None
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = None
    device_id: str | None = None


class TransactionQuery(BaseModel):
    """Listing filters; all optional."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=MAX_PAGE_SIZE)
    user_id: uuid.UUID | None = None
    status: TransactionStatus | None = None
    gateway_provider: str | None = None
    external_transaction_id: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


class TransactionEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: str
    from_value: str | None = None
    to_value: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    created_at: datetime


class RefundSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    amount: int
    status: str
    reason: str | None = None
    created_at: datetime


class TransactionResponse(BaseModel):
    """Transaction with owner and payment-method summaries."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    payment_method_id: uuid.UUID | None = None
    amount: int
    currency: str
    description: str | None = None
    status: TransactionStatus
    external_transaction_id: int | None = None
    gateway_provider: str | None = None
    gateway_response: dict[str, Any] | None = None
    fraud_score: int | None = None
    fraud_decision: str | None = None
    fraud_provider: str | None = None
    fraud_metadata: dict[str, Any] | None = None
    job_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    device_id: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    user: UserSummary
    payment_method: PaymentMethodSummary | None = None


class TransactionDetailResponse(TransactionResponse):
    """Full transaction view: latest audit events and refunds included."""

    user: UserDetail
    payment_method: PaymentMethodDetail | None = None
    events: list[TransactionEventResponse] = Field(default_factory=list)
    refunds: list[RefundSummary] = Field(default_factory=list)


class TransactionStats(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int
    completed: int
    pending: int
    failed: int
    total_amount: int


class DeleteResponse(BaseModel):
    message: str
    id: uuid.UUID


# ---------------------------------------------------------------------------
# PayOS webhook
# ---------------------------------------------------------------------------


class PayOSWebhookData(BaseModel):
    """`data` object of a PayOS payment callback."""

    model_config = ConfigDict(extra="allow")

    orderCode: int
    amount: int
    description: str | None = None
    accountNumber: str | None = None
    reference: str | None = None
    transactionDateTime: str | None = None
    currency: str | None = None
    paymentLinkId: str | None = None
    code: str
    desc: str | None = None


class PayOSWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: str
    desc: str | None = None
    success: bool | None = None
    data: PayOSWebhookData
    signature: str
