"""
API request and response models for the supplier portal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
rfq/models.py, which own the internal domain representation. Route handlers
map between the two with the from_* factory methods below.

JSON field names are camelCase on the wire (pricePerUnit, requestNumber) and
snake_case in Python. Request models accept either form.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import ROLES, Supplier, User
from rfq.models import QuoteRequest, RequestSupplier, SupplierQuote

# Passwords longer than this are rejected before bcrypt sees them (bcrypt only
# reads the first 72 bytes, and unbounded input is a cheap DoS vector).
MAX_PASSWORD_LENGTH = 128


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class _FrozenWireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Local auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/local/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)


class AdminSetPasswordRequest(_WireModel):
    """Request body for POST /api/local/set-password.

    Both fields are optional at the schema level; the route answers a
    missing one with 400 "Missing required fields".
    """

    target_user_id: Optional[int] = None
    password: Optional[str] = Field(default=None, max_length=MAX_PASSWORD_LENGTH)


# ---------------------------------------------------------------------------
# Magic links and password setup
# ---------------------------------------------------------------------------


class MagicLinkRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)


class SupplierSummary(_FrozenWireModel):
    id: int
    email: str
    supplier_name: str

    @classmethod
    def from_supplier(cls, supplier: Supplier) -> "SupplierSummary":
        return cls(id=supplier.id, email=supplier.email, supplier_name=supplier.supplier_name)


class VerifyMagicLinkResponse(_FrozenWireModel):
    success: bool = True
    supplier: SupplierSummary


class SetupTokenResponse(_FrozenWireModel):
    valid: bool = True
    email: str


class SetupPasswordRequest(BaseModel):
    password: str = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)


class SetupPasswordResponse(_FrozenWireModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(_FrozenWireModel):
    """A credential as returned to clients. Never includes the password hash."""

    id: int
    email: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    active: bool
    password_set: bool
    created_at: Optional[str] = None
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            company_name=user.company_name,
            active=user.active,
            password_set=user.password_hash is not None,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class UserCreate(_WireModel):
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    role: str = "procurement"
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    company_name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("role")
    @classmethod
    def known_role(cls, value: str) -> str:
        if value not in ROLES:
            raise ValueError(f"role must be one of {', '.join(ROLES)}")
        return value


class RoleUpdate(BaseModel):
    role: Optional[str] = None


class StatusUpdate(BaseModel):
    # Left untyped so the route can reject anything that is not a JSON boolean
    # with 400 "Invalid status value" (pydantic would coerce "yes" or 1).
    active: Any = None


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------


class SupplierCreate(_WireModel):
    supplier_name: str = Field(min_length=1, max_length=255)
    contact_person: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(default=None, max_length=50)


class SupplierResponse(_FrozenWireModel):
    id: int
    supplier_name: str
    contact_person: str
    email: str
    phone: Optional[str] = None
    active: bool
    created_at: Optional[str] = None

    @classmethod
    def from_supplier(cls, supplier: Supplier) -> "SupplierResponse":
        return cls(
            id=supplier.id,
            supplier_name=supplier.supplier_name,
            contact_person=supplier.contact_person,
            email=supplier.email,
            phone=supplier.phone,
            active=supplier.active,
            created_at=supplier.created_at,
        )


# ---------------------------------------------------------------------------
# Quote requests
# ---------------------------------------------------------------------------


class QuoteRequestCreate(_WireModel):
    material_name: str = Field(min_length=1, max_length=255)
    quantity_needed: str = Field(min_length=1, max_length=50)
    unit_of_measure: str = Field(min_length=1, max_length=50)
    submit_by_date: str = Field(min_length=1, max_length=40)
    additional_specifications: Optional[str] = None
    supplier_ids: list[int] = Field(default_factory=list)

    @field_validator("quantity_needed", mode="before")
    @classmethod
    def quantity_as_text(cls, value):
        # Clients send quantities as numbers or strings; store the text form.
        return str(value) if isinstance(value, (int, float)) else value


class QuoteRequestResponse(_FrozenWireModel):
    id: int
    request_number: str
    material_name: str
    quantity_needed: str
    unit_of_measure: str
    submit_by_date: str
    additional_specifications: Optional[str] = None
    status: str
    created_by: Optional[int] = None
    created_at: Optional[str] = None

    @classmethod
    def from_request(cls, request: QuoteRequest) -> "QuoteRequestResponse":
        return cls(
            id=request.id,
            request_number=request.request_number,
            material_name=request.material_name,
            quantity_needed=request.quantity_needed,
            unit_of_measure=request.unit_of_measure,
            submit_by_date=request.submit_by_date,
            additional_specifications=request.additional_specifications,
            status=request.status,
            created_by=request.created_by,
            created_at=request.created_at,
        )


class InvitationResponse(_FrozenWireModel):
    """An invitation as staff see it. The access token itself is never returned."""

    id: int
    supplier_id: int
    token_expires_at: Optional[str] = None
    email_sent_at: Optional[str] = None
    response_submitted_at: Optional[str] = None

    @classmethod
    def from_request_supplier(cls, rs: RequestSupplier) -> "InvitationResponse":
        return cls(
            id=rs.id,
            supplier_id=rs.supplier_id,
            token_expires_at=rs.token_expires_at,
            email_sent_at=rs.email_sent_at,
            response_submitted_at=rs.response_submitted_at,
        )


class QuoteResponse(_FrozenWireModel):
    id: int
    request_id: int
    supplier_id: int
    price_per_unit: str
    currency: str
    moq: Optional[str] = None
    lead_time: str
    validity_date: Optional[str] = None
    payment_terms: Optional[str] = None
    additional_notes: Optional[str] = None
    status: str
    submitted_at: Optional[str] = None

    @classmethod
    def from_quote(cls, quote: SupplierQuote) -> "QuoteResponse":
        return cls(
            id=quote.id,
            request_id=quote.request_id,
            supplier_id=quote.supplier_id,
            price_per_unit=quote.price_per_unit,
            currency=quote.currency,
            moq=quote.moq,
            lead_time=quote.lead_time,
            validity_date=quote.validity_date,
            payment_terms=quote.payment_terms,
            additional_notes=quote.additional_notes,
            status=quote.status,
            submitted_at=quote.submitted_at,
        )


class QuoteRequestDetail(_FrozenWireModel):
    request: QuoteRequestResponse
    invitations: list[InvitationResponse]
    quotes: list[QuoteResponse]


class ResendResponse(_FrozenWireModel):
    success: bool = True
    message: str
    email_sent_at: str


class SupplierPortalRequest(_FrozenWireModel):
    """One row of GET /api/supplier/quote-requests."""

    request: QuoteRequestResponse
    response_submitted_at: Optional[str] = None
    quote: Optional[QuoteResponse] = None
    has_quote: bool
    is_expired: bool


# ---------------------------------------------------------------------------
# Public (scoped token) endpoints
# ---------------------------------------------------------------------------


class PublicQuoteRequestResponse(_FrozenWireModel):
    request: QuoteRequestResponse
    supplier: SupplierSummary


class QuoteSubmission(_WireModel):
    """Body of POST /api/public/quote-requests/{id}/submit-quote.

    price_per_unit and lead_time are optional here so a missing value gets
    the route's 400 "Price and lead time are required" rather than a 422.
    Any supplier_id or request_id in the body is ignored.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    price_per_unit: Optional[str] = Field(default=None, max_length=50)
    currency: Optional[str] = Field(default=None, max_length=3)
    moq: Optional[str] = Field(default=None, max_length=50)
    lead_time: Optional[str] = Field(default=None, max_length=100)
    validity_date: Optional[str] = Field(default=None, max_length=40)
    payment_terms: Optional[str] = None
    additional_notes: Optional[str] = None

    @field_validator("price_per_unit", "moq", mode="before")
    @classmethod
    def number_as_text(cls, value):
        return str(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else value


class QuoteSubmittedResponse(_FrozenWireModel):
    message: str = "Quote submitted successfully"
    quote: QuoteResponse
