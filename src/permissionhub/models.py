"""Permission and permission-request data models.

Stored records (``Permission``, ``PermissionRequest``) and the input schemas
that validate client payloads before they reach the store
(``PermissionCreate``, ``PermissionRequestCreate``, ``PermissionUpdate``).

Field names are snake_case in Python; the wire format uses camelCase aliases
(``userId``, ``maxCalls``, ``expiryTime``...). Both spellings are accepted on
input. Token quantities are decimal strings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .exceptions import ValidationFailure


class PermissionType(str, Enum):
    """Kind of delegated capability. Fixed at creation."""

    CONTRACT_INTERACTION = "contract-interaction"
    TOKEN_STREAM = "token-stream"
    SESSION_BASED = "session-based"
    DELEGATION = "delegation"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Read naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_decimal(value: Optional[str]) -> Optional[Decimal]:
    """Parse a decimal-string quantity. ``None`` stays ``None``."""
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid decimal amount: {value!r}")


def _check_amount(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise ValueError("Amounts must be decimal strings")
    amount = to_decimal(value)
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Amount must be a finite, non-negative decimal: {value!r}")
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys and JSON-compatible values."""
        return self.model_dump(by_alias=True, mode="json")


class _GrantTerms(_WireModel):
    """Fields shared by requests and permissions."""

    user_id: int
    type: PermissionType
    app_name: str
    description: Optional[str] = None
    contract_address: Optional[str] = None
    function_signature: Optional[str] = None
    max_amount: Optional[str] = None
    amount_per_second: Optional[str] = None
    max_calls: Optional[int] = Field(default=None, ge=0)
    expiry_time: Optional[datetime] = None
    additional_data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("max_amount", "amount_per_second", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Optional[str]:
        return _check_amount(v)

    @field_validator("expiry_time")
    @classmethod
    def validate_expiry_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @field_validator("additional_data", mode="before")
    @classmethod
    def validate_additional_data(cls, v: Any) -> Any:
        return {} if v is None else v


# ---- Stored records -------------------------------------------------------


class Permission(_GrantTerms):
    """A granted, possibly active capability."""

    id: int
    name: str
    is_active: bool = True
    total_amount: Optional[str] = None
    calls_used: int = 0
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("total_amount", mode="before")
    @classmethod
    def validate_total_amount(cls, v: Any) -> Optional[str]:
        return _check_amount(v)

    @property
    def is_call_bounded(self) -> bool:
        return self.max_calls is not None

    @property
    def is_amount_bounded(self) -> bool:
        return self.max_amount is not None


class PermissionRequest(_GrantTerms):
    """A pending ask awaiting the user's decision."""

    id: int
    requested_at: datetime = Field(default_factory=utc_now)


# ---- Input schemas --------------------------------------------------------


class PermissionCreate(_GrantTerms):
    """Payload for ``POST /permissions``."""

    model_config = ConfigDict(extra="forbid")

    name: str
    is_active: bool = True
    total_amount: Optional[str] = None

    @field_validator("total_amount", mode="before")
    @classmethod
    def validate_total_amount(cls, v: Any) -> Optional[str]:
        return _check_amount(v)


class PermissionRequestCreate(_GrantTerms):
    """Payload for ``POST /permission-requests``."""

    model_config = ConfigDict(extra="forbid")


class PermissionUpdate(_WireModel):
    """Payload for ``PATCH /permissions/{id}``.

    ``id``, ``userId``, ``type`` and ``createdAt`` are not patchable and are
    rejected as unknown fields.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    app_name: Optional[str] = None
    description: Optional[str] = None
    contract_address: Optional[str] = None
    function_signature: Optional[str] = None
    is_active: Optional[bool] = None
    max_amount: Optional[str] = None
    amount_per_second: Optional[str] = None
    total_amount: Optional[str] = None
    max_calls: Optional[int] = Field(default=None, ge=0)
    calls_used: Optional[int] = Field(default=None, ge=0)
    expiry_time: Optional[datetime] = None
    additional_data: Optional[dict[str, Any]] = None

    @field_validator("max_amount", "amount_per_second", "total_amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Optional[str]:
        return _check_amount(v)

    @field_validator("expiry_time")
    @classmethod
    def validate_expiry_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @model_validator(mode="after")
    def validate_not_nullable(self) -> "PermissionUpdate":
        cleared = sorted(
            name for name in ("name", "app_name", "is_active", "calls_used")
            if name in self.model_fields_set and getattr(self, name) is None
        )
        if cleared:
            raise ValueError(f"Fields cannot be null: {', '.join(cleared)}")
        return self

    def to_patch(self) -> dict[str, Any]:
        """Fields explicitly present in the payload, snake_case keyed.

        An explicit ``null`` is kept so that e.g. ``expiryTime: null`` clears
        the expiry.
        """
        return self.model_dump(exclude_unset=True)


_S = TypeVar("_S", bound=BaseModel)


def validate_payload(schema: type[_S], payload: Mapping[str, Any] | _S) -> _S:
    """Validate a client payload against an input schema.

    Raises:
        ValidationFailure: with the pydantic error list in ``details["errors"]``.
    """
    if isinstance(payload, schema):
        return payload
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        raise ValidationFailure(
            f"Invalid {schema.__name__} payload: {e.error_count()} error(s)",
            errors=e.errors(include_url=False, include_context=False),
        ) from e


__all__ = [
    "Permission",
    "PermissionCreate",
    "PermissionRequest",
    "PermissionRequestCreate",
    "PermissionType",
    "PermissionUpdate",
    "as_utc",
    "to_decimal",
    "utc_now",
    "validate_payload",
]
