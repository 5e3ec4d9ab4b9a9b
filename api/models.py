"""
API request and response models for the Atomic Systems REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
habits/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire format: JSON keys are camelCase (identityAreaId, strengthensIdentity).
Python attributes stay snake_case; the alias generator bridges them, and
populate_by_name lets handlers and tests construct models by attribute name.

Separation of concerns: domain models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import TokenPair, User
from habits.models import (
    AreaSummary,
    AtomicSystem,
    IdentityArea,
    IdentityGoal,
    SystemExecution,
    SystemSummary,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FrequencyEnum(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    CUSTOM = "CUSTOM"


class GoalTypeEnum(str, Enum):
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    EXACT = "EXACT"
    QUALITATIVE = "QUALITATIVE"


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope shared by every endpoint: {success, data, message}."""

    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error envelope: {success: false, error, code, details?}.

    details is dropped from the JSON when absent (model_dump(exclude_none=True)).
    """

    success: bool = False
    error: str
    code: str
    details: Optional[Any] = None


class FieldError(BaseModel):
    field: str
    message: str


# ---------------------------------------------------------------------------
# Auth request models
#
# Register/login/refresh fields are Optional at the schema level so an absent
# field produces the 400 MISSING_FIELDS / MISSING_REFRESH_TOKEN codes clients
# expect, instead of a generic 422.
# ---------------------------------------------------------------------------


class _Credentials(CamelModel):
    """Passwords are taken byte for byte; only email and name are trimmed."""

    model_config = ConfigDict(str_strip_whitespace=False)

    @field_validator("email", "name", check_fields=False)
    @classmethod
    def strip_identity_fields(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value


class RegisterRequest(_Credentials):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class LoginRequest(_Credentials):
    email: Optional[str] = None
    password: Optional[str] = None


class RefreshRequest(CamelModel):
    """Body for POST /auth/refresh and POST /auth/logout."""

    refresh_token: Optional[str] = None


class ProfileUpdate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None


# ---------------------------------------------------------------------------
# Resource request models
# ---------------------------------------------------------------------------


class _Patch(CamelModel):
    """Base for partial updates.

    changes() returns only the fields the client actually sent. An explicit
    null is honoured only for fields listed in nullable_fields; for every other
    field null means "leave unchanged".
    """

    nullable_fields: ClassVar[frozenset[str]] = frozenset()

    def changes(self) -> dict:
        sent = self.model_dump(exclude_unset=True)
        return {k: v for k, v in sent.items() if v is not None or k in self.nullable_fields}


class AreaCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    order: Optional[int] = Field(default=None, ge=0)


class AreaUpdate(_Patch):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description"})

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    order: Optional[int] = Field(default=None, ge=0)


class AreaOrder(CamelModel):
    id: str = Field(min_length=1)
    order: int = Field(ge=0)


class AreaReorder(CamelModel):
    areas: list[AreaOrder] = Field(min_length=1)


class SystemCreate(CamelModel):
    identity_area_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    cue: str = Field(min_length=1, max_length=500)
    craving: str = Field(min_length=1, max_length=500)
    response: str = Field(min_length=1, max_length=500)
    reward: str = Field(min_length=1, max_length=500)
    frequency: FrequencyEnum = Field(default=FrequencyEnum.DAILY, validate_default=True)
    time_of_day: Optional[str] = Field(default=None, max_length=50)
    estimated_min: Optional[int] = Field(default=None, ge=1, le=480)
    difficulty: int = Field(default=3, ge=1, le=5)
    order: Optional[int] = Field(default=None, ge=0)


class SystemUpdate(_Patch):
    """identityAreaId is accepted for compatibility but never applied."""

    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description", "time_of_day", "estimated_min"})

    identity_area_id: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    cue: Optional[str] = Field(default=None, min_length=1, max_length=500)
    craving: Optional[str] = Field(default=None, min_length=1, max_length=500)
    response: Optional[str] = Field(default=None, min_length=1, max_length=500)
    reward: Optional[str] = Field(default=None, min_length=1, max_length=500)
    frequency: Optional[FrequencyEnum] = None
    time_of_day: Optional[str] = Field(default=None, max_length=50)
    estimated_min: Optional[int] = Field(default=None, ge=1, le=480)
    difficulty: Optional[int] = Field(default=None, ge=1, le=5)
    order: Optional[int] = Field(default=None, ge=0)


class ExecuteRequest(CamelModel):
    quality: int = Field(default=3, ge=1, le=5)
    notes: Optional[str] = Field(default=None, max_length=1000)
    strengthens_identity: bool = True


class GoalCreate(CamelModel):
    identity_area_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_value: Optional[float] = None
    current_value: Optional[float] = None
    unit: Optional[str] = Field(default=None, max_length=50)
    goal_type: GoalTypeEnum = Field(default=GoalTypeEnum.EXACT, validate_default=True)
    target_date: Optional[datetime] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    order: Optional[int] = Field(default=None, ge=0)


class GoalUpdate(_Patch):
    nullable_fields: ClassVar[frozenset[str]] = frozenset(
        {"description", "target_value", "current_value", "unit", "target_date"}
    )

    identity_area_id: Optional[str] = Field(default=None, min_length=1)
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_value: Optional[float] = None
    current_value: Optional[float] = None
    unit: Optional[str] = Field(default=None, max_length=50)
    goal_type: Optional[GoalTypeEnum] = None
    target_date: Optional[datetime] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    order: Optional[int] = Field(default=None, ge=0)


class ProgressUpdate(CamelModel):
    current_value: float
    is_achieved: Optional[bool] = None


class GoalReorder(CamelModel):
    goal_ids: list[str] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(CamelModel):
    """Public view of a user. Never carries the password hash."""

    id: str
    email: str
    name: str
    is_active: bool
    is_premium: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            is_active=user.is_active,
            is_premium=user.is_premium,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokensOut(CamelModel):
    access_token: str
    refresh_token: str

    @classmethod
    def from_domain(cls, pair: TokenPair) -> "TokensOut":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token)


class AuthOut(CamelModel):
    user: UserOut
    tokens: TokensOut


class SystemSummaryOut(CamelModel):
    id: str
    name: str
    is_active: bool

    @classmethod
    def from_domain(cls, s: SystemSummary) -> "SystemSummaryOut":
        return cls(id=s.id, name=s.name, is_active=s.is_active)


class AreaSummaryOut(CamelModel):
    id: str
    name: str
    color: str

    @classmethod
    def from_domain(cls, a: Optional[AreaSummary]) -> Optional["AreaSummaryOut"]:
        if a is None:
            return None
        return cls(id=a.id, name=a.name, color=a.color)


class AreaOut(CamelModel):
    id: str
    user_id: str
    name: str
    description: Optional[str]
    color: str
    order: int
    is_active: bool
    created_at: str
    updated_at: str
    systems: list[SystemSummaryOut]
    system_count: int

    @classmethod
    def from_domain(cls, area: IdentityArea) -> "AreaOut":
        """Factory Method -- the mapping lives next to the output model, not in handlers."""
        return cls(
            id=area.id,
            user_id=area.user_id,
            name=area.name,
            description=area.description,
            color=area.color,
            order=area.order,
            is_active=area.is_active,
            created_at=area.created_at,
            updated_at=area.updated_at,
            systems=[SystemSummaryOut.from_domain(s) for s in area.systems],
            system_count=area.system_count,
        )


class ExecutionOut(CamelModel):
    id: str
    system_id: str
    user_id: str
    executed_at: str
    quality: int
    notes: Optional[str]
    strengthens_identity: bool

    @classmethod
    def from_domain(cls, e: SystemExecution) -> "ExecutionOut":
        return cls(
            id=e.id,
            system_id=e.system_id,
            user_id=e.user_id,
            executed_at=e.executed_at,
            quality=e.quality,
            notes=e.notes,
            strengthens_identity=e.strengthens_identity,
        )


class SystemOut(CamelModel):
    """One atomic system.

    executions is populated only on GET /atomic-systems/{id}; list rows carry
    executionCount alone.
    """

    id: str
    user_id: str
    identity_area_id: str
    name: str
    description: Optional[str]
    cue: str
    craving: str
    response: str
    reward: str
    frequency: str
    time_of_day: Optional[str]
    estimated_min: Optional[int]
    difficulty: int
    order: int
    is_active: bool
    created_at: str
    updated_at: str
    identity_area: Optional[AreaSummaryOut]
    execution_count: int
    executions: Optional[list[ExecutionOut]] = None

    @classmethod
    def from_domain(cls, system: AtomicSystem, with_executions: bool = False) -> "SystemOut":
        return cls(
            id=system.id,
            user_id=system.user_id,
            identity_area_id=system.identity_area_id,
            name=system.name,
            description=system.description,
            cue=system.cue,
            craving=system.craving,
            response=system.response,
            reward=system.reward,
            frequency=system.frequency,
            time_of_day=system.time_of_day,
            estimated_min=system.estimated_min,
            difficulty=system.difficulty,
            order=system.order,
            is_active=system.is_active,
            created_at=system.created_at,
            updated_at=system.updated_at,
            identity_area=AreaSummaryOut.from_domain(system.identity_area),
            execution_count=system.execution_count,
            executions=[ExecutionOut.from_domain(e) for e in system.executions] if with_executions else None,
        )


class GoalOut(CamelModel):
    id: str
    user_id: str
    identity_area_id: str
    title: str
    description: Optional[str]
    target_value: Optional[float]
    current_value: Optional[float]
    unit: Optional[str]
    goal_type: str
    target_date: Optional[str]
    is_achieved: bool
    achieved_at: Optional[str]
    color: str
    order: int
    is_active: bool
    created_at: str
    updated_at: str
    identity_area: Optional[AreaSummaryOut]

    @classmethod
    def from_domain(cls, goal: IdentityGoal) -> "GoalOut":
        return cls(
            id=goal.id,
            user_id=goal.user_id,
            identity_area_id=goal.identity_area_id,
            title=goal.title,
            description=goal.description,
            target_value=goal.target_value,
            current_value=goal.current_value,
            unit=goal.unit,
            goal_type=goal.goal_type,
            target_date=goal.target_date,
            is_achieved=goal.is_achieved,
            achieved_at=goal.achieved_at,
            color=goal.color,
            order=goal.order,
            is_active=goal.is_active,
            created_at=goal.created_at,
            updated_at=goal.updated_at,
            identity_area=AreaSummaryOut.from_domain(goal.identity_area),
        )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(CamelModel):
    """Response body for GET /api/v1/health."""

    status: str
    timestamp: str
    version: str
    environment: str
    database: str
    uptime: float


class DbHealthResponse(CamelModel):
    """Response body for GET /api/v1/health/db."""

    status: str
    response_time: Optional[str] = None
    timestamp: str
