"""
habits/models.py -- Domain dataclasses for identity areas, systems, executions and goals.

These are pure data containers with zero logic. Ownership, uniqueness,
ordering and soft-delete rules live in habits/store.py.

id is None before the record is written to the database. Timestamps are
ISO 8601 UTC strings set by the store.
"""

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_COLOR = "#3B82F6"

FREQUENCIES = ("DAILY", "WEEKLY", "CUSTOM")
GOAL_TYPES = ("ABOVE", "BELOW", "EXACT", "QUALITATIVE")


@dataclass
class SystemSummary:
    """A child system as embedded in an identity area response."""

    id: str
    name: str
    is_active: bool = True


@dataclass
class AreaSummary:
    """The parent area as embedded in system and goal responses."""

    id: str
    name: str
    color: str


@dataclass
class IdentityArea:
    """Who the user wants to become ("Health", "Writer", ...).

    systems and system_count are aggregates filled by the store on read; they
    count active children only.
    """

    user_id: str
    name: str
    description: Optional[str] = None
    color: str = DEFAULT_COLOR
    order: Optional[int] = None  # assigned by the store when omitted
    is_active: bool = True
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    systems: list[SystemSummary] = field(default_factory=list)
    system_count: int = 0


@dataclass
class SystemExecution:
    """One completion of an atomic system. Append-only: never updated or deleted."""

    system_id: str
    user_id: str
    quality: int = 3
    notes: Optional[str] = None
    strengthens_identity: bool = True
    executed_at: str = ""
    id: Optional[str] = None


@dataclass
class AtomicSystem:
    """A habit loop attached to an identity area.

    cue / craving / response / reward map to the four laws of behaviour change
    and are all required.
    """

    user_id: str
    identity_area_id: str
    name: str
    cue: str
    craving: str
    response: str
    reward: str
    description: Optional[str] = None
    frequency: str = "DAILY"
    time_of_day: Optional[str] = None
    estimated_min: Optional[int] = None
    difficulty: int = 3
    order: Optional[int] = None  # assigned by the store when omitted
    is_active: bool = True
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    identity_area: Optional[AreaSummary] = None
    execution_count: int = 0
    executions: list[SystemExecution] = field(default_factory=list)


@dataclass
class IdentityGoal:
    """A measurable (or qualitative) target inside an identity area.

    achieved_at is set exactly when is_achieved flips to True through a
    progress update and cleared whenever it is set back to False.
    """

    user_id: str
    identity_area_id: str
    title: str
    description: Optional[str] = None
    target_value: Optional[float] = None
    current_value: Optional[float] = None
    unit: Optional[str] = None
    goal_type: str = "EXACT"
    target_date: Optional[str] = None
    is_achieved: bool = False
    achieved_at: Optional[str] = None
    color: str = DEFAULT_COLOR
    order: Optional[int] = None  # assigned by the store when omitted
    is_active: bool = True
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    identity_area: Optional[AreaSummary] = None
