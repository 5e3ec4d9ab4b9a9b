"""
habits/store.py -- SQLAlchemy-backed persistence layer for identity areas,
atomic systems, executions and identity goals.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in habits/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. HabitStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Policy lives here, applied identically to every resource table through a
small set of generic helpers:

  Ownership    -- every query is scoped by user_id. A row owned by someone
                  else is indistinguishable from a missing row.
  Soft delete  -- rows are never physically deleted; is_active=False hides
                  them from every default query.
  Uniqueness   -- name/title is unique among the *active* siblings in a scope
                  (per user for areas, per area for systems and goals). A
                  soft-deleted name is free to reuse.
  Ordering     -- an omitted order becomes max(active sibling order)+1; the
                  first item in a scope gets 0.
  Reorder      -- one transaction. A failure on any row rolls back every row.

Write methods run inside engine.begin() so the policy checks and the write
they guard commit together. Policy violations raise core.errors.AppError;
reads return None for "not found" and the route decides the response.

Security: all queries use bound parameters. No f-strings in SQL.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine

from core.errors import AppError, conflict, not_found
from habits.models import (
    DEFAULT_COLOR,
    AreaSummary,
    AtomicSystem,
    IdentityArea,
    IdentityGoal,
    SystemExecution,
    SystemSummary,
)

logger = logging.getLogger("atomic.habits")

_DEFAULT_DB_URL = "sqlite:///./atomic_systems.db"

# GET /atomic-systems/{id} embeds the most recent executions from this window.
_RECENT_EXECUTION_DAYS = 30
_RECENT_EXECUTION_LIMIT = 50

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_areas = Table(
    "identity_areas",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("description", Text),
    Column("color", String(7), nullable=False, server_default=DEFAULT_COLOR),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint("sort_order >= 0", name="ck_area_order"),
)

_systems = Table(
    "atomic_systems",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("identity_area_id", String(36), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("description", Text),
    Column("cue", Text, nullable=False),
    Column("craving", Text, nullable=False),
    Column("response", Text, nullable=False),
    Column("reward", Text, nullable=False),
    Column("frequency", String(10), nullable=False, server_default="DAILY"),
    Column("time_of_day", String(50)),
    Column("estimated_min", Integer),
    Column("difficulty", Integer, nullable=False, server_default="3"),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint("sort_order >= 0", name="ck_system_order"),
)

_executions = Table(
    "system_executions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("system_id", String(36), nullable=False, index=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("executed_at", String(32), nullable=False),
    Column("quality", Integer, nullable=False, server_default="3"),
    Column("notes", Text),
    Column("strengthens_identity", Boolean, nullable=False, server_default="1"),
)

_goals = Table(
    "identity_goals",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("identity_area_id", String(36), nullable=False, index=True),
    Column("title", String(200), nullable=False),
    Column("description", Text),
    Column("target_value", Float),
    Column("current_value", Float),
    Column("unit", String(50)),
    Column("goal_type", String(12), nullable=False, server_default="EXACT"),
    Column("target_date", String(32)),
    Column("is_achieved", Boolean, nullable=False, server_default="0"),
    Column("achieved_at", String(32)),
    Column("color", String(7), nullable=False, server_default=DEFAULT_COLOR),
    Column("sort_order", Integer, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    CheckConstraint("sort_order >= 0", name="ck_goal_order"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. Set per-connection; SQLite PRAGMAs are not pooled."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _columns(fields: dict) -> dict:
    """Translate domain field names to column names ("order" is reserved in SQL)."""
    out = dict(fields)
    if "order" in out:
        out["sort_order"] = out.pop("order")
    return out


# ---------------------------------------------------------------------------
# Generic owned-resource policy
#
# Every resource table has id, user_id, sort_order, is_active. The helpers
# below take the table plus an optional scope (extra column == value filters,
# e.g. identity_area_id) so one implementation serves areas, systems and goals.
# ---------------------------------------------------------------------------


def _active_owned(table: Table, user_id: str, scope: Optional[dict] = None):
    clause = (table.c.user_id == user_id) & (table.c.is_active.is_(True))
    for col, value in (scope or {}).items():
        clause = clause & (table.c[col] == value)
    return clause


def _fetch_owned(conn: Connection, table: Table, row_id: str, user_id: str):
    return conn.execute(table.select().where((table.c.id == row_id) & _active_owned(table, user_id))).fetchone()


def _name_taken(
    conn: Connection,
    table: Table,
    field: str,
    value: str,
    user_id: str,
    scope: Optional[dict] = None,
    exclude_id: Optional[str] = None,
) -> bool:
    stmt = select(table.c.id).where(_active_owned(table, user_id, scope) & (table.c[field] == value))
    if exclude_id is not None:
        stmt = stmt.where(table.c.id != exclude_id)
    return conn.execute(stmt.limit(1)).fetchone() is not None


def _next_order(conn: Connection, table: Table, user_id: str, scope: Optional[dict] = None) -> int:
    current = conn.execute(select(func.max(table.c.sort_order)).where(_active_owned(table, user_id, scope))).scalar()
    return 0 if current is None else current + 1


def _soft_delete(conn: Connection, table: Table, row_id: str) -> None:
    conn.execute(table.update().where(table.c.id == row_id).values(is_active=False, updated_at=_now_iso()))


def _apply_order(
    conn: Connection,
    table: Table,
    user_id: str,
    pairs: list[tuple[str, int]],
    scope: Optional[dict] = None,
) -> None:
    """Write each (id, order) pair. Caller supplies the transaction.

    Raises NOT_FOUND unless every id is an active row owned by user_id inside
    scope. Duplicate ids count as a mismatch.
    """
    ids = [row_id for row_id, _ in pairs]
    found = conn.execute(
        select(func.count()).select_from(table).where(_active_owned(table, user_id, scope) & table.c.id.in_(ids))
    ).scalar()
    if found != len(ids):
        raise not_found("One or more items not found")
    now = _now_iso()
    for row_id, order in pairs:
        conn.execute(table.update().where(table.c.id == row_id).values(sort_order=order, updated_at=now))


def _require_area(conn: Connection, area_id: str, user_id: str):
    row = _fetch_owned(conn, _areas, area_id, user_id)
    if row is None:
        raise not_found("Identity area not found", code="IDENTITY_AREA_NOT_FOUND")
    return row


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class HabitStore:
    """Repository for identity areas, atomic systems, executions and goals.

    Usage:
        store = HabitStore()                                # SQLite default
        store = HabitStore("postgresql://user:pw@host/db")  # PostgreSQL
        area = store.create_area(IdentityArea(user_id=uid, name="Health"))
        store.list_areas(uid)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a threadpool; connections cross threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Identity areas
    # ------------------------------------------------------------------

    def list_areas(self, user_id: str) -> list[IdentityArea]:
        """Active areas ordered by (order asc, created_at desc), each with its active systems."""
        with self.engine.connect() as conn:
            return self._list_areas(conn, user_id)

    def _list_areas(self, conn: Connection, user_id: str) -> list[IdentityArea]:
        rows = conn.execute(
            _areas.select()
            .where(_active_owned(_areas, user_id))
            .order_by(_areas.c.sort_order.asc(), _areas.c.created_at.desc())
        ).fetchall()
        children = self._system_summaries(conn, user_id, [r.id for r in rows])
        return [_row_to_area(r, children.get(r.id, [])) for r in rows]

    def get_area(self, user_id: str, area_id: str) -> Optional[IdentityArea]:
        """Fetch one active owned area with its active systems. None if absent or foreign."""
        with self.engine.connect() as conn:
            row = _fetch_owned(conn, _areas, area_id, user_id)
            if row is None:
                return None
            children = self._system_summaries(conn, user_id, [area_id])
        return _row_to_area(row, children.get(area_id, []))

    def create_area(self, area: IdentityArea) -> IdentityArea:
        """Insert a new area. Raises DUPLICATE_NAME if an active sibling already uses the name."""
        area_id = _new_id()
        now = _now_iso()
        with self.engine.begin() as conn:
            if _name_taken(conn, _areas, "name", area.name, area.user_id):
                raise conflict("An identity area with this name already exists", "DUPLICATE_NAME")
            order = area.order if area.order is not None else _next_order(conn, _areas, area.user_id)
            conn.execute(
                _areas.insert().values(
                    id=area_id,
                    user_id=area.user_id,
                    name=area.name,
                    description=area.description,
                    color=area.color or DEFAULT_COLOR,
                    sort_order=order,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
            )
        return self.get_area(area.user_id, area_id)

    def update_area(self, user_id: str, area_id: str, **fields) -> IdentityArea:
        """Update any subset of name, description, color, order.

        Raises NOT_FOUND for a missing/foreign/inactive area and DUPLICATE_NAME
        when renamed onto an active sibling.
        """
        with self.engine.begin() as conn:
            existing = _fetch_owned(conn, _areas, area_id, user_id)
            if existing is None:
                raise not_found("Identity area not found")
            new_name = fields.get("name")
            if new_name and new_name != existing.name:
                if _name_taken(conn, _areas, "name", new_name, user_id, exclude_id=area_id):
                    raise conflict("An identity area with this name already exists", "DUPLICATE_NAME")
            if fields:
                values = _columns(fields)
                values["updated_at"] = _now_iso()
                conn.execute(_areas.update().where(_areas.c.id == area_id).values(**values))
        return self.get_area(user_id, area_id)

    def delete_area(self, user_id: str, area_id: str) -> None:
        """Soft-delete an area. Refused with HAS_ACTIVE_SYSTEMS while any active system references it."""
        with self.engine.begin() as conn:
            if _fetch_owned(conn, _areas, area_id, user_id) is None:
                raise not_found("Identity area not found")
            active_children = conn.execute(
                select(func.count())
                .select_from(_systems)
                .where(_active_owned(_systems, user_id, {"identity_area_id": area_id}))
            ).scalar()
            if active_children:
                raise conflict(
                    "Cannot delete identity area with active systems. Please delete or reassign systems first.",
                    "HAS_ACTIVE_SYSTEMS",
                )
            _soft_delete(conn, _areas, area_id)

    def reorder_areas(self, user_id: str, pairs: list[tuple[str, int]]) -> list[IdentityArea]:
        """Apply explicit (id, order) pairs atomically and return the re-sorted list."""
        with self.engine.begin() as conn:
            _apply_order(conn, _areas, user_id, pairs)
        return self.list_areas(user_id)

    def _system_summaries(self, conn: Connection, user_id: str, area_ids: list[str]) -> dict[str, list[SystemSummary]]:
        if not area_ids:
            return {}
        rows = conn.execute(
            select(_systems.c.id, _systems.c.name, _systems.c.is_active, _systems.c.identity_area_id)
            .where(_active_owned(_systems, user_id) & _systems.c.identity_area_id.in_(area_ids))
            .order_by(_systems.c.sort_order.asc(), _systems.c.created_at.desc())
        ).fetchall()
        grouped: dict[str, list[SystemSummary]] = {}
        for r in rows:
            grouped.setdefault(r.identity_area_id, []).append(
                SystemSummary(id=r.id, name=r.name, is_active=bool(r.is_active))
            )
        return grouped

    def _area_summaries(self, conn: Connection, area_ids: Iterable[str]) -> dict[str, AreaSummary]:
        ids = list(set(area_ids))
        if not ids:
            return {}
        rows = conn.execute(select(_areas.c.id, _areas.c.name, _areas.c.color).where(_areas.c.id.in_(ids))).fetchall()
        return {r.id: AreaSummary(id=r.id, name=r.name, color=r.color) for r in rows}

    # ------------------------------------------------------------------
    # Atomic systems
    # ------------------------------------------------------------------

    def list_systems(self, user_id: str, identity_area_id: Optional[str] = None) -> list[AtomicSystem]:
        """Active systems ordered by (identity_area_id, order asc, created_at desc).

        identity_area_id narrows the result but can never widen it: the
        user_id scope always applies.
        """
        scope = {"identity_area_id": identity_area_id} if identity_area_id else None
        with self.engine.connect() as conn:
            rows = conn.execute(
                _systems.select()
                .where(_active_owned(_systems, user_id, scope))
                .order_by(
                    _systems.c.identity_area_id.asc(),
                    _systems.c.sort_order.asc(),
                    _systems.c.created_at.desc(),
                )
            ).fetchall()
            areas = self._area_summaries(conn, (r.identity_area_id for r in rows))
            counts = self._execution_counts(conn, [r.id for r in rows])
        return [_row_to_system(r, areas.get(r.identity_area_id), counts.get(r.id, 0)) for r in rows]

    def get_system(self, user_id: str, system_id: str) -> Optional[AtomicSystem]:
        """Fetch one active owned system with its area summary and recent executions."""
        since = (datetime.now(timezone.utc) - timedelta(days=_RECENT_EXECUTION_DAYS)).isoformat()
        with self.engine.connect() as conn:
            row = _fetch_owned(conn, _systems, system_id, user_id)
            if row is None:
                return None
            areas = self._area_summaries(conn, [row.identity_area_id])
            counts = self._execution_counts(conn, [system_id])
            recent = conn.execute(
                _executions.select()
                .where((_executions.c.system_id == system_id) & (_executions.c.executed_at >= since))
                .order_by(_executions.c.executed_at.desc())
                .limit(_RECENT_EXECUTION_LIMIT)
            ).fetchall()
        system = _row_to_system(row, areas.get(row.identity_area_id), counts.get(system_id, 0))
        system.executions = [_row_to_execution(r) for r in recent]
        return system

    def create_system(self, system: AtomicSystem) -> AtomicSystem:
        """Insert a new system under an owned, active area.

        Raises IDENTITY_AREA_NOT_FOUND if the parent is missing/foreign/inactive
        and DUPLICATE_NAME if an active system in that area has the same name.
        """
        system_id = _new_id()
        now = _now_iso()
        scope = {"identity_area_id": system.identity_area_id}
        with self.engine.begin() as conn:
            _require_area(conn, system.identity_area_id, system.user_id)
            if _name_taken(conn, _systems, "name", system.name, system.user_id, scope):
                raise conflict("An atomic system with this name already exists in this identity area", "DUPLICATE_NAME")
            order = system.order if system.order is not None else _next_order(conn, _systems, system.user_id, scope)
            conn.execute(
                _systems.insert().values(
                    id=system_id,
                    user_id=system.user_id,
                    identity_area_id=system.identity_area_id,
                    name=system.name,
                    description=system.description,
                    cue=system.cue,
                    craving=system.craving,
                    response=system.response,
                    reward=system.reward,
                    frequency=system.frequency or "DAILY",
                    time_of_day=system.time_of_day,
                    estimated_min=system.estimated_min,
                    difficulty=system.difficulty or 3,
                    sort_order=order,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
            )
        return self.get_system(system.user_id, system_id)

    def update_system(self, user_id: str, system_id: str, **fields) -> AtomicSystem:
        """Update mutable system fields. The parent area cannot change here."""
        fields.pop("identity_area_id", None)
        with self.engine.begin() as conn:
            existing = _fetch_owned(conn, _systems, system_id, user_id)
            if existing is None:
                raise not_found("Atomic system not found")
            new_name = fields.get("name")
            if new_name and new_name != existing.name:
                scope = {"identity_area_id": existing.identity_area_id}
                if _name_taken(conn, _systems, "name", new_name, user_id, scope, exclude_id=system_id):
                    raise conflict(
                        "An atomic system with this name already exists in this identity area", "DUPLICATE_NAME"
                    )
            if fields:
                values = _columns(fields)
                values["updated_at"] = _now_iso()
                conn.execute(_systems.update().where(_systems.c.id == system_id).values(**values))
        return self.get_system(user_id, system_id)

    def delete_system(self, user_id: str, system_id: str) -> None:
        with self.engine.begin() as conn:
            if _fetch_owned(conn, _systems, system_id, user_id) is None:
                raise not_found("Atomic system not found")
            _soft_delete(conn, _systems, system_id)

    def _execution_counts(self, conn: Connection, system_ids: list[str]) -> dict[str, int]:
        if not system_ids:
            return {}
        rows = conn.execute(
            select(_executions.c.system_id, func.count().label("n"))
            .where(_executions.c.system_id.in_(system_ids))
            .group_by(_executions.c.system_id)
        ).fetchall()
        return {r.system_id: r.n for r in rows}

    # ------------------------------------------------------------------
    # Executions (append-only)
    # ------------------------------------------------------------------

    def create_execution(self, execution: SystemExecution) -> SystemExecution:
        """Append one execution for an owned, active system.

        No uniqueness or rate constraint: several executions per day are
        allowed. The system row itself is not touched.
        """
        execution_id = _new_id()
        executed_at = execution.executed_at or _now_iso()
        with self.engine.begin() as conn:
            if _fetch_owned(conn, _systems, execution.system_id, execution.user_id) is None:
                raise not_found("Atomic system not found")
            conn.execute(
                _executions.insert().values(
                    id=execution_id,
                    system_id=execution.system_id,
                    user_id=execution.user_id,
                    executed_at=executed_at,
                    quality=execution.quality,
                    notes=execution.notes,
                    strengthens_identity=execution.strengthens_identity,
                )
            )
            row = conn.execute(_executions.select().where(_executions.c.id == execution_id)).fetchone()
        return _row_to_execution(row)

    def list_executions(self, user_id: str, system_id: str, limit: int = 50) -> Optional[list[SystemExecution]]:
        """Newest-first execution log for an owned, active system. None if the system is not visible."""
        with self.engine.connect() as conn:
            if _fetch_owned(conn, _systems, system_id, user_id) is None:
                return None
            rows = conn.execute(
                _executions.select()
                .where((_executions.c.system_id == system_id) & (_executions.c.user_id == user_id))
                .order_by(_executions.c.executed_at.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_execution(r) for r in rows]

    # ------------------------------------------------------------------
    # Identity goals
    # ------------------------------------------------------------------

    def list_goals(self, user_id: str, identity_area_id: Optional[str] = None) -> list[IdentityGoal]:
        scope = {"identity_area_id": identity_area_id} if identity_area_id else None
        with self.engine.connect() as conn:
            return self._list_goals(conn, user_id, scope)

    def _list_goals(self, conn: Connection, user_id: str, scope: Optional[dict]) -> list[IdentityGoal]:
        rows = conn.execute(
            _goals.select()
            .where(_active_owned(_goals, user_id, scope))
            .order_by(_goals.c.sort_order.asc(), _goals.c.created_at.desc())
        ).fetchall()
        areas = self._area_summaries(conn, (r.identity_area_id for r in rows))
        return [_row_to_goal(r, areas.get(r.identity_area_id)) for r in rows]

    def get_goal(self, user_id: str, goal_id: str) -> Optional[IdentityGoal]:
        with self.engine.connect() as conn:
            row = _fetch_owned(conn, _goals, goal_id, user_id)
            if row is None:
                return None
            areas = self._area_summaries(conn, [row.identity_area_id])
        return _row_to_goal(row, areas.get(row.identity_area_id))

    def create_goal(self, goal: IdentityGoal) -> IdentityGoal:
        """Insert a new goal under an owned, active area.

        Raises IDENTITY_AREA_NOT_FOUND and DUPLICATE_NAME (title taken by an
        active goal in the same area).
        """
        goal_id = _new_id()
        now = _now_iso()
        scope = {"identity_area_id": goal.identity_area_id}
        with self.engine.begin() as conn:
            _require_area(conn, goal.identity_area_id, goal.user_id)
            if _name_taken(conn, _goals, "title", goal.title, goal.user_id, scope):
                raise conflict("A goal with this title already exists in this identity area", "DUPLICATE_NAME")
            order = goal.order if goal.order is not None else _next_order(conn, _goals, goal.user_id, scope)
            conn.execute(
                _goals.insert().values(
                    id=goal_id,
                    user_id=goal.user_id,
                    identity_area_id=goal.identity_area_id,
                    title=goal.title,
                    description=goal.description,
                    target_value=goal.target_value,
                    current_value=goal.current_value,
                    unit=goal.unit,
                    goal_type=goal.goal_type or "EXACT",
                    target_date=goal.target_date,
                    is_achieved=False,
                    achieved_at=None,
                    color=goal.color or DEFAULT_COLOR,
                    sort_order=order,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
            )
        return self.get_goal(goal.user_id, goal_id)

    def update_goal(self, user_id: str, goal_id: str, **fields) -> IdentityGoal:
        """Update goal fields, including moving it to another owned area.

        The title uniqueness check runs against the goal's area after the
        update (the new one when identity_area_id changes).
        """
        with self.engine.begin() as conn:
            existing = _fetch_owned(conn, _goals, goal_id, user_id)
            if existing is None:
                raise not_found("Identity goal not found")
            target_area = fields.get("identity_area_id") or existing.identity_area_id
            if target_area != existing.identity_area_id:
                _require_area(conn, target_area, user_id)
            title = fields.get("title") or existing.title
            if title != existing.title or target_area != existing.identity_area_id:
                scope = {"identity_area_id": target_area}
                if _name_taken(conn, _goals, "title", title, user_id, scope, exclude_id=goal_id):
                    raise conflict("A goal with this title already exists in this identity area", "DUPLICATE_NAME")
            if fields:
                values = _columns(fields)
                values["updated_at"] = _now_iso()
                conn.execute(_goals.update().where(_goals.c.id == goal_id).values(**values))
        return self.get_goal(user_id, goal_id)

    def update_goal_progress(
        self, user_id: str, goal_id: str, current_value: float, is_achieved: Optional[bool] = None
    ) -> IdentityGoal:
        """Record progress. achieved_at is stamped when is_achieved is True, cleared otherwise."""
        achieved = bool(is_achieved)
        now = _now_iso()
        with self.engine.begin() as conn:
            if _fetch_owned(conn, _goals, goal_id, user_id) is None:
                raise not_found("Identity goal not found")
            conn.execute(
                _goals.update()
                .where(_goals.c.id == goal_id)
                .values(
                    current_value=current_value,
                    is_achieved=achieved,
                    achieved_at=now if achieved else None,
                    updated_at=now,
                )
            )
        return self.get_goal(user_id, goal_id)

    def delete_goal(self, user_id: str, goal_id: str) -> None:
        with self.engine.begin() as conn:
            if _fetch_owned(conn, _goals, goal_id, user_id) is None:
                raise not_found("Identity goal not found")
            _soft_delete(conn, _goals, goal_id)

    def reorder_goals(self, user_id: str, area_id: str, goal_ids: list[str]) -> list[IdentityGoal]:
        """Set each goal's order to its position in goal_ids, atomically.

        Every id must be an active goal of this user inside area_id.
        """
        scope = {"identity_area_id": area_id}
        with self.engine.begin() as conn:
            _require_area(conn, area_id, user_id)
            _apply_order(conn, _goals, user_id, [(gid, i) for i, gid in enumerate(goal_ids)], scope)
        with self.engine.connect() as conn:
            return self._list_goals(conn, user_id, scope)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_area(row, systems: list[SystemSummary]) -> IdentityArea:
    return IdentityArea(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        description=row.description,
        color=row.color,
        order=row.sort_order,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        systems=systems,
        system_count=len(systems),
    )


def _row_to_system(row, area: Optional[AreaSummary], execution_count: int) -> AtomicSystem:
    return AtomicSystem(
        id=row.id,
        user_id=row.user_id,
        identity_area_id=row.identity_area_id,
        name=row.name,
        description=row.description,
        cue=row.cue,
        craving=row.craving,
        response=row.response,
        reward=row.reward,
        frequency=row.frequency,
        time_of_day=row.time_of_day,
        estimated_min=row.estimated_min,
        difficulty=row.difficulty,
        order=row.sort_order,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        identity_area=area,
        execution_count=execution_count,
    )


def _row_to_execution(row) -> SystemExecution:
    return SystemExecution(
        id=row.id,
        system_id=row.system_id,
        user_id=row.user_id,
        executed_at=row.executed_at,
        quality=row.quality,
        notes=row.notes,
        strengthens_identity=bool(row.strengthens_identity),
    )


def _row_to_goal(row, area: Optional[AreaSummary]) -> IdentityGoal:
    return IdentityGoal(
        id=row.id,
        user_id=row.user_id,
        identity_area_id=row.identity_area_id,
        title=row.title,
        description=row.description,
        target_value=row.target_value,
        current_value=row.current_value,
        unit=row.unit,
        goal_type=row.goal_type,
        target_date=row.target_date,
        is_achieved=bool(row.is_achieved),
        achieved_at=row.achieved_at,
        color=row.color,
        order=row.sort_order,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        identity_area=area,
    )
