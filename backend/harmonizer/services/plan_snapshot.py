"""
Plan snapshot loader.

Reads everything one harmonization analysis needs (the target plan, its
tasks, the tenant's donor plans and their done tasks) and returns it as
immutable values detached from the session. Plans are read in one statement
and task rows in another, so each task appears exactly once with one status.
A bounded id read ahead of the task read enforces the donor-task limit.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.models.implementation import (
    IDLE_PLAN_STATUSES,
    SATISFIED_TASK_STATUSES,
    ImplementationPlan,
    ImplementationTask,
)
from harmonizer.services.control_catalog import normalize_code
from harmonizer.services.exceptions import (
    InvalidStateError,
    NotFoundError,
    SnapshotTooLargeError,
    UnavailableError,
)

logger = logging.getLogger(__name__)

# "A.5.1 Information security policies" → "A.5.1"
_TITLE_CODE_RE = re.compile(r"^[A-Z0-9]+(\.[A-Z0-9]+)+")
# tags like "A.5.1", "CC6.1", "NIST-RC-IM"
_TAG_CODE_RE = re.compile(r"^[A-Z0-9]+[-.][A-Z0-9.-]+$", re.IGNORECASE)


def effective_control_code(
    control_code: str | None, title: str | None, tags: list | None = None,
) -> str | None:
    """Control code of a task, falling back to its title prefix or tags for older rows."""
    code = normalize_code(control_code)
    if code:
        return code
    if title and _TITLE_CODE_RE.match(title):
        return title.split(" ")[0]
    for tag in tags or []:
        if isinstance(tag, str) and len(tag) > 2 and _TAG_CODE_RE.match(tag):
            return tag
    return None


@dataclass(frozen=True)
class PlanRef:
    id: int
    client_id: int
    framework_id: int | None
    title: str
    status: str
    estimated_hours: int | None


@dataclass(frozen=True)
class TaskRef:
    id: int
    plan_id: int
    title: str
    status: str
    control_code: str | None
    estimated_hours: int | None
    # code guessed from the title or tags rather than stored on the task
    code_derived: bool = False

    @property
    def is_done(self) -> bool:
        return self.status in SATISFIED_TASK_STATUSES


@dataclass(frozen=True)
class DonorPlan:
    plan: PlanRef
    done_tasks: tuple[TaskRef, ...] = ()


@dataclass(frozen=True)
class PlanSnapshot:
    target_plan: PlanRef
    target_tasks: tuple[TaskRef, ...] = ()
    donors: tuple[DonorPlan, ...] = field(default_factory=tuple)

    @property
    def donor_task_count(self) -> int:
        return sum(len(d.done_tasks) for d in self.donors)


def _plan_ref(p: ImplementationPlan) -> PlanRef:
    return PlanRef(
        id=p.id,
        client_id=p.client_id,
        framework_id=p.framework_id,
        title=p.title,
        status=p.status,
        estimated_hours=p.estimated_hours,
    )


# TaskRef only needs these; description and the rest stay in the database
_TASK_COLUMNS = (
    ImplementationTask.id,
    ImplementationTask.implementation_plan_id,
    ImplementationTask.title,
    ImplementationTask.status,
    ImplementationTask.control_code,
    ImplementationTask.tags,
    ImplementationTask.estimated_hours,
)


def _task_ref(row) -> TaskRef:
    explicit = normalize_code(row.control_code)
    code = explicit or effective_control_code(None, row.title, row.tags)
    return TaskRef(
        id=row.id,
        plan_id=row.implementation_plan_id,
        title=row.title,
        status=row.status,
        control_code=code,
        estimated_hours=row.estimated_hours,
        code_derived=code is not None and not explicit,
    )


class PlanSnapshotLoader:
    """Loads a PlanSnapshot for one target plan."""

    def __init__(
        self,
        session: AsyncSession,
        max_donor_plans: int | None = None,
        max_donor_tasks: int | None = None,
    ):
        self.session = session
        self.max_donor_plans = max_donor_plans
        self.max_donor_tasks = max_donor_tasks

    async def load(self, target_plan_id: int) -> PlanSnapshot:
        try:
            return await self._load(target_plan_id)
        except SQLAlchemyError as exc:
            logger.exception("Snapshot read failed for plan %s", target_plan_id)
            raise UnavailableError(f"Could not read plan {target_plan_id}: {exc}") from exc

    def _too_many_donor_tasks(self, target: PlanRef, found: str) -> SnapshotTooLargeError:
        logger.warning(
            "Plan %s: %s donor tasks exceeds limit %d", target.id, found, self.max_donor_tasks,
        )
        return SnapshotTooLargeError(
            f"Client {target.client_id} has {found} completed tasks to scan "
            f"(limit {self.max_donor_tasks}); narrow the scope"
        )

    async def _load(self, target_plan_id: int) -> PlanSnapshot:
        # every plan of the target's tenant, in one statement
        tenant_q = (
            select(ImplementationPlan.client_id)
            .where(ImplementationPlan.id == target_plan_id)
            .scalar_subquery()
        )
        plans_q = (
            select(ImplementationPlan)
            .where(ImplementationPlan.client_id == tenant_q)
            .order_by(ImplementationPlan.id)
        )
        plans = [_plan_ref(p) for p in (await self.session.execute(plans_q)).scalars().all()]

        target = next((p for p in plans if p.id == target_plan_id), None)
        if target is None:
            raise NotFoundError(f"Implementation plan {target_plan_id} not found")
        if target.framework_id is None:
            raise InvalidStateError(
                f"Implementation plan {target_plan_id} has no framework; cannot resolve its controls"
            )

        donor_plans = [
            p for p in plans if p.id != target.id and p.status not in IDLE_PLAN_STATUSES
        ]
        if self.max_donor_plans is not None and len(donor_plans) > self.max_donor_plans:
            logger.warning(
                "Plan %s: %d donor plans exceeds limit %d",
                target.id, len(donor_plans), self.max_donor_plans,
            )
            raise SnapshotTooLargeError(
                f"Client {target.client_id} has {len(donor_plans)} candidate plans "
                f"(limit {self.max_donor_plans}); narrow the scope"
            )

        donor_ids = [p.id for p in donor_plans]
        donor_filter = and_(
            ImplementationTask.implementation_plan_id.in_(donor_ids),
            ImplementationTask.status.in_(SATISFIED_TASK_STATUSES),
        )

        # bounded id read: never more than limit + 1 rows before the real read
        if donor_ids and self.max_donor_tasks is not None:
            bound_q = (
                select(ImplementationTask.id)
                .where(donor_filter)
                .limit(self.max_donor_tasks + 1)
            )
            if len((await self.session.execute(bound_q)).all()) > self.max_donor_tasks:
                raise self._too_many_donor_tasks(target, f"more than {self.max_donor_tasks}")

        # target tasks (all statuses) and donor done tasks, in one statement
        task_filter = ImplementationTask.implementation_plan_id == target.id
        if donor_ids:
            task_filter = or_(task_filter, donor_filter)
        tasks_q = select(*_TASK_COLUMNS).where(task_filter).order_by(ImplementationTask.id)
        tasks = [_task_ref(row) for row in (await self.session.execute(tasks_q)).all()]

        target_tasks = tuple(t for t in tasks if t.plan_id == target.id)
        by_donor: dict[int, list[TaskRef]] = {pid: [] for pid in donor_ids}
        for t in tasks:
            if t.plan_id in by_donor:
                by_donor[t.plan_id].append(t)

        snapshot = PlanSnapshot(
            target_plan=target,
            target_tasks=target_tasks,
            donors=tuple(DonorPlan(plan=p, done_tasks=tuple(by_donor[p.id])) for p in donor_plans),
        )
        # tasks may have flipped to done between the two reads
        if self.max_donor_tasks is not None and snapshot.donor_task_count > self.max_donor_tasks:
            raise self._too_many_donor_tasks(target, str(snapshot.donor_task_count))
        return snapshot
