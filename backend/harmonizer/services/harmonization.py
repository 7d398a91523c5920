"""
Cross-framework harmonization — finds outstanding tasks of a target plan that
are already covered by work completed under the tenant's other frameworks.

resolve() is a pure function over a PlanSnapshot and a MappingIndex:
  1. structural pass: donor done task → its control → one mapping hop →
     outstanding target control; the most trusted confidence wins per task,
     ties keep the first one found
  2. heuristic pass: exact title match, only for tasks still uncovered
  3. sorted by saved hours desc, then target task id

Saved hours are always the target task's own estimate.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.config import settings
from harmonizer.services.exceptions import DataIntegrityWarning
from harmonizer.services.mapping_index import Confidence, MappingIndex, MappingIndexCache
from harmonizer.services.plan_snapshot import (
    PlanSnapshot,
    PlanSnapshotLoader,
    TaskRef,
)
from harmonizer.services.score_aggregator import HarmonizationResult, aggregate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Opportunity:
    target_task_id: int
    target_title: str
    source_plan_id: int
    source_task_id: int
    source_description: str
    confidence: Confidence
    saved_hours: int


def _outstanding_by_code(snapshot: PlanSnapshot) -> dict[str, TaskRef]:
    outstanding: dict[str, TaskRef] = {}
    for task in sorted(snapshot.target_tasks, key=lambda t: t.id):
        if task.is_done or not task.control_code:
            continue
        outstanding.setdefault(task.control_code, task)
    return outstanding


def resolve(
    snapshot: PlanSnapshot,
    index: MappingIndex,
    warnings: list[DataIntegrityWarning] | None = None,
) -> list[Opportunity]:
    """Compute deduplicated, confidence-prioritised opportunities for the snapshot's target plan."""
    target = snapshot.target_plan
    catalog = index.catalog
    outstanding = _outstanding_by_code(snapshot)
    best: dict[int, Opportunity] = {}

    for donor in snapshot.donors:
        if donor.plan.id == target.id:
            continue
        for task in donor.done_tasks:
            if not task.control_code or donor.plan.framework_id is None:
                continue
            source = catalog.lookup(donor.plan.framework_id, task.control_code)
            if source is None:
                # a code guessed from free text is not evidence of a stale catalog
                if warnings is not None and not task.code_derived:
                    warnings.append(DataIntegrityWarning(
                        kind="unknown_control",
                        message=f"Task {task.id} references control {task.control_code!r} "
                                f"not in framework {donor.plan.framework_id}",
                        plan_id=donor.plan.id,
                        task_id=task.id,
                    ))
                continue

            for edge in index.expand(source.id):
                ctl = catalog.get(edge.target_control_id)
                if ctl is None or ctl.framework_id != target.framework_id:
                    continue
                t = outstanding.get(ctl.control_code)
                if t is None:
                    continue
                current = best.get(t.id)
                if current is not None and edge.confidence.rank <= current.confidence.rank:
                    continue
                best[t.id] = Opportunity(
                    target_task_id=t.id,
                    target_title=t.title,
                    source_plan_id=donor.plan.id,
                    source_task_id=task.id,
                    source_description=f"{donor.plan.title}: {task.title} ({source.control_code})",
                    confidence=edge.confidence,
                    saved_hours=t.estimated_hours or 0,
                )

    # Mapping data is incomplete; fall back to identical task titles
    uncovered: dict[str, list[TaskRef]] = {}
    for t in sorted(snapshot.target_tasks, key=lambda t: t.id):
        if not t.is_done and t.id not in best:
            uncovered.setdefault(t.title, []).append(t)
    if uncovered:
        for donor in snapshot.donors:
            if donor.plan.id == target.id:
                continue
            for task in donor.done_tasks:
                for t in uncovered.get(task.title, ()):
                    if t.id in best:
                        continue
                    best[t.id] = Opportunity(
                        target_task_id=t.id,
                        target_title=t.title,
                        source_plan_id=donor.plan.id,
                        source_task_id=task.id,
                        source_description=f"{donor.plan.title}: {task.title} (title match)",
                        confidence=Confidence.HEURISTIC,
                        saved_hours=t.estimated_hours or 0,
                    )

    return sorted(best.values(), key=lambda o: (-o.saved_hours, o.target_task_id))


class IntegrityWarningCounter:
    """Process-wide tally of data-integrity warnings, by kind."""

    def __init__(self):
        self._counts: Counter[str] = Counter()

    def record(self, items: list[DataIntegrityWarning]) -> None:
        for w in items:
            self._counts[w.kind] += 1

    def snapshot(self) -> dict[str, int]:
        return dict(sorted(self._counts.items()))

    def reset(self) -> None:
        self._counts.clear()


integrity_warnings = IntegrityWarningCounter()


def _record_build_warnings(index: MappingIndex) -> None:
    # counted once per build, not once per analysis
    integrity_warnings.record(index.catalog.warnings + index.warnings)


mapping_index_cache = MappingIndexCache(
    ttl_seconds=settings.MAPPING_INDEX_TTL_SECONDS,
    max_edges=settings.MAX_MAPPING_EDGES,
    on_build=_record_build_warnings,
)


class HarmonizationService:
    """Runs one analysis: snapshot → index → resolve → aggregate."""

    def __init__(
        self,
        session: AsyncSession,
        cache: MappingIndexCache | None = None,
        counter: IntegrityWarningCounter | None = None,
    ):
        self.session = session
        self.cache = cache if cache is not None else mapping_index_cache
        self.counter = counter if counter is not None else integrity_warnings
        self.loader = PlanSnapshotLoader(
            session,
            max_donor_plans=settings.MAX_DONOR_PLANS,
            max_donor_tasks=settings.MAX_DONOR_TASKS,
        )

    async def analyze(self, plan_id: int) -> tuple[HarmonizationResult, list[DataIntegrityWarning]]:
        snapshot = await self.loader.load(plan_id)
        index = await self.cache.get(self.session)

        warnings: list[DataIntegrityWarning] = []
        opportunities = resolve(snapshot, index, warnings)
        for w in warnings:
            logger.warning("Plan %s: %s", plan_id, w.message)
        self.counter.record(warnings)

        result = aggregate(
            opportunities, snapshot.target_plan, default_baseline=settings.DEFAULT_BASELINE_HOURS,
        )
        logger.info(
            "Harmonization plan=%s donors=%d opportunities=%d savings=%d%%",
            plan_id, len(snapshot.donors), len(opportunities), result.savings_percentage,
        )
        return result, warnings
