"""
Savings score — turns harmonization opportunities into a bounded percentage
of the target plan's effort baseline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from harmonizer.services.plan_snapshot import PlanRef

if TYPE_CHECKING:
    from harmonizer.services.harmonization import Opportunity

DEFAULT_BASELINE_HOURS = 100


@dataclass(frozen=True)
class HarmonizationResult:
    plan_id: int
    framework_id: int | None
    savings_percentage: int
    total_saved_hours: int
    baseline_hours: int
    opportunities: list[Opportunity] = field(default_factory=list)


def baseline_hours(plan: PlanRef, default_baseline: int = DEFAULT_BASELINE_HOURS) -> int:
    if plan.estimated_hours is not None and plan.estimated_hours > 0:
        return plan.estimated_hours
    return default_baseline


def savings_percentage(total_saved: int | float, baseline: int | float) -> int:
    """round(total / baseline * 100), half-up, clamped to [0, 100]."""
    if baseline <= 0 or total_saved <= 0:
        return 0
    pct = (Decimal(str(total_saved)) / Decimal(str(baseline)) * 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP,
    )
    return max(0, min(100, int(pct)))


def aggregate(
    opportunities: list[Opportunity],
    target_plan: PlanRef,
    default_baseline: int = DEFAULT_BASELINE_HOURS,
) -> HarmonizationResult:
    baseline = baseline_hours(target_plan, default_baseline)
    if not opportunities:
        return HarmonizationResult(
            plan_id=target_plan.id,
            framework_id=target_plan.framework_id,
            savings_percentage=0,
            total_saved_hours=0,
            baseline_hours=baseline,
            opportunities=[],
        )

    total_saved = sum(o.saved_hours for o in opportunities)
    return HarmonizationResult(
        plan_id=target_plan.id,
        framework_id=target_plan.framework_id,
        savings_percentage=savings_percentage(total_saved, baseline),
        total_saved_hours=total_saved,
        baseline_hours=baseline,
        opportunities=list(opportunities),
    )
