"""
Harmonization module — /api/v1/harmonization
Cross-framework effort savings for an implementation plan.

The analysis is read-only and idempotent; it is exposed as POST because the
UI triggers it as an action.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.database import get_session
from harmonizer.schemas.harmonization import (
    HarmonizationOut,
    HarmonizationStatsOut,
    IntegrityWarningOut,
    OpportunityOut,
)
from harmonizer.services.exceptions import (
    InvalidStateError,
    NotFoundError,
    SnapshotTooLargeError,
    UnavailableError,
)
from harmonizer.services.harmonization import (
    HarmonizationService,
    integrity_warnings,
    mapping_index_cache,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/harmonization", tags=["Harmonization"])


@router.post("/plans/{plan_id}", response_model=HarmonizationOut)
async def analyze_plan_harmonization(plan_id: int, s: AsyncSession = Depends(get_session)):
    """Find outstanding tasks already covered by the client's other frameworks."""
    service = HarmonizationService(s)
    try:
        result, warnings = await service.analyze(plan_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except InvalidStateError as e:
        raise HTTPException(400, str(e))
    except SnapshotTooLargeError as e:
        raise HTTPException(422, str(e))
    except UnavailableError as e:
        logger.error("Harmonization unavailable for plan %s: %s", plan_id, e)
        raise HTTPException(503, str(e))

    return HarmonizationOut(
        plan_id=result.plan_id,
        framework_id=result.framework_id,
        savings_percentage=result.savings_percentage,
        total_saved_hours=result.total_saved_hours,
        baseline_hours=result.baseline_hours,
        opportunities=[
            OpportunityOut(
                target_task_id=o.target_task_id,
                title=o.target_title,
                source=o.source_description,
                source_plan_id=o.source_plan_id,
                source_task_id=o.source_task_id,
                confidence=o.confidence.display_label,
                confidence_level=o.confidence.value,
                saved_hours=o.saved_hours,
            )
            for o in result.opportunities
        ],
        warnings=[
            IntegrityWarningOut(
                kind=w.kind, message=w.message,
                plan_id=w.plan_id, task_id=w.task_id, control_id=w.control_id,
            )
            for w in warnings
        ],
    )


@router.get("/stats", response_model=HarmonizationStatsOut)
async def harmonization_stats():
    """Mapping index cache state and cumulative data-integrity warnings."""
    return HarmonizationStatsOut(
        mapping_index=mapping_index_cache.stats(),
        integrity_warnings=integrity_warnings.snapshot(),
    )


@router.post("/index/invalidate", status_code=204)
async def invalidate_mapping_index():
    """Drop the cached mapping index; the next analysis rebuilds it."""
    mapping_index_cache.invalidate()
