"""
Mapping index — adjacency view of control mapping edges.

Built once from the full edge list and reused across analyses:
  - expand(source_control_id) is O(out-degree)
  - edges pointing at controls missing from the catalog are dropped at build
    time and reported as data-integrity warnings
  - parallel edges between the same pair keep the most trusted confidence

MappingIndexCache holds one process-wide (catalog, index) pair with a TTL
and explicit invalidation; mapping writes call invalidate().
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.models.compliance import ControlMapping
from harmonizer.services.control_catalog import ControlCatalog, load_control_catalog
from harmonizer.services.exceptions import (
    DataIntegrityWarning,
    SnapshotTooLargeError,
    UnavailableError,
)

logger = logging.getLogger(__name__)


class Confidence(str, Enum):
    MANUAL = "manual"
    AI_HIGH = "ai_high"
    AI_MEDIUM = "ai_medium"
    HEURISTIC = "heuristic"

    @property
    def rank(self) -> int:
        """Higher is more trusted."""
        return _CONFIDENCE_RANK[self]

    @property
    def display_label(self) -> str:
        return "High" if self in (Confidence.MANUAL, Confidence.AI_HIGH) else "Medium"

    @classmethod
    def parse(cls, value: str | None) -> Confidence | None:
        if value is None:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_CONFIDENCE_RANK = {
    Confidence.MANUAL: 4,
    Confidence.AI_HIGH: 3,
    Confidence.AI_MEDIUM: 2,
    Confidence.HEURISTIC: 1,
}


@dataclass(frozen=True)
class MappingTarget:
    target_control_id: int
    confidence: Confidence


class MappingIndex:
    """source_control_id → [MappingTarget] adjacency map."""

    def __init__(
        self,
        adjacency: dict[int, list[MappingTarget]],
        catalog: ControlCatalog,
        edge_count: int = 0,
        warnings: list[DataIntegrityWarning] | None = None,
    ):
        self._adjacency = adjacency
        self.catalog = catalog
        self.edge_count = edge_count
        self.warnings = warnings or []

    @classmethod
    def build(
        cls,
        mappings: Iterable,
        catalog: ControlCatalog | None = None,
        max_edges: int | None = None,
    ) -> MappingIndex:
        """Index mapping rows (anything with source_control_id, target_control_id, confidence).

        Without a catalog every edge is kept; with one, edges touching unknown
        controls are dropped.
        """
        catalog = catalog if catalog is not None else ControlCatalog()
        check_catalog = len(catalog) > 0
        warnings: list[DataIntegrityWarning] = []
        best: dict[int, dict[int, Confidence]] = defaultdict(dict)
        seen = 0

        for m in mappings:
            seen += 1
            if max_edges is not None and seen > max_edges:
                raise SnapshotTooLargeError(
                    f"More than {max_edges} mapping edges; narrow the scope"
                )
            confidence = Confidence.parse(m.confidence)
            if confidence is None:
                warnings.append(DataIntegrityWarning(
                    kind="unknown_confidence",
                    message=f"Mapping {m.source_control_id}->{m.target_control_id} "
                            f"has unknown confidence {m.confidence!r}",
                    control_id=m.source_control_id,
                ))
                continue
            if check_catalog and (
                m.source_control_id not in catalog or m.target_control_id not in catalog
            ):
                warnings.append(DataIntegrityWarning(
                    kind="dangling_edge",
                    message=f"Mapping {m.source_control_id}->{m.target_control_id} "
                            f"references a deleted control",
                    control_id=m.source_control_id,
                ))
                continue
            targets = best[m.source_control_id]
            current = targets.get(m.target_control_id)
            if current is None or confidence.rank > current.rank:
                targets[m.target_control_id] = confidence

        adjacency = {
            src: [MappingTarget(tgt, conf) for tgt, conf in targets.items()]
            for src, targets in best.items()
        }
        edge_count = sum(len(v) for v in adjacency.values())
        return cls(adjacency, catalog, edge_count=edge_count, warnings=warnings)

    def expand(self, source_control_id: int) -> list[MappingTarget]:
        return self._adjacency.get(source_control_id, [])

    def __len__(self) -> int:
        return self.edge_count


async def load_mapping_index(
    session: AsyncSession, max_edges: int | None = None,
) -> MappingIndex:
    """Read the catalog and all mapping edges and build an index."""
    try:
        catalog = await load_control_catalog(session)
        if max_edges is not None:
            total = (await session.execute(select(func.count(ControlMapping.id)))).scalar() or 0
            if total > max_edges:
                logger.warning("Mapping table has %d edges, limit is %d", total, max_edges)
                raise SnapshotTooLargeError(
                    f"More than {max_edges} mapping edges; narrow the scope"
                )
        q = select(
            ControlMapping.source_control_id,
            ControlMapping.target_control_id,
            ControlMapping.confidence,
        ).order_by(ControlMapping.id)
        rows = (await session.execute(q)).all()
    except SQLAlchemyError as exc:
        raise UnavailableError(f"Could not read control mappings: {exc}") from exc

    index = MappingIndex.build(rows, catalog, max_edges=max_edges)
    for w in index.warnings:
        logger.warning("Mapping index: %s", w.message)
    logger.info(
        "Built mapping index: %d controls, %d edges, %d skipped",
        len(catalog), index.edge_count, len(index.warnings),
    )
    return index


class MappingIndexCache:
    """Process-wide cache of the mapping index."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_edges: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_build: Callable[[MappingIndex], None] | None = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_edges = max_edges
        self._clock = clock
        self._on_build = on_build
        self._index: MappingIndex | None = None
        self._built_at: float | None = None
        self._generation = 0
        self._builds = 0
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        if self._index is None or self._built_at is None:
            return False
        return (self._clock() - self._built_at) < self.ttl_seconds

    async def get(self, session: AsyncSession) -> MappingIndex:
        if self._is_fresh():
            return self._index
        async with self._lock:
            if self._is_fresh():
                return self._index
            generation = self._generation
            index = await load_mapping_index(session, max_edges=self.max_edges)
            # an invalidate() during the build means the result may be stale already
            if generation == self._generation:
                self._index = index
                self._built_at = self._clock()
            self._builds += 1
            if self._on_build is not None:
                self._on_build(index)
            return index

    def invalidate(self) -> None:
        self._generation += 1
        self._index = None
        self._built_at = None
        logger.info("Mapping index cache invalidated")

    def stats(self) -> dict:
        age = None
        if self._built_at is not None:
            age = round(self._clock() - self._built_at, 1)
        return {
            "cached": self._index is not None,
            "age_seconds": age,
            "ttl_seconds": self.ttl_seconds,
            "builds": self._builds,
            "edges": self._index.edge_count if self._index else None,
            "skipped_edges": len(self._index.warnings) if self._index else None,
            "controls": len(self._index.catalog) if self._index else None,
        }
