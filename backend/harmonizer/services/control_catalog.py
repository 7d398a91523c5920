"""
Control catalog — read-only lookup of controls by id or by
(framework_id, control_code).
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from harmonizer.models.framework import Control
from harmonizer.services.exceptions import DataIntegrityWarning

logger = logging.getLogger(__name__)


def normalize_code(code: str | None) -> str | None:
    if code is None:
        return None
    code = code.strip()
    return code or None


@dataclass(frozen=True)
class ControlRef:
    id: int
    framework_id: int
    control_code: str
    title: str


class ControlCatalog:
    """In-memory view of the controls table."""

    def __init__(self, controls: Iterable[ControlRef] = ()):
        self._by_id: dict[int, ControlRef] = {}
        self._by_code: dict[tuple[int, str], ControlRef] = {}
        self.warnings: list[DataIntegrityWarning] = []
        for ref in sorted(controls, key=lambda c: c.id):
            self._by_id[ref.id] = ref
            key = (ref.framework_id, ref.control_code)
            if key in self._by_code:
                self.warnings.append(DataIntegrityWarning(
                    kind="duplicate_control",
                    message=f"Control code {ref.control_code!r} duplicated in framework {ref.framework_id}",
                    control_id=ref.id,
                ))
                continue
            self._by_code[key] = ref

    @classmethod
    def from_rows(cls, rows: Iterable) -> ControlCatalog:
        """Build from ORM controls or any rows with id/framework_id/control_code/title."""
        refs = []
        for row in rows:
            code = normalize_code(row.control_code)
            if code is None:
                continue
            refs.append(ControlRef(
                id=row.id,
                framework_id=row.framework_id,
                control_code=code,
                title=row.title or "",
            ))
        return cls(refs)

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, control_id: int) -> bool:
        return control_id in self._by_id

    def get(self, control_id: int) -> ControlRef | None:
        return self._by_id.get(control_id)

    def lookup(self, framework_id: int, control_code: str | None) -> ControlRef | None:
        code = normalize_code(control_code)
        if code is None:
            return None
        return self._by_code.get((framework_id, code))


async def load_control_catalog(session: AsyncSession) -> ControlCatalog:
    q = select(Control.id, Control.framework_id, Control.control_code, Control.title)
    rows = (await session.execute(q)).all()
    catalog = ControlCatalog.from_rows(rows)
    for w in catalog.warnings:
        logger.warning("Control catalog: %s", w.message)
    return catalog
