"""
Control Mapping module — /api/v1/control-mappings
Directed, confidence-tagged equivalence edges between controls of different
frameworks. Every write drops the cached mapping index used by harmonization.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from harmonizer.database import get_session
from harmonizer.models.compliance import ControlMapping
from harmonizer.models.framework import Control, Framework
from harmonizer.schemas.control_mapping import (
    ControlMappingBulkResult,
    ControlMappingCreate,
    ControlMappingOut,
    EquivalentControlOut,
)
from harmonizer.services.harmonization import mapping_index_cache

router = APIRouter(prefix="/api/v1/control-mappings", tags=["Control Mapping"])


# ─── Helper ────────────────────────────────────────────────────

def _mapping_query():
    src = aliased(Control, name="source_controls")
    tgt = aliased(Control, name="target_controls")
    src_fw = aliased(Framework, name="source_frameworks")
    tgt_fw = aliased(Framework, name="target_frameworks")
    q = (
        select(
            ControlMapping,
            src.control_code, src.title, src_fw.name,
            tgt.control_code, tgt.title, tgt_fw.name,
        )
        .join(src, ControlMapping.source_control_id == src.id)
        .join(tgt, ControlMapping.target_control_id == tgt.id)
        .join(src_fw, src.framework_id == src_fw.id)
        .join(tgt_fw, tgt.framework_id == tgt_fw.id)
    )
    return q


def _mapping_out(row) -> ControlMappingOut:
    m, src_code, src_title, src_fw, tgt_code, tgt_title, tgt_fw = row
    return ControlMappingOut(
        id=m.id,
        source_control_id=m.source_control_id,
        source_control_code=src_code,
        source_control_title=src_title,
        source_framework=src_fw,
        target_control_id=m.target_control_id,
        target_control_code=tgt_code,
        target_control_title=tgt_title,
        target_framework=tgt_fw,
        mapping_type=m.mapping_type,
        confidence=m.confidence,
        notes=m.notes,
        created_by=m.created_by,
        created_at=m.created_at,
    )


async def _validate_new(s: AsyncSession, items: list[ControlMappingCreate]) -> None:
    control_ids = {i.source_control_id for i in items} | {i.target_control_id for i in items}
    found = set((await s.execute(select(Control.id).where(Control.id.in_(sorted(control_ids))))).scalars().all())
    seen: set[tuple[int, int]] = set()
    for item in items:
        if item.source_control_id == item.target_control_id:
            raise HTTPException(400, "A control cannot be mapped to itself")
        missing = {item.source_control_id, item.target_control_id} - found
        if missing:
            raise HTTPException(404, f"Control(s) not found: {sorted(missing)}")
        pair = (item.source_control_id, item.target_control_id)
        if pair in seen:
            raise HTTPException(409, f"Duplicate mapping in request: {pair[0]} -> {pair[1]}")
        seen.add(pair)

    existing_q = select(ControlMapping.source_control_id, ControlMapping.target_control_id).where(
        ControlMapping.source_control_id.in_(sorted({p[0] for p in seen})),
    )
    existing = {tuple(r) for r in (await s.execute(existing_q)).all()}
    dupes = seen & existing
    if dupes:
        src_id, tgt_id = sorted(dupes)[0]
        raise HTTPException(409, f"Mapping already exists: {src_id} -> {tgt_id}")


# ═══ Mappings ═══════════════════════════════════════════════════


@router.get("/", response_model=list[ControlMappingOut])
async def list_mappings(
    control_id: int | None = None,
    confidence: str | None = None,
    s: AsyncSession = Depends(get_session),
):
    q = _mapping_query()
    if control_id:
        q = q.where(or_(
            ControlMapping.source_control_id == control_id,
            ControlMapping.target_control_id == control_id,
        ))
    if confidence:
        q = q.where(ControlMapping.confidence == confidence)
    q = q.order_by(ControlMapping.source_control_id, ControlMapping.id)
    rows = (await s.execute(q)).all()
    return [_mapping_out(r) for r in rows]


@router.get("/equivalents/{control_id}", response_model=list[EquivalentControlOut])
async def list_equivalents(control_id: int, s: AsyncSession = Depends(get_session)):
    """Controls linked to control_id by a mapping in either direction."""
    if not await s.get(Control, control_id):
        raise HTTPException(404, "Control not found")

    q = select(ControlMapping).where(or_(
        ControlMapping.source_control_id == control_id,
        ControlMapping.target_control_id == control_id,
    )).order_by(ControlMapping.id)
    mappings = (await s.execute(q)).scalars().all()
    if not mappings:
        return []

    other_ids = {
        m.target_control_id if m.source_control_id == control_id else m.source_control_id
        for m in mappings
    }
    cq = (
        select(Control, Framework.name)
        .join(Framework, Control.framework_id == Framework.id)
        .where(Control.id.in_(sorted(other_ids)))
    )
    controls = {c.id: (c, fw_name) for c, fw_name in (await s.execute(cq)).all()}

    out = []
    for m in mappings:
        outgoing = m.source_control_id == control_id
        other = controls.get(m.target_control_id if outgoing else m.source_control_id)
        if other is None:
            continue
        c, fw_name = other
        out.append(EquivalentControlOut(
            id=c.id,
            framework_id=c.framework_id,
            framework_name=fw_name,
            control_code=c.control_code,
            title=c.title,
            mapping_id=m.id,
            mapping_type=m.mapping_type,
            confidence=m.confidence,
            direction="outgoing" if outgoing else "incoming",
        ))
    return out


@router.post("/", response_model=ControlMappingOut, status_code=201)
async def create_mapping(body: ControlMappingCreate, s: AsyncSession = Depends(get_session)):
    await _validate_new(s, [body])
    m = ControlMapping(**body.model_dump())
    s.add(m)
    await s.commit()
    mapping_index_cache.invalidate()

    row = (await s.execute(_mapping_query().where(ControlMapping.id == m.id))).one()
    return _mapping_out(row)


@router.post("/bulk", response_model=ControlMappingBulkResult, status_code=201)
async def bulk_create_mappings(
    body: list[ControlMappingCreate], s: AsyncSession = Depends(get_session),
):
    if not body:
        return ControlMappingBulkResult(count=0)
    await _validate_new(s, body)
    s.add_all([ControlMapping(**item.model_dump()) for item in body])
    await s.commit()
    mapping_index_cache.invalidate()
    return ControlMappingBulkResult(count=len(body))


@router.delete("/{mapping_id}", status_code=204)
async def delete_mapping(mapping_id: int, s: AsyncSession = Depends(get_session)):
    m = await s.get(ControlMapping, mapping_id)
    if not m:
        raise HTTPException(404, "Mapping not found")
    await s.delete(m)
    await s.commit()
    mapping_index_cache.invalidate()
