"""Fee structure registry. Every write with a non-empty class list triggers billing generation."""

import logging
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees.billing import generate_billing
from app.core.exceptions import InvalidInputError, NotFoundError
from app.core.models import FeeStructure, FeeStructureClass, SchoolClass

from .schemas import FeeStructureCreate, FeeStructureResponse, FeeStructureUpdate

logger = logging.getLogger(__name__)


def _to_response(fs: FeeStructure, class_ids: List[UUID], billing=None) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=fs.id,
        name=fs.name,
        term=fs.term,
        academic_year=fs.academic_year,
        category=fs.category,
        student_type=fs.student_type,
        amount=fs.amount,
        is_active=fs.is_active,
        class_ids=class_ids,
        created_at=fs.created_at,
        updated_at=fs.updated_at,
        billing=billing,
    )


async def _validate_class_ids(db: AsyncSession, class_ids: List[UUID]) -> List[UUID]:
    unique_ids = list(dict.fromkeys(class_ids))
    if not unique_ids:
        return []
    found = set(
        (await db.execute(select(SchoolClass.id).where(SchoolClass.id.in_(unique_ids)))).scalars().all()
    )
    missing = [str(cid) for cid in unique_ids if cid not in found]
    if missing:
        raise InvalidInputError(f"Unknown class id(s): {', '.join(missing)}")
    return unique_ids


async def _class_ids_for(db: AsyncSession, fee_structure_ids: List[UUID]) -> Dict[UUID, List[UUID]]:
    out: Dict[UUID, List[UUID]] = {fid: [] for fid in fee_structure_ids}
    if not fee_structure_ids:
        return out
    rows = await db.execute(
        select(FeeStructureClass.fee_structure_id, FeeStructureClass.class_id).where(
            FeeStructureClass.fee_structure_id.in_(fee_structure_ids)
        )
    )
    for fid, cid in rows.all():
        out[fid].append(cid)
    return out


async def create_fee_structure(
    db: AsyncSession,
    payload: FeeStructureCreate,
    changed_by: Optional[UUID] = None,
) -> FeeStructureResponse:
    class_ids = await _validate_class_ids(db, payload.class_ids)
    fs = FeeStructure(
        name=payload.name.strip(),
        term=payload.term.strip(),
        academic_year=payload.academic_year.strip(),
        category=payload.category.value,
        student_type=payload.student_type.value,
        amount=payload.amount,
        is_active=payload.is_active,
    )
    db.add(fs)
    await db.flush()
    for cid in class_ids:
        db.add(FeeStructureClass(fee_structure_id=fs.id, class_id=cid))
    await db.commit()
    logger.info("Fee structure %s (%s %s %s) created for %d class(es)", fs.id, fs.name, fs.term, fs.academic_year, len(class_ids))

    billing = None
    if class_ids:
        billing = await generate_billing(db, fs.id, changed_by=changed_by)
    return _to_response(fs, class_ids, billing)


async def update_fee_structure(
    db: AsyncSession,
    fee_structure_id: UUID,
    payload: FeeStructureUpdate,
    changed_by: Optional[UUID] = None,
) -> FeeStructureResponse:
    fs = await db.get(FeeStructure, fee_structure_id)
    if not fs:
        raise NotFoundError("Fee structure not found")

    if payload.name is not None:
        fs.name = payload.name.strip()
    if payload.term is not None:
        fs.term = payload.term.strip()
    if payload.academic_year is not None:
        fs.academic_year = payload.academic_year.strip()
    if payload.category is not None:
        fs.category = payload.category.value
    if payload.student_type is not None:
        fs.student_type = payload.student_type.value
    if payload.amount is not None:
        fs.amount = payload.amount
    if payload.is_active is not None:
        fs.is_active = payload.is_active
    fs.updated_at = datetime.utcnow()

    if payload.class_ids is not None:
        class_ids = await _validate_class_ids(db, payload.class_ids)
        await db.execute(delete(FeeStructureClass).where(FeeStructureClass.fee_structure_id == fs.id))
        for cid in class_ids:
            db.add(FeeStructureClass(fee_structure_id=fs.id, class_id=cid))
    class_ids = (await _class_ids_for(db, [fs.id]))[fs.id]
    await db.commit()

    billing = None
    if class_ids:
        billing = await generate_billing(db, fs.id, changed_by=changed_by)
    return _to_response(fs, class_ids, billing)


async def list_fee_structures(
    db: AsyncSession,
    academic_year: Optional[str] = None,
    term: Optional[str] = None,
    active_only: bool = True,
) -> List[FeeStructureResponse]:
    stmt = select(FeeStructure)
    if academic_year:
        stmt = stmt.where(FeeStructure.academic_year == academic_year)
    if term:
        stmt = stmt.where(FeeStructure.term == term)
    if active_only:
        stmt = stmt.where(FeeStructure.is_active.is_(True))
    stmt = stmt.order_by(FeeStructure.academic_year, FeeStructure.term, FeeStructure.name)
    rows = (await db.execute(stmt)).scalars().all()
    classes = await _class_ids_for(db, [fs.id for fs in rows])
    return [_to_response(fs, classes[fs.id]) for fs in rows]


async def trigger_billing(db: AsyncSession, fee_structure_id: UUID, changed_by: Optional[UUID] = None):
    return await generate_billing(db, fee_structure_id, changed_by=changed_by)
