"""
Billing generator: one ledger record per eligible student per fee structure.

Regenerating for an edited fee structure updates total_billed in place and never touches
payments, total_paid or applied credit. Students who stopped being eligible (class removed
from the structure, enrollment ended) keep the records already billed.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.core.models import Enrollment, FeeStructure, FeeStructureClass, LedgerRecord, Payment, Student
from app.db.locking import run_with_transient_retry

from .aggregator import ZERO, lock_student_ledger, recompute_ledger_record, to_money, verify_ledger_record
from .audit import ledger_snapshot, log_fee_audit
from .credit import resolve_student_credit
from .schemas import BillingResult

logger = logging.getLogger(__name__)


async def eligible_student_ids(db: AsyncSession, fee_structure: FeeStructure, class_ids: List[UUID]) -> List[UUID]:
    if not class_ids:
        return []
    result = await db.execute(
        select(Student.id)
        .join(Enrollment, Enrollment.student_id == Student.id)
        .where(
            Enrollment.class_id.in_(class_ids),
            Enrollment.status == "ACTIVE",
            Student.student_type == fee_structure.student_type,
        )
        .distinct()
        .order_by(Student.id)
    )
    return list(result.scalars().all())


async def _attach_preregistered_payments(db: AsyncSession, record: LedgerRecord) -> int:
    """Link payments recorded for (student, fee structure) before the record existed."""
    result = await db.execute(
        update(Payment)
        .where(
            Payment.student_id == record.student_id,
            Payment.fee_structure_id == record.fee_structure_id,
            Payment.ledger_record_id.is_(None),
        )
        .values(ledger_record_id=record.id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def _generate(
    db: AsyncSession,
    fee_structure_id: UUID,
    changed_by: Optional[UUID],
) -> BillingResult:
    fs = (
        await db.execute(
            select(FeeStructure)
            .where(FeeStructure.id == fee_structure_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not fs:
        raise NotFoundError("Fee structure not found")

    result = BillingResult(fee_structure_id=fs.id)
    if not fs.is_active:
        logger.info("Fee structure %s is inactive, no billing generated", fs.id)
        await db.commit()
        return result

    class_ids = list(
        (
            await db.execute(
                select(FeeStructureClass.class_id).where(FeeStructureClass.fee_structure_id == fs.id)
            )
        ).scalars().all()
    )
    student_ids = await eligible_student_ids(db, fs, class_ids)
    result.eligible_students = len(student_ids)
    amount = to_money(fs.amount)

    for student_id in student_ids:
        records = await lock_student_ledger(db, student_id)
        record = next((r for r in records if r.fee_structure_id == fs.id), None)

        if record is None:
            record = LedgerRecord(
                student_id=student_id,
                fee_structure_id=fs.id,
                term=fs.term,
                academic_year=fs.academic_year,
                total_billed=amount,
                total_paid=ZERO,
                credit_applied=ZERO,
                credit_consumed=ZERO,
            )
            db.add(record)
            await db.flush()
            attached = await _attach_preregistered_payments(db, record)
            if attached:
                logger.info("Attached %d pre-registered payment(s) to ledger record %s", attached, record.id)
            await recompute_ledger_record(db, record)
            records.append(record)
            log_fee_audit(db, "ledger_records", record.id, "CREATE", None, ledger_snapshot(record), changed_by)
            result.created.append(record.id)
        else:
            await verify_ledger_record(db, record)
            old = ledger_snapshot(record)
            record.total_billed = amount
            record.term = fs.term
            record.academic_year = fs.academic_year
            await recompute_ledger_record(db, record)
            new = ledger_snapshot(record)
            if new != old:
                log_fee_audit(db, "ledger_records", record.id, "UPDATE", old, new, changed_by)
            result.updated.append(record.id)

        await resolve_student_credit(db, student_id, records=records, changed_by=changed_by)

    await db.commit()
    logger.info(
        "Billing for fee structure %s: %d eligible, %d created, %d updated",
        fs.id, result.eligible_students, len(result.created), len(result.updated),
    )
    return result


async def generate_billing(
    db: AsyncSession,
    fee_structure_id: UUID,
    changed_by: Optional[UUID] = None,
) -> BillingResult:
    """Create or update ledger records for every student the fee structure applies to."""
    return await run_with_transient_retry(
        db,
        lambda: _generate(db, fee_structure_id, changed_by),
        description=f"billing generation for fee structure {fee_structure_id}",
    )
