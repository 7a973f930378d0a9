"""Holding store review queue and manual reconciliation of held bank deposits."""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees import service as fees_service
from app.api.v1.fees.aggregator import lock_student_ledger
from app.api.v1.fees.audit import log_fee_audit
from app.core.enums import PaymentSource, UnmatchedPaymentStatus
from app.core.exceptions import ConflictError, NotFoundError
from app.core.models import FeeStructure, LedgerRecord, Student, UnmatchedPayment
from app.db.locking import run_with_transient_retry

from .schemas import ReconcileRequest, ReconcileResult, UnmatchedPaymentResponse

logger = logging.getLogger(__name__)


def _to_response(entry: UnmatchedPayment) -> UnmatchedPaymentResponse:
    return UnmatchedPaymentResponse.model_validate(entry)


async def list_unmatched_payments(
    db: AsyncSession,
    status_filter: Optional[UnmatchedPaymentStatus] = None,
    include_reconciled: bool = False,
) -> List[UnmatchedPaymentResponse]:
    """Review queue, oldest first."""
    stmt = select(UnmatchedPayment)
    if status_filter is not None:
        stmt = stmt.where(UnmatchedPayment.status == status_filter.value)
    elif not include_reconciled:
        stmt = stmt.where(UnmatchedPayment.status != UnmatchedPaymentStatus.reconciled.value)
    stmt = stmt.order_by(UnmatchedPayment.recorded_at, UnmatchedPayment.id)
    result = await db.execute(stmt)
    return [_to_response(e) for e in result.scalars().all()]


async def get_unmatched_payment(db: AsyncSession, unmatched_payment_id: UUID) -> Optional[UnmatchedPaymentResponse]:
    entry = await db.get(UnmatchedPayment, unmatched_payment_id)
    return _to_response(entry) if entry else None


async def _load_entry(db: AsyncSession, unmatched_payment_id: UUID) -> UnmatchedPayment:
    entry = (
        await db.execute(
            select(UnmatchedPayment)
            .where(UnmatchedPayment.id == unmatched_payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not entry:
        raise NotFoundError("Unmatched payment not found")
    if entry.status == UnmatchedPaymentStatus.reconciled.value:
        raise ConflictError("Unmatched payment is already reconciled")
    return entry


async def reconcile_unmatched_payment(
    db: AsyncSession,
    unmatched_payment_id: UUID,
    payload: ReconcileRequest,
    changed_by: Optional[UUID] = None,
) -> ReconcileResult:
    """
    Turn a held deposit into a payment through the ingestor's critical section. The entry
    is kept and marked reconciled with the payment id.

    With student_id + fee_structure_id and no billed record yet, the payment is
    pre-registered and attached when billing runs for that structure.
    """

    async def _unit() -> ReconcileResult:
        entry = await _load_entry(db, unmatched_payment_id)

        record: Optional[LedgerRecord] = None
        if payload.ledger_record_id is not None:
            record = await db.get(LedgerRecord, payload.ledger_record_id)
            if not record:
                raise NotFoundError("Ledger record not found")
            student_id = record.student_id
            fs = await db.get(FeeStructure, record.fee_structure_id)
        else:
            student = await db.get(Student, payload.student_id)
            if not student:
                raise NotFoundError("Student not found")
            fs = await db.get(FeeStructure, payload.fee_structure_id)
            if not fs:
                raise NotFoundError("Fee structure not found")
            student_id = student.id

        records = await lock_student_ledger(db, student_id)
        if record is None:
            record = next((r for r in records if r.fee_structure_id == fs.id), None)
        await fees_service.ensure_reference_unused(db, entry.reference)

        notes = (payload.notes or "").strip() or f"Reconciled deposit from {entry.admission_number}"
        payment, record = await fees_service.apply_payment(
            db,
            student_id=student_id,
            fee_structure_id=fs.id,
            ledger_record_id=record.id if record is not None else None,
            amount=entry.amount,
            method=payload.method.strip().upper(),
            source=PaymentSource.RECONCILIATION,
            reference=entry.reference,
            payment_date=entry.recorded_at or datetime.now(timezone.utc),
            term=record.term if record is not None else fs.term,
            academic_year=record.academic_year if record is not None else fs.academic_year,
            notes=notes,
            recorded_by=changed_by,
            records=records,
        )

        old_status = entry.status
        entry.status = UnmatchedPaymentStatus.reconciled.value
        entry.student_id = student_id
        entry.reconciled_payment_id = payment.id
        entry.reconciled_by = changed_by
        entry.reconciled_at = datetime.now(timezone.utc)
        log_fee_audit(
            db, "unmatched_payments", entry.id, "RECONCILE",
            {"status": old_status},
            {"status": entry.status, "payment_id": str(payment.id)},
            changed_by,
        )
        await db.flush()
        result = ReconcileResult(
            unmatched_payment=_to_response(entry),
            outcome=fees_service.matched_outcome(payment, record),
        )
        await db.commit()
        logger.info("Unmatched payment %s reconciled as payment %s", entry.id, payment.id)
        return result

    return await run_with_transient_retry(
        db, _unit, description=f"reconciliation of unmatched payment {unmatched_payment_id}"
    )
