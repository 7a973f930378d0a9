"""
Ledger aggregator: the only writer of a ledger record's derived fields.

total_paid is always re-derived from the payments table inside the caller's transaction
(which already holds the student's ledger lock); application code never adds a payment
amount onto a previously read total.
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import LedgerStatus, PaymentStatus
from app.core.exceptions import LedgerIntegrityError
from app.core.models import LedgerRecord, Payment, Student
from app.db.locking import set_lock_timeout

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(val) -> Decimal:
    if val is None:
        return ZERO
    if not isinstance(val, Decimal):
        val = Decimal(str(val))
    return val.quantize(CENT, rounding=ROUND_HALF_UP)


def ledger_status(total_billed: Decimal, covered: Decimal) -> LedgerStatus:
    if covered == total_billed:
        return LedgerStatus.paid
    if covered > total_billed:
        return LedgerStatus.overpaid
    if covered > 0:
        return LedgerStatus.partial
    return LedgerStatus.pending


def derive_balances(record: LedgerRecord) -> LedgerRecord:
    """Recompute outstanding_balance, credit_generated and status from billed, paid and applied credit."""
    billed = to_money(record.total_billed)
    paid = to_money(record.total_paid)
    applied = to_money(record.credit_applied)
    covered = paid + applied

    record.total_billed = billed
    record.total_paid = paid
    record.credit_applied = applied
    record.credit_consumed = to_money(record.credit_consumed)
    record.outstanding_balance = max(ZERO, billed - covered)
    record.credit_generated = max(ZERO, covered - billed)
    record.status = ledger_status(billed, covered).value
    return record


async def sum_payments(db: AsyncSession, ledger_record_id: UUID) -> Tuple[Decimal, Optional[datetime]]:
    """Sum and latest date of the non-reversed payments behind one ledger record."""
    row = (
        await db.execute(
            select(
                func.coalesce(func.sum(Payment.amount_paid), 0),
                func.max(Payment.payment_date),
            ).where(
                Payment.ledger_record_id == ledger_record_id,
                Payment.status != PaymentStatus.reversed.value,
            )
        )
    ).one()
    return to_money(row[0]), row[1]


async def recompute_ledger_record(db: AsyncSession, record: LedgerRecord) -> LedgerRecord:
    """Re-derive total_paid and last_payment_date from payments, then the balances."""
    await db.flush()
    total_paid, last_payment_date = await sum_payments(db, record.id)
    record.total_paid = total_paid
    record.last_payment_date = last_payment_date
    return derive_balances(record)


async def verify_ledger_record(db: AsyncSession, record: LedgerRecord) -> None:
    """
    Raise LedgerIntegrityError when the stored totals disagree with the payments or with
    the stored balances. Nothing is corrected here.
    """
    total_paid, _ = await sum_payments(db, record.id)
    stored_paid = to_money(record.total_paid)
    problems = []
    if stored_paid != total_paid:
        problems.append(f"total_paid {stored_paid} != sum of payments {total_paid}")

    billed = to_money(record.total_billed)
    covered = stored_paid + to_money(record.credit_applied)
    if to_money(record.outstanding_balance) != max(ZERO, billed - covered):
        problems.append(f"outstanding_balance {record.outstanding_balance} does not match billed/paid/credit")
    if to_money(record.credit_generated) != max(ZERO, covered - billed):
        problems.append(f"credit_generated {record.credit_generated} does not match billed/paid/credit")
    if to_money(record.credit_consumed) > to_money(record.credit_generated):
        problems.append(
            f"credit_consumed {record.credit_consumed} exceeds credit_generated {record.credit_generated}"
        )

    if problems:
        message = f"Ledger record {record.id} failed integrity check: " + "; ".join(problems)
        logger.critical(message)
        raise LedgerIntegrityError(message)


async def lock_student_ledger(db: AsyncSession, student_id: UUID) -> List[LedgerRecord]:
    """
    Take the per-student ledger lock: the student row and every ledger record of the
    student, in id order. Rows are re-read under the lock. Returns the ledger records.
    """
    await set_lock_timeout(db)
    await db.execute(
        select(Student.id).where(Student.id == student_id).with_for_update()
    )
    result = await db.execute(
        select(LedgerRecord)
        .where(LedgerRecord.student_id == student_id)
        .order_by(LedgerRecord.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
