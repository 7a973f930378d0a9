"""Fee ledger service: payment ingestion (manual and bank webhook), reversal, ledger read model."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.unmatched_payments.store import find_unmatched_by_reference, store_unmatched_payment
from app.core.config import settings
from app.core.enums import PaymentSource, PaymentStatus, TermSource, UnmatchedPaymentStatus
from app.core.exceptions import ConflictError, InvalidInputError, LedgerIntegrityError, NotFoundError
from app.core.models import LedgerRecord, Payment, Student, UnmatchedPayment
from app.db.locking import run_with_transient_retry

from .aggregator import ZERO, lock_student_ledger, recompute_ledger_record, to_money, verify_ledger_record
from .audit import ledger_snapshot, log_fee_audit
from .credit import resolve_student_credit
from .schemas import (
    BankDepositWebhook,
    LedgerIntegrityReport,
    LedgerRecordResponse,
    ManualPaymentCreate,
    PaymentOutcome,
    PaymentResponse,
    StudentFeeSummary,
)
from .term_resolver import ResolvedTerm, ledger_sort_key, resolve_term

logger = logging.getLogger(__name__)


def _clean(val: Optional[str]) -> Optional[str]:
    return (val or "").strip() or None


def _validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (ArithmeticError, ValueError):
        raise InvalidInputError("amount must be a number")
    if not value.is_finite() or value <= 0:
        raise InvalidInputError("amount must be a positive finite number")
    return to_money(value)


def _pt_to_response(pt: Payment) -> PaymentResponse:
    return PaymentResponse.model_validate(pt)


def _lr_to_response(lr: LedgerRecord) -> LedgerRecordResponse:
    return LedgerRecordResponse.model_validate(lr)


def matched_outcome(
    payment: Payment,
    record: Optional[LedgerRecord],
    term_source: Optional[TermSource] = None,
) -> PaymentOutcome:
    return PaymentOutcome(
        status="matched",
        ledger_record_id=record.id if record else None,
        updated_balance=to_money(record.outstanding_balance) if record else None,
        credit_generated=to_money(record.credit_generated) if record else None,
        term=payment.term,
        academic_year=payment.academic_year,
        term_source=term_source,
        payment=_pt_to_response(payment),
        ledger_record=_lr_to_response(record) if record else None,
    )


def _unmatched_outcome(entry: UnmatchedPayment, reason: str) -> PaymentOutcome:
    return PaymentOutcome(
        status="unmatched",
        reason=reason,
        unmatched_payment_id=entry.id,
        term=entry.term,
        academic_year=entry.academic_year,
    )


async def ensure_reference_unused(db: AsyncSession, reference: Optional[str]) -> None:
    if not reference:
        return
    existing = (
        await db.execute(select(Payment.id).where(Payment.transaction_reference == reference))
    ).scalar_one_or_none()
    if existing:
        logger.info("Duplicate transaction reference %s rejected (payment %s)", reference, existing)
        raise ConflictError("A payment with this transaction reference already exists")


# --- Critical section ---
async def apply_payment(
    db: AsyncSession,
    *,
    student_id: UUID,
    fee_structure_id: UUID,
    ledger_record_id: Optional[UUID],
    amount: Decimal,
    method: str,
    source: PaymentSource,
    reference: Optional[str],
    payment_date: datetime,
    term: str,
    academic_year: str,
    notes: Optional[str] = None,
    recorded_by: Optional[UUID] = None,
    records: Optional[List[LedgerRecord]] = None,
) -> Tuple[Payment, Optional[LedgerRecord]]:
    """
    Insert a payment, recompute its ledger record and carry credit forward, all under the
    student's ledger lock. Does not commit. With ledger_record_id None the payment is
    pre-registered against (student, fee structure) and billing attaches it later.
    """
    if records is None:
        records = await lock_student_ledger(db, student_id)
    record = None
    if ledger_record_id is not None:
        record = next((r for r in records if r.id == ledger_record_id), None)
        if record is None:
            raise NotFoundError("Ledger record not found")
        await verify_ledger_record(db, record)

    payment = Payment(
        student_id=student_id,
        ledger_record_id=ledger_record_id,
        fee_structure_id=fee_structure_id,
        amount_paid=amount,
        method=method,
        source=source.value,
        transaction_reference=reference,
        status=PaymentStatus.completed.value,
        payment_date=payment_date,
        term=term,
        academic_year=academic_year,
        notes=notes,
        recorded_by=recorded_by,
    )
    db.add(payment)
    try:
        await db.flush()
    except IntegrityError as e:
        if "transaction_reference" in str(e.orig):
            logger.info("Duplicate transaction reference %s rejected by constraint", reference)
            raise ConflictError("A payment with this transaction reference already exists")
        raise

    log_fee_audit(
        db, "payments", payment.id, "CREATE", None,
        {
            "amount_paid": str(amount),
            "method": method,
            "source": source.value,
            "transaction_reference": reference,
            "ledger_record_id": str(ledger_record_id) if ledger_record_id else None,
        },
        recorded_by,
    )

    if record is not None:
        old = ledger_snapshot(record)
        await recompute_ledger_record(db, record)
        await resolve_student_credit(db, student_id, records=records, changed_by=recorded_by)
        log_fee_audit(db, "ledger_records", record.id, "UPDATE", old, ledger_snapshot(record), recorded_by)

    logger.info(
        "Payment %s of %s (%s) applied to ledger record %s, balance %s",
        payment.id, amount, source.value, ledger_record_id,
        record.outstanding_balance if record is not None else None,
    )
    return payment, record


# --- Manual entry ---
async def record_manual_payment(
    db: AsyncSession,
    payload: ManualPaymentCreate,
    recorded_by: Optional[UUID] = None,
) -> PaymentOutcome:
    amount = _validate_amount(payload.amount)
    method = (payload.method or "").strip().upper()
    if not method:
        raise InvalidInputError("method is required")
    reference = _clean(payload.reference)
    payment_date = payload.date or datetime.now(timezone.utc)

    async def _unit() -> PaymentOutcome:
        record = (
            await db.execute(
                select(LedgerRecord)
                .where(LedgerRecord.id == payload.ledger_record_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if not record:
            raise NotFoundError("Ledger record not found")
        await ensure_reference_unused(db, reference)
        payment, record = await apply_payment(
            db,
            student_id=record.student_id,
            fee_structure_id=record.fee_structure_id,
            ledger_record_id=record.id,
            amount=amount,
            method=method,
            source=PaymentSource.MANUAL,
            reference=reference,
            payment_date=payment_date,
            term=record.term,
            academic_year=record.academic_year,
            notes=_clean(payload.notes),
            recorded_by=recorded_by,
        )
        await db.flush()
        outcome = matched_outcome(payment, record)
        await db.commit()
        return outcome

    return await run_with_transient_retry(
        db, _unit, description=f"manual payment for ledger record {payload.ledger_record_id}"
    )


# --- Bank webhook ---
def _pick_record_for_term(records: List[LedgerRecord], term: str, academic_year: str) -> Optional[LedgerRecord]:
    """Earliest-created record of the term that still owes money, else the earliest-created one."""
    same_term = sorted(
        (r for r in records if r.term == term and r.academic_year == academic_year),
        key=ledger_sort_key,
    )
    for r in same_term:
        if to_money(r.outstanding_balance) > 0:
            return r
    return same_term[0] if same_term else None


async def ingest_bank_deposit(
    db: AsyncSession,
    payload: BankDepositWebhook,
    today: Optional[date] = None,
) -> PaymentOutcome:
    """
    Apply a bank deposit identified only by admission number. Deposits that cannot be
    attributed to a student or ledger record go to the holding store and are acknowledged
    as unmatched; they are not errors.
    """
    amount = _validate_amount(payload.amount)
    admission_number = (payload.admission_number or "").strip()
    if not admission_number:
        raise InvalidInputError("admission_number is required")
    reference = _clean(payload.reference)
    narration = _clean(payload.narration)
    bank_account = _clean(payload.bank_account)

    def _hold(status: UnmatchedPaymentStatus, term=None, academic_year=None, student_id=None):
        return store_unmatched_payment(
            db,
            admission_number=admission_number,
            amount=amount,
            status=status,
            reference=reference,
            bank_account=bank_account,
            narration=narration,
            term=term,
            academic_year=academic_year,
            student_id=student_id,
        )

    async def _unit() -> PaymentOutcome:
        if reference:
            await ensure_reference_unused(db, reference)
            held = await find_unmatched_by_reference(db, reference)
            if held:
                outcome = _unmatched_outcome(held, "Deposit already stored for review")
                await db.commit()
                return outcome

        student = (
            await db.execute(select(Student).where(Student.registration_number == admission_number))
        ).scalar_one_or_none()
        if not student:
            entry = await _hold(UnmatchedPaymentStatus.unmatched_student, payload.term, payload.academic_year)
            await db.commit()
            logger.warning("Deposit for unknown admission number %s stored for review", admission_number)
            return _unmatched_outcome(entry, "Student not found")

        records = await lock_student_ledger(db, student.id)
        term = _clean(payload.term)
        academic_year = _clean(payload.academic_year)
        if term and academic_year:
            resolved = ResolvedTerm(term, academic_year, TermSource.EXPLICIT)
        else:
            resolved = await resolve_term(db, student.id, today=today)

        record = None
        if not (
            settings.strict_webhook_term_matching
            and resolved.source in (TermSource.LATEST_BILLED, TermSource.CALENDAR)
        ):
            record = _pick_record_for_term(records, resolved.term, resolved.academic_year)
        if record is None:
            entry = await _hold(
                UnmatchedPaymentStatus.unmatched_ledger,
                resolved.term,
                resolved.academic_year,
                student.id,
            )
            await db.commit()
            logger.warning(
                "Deposit for %s has no ledger record for %s %s, stored for review",
                admission_number, resolved.term, resolved.academic_year,
            )
            return _unmatched_outcome(entry, "No ledger record found for this term")

        notes = f"Bank deposit: {narration}" if narration else "Bank deposit"
        if bank_account:
            notes = f"{notes} (Acc: {bank_account})"
        payment, record = await apply_payment(
            db,
            student_id=student.id,
            fee_structure_id=record.fee_structure_id,
            ledger_record_id=record.id,
            amount=amount,
            method="BANK_DEPOSIT",
            source=PaymentSource.BANK_WEBHOOK,
            reference=reference,
            payment_date=datetime.now(timezone.utc),
            term=record.term,
            academic_year=record.academic_year,
            notes=notes,
            records=records,
        )
        await db.flush()
        outcome = matched_outcome(payment, record, term_source=resolved.source)
        await db.commit()
        return outcome

    try:
        return await run_with_transient_retry(
            db, _unit, description=f"bank deposit for admission number {admission_number}"
        )
    except IntegrityError:
        # A concurrent delivery of the same deposit reached the holding store first.
        if reference:
            held = await find_unmatched_by_reference(db, reference)
            await db.commit()
            if held:
                return _unmatched_outcome(held, "Deposit already stored for review")
        raise


# --- Reversal ---
async def reverse_payment(
    db: AsyncSession,
    payment_id: UUID,
    reason: str,
    changed_by: Optional[UUID] = None,
) -> PaymentOutcome:
    """Mark a payment reversed; the ledger and any credit it funded are recomputed."""

    async def _load() -> Optional[Payment]:
        return (
            await db.execute(
                select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

    async def _unit() -> PaymentOutcome:
        payment = await _load()
        if not payment:
            raise NotFoundError("Payment not found")
        records = await lock_student_ledger(db, payment.student_id)
        payment = await _load()
        if payment.status == PaymentStatus.reversed.value:
            raise ConflictError("Payment is already reversed")
        record = next((r for r in records if r.id == payment.ledger_record_id), None)
        if record is not None:
            await verify_ledger_record(db, record)

        payment.status = PaymentStatus.reversed.value
        payment.reversed_at = datetime.now(timezone.utc)
        payment.reversal_reason = reason.strip()
        log_fee_audit(
            db, "payments", payment.id, "REVERSE",
            {"status": PaymentStatus.completed.value},
            {"status": PaymentStatus.reversed.value, "reason": payment.reversal_reason},
            changed_by,
        )

        if record is not None:
            old = ledger_snapshot(record)
            await recompute_ledger_record(db, record)
            await resolve_student_credit(db, payment.student_id, records=records, changed_by=changed_by)
            log_fee_audit(db, "ledger_records", record.id, "UPDATE", old, ledger_snapshot(record), changed_by)
        await db.flush()
        outcome = matched_outcome(payment, record)
        await db.commit()
        logger.info("Payment %s reversed: %s", payment.id, payment.reversal_reason)
        return outcome

    return await run_with_transient_retry(db, _unit, description=f"reversal of payment {payment_id}")


# --- Read model ---
async def get_payment(db: AsyncSession, payment_id: UUID) -> Optional[PaymentResponse]:
    pt = await db.get(Payment, payment_id)
    return _pt_to_response(pt) if pt else None


async def get_payment_history(
    db: AsyncSession,
    student_id: UUID,
    academic_year: Optional[str] = None,
    include_reversed: bool = False,
) -> List[PaymentResponse]:
    stmt = select(Payment).where(Payment.student_id == student_id)
    if not include_reversed:
        stmt = stmt.where(Payment.status != PaymentStatus.reversed.value)
    if academic_year is not None:
        stmt = stmt.where(Payment.academic_year == academic_year)
    stmt = stmt.order_by(Payment.payment_date.desc(), Payment.created_at.desc())
    result = await db.execute(stmt)
    return [_pt_to_response(pt) for pt in result.scalars().all()]


async def get_ledger_record(db: AsyncSession, ledger_record_id: UUID) -> Optional[LedgerRecordResponse]:
    lr = await db.get(LedgerRecord, ledger_record_id)
    return _lr_to_response(lr) if lr else None


async def list_ledger_records(
    db: AsyncSession,
    student_id: Optional[UUID] = None,
    term: Optional[str] = None,
    academic_year: Optional[str] = None,
    status_filter: Optional[str] = None,
) -> List[LedgerRecordResponse]:
    stmt = select(LedgerRecord)
    if student_id is not None:
        stmt = stmt.where(LedgerRecord.student_id == student_id)
    if term:
        stmt = stmt.where(LedgerRecord.term == term)
    if academic_year:
        stmt = stmt.where(LedgerRecord.academic_year == academic_year)
    if status_filter:
        stmt = stmt.where(LedgerRecord.status == status_filter)
    rows = (await db.execute(stmt)).scalars().all()
    return [_lr_to_response(r) for r in sorted(rows, key=ledger_sort_key)]


async def check_ledger_integrity(db: AsyncSession, ledger_record_id: UUID) -> Optional[LedgerIntegrityReport]:
    lr = await db.get(LedgerRecord, ledger_record_id)
    if not lr:
        return None
    try:
        await verify_ledger_record(db, lr)
    except LedgerIntegrityError as e:
        return LedgerIntegrityReport(ledger_record_id=lr.id, consistent=False, detail=e.message)
    return LedgerIntegrityReport(ledger_record_id=lr.id, consistent=True)


async def get_student_fee_summary(db: AsyncSession, student_id: UUID) -> Optional[StudentFeeSummary]:
    """Multi-term rollup for one student, for dashboards. Never writes."""
    student = await db.get(Student, student_id)
    if not student:
        return None
    rows = (
        await db.execute(select(LedgerRecord).where(LedgerRecord.student_id == student_id))
    ).scalars().all()
    records = sorted(rows, key=ledger_sort_key)

    total_billed = sum((to_money(r.total_billed) for r in records), ZERO)
    total_paid = sum((to_money(r.total_paid) for r in records), ZERO)
    total_applied = sum((to_money(r.credit_applied) for r in records), ZERO)
    outstanding = sum((to_money(r.outstanding_balance) for r in records), ZERO)
    available = sum((to_money(r.credit_generated) - to_money(r.credit_consumed) for r in records), ZERO)
    paid_dates = [r.last_payment_date for r in records if r.last_payment_date is not None]

    academic_years: List[str] = []
    for r in records:
        if r.academic_year not in academic_years:
            academic_years.append(r.academic_year)

    return StudentFeeSummary(
        student_id=student.id,
        student_name=student.full_name,
        registration_number=student.registration_number,
        student_type=student.student_type,
        total_billed=total_billed,
        total_paid=total_paid,
        total_credit_applied=total_applied,
        outstanding_balance=outstanding,
        available_credit=max(ZERO, available),
        last_payment_date=max(paid_dates) if paid_dates else None,
        academic_years=academic_years,
        records=[_lr_to_response(r) for r in records],
    )
