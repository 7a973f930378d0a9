"""
Credit carryover resolver.

Moves a ledger record's surplus (credit_generated) onto the student's earliest later record
that still owes money, and takes credit back when a source can no longer back what it gave
(payment reversed, billed amount raised). Runs inside the caller's transaction, after the
caller has locked the student's ledger records. Safe to run any number of times: a settled
student produces no movements.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import CreditTargetPolicy
from app.core.models import CreditTransfer, LedgerRecord

from .aggregator import ZERO, derive_balances, to_money
from .audit import log_fee_audit
from .term_resolver import ledger_sort_key, list_student_records, term_sort_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditMovement:
    source_record_id: UUID
    target_record_id: UUID
    amount: Decimal
    kind: str  # "apply" | "reclaim"


def _unconsumed(record: LedgerRecord) -> Decimal:
    return to_money(record.credit_generated) - to_money(record.credit_consumed)


def _find_target(
    records: Sequence[LedgerRecord],
    source_index: int,
    policy: CreditTargetPolicy,
) -> Optional[LedgerRecord]:
    source = records[source_index]
    source_term = term_sort_key(source.academic_year, source.term)
    for candidate in records[source_index + 1:]:
        if policy == CreditTargetPolicy.LATER_TERM and term_sort_key(candidate.academic_year, candidate.term) <= source_term:
            continue
        if to_money(candidate.outstanding_balance) > 0:
            return candidate
    return None


async def resolve_student_credit(
    db: AsyncSession,
    student_id: UUID,
    records: Optional[List[LedgerRecord]] = None,
    policy: Optional[CreditTargetPolicy] = None,
    changed_by: Optional[UUID] = None,
) -> List[CreditMovement]:
    """Reclaim overdrawn credit, then carry surplus forward until nothing more can move."""
    policy = CreditTargetPolicy(policy or settings.credit_target_policy)
    if records is None:
        records = await list_student_records(db, student_id)
    records = sorted(records, key=ledger_sort_key)
    if not records:
        return []

    transfers = list(
        (
            await db.execute(select(CreditTransfer).where(CreditTransfer.student_id == student_id))
        ).scalars().all()
    )
    by_id: Dict[UUID, LedgerRecord] = {r.id: r for r in records}

    movements = _reclaim_overdrawn_credit(db, records, transfers, by_id, changed_by)
    movements += _carry_forward(db, student_id, records, transfers, policy, changed_by)

    for t in transfers:
        if to_money(t.amount) <= 0:
            await db.delete(t)
    await db.flush()

    for m in movements:
        logger.info(
            "Credit %s: %s from ledger record %s to %s (student %s)",
            m.kind, m.amount, m.source_record_id, m.target_record_id, student_id,
        )
    return movements


def _reclaim_overdrawn_credit(
    db: AsyncSession,
    records: List[LedgerRecord],
    transfers: List[CreditTransfer],
    by_id: Dict[UUID, LedgerRecord],
    changed_by: Optional[UUID],
) -> List[CreditMovement]:
    movements: List[CreditMovement] = []
    changed = True
    while changed:
        changed = False
        for source in records:
            excess = to_money(source.credit_consumed) - to_money(source.credit_generated)
            if excess <= 0:
                continue
            # Furthest-future target gives its credit back first.
            outgoing = sorted(
                (t for t in transfers if t.source_record_id == source.id and to_money(t.amount) > 0),
                key=lambda t: ledger_sort_key(by_id[t.target_record_id]),
                reverse=True,
            )
            for transfer in outgoing:
                if excess <= 0:
                    break
                target = by_id[transfer.target_record_id]
                take = min(excess, to_money(transfer.amount))
                transfer.amount = to_money(transfer.amount) - take
                target.credit_applied = to_money(target.credit_applied) - take
                source.credit_consumed = to_money(source.credit_consumed) - take
                excess -= take
                derive_balances(target)
                log_fee_audit(
                    db, "ledger_records", target.id, "CREDIT_RECLAIM",
                    {"source_record_id": str(source.id)},
                    {"source_record_id": str(source.id), "amount": str(take), "credit_applied": str(target.credit_applied)},
                    changed_by,
                )
                movements.append(CreditMovement(source.id, target.id, take, "reclaim"))
                changed = True
    return movements


def _carry_forward(
    db: AsyncSession,
    student_id: UUID,
    records: List[LedgerRecord],
    transfers: List[CreditTransfer],
    policy: CreditTargetPolicy,
    changed_by: Optional[UUID],
) -> List[CreditMovement]:
    movements: List[CreditMovement] = []
    changed = True
    while changed:
        changed = False
        for index, source in enumerate(records):
            available = _unconsumed(source)
            if available <= 0:
                continue
            target = _find_target(records, index, policy)
            if target is None:
                continue
            amount = min(available, to_money(target.outstanding_balance))
            if amount <= 0:
                continue

            transfer = next(
                (t for t in transfers if t.source_record_id == source.id and t.target_record_id == target.id),
                None,
            )
            if transfer is None:
                transfer = CreditTransfer(
                    student_id=student_id,
                    source_record_id=source.id,
                    target_record_id=target.id,
                    amount=ZERO,
                )
                db.add(transfer)
                transfers.append(transfer)
            transfer.amount = to_money(transfer.amount) + amount
            target.credit_applied = to_money(target.credit_applied) + amount
            source.credit_consumed = to_money(source.credit_consumed) + amount
            derive_balances(target)
            log_fee_audit(
                db, "ledger_records", target.id, "CREDIT_APPLY",
                None,
                {"source_record_id": str(source.id), "amount": str(amount), "credit_applied": str(target.credit_applied)},
                changed_by,
            )
            movements.append(CreditMovement(source.id, target.id, amount, "apply"))
            changed = True
    return movements
