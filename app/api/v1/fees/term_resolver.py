"""
Infer the billing term for a bank deposit that arrived without term/academic_year.

Best effort, first match wins:
1. earliest record of the current or a later (academic_year, term) that still has an
   outstanding balance; arrears from earlier terms are not picked here
2. the student's most recently billed record
3. calendar default: Jan-Apr Term 1, May-Aug Term 2, Sep-Dec Term 3, year "<y>-<y+1>"
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import TermSource
from app.core.models import LedgerRecord

_TERM_NUMBER = re.compile(r"(\d+)\s*$")


@dataclass(frozen=True)
class ResolvedTerm:
    term: str
    academic_year: str
    source: TermSource


def term_number(term: Optional[str]) -> int:
    """'Term 2' -> 2. Terms without a trailing number sort first."""
    if not term:
        return 0
    m = _TERM_NUMBER.search(term.strip())
    return int(m.group(1)) if m else 0


def term_sort_key(academic_year: str, term: str) -> Tuple[str, int, str]:
    return (academic_year or "", term_number(term), term or "")


def _as_utc(value: Optional[datetime]) -> datetime:
    # Freshly flushed rows hold naive UTC values, reloaded ones may be tz-aware.
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ledger_sort_key(record: LedgerRecord) -> Tuple:
    """(academic_year, term) ascending, then creation order."""
    return term_sort_key(record.academic_year, record.term) + (
        _as_utc(record.created_at),
        str(record.id),
    )


def term_for_date(today: date) -> ResolvedTerm:
    if today.month <= 4:
        term = "Term 1"
    elif today.month <= 8:
        term = "Term 2"
    else:
        term = "Term 3"
    return ResolvedTerm(term=term, academic_year=f"{today.year}-{today.year + 1}", source=TermSource.CALENDAR)


async def list_student_records(db: AsyncSession, student_id: UUID) -> List[LedgerRecord]:
    rows = (
        await db.execute(select(LedgerRecord).where(LedgerRecord.student_id == student_id))
    ).scalars().all()
    return sorted(rows, key=ledger_sort_key)


async def resolve_term(db: AsyncSession, student_id: UUID, today: Optional[date] = None) -> ResolvedTerm:
    records = await list_student_records(db, student_id)
    current = term_for_date(today or date.today())
    current_key = term_sort_key(current.academic_year, current.term)[:2]

    for rec in records:
        if term_sort_key(rec.academic_year, rec.term)[:2] < current_key:
            continue
        if rec.outstanding_balance is not None and rec.outstanding_balance > 0:
            return ResolvedTerm(rec.term, rec.academic_year, TermSource.OUTSTANDING)

    if records:
        latest = records[-1]
        return ResolvedTerm(latest.term, latest.academic_year, TermSource.LATEST_BILLED)

    return current
