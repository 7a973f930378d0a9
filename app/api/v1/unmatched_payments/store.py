"""
Unmatched-payment holding store writes. Used by the payment ingestor inside its own
transaction; entries are only ever marked reconciled, never deleted.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import UnmatchedPaymentStatus
from app.core.models import UnmatchedPayment


async def find_unmatched_by_reference(db: AsyncSession, reference: str) -> Optional[UnmatchedPayment]:
    return (
        await db.execute(select(UnmatchedPayment).where(UnmatchedPayment.reference == reference))
    ).scalar_one_or_none()


async def store_unmatched_payment(
    db: AsyncSession,
    *,
    admission_number: str,
    amount: Decimal,
    status: UnmatchedPaymentStatus,
    reference: Optional[str] = None,
    bank_account: Optional[str] = None,
    narration: Optional[str] = None,
    term: Optional[str] = None,
    academic_year: Optional[str] = None,
    student_id: Optional[UUID] = None,
) -> UnmatchedPayment:
    """Queue a deposit for manual review. Caller must commit."""
    entry = UnmatchedPayment(
        admission_number=admission_number,
        amount=amount,
        reference=reference,
        bank_account=bank_account,
        narration=narration,
        term=term,
        academic_year=academic_year,
        recorded_at=datetime.now(timezone.utc),
        status=status.value,
        student_id=student_id,
    )
    db.add(entry)
    await db.flush()
    return entry
