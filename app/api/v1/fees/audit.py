"""
Fee audit logging. Call on every financial state change, inside the same transaction.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.models import FeeAuditLog


def log_fee_audit(
    db: AsyncSession,
    reference_table: str,
    reference_id: UUID,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[UUID] = None,
) -> None:
    """Append one audit log entry. Caller must commit."""
    db.add(
        FeeAuditLog(
            reference_table=reference_table,
            reference_id=reference_id,
            action_type=action_type,
            old_value=old_value,
            new_value=new_value,
            changed_by=changed_by,
        )
    )


def ledger_snapshot(record) -> dict:
    return {
        "total_billed": str(record.total_billed),
        "total_paid": str(record.total_paid),
        "credit_applied": str(record.credit_applied),
        "credit_consumed": str(record.credit_consumed),
        "outstanding_balance": str(record.outstanding_balance),
        "credit_generated": str(record.credit_generated),
        "status": record.status,
    }
