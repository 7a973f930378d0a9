"""Ledger record: one billing row per student per fee structure. Totals are derived, never typed in."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid

from app.core.enums import LedgerStatus
from app.db.session import Base


class LedgerRecord(Base):
    """
    total_billed is copied from the fee structure at generation time.
    total_paid, outstanding_balance, credit_generated, status and last_payment_date are
    written only by the aggregator. credit_applied / credit_consumed are written only by
    the credit carryover resolver, always together with a CreditTransfer row.
    """

    __tablename__ = "ledger_records"
    __table_args__ = (
        UniqueConstraint("student_id", "fee_structure_id", name="uq_ledger_record_student_fee_structure"),
        CheckConstraint("outstanding_balance >= 0", name="chk_ledger_record_outstanding"),
        CheckConstraint("credit_generated >= 0", name="chk_ledger_record_credit_generated"),
        CheckConstraint(
            "status IN ('pending','partial','paid','overpaid')",
            name="chk_ledger_record_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="RESTRICT"), nullable=False)
    term = Column(String(20), nullable=False)
    academic_year = Column(String(20), nullable=False)

    total_billed = Column(Numeric(12, 2), nullable=False)
    total_paid = Column(Numeric(12, 2), nullable=False, default=0)
    credit_applied = Column(Numeric(12, 2), nullable=False, default=0)
    # Portion of credit_generated already handed to later records.
    credit_consumed = Column(Numeric(12, 2), nullable=False, default=0)
    outstanding_balance = Column(Numeric(12, 2), nullable=False, default=0)
    credit_generated = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=LedgerStatus.pending.value)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
