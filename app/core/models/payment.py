"""Payment: immutable once inserted, except for the completed -> reversed status correction."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text, Uuid

from app.core.enums import PaymentStatus
from app.db.session import Base


class Payment(Base):
    """
    Payment against a ledger record. ledger_record_id is null only for payments
    registered against a (student, fee structure) pair before billing existed;
    billing generation attaches them.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount_paid > 0", name="chk_payment_amount_positive"),
        CheckConstraint("status IN ('completed','reversed')", name="chk_payment_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    ledger_record_id = Column(
        Uuid,
        ForeignKey("ledger_records.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="RESTRICT"), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False)
    method = Column(String(30), nullable=False)  # CASH, MPESA, BANK_TRANSFER, KCB_BANK, ...
    source = Column(String(20), nullable=False)  # manual, bank_webhook, reconciliation
    # Idempotency key for bank deposits; the unique constraint closes the check-then-insert race.
    transaction_reference = Column(String(100), nullable=True, unique=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.completed.value)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    term = Column(String(20), nullable=False)
    academic_year = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    recorded_by = Column(Uuid, nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    reversal_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
