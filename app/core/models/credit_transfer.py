"""Credit transfer: how much of one record's surplus has been consumed by a later record."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, UniqueConstraint, Uuid

from app.db.session import Base


class CreditTransfer(Base):
    """
    One row per (source, target) pair. Sum of amounts per source equals the source's
    credit_consumed; sum per target equals the target's credit_applied.
    """

    __tablename__ = "credit_transfers"
    __table_args__ = (
        UniqueConstraint("source_record_id", "target_record_id", name="uq_credit_transfer_pair"),
        CheckConstraint("amount > 0", name="chk_credit_transfer_amount_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="RESTRICT"), nullable=False, index=True)
    source_record_id = Column(Uuid, ForeignKey("ledger_records.id", ondelete="RESTRICT"), nullable=False)
    target_record_id = Column(Uuid, ForeignKey("ledger_records.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
