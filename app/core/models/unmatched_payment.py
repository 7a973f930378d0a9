"""Holding store for bank deposits that could not be attributed. Never auto-deleted."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text, Uuid

from app.core.enums import UnmatchedPaymentStatus
from app.db.session import Base


class UnmatchedPayment(Base):
    __tablename__ = "unmatched_payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    admission_number = Column(String(50), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    reference = Column(String(100), nullable=True, unique=True)
    bank_account = Column(String(50), nullable=True)
    narration = Column(Text, nullable=True)
    term = Column(String(20), nullable=True)
    academic_year = Column(String(20), nullable=True)
    recorded_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    # unmatched_student | unmatched_ledger | reconciled
    status = Column(String(30), nullable=False, default=UnmatchedPaymentStatus.unmatched_student.value)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="SET NULL"), nullable=True)
    reconciled_payment_id = Column(Uuid, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)
    reconciled_by = Column(Uuid, nullable=True)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)
