"""Fee structure registry: named billable item per term and academic year, plus its eligible classes."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint, Uuid

from app.core.enums import FeeCategory
from app.db.session import Base


class FeeStructure(Base):
    """Billable item (tuition, transport, ...) for one student type in one term."""

    __tablename__ = "fee_structures"
    __table_args__ = (
        CheckConstraint("category IN ('Mandatory','Optional')", name="chk_fee_structure_category"),
        CheckConstraint("student_type IN ('DayScholar','Boarding')", name="chk_fee_structure_student_type"),
        CheckConstraint("amount >= 0", name="chk_fee_structure_amount"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    term = Column(String(20), nullable=False)  # e.g. "Term 1"
    academic_year = Column(String(20), nullable=False)  # e.g. "2024-2025"
    category = Column(String(20), nullable=False, default=FeeCategory.MANDATORY.value)
    student_type = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class FeeStructureClass(Base):
    __tablename__ = "fee_structure_classes"
    __table_args__ = (
        UniqueConstraint("fee_structure_id", "class_id", name="uq_fee_structure_class"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
