import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid

from app.db.session import Base


class Enrollment(Base):
    """
    Current class enrollment of a student. Billing reads ACTIVE rows only;
    a student who LEFT keeps the ledger records already billed.
    """

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("student_id", "class_id", name="uq_enrollment_student_class"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE | LEFT
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
