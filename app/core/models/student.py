"""Student directory entry. Owned by the student module; the ledger only reads it."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Uuid

from app.core.enums import StudentType
from app.db.session import Base


class Student(Base):
    """Student with the registration (admission) number the bank quotes on deposits."""

    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    registration_number = Column(String(50), nullable=False, unique=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    student_type = Column(String(20), nullable=False, default=StudentType.DAY_SCHOLAR.value)  # DayScholar | Boarding
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
