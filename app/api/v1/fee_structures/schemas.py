"""Fee structure registry schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.api.v1.fees.schemas import BillingResult
from app.core.enums import FeeCategory, StudentType


class FeeStructureCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    term: str = Field(..., min_length=1, max_length=20, description="e.g. Term 1")
    academic_year: str = Field(..., min_length=1, max_length=20, description="e.g. 2024-2025")
    category: FeeCategory = FeeCategory.MANDATORY
    student_type: StudentType
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2, allow_inf_nan=False)
    class_ids: List[UUID] = Field(default_factory=list)
    is_active: bool = True


class FeeStructureUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    term: Optional[str] = Field(None, min_length=1, max_length=20)
    academic_year: Optional[str] = Field(None, min_length=1, max_length=20)
    category: Optional[FeeCategory] = None
    student_type: Optional[StudentType] = None
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2, allow_inf_nan=False)
    class_ids: Optional[List[UUID]] = None  # replaces the class list when given
    is_active: Optional[bool] = None


class FeeStructureResponse(BaseModel):
    id: UUID
    name: str
    term: str
    academic_year: str
    category: FeeCategory
    student_type: StudentType
    amount: Decimal
    is_active: bool
    class_ids: List[UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    billing: Optional[BillingResult] = None  # set when the write triggered billing generation
