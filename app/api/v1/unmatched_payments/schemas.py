"""Unmatched-payment holding store schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.api.v1.fees.schemas import PaymentOutcome
from app.core.enums import UnmatchedPaymentStatus


class UnmatchedPaymentResponse(BaseModel):
    id: UUID
    admission_number: str
    amount: Decimal
    reference: Optional[str] = None
    bank_account: Optional[str] = None
    narration: Optional[str] = None
    term: Optional[str] = None
    academic_year: Optional[str] = None
    recorded_at: datetime
    status: UnmatchedPaymentStatus
    student_id: Optional[UUID] = None
    reconciled_payment_id: Optional[UUID] = None
    reconciled_by: Optional[UUID] = None
    reconciled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReconcileRequest(BaseModel):
    """Assign a held deposit to a ledger record, or to a student and a fee structure not yet billed."""

    ledger_record_id: Optional[UUID] = None
    student_id: Optional[UUID] = None
    fee_structure_id: Optional[UUID] = None
    method: str = Field("BANK_DEPOSIT", min_length=1, max_length=30)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_target(self) -> "ReconcileRequest":
        if self.ledger_record_id is None and (self.student_id is None or self.fee_structure_id is None):
            raise ValueError("Provide ledger_record_id, or both student_id and fee_structure_id")
        return self


class ReconcileResult(BaseModel):
    unmatched_payment: UnmatchedPaymentResponse
    outcome: PaymentOutcome
