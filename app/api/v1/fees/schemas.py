"""Fee ledger schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import LedgerStatus, PaymentSource, PaymentStatus, TermSource


# --- Ledger ---
class LedgerRecordResponse(BaseModel):
    id: UUID
    student_id: UUID
    fee_structure_id: UUID
    term: str
    academic_year: str
    total_billed: Decimal
    total_paid: Decimal
    credit_applied: Decimal
    credit_consumed: Decimal
    outstanding_balance: Decimal
    credit_generated: Decimal
    status: LedgerStatus
    last_payment_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LedgerIntegrityReport(BaseModel):
    ledger_record_id: UUID
    consistent: bool
    detail: Optional[str] = None


# --- Payment ---
class ManualPaymentCreate(BaseModel):
    ledger_record_id: UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, allow_inf_nan=False)
    method: str = Field(..., min_length=1, max_length=30, description="CASH, MPESA, BANK_TRANSFER, CHEQUE")
    reference: Optional[str] = Field(None, max_length=100)
    date: Optional[datetime] = None
    notes: Optional[str] = None


class BankDepositWebhook(BaseModel):
    """Deposit notification pushed by the bank."""

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, allow_inf_nan=False)
    admission_number: str = Field(..., min_length=1, max_length=50)
    reference: Optional[str] = Field(None, max_length=100)
    bank_account: Optional[str] = Field(None, max_length=50)
    narration: Optional[str] = None
    term: Optional[str] = Field(None, max_length=20)
    academic_year: Optional[str] = Field(None, max_length=20)


class PaymentReverseRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class PaymentResponse(BaseModel):
    id: UUID
    student_id: UUID
    ledger_record_id: Optional[UUID] = None
    fee_structure_id: UUID
    amount_paid: Decimal
    method: str
    source: PaymentSource
    transaction_reference: Optional[str] = None
    status: PaymentStatus
    payment_date: datetime
    term: str
    academic_year: str
    notes: Optional[str] = None
    recorded_by: Optional[UUID] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentOutcome(BaseModel):
    """Result of ingesting one payment. `unmatched` only happens on the webhook path."""

    status: Literal["matched", "unmatched"]
    ledger_record_id: Optional[UUID] = None
    updated_balance: Optional[Decimal] = None
    credit_generated: Optional[Decimal] = None
    term: Optional[str] = None
    academic_year: Optional[str] = None
    term_source: Optional[TermSource] = None
    reason: Optional[str] = None
    unmatched_payment_id: Optional[UUID] = None
    payment: Optional[PaymentResponse] = None
    ledger_record: Optional[LedgerRecordResponse] = None


# --- Billing ---
class BillingResult(BaseModel):
    fee_structure_id: UUID
    eligible_students: int = 0
    created: List[UUID] = Field(default_factory=list)
    updated: List[UUID] = Field(default_factory=list)


# --- Read model ---
class StudentFeeSummary(BaseModel):
    """Per-student rollup across terms. Read only."""

    student_id: UUID
    student_name: Optional[str] = None
    registration_number: Optional[str] = None
    student_type: Optional[str] = None
    total_billed: Decimal
    total_paid: Decimal
    total_credit_applied: Decimal
    outstanding_balance: Decimal
    available_credit: Decimal
    last_payment_date: Optional[datetime] = None
    academic_years: List[str] = Field(default_factory=list)
    records: List[LedgerRecordResponse] = Field(default_factory=list)
