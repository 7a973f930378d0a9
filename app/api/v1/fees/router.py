"""Fees router: manual payments, reversal, payment history, ledger records, student summary."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import LedgerStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    LedgerIntegrityReport,
    LedgerRecordResponse,
    ManualPaymentCreate,
    PaymentOutcome,
    PaymentResponse,
    PaymentReverseRequest,
    StudentFeeSummary,
)
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


# --- Payments ---
@router.post(
    "/payments",
    response_model=PaymentOutcome,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def record_payment(
    payload: ManualPaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentOutcome:
    try:
        return await service.record_manual_payment(db, payload, recorded_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/payments/{payment_id}/reverse",
    response_model=PaymentOutcome,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def reverse_payment(
    payment_id: UUID,
    payload: PaymentReverseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentOutcome:
    try:
        return await service.reverse_payment(db, payment_id, payload.reason, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/payments/{payment_id}",
    response_model=PaymentResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def read_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    pt = await service.get_payment(db, payment_id)
    if not pt:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return pt


@router.get(
    "/payment-history/{student_id}",
    response_model=List[PaymentResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def payment_history(
    student_id: UUID,
    academic_year: Optional[str] = Query(None),
    include_reversed: bool = Query(False),
    db: AsyncSession = Depends(get_db),
) -> List[PaymentResponse]:
    return await service.get_payment_history(
        db, student_id, academic_year=academic_year, include_reversed=include_reversed
    )


# --- Ledger ---
@router.get(
    "/ledger",
    response_model=List[LedgerRecordResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_ledger_records(
    student_id: Optional[UUID] = Query(None),
    term: Optional[str] = Query(None),
    academic_year: Optional[str] = Query(None),
    status_filter: Optional[LedgerStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> List[LedgerRecordResponse]:
    return await service.list_ledger_records(
        db,
        student_id=student_id,
        term=term,
        academic_year=academic_year,
        status_filter=status_filter.value if status_filter else None,
    )


@router.get(
    "/ledger/{ledger_record_id}",
    response_model=LedgerRecordResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def read_ledger_record(
    ledger_record_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> LedgerRecordResponse:
    lr = await service.get_ledger_record(db, ledger_record_id)
    if not lr:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ledger record not found")
    return lr


@router.get(
    "/ledger/{ledger_record_id}/verify",
    response_model=LedgerIntegrityReport,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def verify_ledger_record(
    ledger_record_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> LedgerIntegrityReport:
    report = await service.check_ledger_integrity(db, ledger_record_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ledger record not found")
    return report


# --- Read model ---
@router.get(
    "/students/{student_id}/summary",
    response_model=StudentFeeSummary,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def student_fee_summary(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> StudentFeeSummary:
    summary = await service.get_student_fee_summary(db, student_id)
    if not summary:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return summary
