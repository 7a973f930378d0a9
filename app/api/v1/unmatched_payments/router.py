"""Unmatched payments router: review queue and manual reconciliation."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import UnmatchedPaymentStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ReconcileRequest, ReconcileResult, UnmatchedPaymentResponse
from . import service

router = APIRouter(prefix="/api/v1/unmatched-payments", tags=["unmatched-payments"])


@router.get(
    "",
    response_model=List[UnmatchedPaymentResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_unmatched_payments(
    status_filter: Optional[UnmatchedPaymentStatus] = Query(None, alias="status"),
    include_reconciled: bool = Query(False),
    db: AsyncSession = Depends(get_db),
) -> List[UnmatchedPaymentResponse]:
    return await service.list_unmatched_payments(
        db, status_filter=status_filter, include_reconciled=include_reconciled
    )


@router.get(
    "/{unmatched_payment_id}",
    response_model=UnmatchedPaymentResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def read_unmatched_payment(
    unmatched_payment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> UnmatchedPaymentResponse:
    entry = await service.get_unmatched_payment(db, unmatched_payment_id)
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unmatched payment not found")
    return entry


@router.post(
    "/{unmatched_payment_id}/reconcile",
    response_model=ReconcileResult,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def reconcile_unmatched_payment(
    unmatched_payment_id: UUID,
    payload: ReconcileRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ReconcileResult:
    try:
        return await service.reconcile_unmatched_payment(
            db, unmatched_payment_id, payload, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
