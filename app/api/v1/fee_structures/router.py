"""Fee structures router. Creating or editing a structure bills its eligible students."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.fees.schemas import BillingResult
from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import FeeStructureCreate, FeeStructureResponse, FeeStructureUpdate
from . import service

router = APIRouter(prefix="/api/v1/fee-structures", tags=["fee-structures"])


@router.post(
    "",
    response_model=FeeStructureResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_fee_structure(
    payload: FeeStructureCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeStructureResponse:
    try:
        return await service.create_fee_structure(db, payload, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[FeeStructureResponse],
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_fee_structures(
    academic_year: Optional[str] = Query(None),
    term: Optional[str] = Query(None),
    active_only: bool = Query(True, description="Return only active structures by default"),
    db: AsyncSession = Depends(get_db),
) -> List[FeeStructureResponse]:
    return await service.list_fee_structures(db, academic_year=academic_year, term=term, active_only=active_only)


@router.put(
    "/{fee_structure_id}",
    response_model=FeeStructureResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def update_fee_structure(
    fee_structure_id: UUID,
    payload: FeeStructureUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeStructureResponse:
    try:
        return await service.update_fee_structure(db, fee_structure_id, payload, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{fee_structure_id}/generate-billing",
    response_model=BillingResult,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def generate_billing(
    fee_structure_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BillingResult:
    try:
        return await service.trigger_billing(db, fee_structure_id, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
