"""Bank deposit webhook. Unmatched deposits are acknowledged with 200 so the bank stops retrying."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import require_webhook_secret
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import BankDepositWebhook, PaymentOutcome
from . import service

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post(
    "/bank-deposit",
    response_model=PaymentOutcome,
    dependencies=[Depends(require_webhook_secret)],
)
async def bank_deposit(
    payload: BankDepositWebhook,
    db: AsyncSession = Depends(get_db),
) -> PaymentOutcome:
    try:
        return await service.ingest_bank_deposit(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
