from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.fee_structures.router import router as fee_structures_router
from app.api.v1.fees.router import router as fees_router
from app.api.v1.fees.webhook_router import router as webhooks_router
from app.api.v1.unmatched_payments.router import router as unmatched_payments_router
from app.core.logging import configure_logging


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Missing fields and non-positive amounts are InvalidInput (400), not 422.
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Fee Ledger Backend")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Routers
    app.include_router(fee_structures_router)
    app.include_router(fees_router)
    app.include_router(webhooks_router)
    app.include_router(unmatched_payments_router)

    return app


app = create_app()
