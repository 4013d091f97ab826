"""Thin HTTP boundary over the payment orchestrator.

Run with ``uvicorn --factory multigateway.api:create_app``.
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings, configure_logging
from .database import DatabaseManager, SqlAlchemyTransactionStore
from .errors import ErrorCode
from .gateways import GatewayRegistry
from .orchestrator import InitiateIntent, PaymentOrchestrator, PaymentResult

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.UNSUPPORTED_GATEWAY: 400,
    ErrorCode.NO_GATEWAY_CONFIGURED: 400,
    ErrorCode.GATEWAY_MISMATCH: 400,
    ErrorCode.INVALID_AMOUNT: 400,
    ErrorCode.NOT_REFUNDABLE: 409,
    ErrorCode.GATEWAY_UNAVAILABLE: 503,
    ErrorCode.GATEWAY_COMMUNICATION_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}

router = APIRouter(prefix="/api/payments", tags=["payments"])


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


def to_response(result: PaymentResult, success_code: int = 200) -> JSONResponse:
    status_code = success_code if result.ok else ERROR_STATUS_CODES.get(result.error, 500)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.post("")
async def initiate_payment(
    body: InitiateIntent, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    result = await orchestrator.initiate_payment(body)
    return to_response(result, success_code=201)


@router.get("/by-provider/{provider_id}")
async def find_by_provider_id(
    provider_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    return to_response(await orchestrator.find_by_provider_id(provider_id))


@router.get("/{internal_id}/status")
async def get_status(
    internal_id: str,
    gateway_name: Optional[str] = Query(None, alias="gatewayName"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return to_response(await orchestrator.get_status(internal_id, gateway_name))


@router.post("/{internal_id}/refund")
async def refund_payment(
    internal_id: str,
    gateway_name: Optional[str] = Query(None, alias="gatewayName"),
    amount: Optional[Decimal] = Query(None, ge=0, decimal_places=2),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return to_response(await orchestrator.refund_payment(internal_id, gateway_name, amount))


@router.get("/{internal_id}/history")
async def get_history(
    internal_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    history = await orchestrator.get_history(internal_id)
    if history is None:
        raise HTTPException(status_code=404, detail=f"No transaction found with id {internal_id}")
    return {"internal_id": internal_id, "history": history}


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[GatewayRegistry] = None,
) -> FastAPI:
    """
    Build the application. The registry is built from ``settings`` unless one
    is passed in; database and orchestrator are wired in the lifespan handler.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        gateways = registry or GatewayRegistry.from_settings(settings)
        db = DatabaseManager(settings.database_url)
        await db.initialize()
        app.state.registry = gateways
        app.state.orchestrator = PaymentOrchestrator(
            gateways,
            SqlAlchemyTransactionStore(db),
            timeout_seconds=settings.provider_timeout_seconds,
        )
        logger.info(f"Payment gateways registered: {', '.join(gateways.names) or 'none'}")
        try:
            yield
        finally:
            await db.shutdown()

    app = FastAPI(
        title="Multi-Gateway Payments",
        description="Initiate, query and refund payments through interchangeable providers.",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.get("/health")
    async def health(request: Request):
        return {"status": "ok", "gateways": request.app.state.registry.health()}

    return app
