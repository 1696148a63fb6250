"""API endpoints for identifier resolution, cancellation and sync."""

import logging
import os
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import verify_api_key, limiter, CANCEL_RATE_LIMIT, SYNC_RATE_LIMIT
from ..config import GatewayConfig
from ..database import get_db
from ..gateway import GatewayProbeBase, get_gateway
from ..identifiers import generate_candidates, is_normalized, normalize, uuid_derivation
from .models import CancelOutcome, SyncResult
from .service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reconciliation"])

# CancelOutcome error types -> HTTP status for unsuccessful cancels
OUTCOME_ERROR_STATUS = {
    "ResolutionFailed": 404,
    "GatewayRejected": 409,
    "GatewayUnreachable": 502,
}


def get_gateway_config() -> GatewayConfig:
    return GatewayConfig.from_env()


def get_gateway_client(request: Request) -> GatewayProbeBase:
    """Return the app-wide gateway client, creating it on first use."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        gateway = get_gateway(os.getenv("GATEWAY_PROVIDER", "portone"))
        request.app.state.gateway = gateway
    return gateway


def get_service(
    db: AsyncSession = Depends(get_db),
    gateway: GatewayProbeBase = Depends(get_gateway_client),
    config: GatewayConfig = Depends(get_gateway_config),
) -> ReconciliationService:
    return ReconciliationService(db, gateway, config=config)


class CancelRequestBody(BaseModel):
    """Request body for cancelling an order's payment."""
    order_id: str = Field(..., min_length=1, description="Merchant order reference")
    reason: Optional[str] = Field(default=None, max_length=200, description="Cancel reason")
    amount: Optional[int] = Field(default=None, description="Partial amount; omit for full cancel")


class ResolveRequestBody(BaseModel):
    """Request body for resolving a stored identifier."""
    raw_id: Optional[str] = Field(default=None, description="Stored identifier in any format")
    order_id: Optional[str] = Field(default=None, description="Order reference for the lookup fallback")


class ResolveResponse(BaseModel):
    raw_identifier: Optional[str] = None
    payment_id: str
    method: str
    attempts: List[str] = Field(default_factory=list)
    gateway_status: Optional[str] = None


class SyncRequestBody(BaseModel):
    """Request body for a batch sync."""
    status: Optional[str] = Field(default=None, description="Only sync payments with this local status")
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=1000)


class NormalizeResponse(BaseModel):
    raw: Optional[str] = None
    normalized: str
    already_normalized: bool
    uuid_derivation: Optional[str] = None
    candidates: List[str]


@router.post("/payments/cancel", response_model=CancelOutcome)
@limiter.limit(CANCEL_RATE_LIMIT)
async def cancel_payment(
    request: Request,
    body: CancelRequestBody,
    service: ReconciliationService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    """
    Cancel the payment behind an order.

    The stored identifier is resolved to the gateway payment id before the
    cancel is sent. Unsuccessful cancels return the outcome with a 404, 409
    or 502 status; the attempt is recorded in the payment history either way.
    """
    outcome = await service.cancel_order(body.order_id, reason=body.reason, amount=body.amount)
    if outcome.success:
        return outcome

    error_type = (outcome.error or {}).get("type")
    status_code = OUTCOME_ERROR_STATUS.get(error_type, 502)
    return JSONResponse(status_code=status_code, content=outcome.model_dump(mode="json"))


@router.post("/payments/resolve", response_model=ResolveResponse)
async def resolve_payment(
    body: ResolveRequestBody,
    service: ReconciliationService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    """Resolve a stored identifier to the gateway payment id."""
    resolution = await service.resolve_identifier(body.raw_id, order_id=body.order_id)
    return ResolveResponse(
        raw_identifier=resolution.raw_identifier,
        payment_id=resolution.payment_id,
        method=resolution.method.value,
        attempts=resolution.attempts,
        gateway_status=resolution.record.status if resolution.record else None,
    )


@router.post("/payments/sync")
@limiter.limit(SYNC_RATE_LIMIT)
async def sync_payments(
    request: Request,
    body: SyncRequestBody,
    include_details: bool = Query(default=True, description="Include per-payment results"),
    service: ReconciliationService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    """Converge every matching local payment to the gateway record."""
    report = await service.sync_payments(
        status=body.status,
        start_time=body.start_time,
        end_time=body.end_time,
        limit=body.limit,
    )
    return report.to_full_dict() if include_details else report.to_summary_dict()


@router.post("/payments/{order_id}/sync", response_model=SyncResult)
async def sync_payment(
    order_id: str,
    service: ReconciliationService = Depends(get_service),
    api_key: str = Depends(verify_api_key),
):
    """Converge one local payment to the gateway record."""
    return await service.sync_payment(order_id)


@router.get("/identifiers/normalize", response_model=NormalizeResponse)
async def normalize_identifier(
    raw: Optional[str] = Query(default=None, description="Identifier to normalize"),
    api_key: str = Depends(verify_api_key),
):
    """Show the normalized id and the candidate set for an identifier. No gateway call."""
    return NormalizeResponse(
        raw=raw,
        normalized=normalize(raw),
        already_normalized=is_normalized(raw),
        uuid_derivation=uuid_derivation(raw),
        candidates=generate_candidates(raw),
    )
