"""FastAPI application for payment identifier reconciliation."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .auth import limiter, verify_api_key
from .database import init_db, close_db
from .exceptions import (
    GatewayRejected,
    GatewayUnreachable,
    InvalidInput,
    PaymentNotFound,
    ResolutionFailed,
)
from .gateway import GatewayProbeBase, get_gateway
from .reconciliation.api import router as reconciliation_router, get_gateway_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    app.state.gateway = get_gateway(os.getenv("GATEWAY_PROVIDER", "portone"))
    try:
        yield
    finally:
        await app.state.gateway.aclose()
        await close_db()


app = FastAPI(title="Payment Reconciler API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(reconciliation_router)


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PaymentNotFound)
async def not_found_handler(request: Request, exc: PaymentNotFound):
    content = {"detail": str(exc)}
    if isinstance(exc, ResolutionFailed):
        content["attempted"] = exc.attempted
    return JSONResponse(status_code=404, content=content)


@app.exception_handler(GatewayRejected)
async def gateway_rejected_handler(request: Request, exc: GatewayRejected):
    return JSONResponse(status_code=409, content={"detail": str(exc), "error": exc.to_dict()})


@app.exception_handler(GatewayUnreachable)
async def gateway_unreachable_handler(request: Request, exc: GatewayUnreachable):
    logger.error(f"Gateway unreachable: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc), "error": exc.to_dict()})


@app.get("/health")
async def health(gateway: GatewayProbeBase = Depends(get_gateway_client)):
    """Report service and gateway health. Unauthenticated."""
    gateway_health = await gateway.health_check()
    return {
        "status": "healthy" if gateway_health.get("ok") else "degraded",
        "gateway": gateway_health,
    }


__all__ = ["app", "verify_api_key"]
