"""
Mint Relay API - payment verification and mint relay.

Provides REST endpoints for:
- Verifying a payment transaction (POST /verify)
- Verifying a payment and minting to a beneficiary (POST /mint)
- Health checks (GET /health)
"""

import uvicorn
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings, get_settings
from .exceptions import MintRelayError
from .models import ErrorResponse, HealthResponse, MintRequest, MintResponse, VerifyRequest, VerifyResponse
from .service import MintRelayService, build_service

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


# Global service (initialized at startup)
_service: MintRelayService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    global _service

    settings = get_settings()

    try:
        _service = build_service(settings)
    except ValueError as e:
        logger.error("service.not_configured", error=str(e))
        _service = None

    logger.info(
        "API started",
        version=__version__,
        host=settings.host,
        port=settings.port,
        rpc=settings.base_rpc,
        ledger=_service.ledger.backend_name if _service else None,
        relayer=_service.minter.address if _service and _service.minter else None,
    )

    yield

    # Cleanup
    if _service:
        await _service.close()
        _service = None

    logger.info("API stopped")


def get_service() -> MintRelayService:
    """Service dependency (overridden in tests)."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _service


# Create FastAPI app
app = FastAPI(
    title="Mint Relay API",
    description="Verifies USDC payments on-chain and mints tokens to the payer's beneficiary",
    version=__version__,
    lifespan=lifespan,
)


# Add CORS middleware
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)


def _json(status_code: int, body: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are validation failures (400), not 422."""
    logger.info("request.invalid_body", path=request.url.path, errors=str(exc.errors()))
    if request.url.path == "/mint":
        return _json(400, MintResponse(success=False, reason="Invalid request body"))
    return _json(400, ErrorResponse(error="Invalid request body"))


# ============================================================================
# Health Check
# ============================================================================


@app.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """
    Check API health and RPC connectivity.
    """
    rpc_ok = False
    if _service:
        rpc_ok = await _service.chain.check_connectivity()

    if _service is None:
        status = "unconfigured"
    elif rpc_ok:
        status = "ok"
    else:
        status = "degraded"

    return HealthResponse(
        status=status,
        version=__version__,
        rpc=rpc_ok,
        ledger=_service.ledger.backend_name if _service else "none",
        relayer=_service.minter.address if _service and _service.minter else None,
        contracts={
            "token_contract": settings.token_contract,
            "usdc_contract": settings.usdc_contract,
        },
    )


# ============================================================================
# Verify Payment
# ============================================================================


@app.post(
    "/verify",
    response_model=VerifyResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def verify_payment(
    request: VerifyRequest,
    service: MintRelayService = Depends(get_service),
) -> Any:
    """
    Check a payment transaction for a transfer of the expected USDC amount.

    Read-only; does not consult or modify the ledger.
    """
    try:
        check = await service.verify_payment(request.tx_hash, request.to)
    except MintRelayError as e:
        if e.status_code >= 500:
            logger.error("verify.failed", error=e.reason, tx_hash=request.tx_hash)
        return _json(e.status_code, ErrorResponse(error=e.reason))
    except Exception as e:
        logger.exception("verify.unexpected_error", tx_hash=request.tx_hash)
        return _json(500, ErrorResponse(error=str(e)))

    if not check.valid:
        return VerifyResponse(valid=False, reason=check.reason)

    return VerifyResponse(
        valid=True,
        from_address=check.transfer.from_address,
        to=check.transfer.to_address,
        value=str(check.transfer.value),
        block_number=check.block_number,
    )


# ============================================================================
# Verify and Mint
# ============================================================================


@app.post(
    "/mint",
    response_model=MintResponse,
    response_model_exclude_none=True,
    responses={400: {"model": MintResponse}, 404: {"model": MintResponse}, 500: {"model": MintResponse}},
)
async def mint(
    request: MintRequest,
    service: MintRelayService = Depends(get_service),
) -> Any:
    """
    Verify a payment and mint tokens to the beneficiary.

    Each payment transaction can trigger at most one mint.
    """
    try:
        result = await service.verify_and_mint(request.tx_hash, request.beneficiary)
    except MintRelayError as e:
        if e.status_code >= 500:
            logger.error("mint.failed", error=e.reason, error_type=type(e).__name__, tx_hash=request.tx_hash)
        return _json(e.status_code, MintResponse(success=False, reason=e.reason))
    except Exception as e:
        logger.exception("mint.unexpected_error", tx_hash=request.tx_hash)
        return _json(500, MintResponse(success=False, error=str(e)))

    logger.info(
        "mint.completed",
        tx_hash=request.tx_hash,
        mint_tx_hash=result.mint.tx_hash,
        beneficiary=request.beneficiary,
    )

    return MintResponse(
        success=True,
        mint_tx_hash=result.mint.tx_hash,
        payment_from=result.payment.from_address,
        payment_value=str(result.payment.value),
        block_number=result.payment_block,
        mint_block_number=result.mint.block_number,
    )


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "mintrelay_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
