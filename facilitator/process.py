"""FastAPI application exposing the payment facilitator."""

from __future__ import annotations

import hmac
import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from authorization.errors import EncodingError, NetworkError

from .config import API_KEY_ENV, RELAYER_KEY_ENV, config_path_from_env, load_config
from .schemas import FailureResponse, HealthResponse, PaymentRequest, SettleResponse, VerifyResponse
from .service import Facilitator, parse_payment

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    level = os.environ.get("FACILITATOR_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO))
    logger.info("Facilitator logging configured", extra={"level": level})


def _failure(status_code: int, error: str, reason: str, transaction: Optional[str] = None) -> JSONResponse:
    body = FailureResponse(error=error, reason=reason, transaction=transaction)
    return JSONResponse(body.model_dump(exclude_none=True), status_code=status_code)


def create_app(
    *,
    facilitator: Optional[Facilitator] = None,
    config_path: str | Path | None = None,
    api_key: Optional[str] = None,
) -> FastAPI:
    """Instantiate the FastAPI application around a facilitator."""

    if facilitator is None:
        config = load_config(config_path or config_path_from_env())
        facilitator = Facilitator.from_config(config, relayer_key=os.getenv(RELAYER_KEY_ENV))
    expected_key = api_key if api_key is not None else os.getenv(API_KEY_ENV)
    app = FastAPI(title="Payment Facilitator", version="0.1.0")

    async def get_facilitator() -> Facilitator:
        return facilitator

    def require_api_key(authorization: Optional[str] = Header(default=None)) -> None:
        if not expected_key:
            return
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="missing bearer token")
        if not hmac.compare_digest(authorization[len("Bearer "):], expected_key):
            raise HTTPException(status_code=403, detail="invalid bearer token")

    @app.exception_handler(EncodingError)
    async def _encoding_error(_request: Request, exc: EncodingError) -> JSONResponse:
        return _failure(400, "encoding_error", str(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _failure(400, "encoding_error", "request body must contain paymentPayload and paymentRequirements objects")

    @app.exception_handler(NetworkError)
    async def _network_error(_request: Request, exc: NetworkError) -> JSONResponse:
        return _failure(504, "network_error", exc.reason, exc.transaction_id)

    @app.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
    async def health(facilitator: Facilitator = Depends(get_facilitator)) -> HealthResponse:
        return facilitator.health()

    @app.get("/metrics")
    async def metrics(facilitator: Facilitator = Depends(get_facilitator)) -> Response:
        return Response(facilitator.metrics(), media_type=facilitator.metrics_content_type)

    @app.post(
        "/verify",
        response_model=VerifyResponse,
        response_model_exclude_none=True,
        dependencies=[Depends(require_api_key)],
    )
    async def verify(
        request: PaymentRequest,
        facilitator: Facilitator = Depends(get_facilitator),
    ) -> VerifyResponse:
        payload, requirements = parse_payment(request.paymentPayload, request.paymentRequirements)
        return await facilitator.verify(payload, requirements)

    @app.post(
        "/settle",
        response_model=SettleResponse,
        response_model_exclude_none=True,
        dependencies=[Depends(require_api_key)],
    )
    async def settle(
        request: PaymentRequest,
        facilitator: Facilitator = Depends(get_facilitator),
    ) -> SettleResponse:
        payload, requirements = parse_payment(request.paymentPayload, request.paymentRequirements)
        return await facilitator.settle(payload, requirements)

    return app


__all__ = ["configure_logging", "create_app"]
