"""FastAPI application exposing the work-attestation verifier."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from authorization.errors import EncodingError, NetworkError
from authorization.models import WorkEnvelope

from .config import VERIFIER_KEY_ENV, config_path_from_env, load_config
from .schemas import StatusResponse, VerifyWorkRequest, VerifyWorkResponse
from .service import AttestationVerifier

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    level = os.environ.get("ATTESTATION_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO))
    logger.info("Attestation verifier logging configured", extra={"level": level})


def _failure(status_code: int, error: str, reason: str, transaction: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "error": error, "reason": reason}
    if transaction:
        body["transaction"] = transaction
    return JSONResponse(body, status_code=status_code)


def create_app(
    *,
    verifier: Optional[AttestationVerifier] = None,
    config_path: str | Path | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application around an attestation verifier."""

    if verifier is None:
        config = load_config(config_path or config_path_from_env())
        verifier = AttestationVerifier.from_config(config, verifier_key=os.getenv(VERIFIER_KEY_ENV))
    app = FastAPI(title="Work Attestation Verifier", version="0.1.0")

    async def get_verifier() -> AttestationVerifier:
        return verifier

    @app.exception_handler(EncodingError)
    async def _encoding_error(_request: Request, exc: EncodingError) -> JSONResponse:
        return _failure(400, "encoding_error", str(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, _exc: RequestValidationError) -> JSONResponse:
        return _failure(400, "encoding_error", "request body must contain an envelope object")

    @app.exception_handler(NetworkError)
    async def _network_error(_request: Request, exc: NetworkError) -> JSONResponse:
        return _failure(504, "network_error", exc.reason, exc.transaction_id)

    @app.get("/health")
    async def health(verifier: AttestationVerifier = Depends(get_verifier)) -> Dict[str, Any]:
        return verifier.health()

    @app.get("/status", response_model=StatusResponse, response_model_exclude_none=True)
    async def status(verifier: AttestationVerifier = Depends(get_verifier)) -> StatusResponse:
        return await verifier.status()

    @app.get("/metrics")
    async def metrics(verifier: AttestationVerifier = Depends(get_verifier)) -> Response:
        return Response(verifier.metrics(), media_type=verifier.metrics_content_type)

    @app.post("/verify", response_model=VerifyWorkResponse)
    async def verify(
        request: VerifyWorkRequest,
        verifier: AttestationVerifier = Depends(get_verifier),
    ) -> VerifyWorkResponse:
        envelope = WorkEnvelope.from_mapping(request.envelope)
        logger.info("Verification request for bounty %s", envelope.bounty_id, extra={"agent_id": envelope.agent_id})
        return await verifier.verify(envelope, request.bounty_id)

    return app


__all__ = ["configure_logging", "create_app"]
