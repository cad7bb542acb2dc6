"""Wire models for the facilitator HTTP surface."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PaymentRequest(BaseModel):
    """Body shared by ``/verify`` and ``/settle``."""

    x402Version: Optional[int] = None
    paymentPayload: Dict[str, Any]
    paymentRequirements: Dict[str, Any]


class VerifyResponse(BaseModel):
    isValid: bool
    payer: Optional[str] = None
    invalidReason: Optional[str] = None


class SettleResponse(BaseModel):
    success: bool
    network: str
    transaction: Optional[str] = None
    payer: Optional[str] = None
    errorReason: Optional[str] = None


class FailureResponse(BaseModel):
    """Body of a 4xx/5xx answer; ``error`` discriminates the failure class."""

    success: bool = False
    error: str
    reason: str
    transaction: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    mode: str
    networks: Dict[str, int] = Field(default_factory=dict)
    relayer: Optional[str] = None


__all__ = ["FailureResponse", "HealthResponse", "PaymentRequest", "SettleResponse", "VerifyResponse"]
