"""Wire models for the attestation verifier HTTP surface."""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel


class VerifyWorkRequest(BaseModel):
    envelope: Dict[str, Any]
    bounty_id: Optional[Union[int, str]] = None


class Verification(BaseModel):
    intent: bool = False
    integrity: bool = False
    outcome: bool = False


class VerifyWorkResponse(BaseModel):
    success: bool
    trust_score: float
    verification: Verification
    attestation_hash: Optional[str] = None
    transaction_hash: Optional[str] = None
    message: str


class StatusResponse(BaseModel):
    verifier_address: Optional[str] = None
    contract_address: Optional[str] = None
    network: str
    chain_id: int
    mode: str
    balance: Optional[str] = None


__all__ = ["StatusResponse", "Verification", "VerifyWorkRequest", "VerifyWorkResponse"]
