"""Error taxonomy shared by the signed authorization protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class ProtocolError(RuntimeError):
    """Base class for protocol errors raised to callers."""


class EncodingError(ProtocolError, ValueError):
    """Raised when an authorization or envelope is malformed.

    Fatal to the caller and never retryable: resubmitting the same bytes will
    fail the same way.
    """


class SettlementError(ProtocolError):
    """Raised when the ledger rejects a settlement or the RPC call fails."""

    def __init__(self, reason: str, *, transaction_id: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.transaction_id = transaction_id


class NetworkError(ProtocolError):
    """Raised on timeouts or connectivity failures against the ledger.

    ``transaction_id`` is set when a transaction was submitted but its
    confirmation could not be observed in time; callers must re-verify nonce
    state before retrying a settlement.
    """

    def __init__(self, reason: str, *, transaction_id: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.transaction_id = transaction_id


@dataclass(frozen=True)
class VerificationFailure:
    """Expected verification failure, returned rather than raised."""

    reason: str
    state: str

    def __str__(self) -> str:
        return self.reason


__all__ = [
    "EncodingError",
    "NetworkError",
    "ProtocolError",
    "SettlementError",
    "VerificationFailure",
]
