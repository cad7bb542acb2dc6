"""Data model for payment authorizations and work envelopes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from .errors import EncodingError
from .fields import (
    optional_text,
    parse_agent_address,
    pick,
    require_address,
    require_bytes32,
    require_mapping,
    require_signature,
    require_text,
    require_uint,
)

ENVELOPE_DELIMITER = "|"
X402_VERSION = 1
EXACT_SCHEME = "exact"


@dataclass(frozen=True)
class Authorization:
    """Transfer intent signed by the payer (EIP-3009 field layout)."""

    from_address: str
    to: str
    value: int
    valid_after: int
    valid_before: int
    nonce: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "from_address", require_address(self.from_address, "from"))
        object.__setattr__(self, "to", require_address(self.to, "to"))
        object.__setattr__(self, "value", require_uint(self.value, "value"))
        object.__setattr__(self, "valid_after", require_uint(self.valid_after, "validAfter"))
        object.__setattr__(self, "valid_before", require_uint(self.valid_before, "validBefore"))
        object.__setattr__(self, "nonce", require_bytes32(self.nonce, "nonce"))
        if self.valid_after >= self.valid_before:
            raise EncodingError("validAfter must be strictly less than validBefore")

    @classmethod
    def from_mapping(cls, data: Any) -> "Authorization":
        data = require_mapping(data, "authorization")
        return cls(
            from_address=pick(data, "from", "from_address"),
            to=pick(data, "to"),
            value=pick(data, "value"),
            valid_after=pick(data, "validAfter", "valid_after"),
            valid_before=pick(data, "validBefore", "valid_before"),
            nonce=pick(data, "nonce"),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to,
            "value": str(self.value),
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }


@dataclass(frozen=True)
class PaymentRequirements:
    """Terms published by the payee that a payment must satisfy."""

    network: str
    asset: str
    pay_to: str
    max_amount_required: int
    max_timeout_seconds: int
    relayer_contract: str
    scheme: str = EXACT_SCHEME
    description: Optional[str] = None
    resource: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "scheme", require_text(self.scheme, "scheme"))
        object.__setattr__(self, "network", require_text(self.network, "network"))
        object.__setattr__(self, "asset", require_address(self.asset, "asset"))
        object.__setattr__(self, "pay_to", require_address(self.pay_to, "payTo"))
        object.__setattr__(
            self, "max_amount_required", require_uint(self.max_amount_required, "maxAmountRequired")
        )
        object.__setattr__(
            self, "max_timeout_seconds", require_uint(self.max_timeout_seconds, "maxTimeoutSeconds")
        )
        if self.max_timeout_seconds == 0:
            raise EncodingError("maxTimeoutSeconds must be positive")
        object.__setattr__(
            self, "relayer_contract", require_address(self.relayer_contract, "relayerContract")
        )
        optional_text(self.description, "description")
        optional_text(self.resource, "resource")

    @classmethod
    def from_mapping(cls, data: Any) -> "PaymentRequirements":
        data = require_mapping(data, "paymentRequirements")
        return cls(
            scheme=pick(data, "scheme"),
            network=pick(data, "network"),
            asset=pick(data, "asset"),
            pay_to=pick(data, "payTo", "pay_to"),
            max_amount_required=pick(data, "maxAmountRequired", "max_amount_required"),
            max_timeout_seconds=pick(data, "maxTimeoutSeconds", "max_timeout_seconds"),
            relayer_contract=pick(data, "relayerContract", "relayer_contract"),
            description=pick(data, "description", required=False),
            resource=pick(data, "resource", required=False),
        )

    def to_mapping(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "scheme": self.scheme,
            "network": self.network,
            "asset": self.asset,
            "payTo": self.pay_to,
            "maxAmountRequired": str(self.max_amount_required),
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "relayerContract": self.relayer_contract,
        }
        if self.description is not None:
            payload["description"] = self.description
        if self.resource is not None:
            payload["resource"] = self.resource
        return payload


@dataclass(frozen=True)
class PaymentPayload:
    """Signed authorization plus the metadata needed to relay it."""

    network: str
    token: str
    authorization: Authorization
    signature: str
    scheme: str = EXACT_SCHEME
    x402_version: int = X402_VERSION

    def __post_init__(self) -> None:
        if not isinstance(self.authorization, Authorization):
            raise EncodingError("authorization must be an Authorization")
        object.__setattr__(self, "network", require_text(self.network, "network"))
        object.__setattr__(self, "scheme", require_text(self.scheme, "scheme"))
        object.__setattr__(self, "token", require_address(self.token, "token"))
        object.__setattr__(self, "signature", require_signature(self.signature))
        object.__setattr__(self, "x402_version", require_uint(self.x402_version, "x402Version"))

    @property
    def payer(self) -> str:
        return self.authorization.from_address

    @classmethod
    def from_mapping(cls, data: Any) -> "PaymentPayload":
        data = require_mapping(data, "paymentPayload")
        inner = require_mapping(pick(data, "payload"), "payload")
        return cls(
            x402_version=pick(data, "x402Version", required=False) or X402_VERSION,
            scheme=pick(data, "scheme"),
            network=pick(data, "network"),
            token=pick(data, "token", "asset", field="token"),
            authorization=Authorization.from_mapping(pick(inner, "authorization")),
            signature=pick(inner, "signature"),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "scheme": self.scheme,
            "network": self.network,
            "token": self.token,
            "payload": {
                "authorization": self.authorization.to_mapping(),
                "signature": self.signature,
            },
        }


@dataclass(frozen=True)
class WorkEnvelope:
    """Agent-signed statement that work for a bounty was completed."""

    agent_id: str
    bounty_id: str
    intent: str
    commit: str
    nonce: Union[int, str]
    timestamp: int
    signature: str

    def __post_init__(self) -> None:
        parse_agent_address(self.agent_id)
        forbidden = (ENVELOPE_DELIMITER,)
        require_text(self.bounty_id, "bounty_id", forbidden=forbidden)
        require_text(self.intent, "intent", forbidden=forbidden)
        require_text(self.commit, "commit", forbidden=forbidden)
        if isinstance(self.nonce, bool) or not isinstance(self.nonce, (int, str)):
            raise EncodingError("nonce must be an integer or a string")
        if isinstance(self.nonce, int):
            require_uint(self.nonce, "nonce")
        else:
            require_text(self.nonce, "nonce", forbidden=forbidden)
        if isinstance(self.timestamp, bool) or not isinstance(self.timestamp, int) or self.timestamp < 0:
            raise EncodingError("timestamp must be a non-negative integer")
        object.__setattr__(self, "signature", require_signature(self.signature, "sig"))

    @property
    def agent_address(self) -> str:
        return parse_agent_address(self.agent_id)

    @classmethod
    def from_mapping(cls, data: Any) -> "WorkEnvelope":
        data = require_mapping(data, "envelope")
        return cls(
            agent_id=pick(data, "agent_id", "agentId"),
            bounty_id=pick(data, "bounty_id", "bountyId"),
            intent=pick(data, "intent"),
            commit=pick(data, "commit"),
            nonce=pick(data, "nonce"),
            timestamp=pick(data, "timestamp"),
            signature=pick(data, "sig", "signature", field="sig"),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "bounty_id": self.bounty_id,
            "intent": self.intent,
            "commit": self.commit,
            "nonce": self.nonce,
            "timestamp": self.timestamp,
            "sig": self.signature,
        }


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of the three independent work checks and the derived score."""

    intent: bool
    integrity: bool
    outcome: bool
    trust_score: float
    passed: bool
    details: Mapping[str, str] = field(default_factory=dict)

    def checks(self) -> Dict[str, bool]:
        return {"intent": self.intent, "integrity": self.integrity, "outcome": self.outcome}


@dataclass(frozen=True)
class SettlementReceipt:
    """Terminal, externally observable outcome of a settlement."""

    success: bool
    network: str
    transaction_id: Optional[str] = None
    payer: Optional[str] = None
    agent: Optional[str] = None
    error: Optional[str] = None
    block_number: Optional[int] = None


__all__ = [
    "Authorization",
    "ENVELOPE_DELIMITER",
    "EXACT_SCHEME",
    "PaymentPayload",
    "PaymentRequirements",
    "SettlementReceipt",
    "VerificationResult",
    "WorkEnvelope",
    "X402_VERSION",
]
