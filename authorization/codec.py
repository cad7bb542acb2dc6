"""Canonical encodings that get signed and later re-derived for verification.

Payments use EIP-712 typed data with a domain bound to the protocol name,
version, chain id and relayer contract, so a signature for one chain or one
deployment never verifies against another. Work envelopes are signed as an
EIP-191 personal message over a fixed-order, ``|``-delimited string.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List

from eth_account.messages import SignableMessage, encode_defunct, encode_typed_data

from .errors import EncodingError
from .fields import format_agent_id, parse_agent_address, require_address, require_text, require_uint
from .models import ENVELOPE_DELIMITER, Authorization, WorkEnvelope

DOMAIN_NAME = "B402"
DOMAIN_VERSION = "1"
COMMIT_PREFIX = "sha256:"

TRANSFER_WITH_AUTHORIZATION_TYPES: Dict[str, List[Dict[str, str]]] = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}

KNOWN_CHAIN_IDS: Dict[str, int] = {
    "bsc": 56,
    "bsc-testnet": 97,
    "base": 8453,
    "base-sepolia": 84532,
}


@dataclass(frozen=True)
class TypedDataDomain:
    """EIP-712 domain separating one relayer deployment from every other."""

    chain_id: int
    verifying_contract: str
    name: str = DOMAIN_NAME
    version: str = DOMAIN_VERSION

    def __post_init__(self) -> None:
        require_text(self.name, "domain name")
        require_text(self.version, "domain version")
        chain_id = require_uint(self.chain_id, "chainId")
        if chain_id == 0:
            raise EncodingError("chainId must be positive")
        object.__setattr__(self, "chain_id", chain_id)
        object.__setattr__(
            self, "verifying_contract", require_address(self.verifying_contract, "verifyingContract")
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def chain_id_for(network: str) -> int:
    """Return the chain id of a built-in network name."""

    try:
        return KNOWN_CHAIN_IDS[network]
    except KeyError as exc:
        raise EncodingError(f"unsupported network: {network}") from exc


def authorization_message(authorization: Authorization) -> Dict[str, Any]:
    """Typed-data message body; ``bytes32`` nonces are passed as raw bytes."""

    return {
        "from": authorization.from_address,
        "to": authorization.to,
        "value": authorization.value,
        "validAfter": authorization.valid_after,
        "validBefore": authorization.valid_before,
        "nonce": bytes.fromhex(authorization.nonce[2:]),
    }


def encode_authorization(authorization: Authorization, domain: TypedDataDomain) -> SignableMessage:
    if not isinstance(authorization, Authorization):
        raise EncodingError("expected an Authorization")
    if not isinstance(domain, TypedDataDomain):
        raise EncodingError("expected a TypedDataDomain")
    return encode_typed_data(
        domain_data=domain.as_dict(),
        message_types=TRANSFER_WITH_AUTHORIZATION_TYPES,
        message_data=authorization_message(authorization),
    )


def canonical_envelope(
    agent_id: str,
    bounty_id: str,
    intent: str,
    commit: str,
    nonce: Any,
    timestamp: Any,
) -> str:
    """Join envelope fields in their fixed order.

    A field that contains the delimiter would make two different envelopes
    encode identically, so it is rejected.
    """

    parse_agent_address(agent_id)
    parts = [agent_id, bounty_id, intent, commit]
    for name, value in zip(("agent_id", "bounty_id", "intent", "commit"), parts):
        require_text(value, name, forbidden=(ENVELOPE_DELIMITER,))
    if isinstance(nonce, bool) or not isinstance(nonce, (int, str)):
        raise EncodingError("nonce must be an integer or a string")
    if isinstance(nonce, str):
        require_text(nonce, "nonce", forbidden=(ENVELOPE_DELIMITER,))
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise EncodingError("timestamp must be an integer")
    return ENVELOPE_DELIMITER.join([*parts, str(nonce), str(timestamp)])


def envelope_canonical_string(envelope: WorkEnvelope) -> str:
    return canonical_envelope(
        envelope.agent_id,
        envelope.bounty_id,
        envelope.intent,
        envelope.commit,
        envelope.nonce,
        envelope.timestamp,
    )


def encode_envelope_text(canonical: str) -> SignableMessage:
    return encode_defunct(text=canonical)


def encode_envelope(envelope: WorkEnvelope) -> SignableMessage:
    if not isinstance(envelope, WorkEnvelope):
        raise EncodingError("expected a WorkEnvelope")
    return encode_envelope_text(envelope_canonical_string(envelope))


def commitment_for(work: str | bytes) -> str:
    """Hash-prefixed commitment to off-chain work content."""

    if isinstance(work, str):
        work = work.encode("utf-8")
    if not isinstance(work, (bytes, bytearray)):
        raise EncodingError("work content must be str or bytes")
    return COMMIT_PREFIX + hashlib.sha256(work).hexdigest()


__all__ = [
    "COMMIT_PREFIX",
    "DOMAIN_NAME",
    "DOMAIN_VERSION",
    "KNOWN_CHAIN_IDS",
    "TRANSFER_WITH_AUTHORIZATION_TYPES",
    "TypedDataDomain",
    "authorization_message",
    "canonical_envelope",
    "chain_id_for",
    "commitment_for",
    "encode_authorization",
    "encode_envelope",
    "encode_envelope_text",
    "envelope_canonical_string",
    "format_agent_id",
    "parse_agent_address",
]
