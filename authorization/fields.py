"""Strict field validators used when decoding authorizations.

Every helper raises :class:`EncodingError` instead of coercing: a float
``value``, a boolean timestamp or a non-hex nonce is malformed input, not
something to be repaired.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

from web3 import Web3

from .errors import EncodingError

AGENT_ID_PREFIX = "erc8004:"
UINT256_MAX = 2**256 - 1

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_HEX_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})+$")
_DECIMAL_RE = re.compile(r"^[0-9]+$")


def require_address(value: Any, field: str) -> str:
    """Return the checksummed form of a 20-byte ``0x`` address."""

    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise EncodingError(f"{field} must be a 0x-prefixed 20-byte address")
    return Web3.to_checksum_address(value)


def require_uint(value: Any, field: str, *, maximum: int = UINT256_MAX) -> int:
    """Accept a non-negative ``int`` or a decimal string of one."""

    if isinstance(value, bool):
        raise EncodingError(f"{field} must be an unsigned integer, not a boolean")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and _DECIMAL_RE.match(value):
        parsed = int(value)
    else:
        raise EncodingError(f"{field} must be an unsigned integer")
    if parsed < 0 or parsed > maximum:
        raise EncodingError(f"{field} is out of range")
    return parsed


def require_bytes32(value: Any, field: str) -> str:
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise EncodingError(f"{field} must be exactly 32 bytes")
        return "0x" + bytes(value).hex()
    if not isinstance(value, str) or not _BYTES32_RE.match(value):
        raise EncodingError(f"{field} must be a 0x-prefixed 32-byte hex string")
    return value.lower()


def require_signature(value: Any, field: str = "signature") -> str:
    """Return a lower-cased 65-byte ``0x`` signature string."""

    if isinstance(value, (bytes, bytearray)):
        value = "0x" + bytes(value).hex()
    if not isinstance(value, str) or not _HEX_RE.match(value):
        raise EncodingError(f"{field} must be a 0x-prefixed hex string")
    if len(value) != 2 + 65 * 2:
        raise EncodingError(f"{field} must be 65 bytes long")
    return value.lower()


def require_text(value: Any, field: str, *, forbidden: Iterable[str] = ()) -> str:
    if not isinstance(value, str) or not value:
        raise EncodingError(f"{field} must be a non-empty string")
    for token in forbidden:
        if token in value:
            raise EncodingError(f"{field} must not contain {token!r}")
    return value


def optional_text(value: Any, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise EncodingError(f"{field} must be a string when provided")
    return value


def require_mapping(value: Any, field: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise EncodingError(f"{field} must be an object")
    return value


def pick(data: dict[str, Any], *keys: str, required: bool = True, field: str | None = None) -> Any:
    """Return the first present key, accepting wire aliases."""

    for key in keys:
        if key in data:
            return data[key]
    if required:
        raise EncodingError(f"missing field: {field or keys[0]}")
    return None


def format_agent_id(address: str) -> str:
    """Format a signer address as an ``erc8004:`` agent identifier."""

    require_address(address, "address")
    return f"{AGENT_ID_PREFIX}{address.lower()}"


def parse_agent_address(agent_id: Any) -> str:
    """Extract the embedded signer address from an ``erc8004:`` identifier."""

    if not isinstance(agent_id, str) or not agent_id.startswith(AGENT_ID_PREFIX + "0x"):
        raise EncodingError(f"invalid agent_id format: {agent_id!r}")
    return require_address(agent_id[len(AGENT_ID_PREFIX):], "agent_id")
