"""Tests for the canonical encodings and field validation."""

from __future__ import annotations

import hashlib

import pytest
from eth_account import Account
from web3 import Web3

from authorization.codec import (
    TypedDataDomain,
    canonical_envelope,
    chain_id_for,
    commitment_for,
    encode_authorization,
    format_agent_id,
    parse_agent_address,
)
from authorization.errors import EncodingError
from authorization.models import Authorization, PaymentPayload, PaymentRequirements, WorkEnvelope

RELAYER = "0x" + "22" * 20
NONCE = "0x" + "ab" * 32


def _authorization(**overrides):
    fields = {
        "from_address": "0x" + "aa" * 20,
        "to": "0x" + "bb" * 20,
        "value": "100000000000000000",
        "valid_after": 0,
        "valid_before": 1_700_000_600,
        "nonce": NONCE,
    }
    fields.update(overrides)
    return Authorization(**fields)


def test_authorization_normalises_fields() -> None:
    authorization = _authorization()
    assert authorization.value == 100000000000000000
    assert authorization.from_address == Web3.to_checksum_address("0x" + "aa" * 20)
    assert authorization.to_mapping()["value"] == "100000000000000000"
    assert Authorization.from_mapping(authorization.to_mapping()) == authorization


@pytest.mark.parametrize(
    "overrides",
    [
        {"value": 1.5},
        {"value": -1},
        {"value": True},
        {"valid_before": "soon"},
        {"nonce": "0x1234"},
        {"from_address": "0xnot-an-address"},
        {"valid_after": 10, "valid_before": 10},
    ],
)
def test_malformed_authorization_raises_encoding_error(overrides) -> None:
    with pytest.raises(EncodingError):
        _authorization(**overrides)


def test_missing_wire_field_is_reported() -> None:
    data = _authorization().to_mapping()
    del data["validBefore"]
    with pytest.raises(EncodingError, match="validBefore"):
        Authorization.from_mapping(data)


def test_typed_data_differs_per_chain_and_contract() -> None:
    authorization = _authorization()
    base = encode_authorization(authorization, TypedDataDomain(chain_id=84532, verifying_contract=RELAYER))
    other_chain = encode_authorization(authorization, TypedDataDomain(chain_id=97, verifying_contract=RELAYER))
    other_contract = encode_authorization(
        authorization, TypedDataDomain(chain_id=84532, verifying_contract="0x" + "44" * 20)
    )
    assert base.header != other_chain.header
    assert base.header != other_contract.header
    assert base.body == other_chain.body


def test_typed_data_is_deterministic() -> None:
    domain = TypedDataDomain(chain_id=56, verifying_contract=RELAYER)
    assert encode_authorization(_authorization(), domain) == encode_authorization(_authorization(), domain)


def test_known_chain_ids() -> None:
    assert chain_id_for("bsc") == 56
    assert chain_id_for("bsc-testnet") == 97
    assert chain_id_for("base-sepolia") == 84532
    with pytest.raises(EncodingError):
        chain_id_for("dogechain")


def test_agent_id_round_trip() -> None:
    address = Account.create().address
    agent_id = format_agent_id(address)
    assert agent_id == "erc8004:" + address.lower()
    assert parse_agent_address(agent_id) == address
    with pytest.raises(EncodingError):
        parse_agent_address("did:key:" + address)


def test_commitment_is_sha256_of_work() -> None:
    assert commitment_for("fixed the bug") == "sha256:" + hashlib.sha256(b"fixed the bug").hexdigest()
    assert commitment_for(b"\x00\x01") == "sha256:" + hashlib.sha256(b"\x00\x01").hexdigest()


def test_canonical_envelope_layout() -> None:
    agent_id = format_agent_id("0x" + "aa" * 20)
    canonical = canonical_envelope(agent_id, "42", "fix", "sha256:abc", "0x01", 1_700_000_000)
    assert canonical == f"{agent_id}|42|fix|sha256:abc|0x01|1700000000"


@pytest.mark.parametrize("field", ["bounty_id", "intent", "commit", "nonce"])
def test_delimiter_in_envelope_field_is_rejected(field: str) -> None:
    values = {
        "agent_id": format_agent_id("0x" + "aa" * 20),
        "bounty_id": "42",
        "intent": "fix",
        "commit": "sha256:abc",
        "nonce": "0x01",
        "timestamp": 1_700_000_000,
    }
    values[field] = "a|b"
    with pytest.raises(EncodingError):
        canonical_envelope(**values)


def test_envelope_wire_form_accepts_sig_or_signature() -> None:
    signature = "0x" + "cd" * 65
    base = {
        "agent_id": format_agent_id("0x" + "aa" * 20),
        "bounty_id": "42",
        "intent": "fix",
        "commit": "sha256:abc",
        "nonce": "0x01",
        "timestamp": 1_700_000_000,
    }
    from_sig = WorkEnvelope.from_mapping({**base, "sig": signature})
    from_signature = WorkEnvelope.from_mapping({**base, "signature": signature})
    assert from_sig == from_signature
    assert from_sig.to_mapping()["sig"] == signature


def test_payment_payload_wire_shape() -> None:
    payload = PaymentPayload(
        network="bsc",
        token="0x" + "11" * 20,
        authorization=_authorization(),
        signature="0x" + "cd" * 65,
    )
    wire = payload.to_mapping()
    assert wire["x402Version"] == 1
    assert wire["scheme"] == "exact"
    assert set(wire["payload"]) == {"authorization", "signature"}
    assert PaymentPayload.from_mapping(wire) == payload


def test_payment_payload_rejects_short_signature() -> None:
    with pytest.raises(EncodingError, match="65 bytes"):
        PaymentPayload(network="bsc", token="0x" + "11" * 20, authorization=_authorization(), signature="0x1234")


def test_requirements_need_positive_timeout() -> None:
    with pytest.raises(EncodingError):
        PaymentRequirements(
            network="bsc",
            asset="0x" + "11" * 20,
            pay_to="0x" + "bb" * 20,
            max_amount_required=1,
            max_timeout_seconds=0,
            relayer_contract=RELAYER,
        )
