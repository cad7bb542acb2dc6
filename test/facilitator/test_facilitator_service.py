"""Tests for the facilitator service object."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3RPCError

from authorization.errors import EncodingError, NetworkError
from authorization.ledger import InMemoryLedger, Web3Ledger
from authorization.models import PaymentRequirements
from authorization.signer import PaymentSigner
from facilitator.config import FacilitatorConfig
from facilitator.service import Facilitator, build_ledgers

TOKEN = "0x" + "11" * 20
RELAYER = "0x" + "22" * 20
AMOUNT = 100000000000000000


def _config(**overrides) -> FacilitatorConfig:
    data = {"mode": "simulated", "networks": {"base-sepolia": {"relayer_contract": RELAYER}}}
    data.update(overrides)
    return FacilitatorConfig.from_mapping(data)


@pytest.fixture
def ledger(clock):
    return InMemoryLedger(clock=clock)


@pytest.fixture
def facilitator(ledger, clock):
    return Facilitator(_config(), ledgers={"base-sepolia": ledger}, clock=clock)


@pytest.fixture
def requirements(payee):
    return PaymentRequirements(
        network="base-sepolia",
        asset=TOKEN,
        pay_to=payee.address,
        max_amount_required=AMOUNT,
        max_timeout_seconds=600,
        relayer_contract=RELAYER,
    )


@pytest.fixture
def payload(payer, clock, requirements):
    return PaymentSigner(payer, clock=clock).process_payment(requirements)


def test_end_to_end_verify_settle_replay(facilitator, ledger, payload, requirements, payer, payee) -> None:
    ledger.credit(TOKEN, payer.address, AMOUNT)

    verified = asyncio.run(facilitator.verify(payload, requirements))
    assert verified.isValid is True
    assert verified.payer == payer.address

    settled = asyncio.run(facilitator.settle(payload, requirements))
    assert settled.success is True
    assert settled.transaction.startswith("0x")
    assert settled.network == "base-sepolia"
    assert settled.payer == payer.address
    assert ledger.balance_of(TOKEN, payee.address) == AMOUNT

    replay = asyncio.run(facilitator.settle(payload, requirements))
    assert replay.success is False
    assert replay.errorReason == "nonce already used"
    assert replay.transaction is None

    after = asyncio.run(facilitator.verify(payload, requirements))
    assert after.isValid is False
    assert after.invalidReason == "nonce already used"


def test_verify_never_mutates_ledger(facilitator, ledger, payload, requirements, payer) -> None:
    ledger.credit(TOKEN, payer.address, AMOUNT)
    for _ in range(3):
        assert asyncio.run(facilitator.verify(payload, requirements)).isValid
    assert ledger.balance_of(TOKEN, payer.address) == AMOUNT


def test_settle_reports_ledger_rejection(facilitator, payload, requirements, payer) -> None:
    result = asyncio.run(facilitator.settle(payload, requirements))
    assert result.success is False
    assert result.errorReason == "transfer amount exceeds balance"
    assert result.payer == payer.address


def test_settle_rejects_invalid_payload_without_touching_ledger(facilitator, ledger, payload, requirements, payer) -> None:
    ledger.credit(TOKEN, payer.address, AMOUNT)
    forged = replace(payload, signature="0x" + "00" * 65)
    result = asyncio.run(facilitator.settle(forged, requirements))
    assert result.success is False
    assert result.errorReason == "signature mismatch"
    assert ledger.balance_of(TOKEN, payer.address) == AMOUNT


def test_expired_payment_is_invalid(facilitator, payload, requirements, clock) -> None:
    clock.advance(600)
    result = asyncio.run(facilitator.verify(payload, requirements))
    assert result.invalidReason == "expired"


def test_unknown_network_is_malformed(facilitator, payload, requirements) -> None:
    other = replace(requirements, network="bsc")
    with pytest.raises(EncodingError, match="unsupported network"):
        asyncio.run(facilitator.verify(replace(payload, network="bsc"), other))


def test_network_error_propagates(clock, payload, requirements) -> None:
    slow = InMemoryLedger(clock=clock, latency=0.5)
    facilitator = Facilitator(_config(rpc_timeout_seconds=0.01), ledgers={"base-sepolia": slow}, clock=clock)
    with pytest.raises(NetworkError):
        asyncio.run(facilitator.settle(payload, requirements))


def test_domain_uses_configured_relayer(facilitator) -> None:
    domain = facilitator.domain_for("base-sepolia")
    assert domain.chain_id == 84532
    assert domain.verifying_contract.lower() == RELAYER
    assert domain.name == "B402"


def test_metrics_track_results(facilitator, ledger, payload, requirements, payer) -> None:
    ledger.credit(TOKEN, payer.address, AMOUNT)
    asyncio.run(facilitator.verify(payload, requirements))
    asyncio.run(facilitator.settle(payload, requirements))
    asyncio.run(facilitator.settle(payload, requirements))

    text = facilitator.metrics().decode()
    assert 'facilitator_verify_total{result="valid"} 1.0' in text
    assert 'facilitator_settle_total{result="settled"} 1.0' in text
    assert 'facilitator_settle_total{result="rejected"} 1.0' in text
    assert 'facilitator_rejections_total{reason="nonce already used"} 1.0' in text
    assert "facilitator_settle_seconds_count 2.0" in text


def test_health_reports_networks(facilitator) -> None:
    health = facilitator.health()
    assert health.status == "ok"
    assert health.mode == "simulated"
    assert health.networks == {"base-sepolia": 84532}


def test_missing_ledger_is_a_configuration_error(clock) -> None:
    with pytest.raises(ValueError):
        Facilitator(_config(), ledgers={}, clock=clock)


def test_build_ledgers_for_each_mode() -> None:
    simulated = build_ledgers(_config())
    assert isinstance(simulated["base-sepolia"], InMemoryLedger)

    onchain = build_ledgers(
        _config(mode="onchain", networks={"bsc": {"rpc_url": "http://localhost:8545", "relayer_contract": RELAYER}}),
        relayer_key=Account.create().key.hex(),
    )
    assert onchain["bsc"].relayer_address is not None


class _UnderfundedRelayerLedger(InMemoryLedger):
    """Simulated state, but submission goes through the web3 error mapping."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._node = Web3Ledger(web3=Web3())

    async def transfer_with_authorization(self, *, token, authorization, signature, timeout=30.0):
        def send():
            raise Web3RPCError("insufficient funds for gas * price + value")

        return await self._node._run("transferWithAuthorization submission", send, timeout=timeout)


def test_node_rejection_is_a_settlement_failure(clock, payload, requirements, payer) -> None:
    facilitator = Facilitator(
        _config(), ledgers={"base-sepolia": _UnderfundedRelayerLedger(clock=clock)}, clock=clock
    )
    result = asyncio.run(facilitator.settle(payload, requirements))
    assert result.success is False
    assert "insufficient funds" in result.errorReason
    assert result.payer == payer.address

    text = facilitator.metrics().decode()
    assert 'facilitator_settle_total{result="failed"} 1.0' in text
    assert 'facilitator_rejections_total{reason="ledger_rejected"} 1.0' in text
    assert "insufficient funds" not in text
