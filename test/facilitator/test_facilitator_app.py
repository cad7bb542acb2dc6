"""Tests for the facilitator FastAPI surface."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from fastapi.testclient import TestClient
from web3 import Web3
from web3.exceptions import Web3RPCError

from authorization.errors import NetworkError
from authorization.ledger import InMemoryLedger, Web3Ledger
from authorization.models import PaymentRequirements
from authorization.signer import PaymentSigner
from facilitator.config import FacilitatorConfig
from facilitator.process import create_app
from facilitator.service import Facilitator

TOKEN = "0x" + "11" * 20
RELAYER = "0x" + "22" * 20
AMOUNT = 100000000000000000


@pytest.fixture
def ledger(clock):
    return InMemoryLedger(clock=clock)


@pytest.fixture
def facilitator(ledger, clock):
    config = FacilitatorConfig.from_mapping(
        {"mode": "simulated", "networks": {"base-sepolia": {"relayer_contract": RELAYER}}}
    )
    return Facilitator(config, ledgers={"base-sepolia": ledger}, clock=clock)


@pytest.fixture
def client(facilitator):
    with TestClient(create_app(facilitator=facilitator, api_key="")) as test_client:
        yield test_client


@pytest.fixture
def body(payer, payee, clock):
    requirements = PaymentRequirements(
        network="base-sepolia",
        asset=TOKEN,
        pay_to=payee.address,
        max_amount_required=AMOUNT,
        max_timeout_seconds=600,
        relayer_contract=RELAYER,
    )
    payload = PaymentSigner(payer, clock=clock).process_payment(requirements)
    return {
        "x402Version": 1,
        "paymentPayload": payload.to_mapping(),
        "paymentRequirements": requirements.to_mapping(),
    }


def test_health_needs_no_auth(facilitator) -> None:
    with TestClient(create_app(facilitator=facilitator, api_key="secret")) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_verify_and_settle_flow(client, ledger, body, payer) -> None:
    ledger.credit(TOKEN, payer.address, AMOUNT)

    verify = client.post("/verify", json=body)
    assert verify.status_code == 200
    assert verify.json() == {"isValid": True, "payer": payer.address}

    settle = client.post("/settle", json=body)
    assert settle.status_code == 200
    data = settle.json()
    assert data["success"] is True
    assert data["network"] == "base-sepolia"
    assert data["transaction"].startswith("0x")

    replay = client.post("/settle", json=body)
    assert replay.status_code == 200
    assert replay.json()["success"] is False
    assert replay.json()["errorReason"] == "nonce already used"


def test_invalid_signature_is_reported_not_raised(client, body) -> None:
    body["paymentPayload"]["payload"]["signature"] = "0x" + "11" * 65
    resp = client.post("/verify", json=body)
    assert resp.status_code == 200
    assert resp.json() == {"isValid": False, "invalidReason": "signature mismatch"}


def test_malformed_payload_is_400(client, body) -> None:
    body["paymentPayload"]["payload"]["authorization"]["value"] = 1.5
    resp = client.post("/verify", json=body)
    assert resp.status_code == 400
    assert resp.json()["error"] == "encoding_error"
    assert "value" in resp.json()["reason"]


def test_missing_body_fields_are_400(client) -> None:
    resp = client.post("/settle", json={"paymentPayload": {}})
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_network_error_is_504(facilitator, body, monkeypatch) -> None:
    async def _timeout(*_args, **_kwargs):
        raise NetworkError("authorizationState timed out after 30s")

    monkeypatch.setattr(facilitator, "settle", _timeout)
    with TestClient(create_app(facilitator=facilitator, api_key="")) as client:
        resp = client.post("/settle", json=body)
    assert resp.status_code == 504
    assert resp.json() == {
        "success": False,
        "error": "network_error",
        "reason": "authorizationState timed out after 30s",
    }


class _NodeRejectingLedger(InMemoryLedger):
    async def transfer_with_authorization(self, *, token, authorization, signature, timeout=30.0):
        def send():
            raise Web3RPCError("nonce too low")

        return await Web3Ledger(web3=Web3())._run("transferWithAuthorization submission", send, timeout=timeout)


def test_node_rejection_settles_as_failure_not_500(clock, body, payer) -> None:
    config = FacilitatorConfig.from_mapping(
        {"mode": "simulated", "networks": {"base-sepolia": {"relayer_contract": RELAYER}}}
    )
    facilitator = Facilitator(config, ledgers={"base-sepolia": _NodeRejectingLedger(clock=clock)}, clock=clock)
    with TestClient(create_app(facilitator=facilitator, api_key="")) as client:
        resp = client.post("/settle", json=body)
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is False
    assert "nonce too low" in data["errorReason"]
    assert data["payer"] == payer.address


def test_api_key_is_enforced(facilitator, body) -> None:
    with TestClient(create_app(facilitator=facilitator, api_key="secret")) as client:
        assert client.post("/verify", json=body).status_code == 401
        assert client.post("/verify", json=body, headers={"Authorization": "Bearer wrong"}).status_code == 403
        ok = client.post("/verify", json=body, headers={"Authorization": "Bearer secret"})
    assert ok.status_code == 200


def test_metrics_endpoint(client, body) -> None:
    client.post("/verify", json=body)
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "facilitator_verify_total" in resp.text


def test_app_from_config_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "facilitator.yaml"
    path.write_text(
        yaml.safe_dump({"mode": "simulated", "networks": {"bsc-testnet": {"relayer_contract": RELAYER}}})
    )
    monkeypatch.setenv("FACILITATOR_CONFIG", str(path))
    with TestClient(create_app(api_key="")) as client:
        resp = client.get("/health")
    assert resp.json()["networks"] == {"bsc-testnet": 97}
