"""Tests for the attestation verifier FastAPI surface."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
import yaml
from fastapi.testclient import TestClient

from attestation.config import AttestationConfig, load_config
from attestation.process import create_app
from attestation.service import AttestationVerifier, default_checks
from authorization.ledger import InMemoryLedger
from authorization.nonces import InMemoryNonceStore
from authorization.signer import EnvelopeSigner

VERIFIER_CONTRACT = "0x" + "33" * 20


@pytest.fixture
def ledger(clock):
    return InMemoryLedger(clock=clock)


@pytest.fixture
def verifier(ledger, clock):
    config = AttestationConfig(verifier_contract=VERIFIER_CONTRACT, integrity_endpoint="http://integrity.local")
    integrity = httpx.MockTransport(lambda request: httpx.Response(200, json={"verified": True}))
    return AttestationVerifier(
        config,
        ledger=ledger,
        nonce_store=InMemoryNonceStore(),
        checks=default_checks(config, integrity_transport=integrity),
        clock=clock,
    )


@pytest.fixture
def client(verifier):
    with TestClient(create_app(verifier=verifier)) as test_client:
        yield test_client


@pytest.fixture
def envelope(agent, clock):
    return EnvelopeSigner(agent, clock=clock).create_envelope("42", "fix-login-bug", "patch")


def test_verify_posts_attestation(client, ledger, envelope) -> None:
    resp = client.post("/verify", json={"envelope": envelope.to_mapping(), "bounty_id": 42})
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["trust_score"] == 5.0
    assert data["verification"] == {"intent": True, "integrity": True, "outcome": True}
    assert data["message"] == "Verification passed"
    assert data["transaction_hash"].startswith("0x")
    assert len(ledger.attestations) == 1

    replay = client.post("/verify", json={"envelope": envelope.to_mapping(), "bounty_id": 42})
    assert replay.status_code == 200
    assert replay.json()["success"] is False
    assert replay.json()["message"] == "nonce already used"


def test_envelope_with_signature_key_is_accepted(client, envelope) -> None:
    wire = envelope.to_mapping()
    wire["signature"] = wire.pop("sig")
    resp = client.post("/verify", json={"envelope": wire})
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_malformed_envelope_is_400(client, envelope) -> None:
    wire = envelope.to_mapping()
    wire["agent_id"] = "agent-007"
    resp = client.post("/verify", json={"envelope": wire})
    assert resp.status_code == 400
    assert resp.json()["error"] == "encoding_error"


def test_non_ascii_bounty_id_is_400(client, agent, clock) -> None:
    envelope = EnvelopeSigner(agent, clock=clock).create_envelope("²", "fix-login-bug", "patch")
    resp = client.post("/verify", json={"envelope": envelope.to_mapping()})
    assert resp.status_code == 400
    assert resp.json()["error"] == "encoding_error"


def test_missing_envelope_is_400(client) -> None:
    resp = client.post("/verify", json={"bounty_id": 42})
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_health_status_and_metrics(client) -> None:
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["network"] == "base-sepolia"

    status = client.get("/status").json()
    assert status["contract_address"] == VERIFIER_CONTRACT
    assert status["chain_id"] == 84532
    assert "balance" not in status

    assert "attestation_requests_total" in client.get("/metrics").text


def test_app_from_config_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "attestation.yaml"
    path.write_text(yaml.safe_dump({"mode": "simulated", "nonce_store_url": f"sqlite:///{tmp_path / 'n.db'}"}))
    monkeypatch.setenv("ATTESTATION_CONFIG", str(path))
    with TestClient(create_app()) as client:
        assert client.get("/health").status_code == 200


def test_config_validation(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="rpc_url"):
        AttestationConfig(mode="onchain")
    with pytest.raises(ValueError, match="integrity_endpoint"):
        AttestationConfig(integrity_endpoint="integrity.local")
    path = tmp_path / "a.yaml"
    path.write_text(yaml.safe_dump({"maxAgeSeconds": 120, "passThreshold": 4, "integrityEndpoint": "https://i.example"}))
    config = load_config(path)
    assert config.max_age_seconds == 120
    assert config.pass_threshold == 4.0
    assert config.integrity_endpoint == "https://i.example"


def test_sample_config_loads() -> None:
    config = load_config(Path(__file__).resolve().parents[2] / "config" / "attestation.yaml")
    assert config.mode == "onchain"
    assert config.integrity_endpoint
