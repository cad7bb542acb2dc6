"""Test configuration to ensure repo modules are importable, plus shared fixtures."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from eth_account import Account

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("PYTHONPATH", str(ROOT))

NOW = 1_700_000_000
TOKEN = "0x" + "11" * 20
RELAYER = "0x" + "22" * 20
VERIFIER_CONTRACT = "0x" + "33" * 20
NETWORK = "base-sepolia"
CHAIN_ID = 84532


class ManualClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def payer():
    return Account.create()


@pytest.fixture
def payee():
    return Account.create()


@pytest.fixture
def agent():
    return Account.create()


@pytest.fixture(autouse=True)
def _clear_service_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in [
        "FACILITATOR_API_KEY",
        "FACILITATOR_CONFIG",
        "FACILITATOR_RELAYER_PRIVATE_KEY",
        "ATTESTATION_CONFIG",
        "ATTESTATION_VERIFIER_PRIVATE_KEY",
        "PAYER_PRIVATE_KEY",
        "AGENT_PRIVATE_KEY",
    ]:
        monkeypatch.delenv(key, raising=False)
