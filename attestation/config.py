"""Configuration for the work-attestation verifier."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from authorization.scoring import PASS_THRESHOLD
from authorization.verifier import DEFAULT_FUTURE_SKEW_SECONDS, DEFAULT_MAX_AGE_SECONDS

CONFIG_ENV = "ATTESTATION_CONFIG"
VERIFIER_KEY_ENV = "ATTESTATION_VERIFIER_PRIVATE_KEY"
DEFAULT_CONFIG_PATH = Path("config/attestation.yaml")

MODES = ("onchain", "simulated")


@dataclass
class AttestationConfig:
    """Loaded verifier configuration."""

    mode: str = "simulated"
    network: str = "base-sepolia"
    chain_id: int = 84532
    rpc_url: Optional[str] = None
    verifier_contract: Optional[str] = None
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS
    future_skew_seconds: int = DEFAULT_FUTURE_SKEW_SECONDS
    pass_threshold: float = PASS_THRESHOLD
    integrity_endpoint: Optional[str] = None
    integrity_timeout_seconds: float = 10.0
    rpc_timeout_seconds: float = 30.0
    confirmation_timeout_seconds: float = 120.0
    nonce_store_url: str = "memory"

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}")
        if not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ValueError("chain_id must be a positive integer")
        if self.mode == "onchain":
            if not self.rpc_url:
                raise ValueError("rpc_url is required in onchain mode")
            if not self.verifier_contract:
                raise ValueError("verifier_contract is required in onchain mode")
        if self.verifier_contract is not None:
            if not self.verifier_contract.startswith("0x") or len(self.verifier_contract) != 42:
                raise ValueError("verifier_contract must be a 0x-prefixed 20-byte address")
        if self.max_age_seconds <= 0 or self.future_skew_seconds < 0:
            raise ValueError("max_age_seconds must be positive and future_skew_seconds non-negative")
        if not 0 < self.pass_threshold <= 5:
            raise ValueError("pass_threshold must be within (0, 5]")
        if self.integrity_endpoint is not None and not self.integrity_endpoint.startswith(("http://", "https://")):
            raise ValueError("integrity_endpoint must be an http(s) URL")
        if self.integrity_timeout_seconds <= 0 or self.rpc_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "AttestationConfig":
        def _resolve(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return default

        return cls(
            mode=str(_resolve("mode", default="simulated")),
            network=str(_resolve("network", default="base-sepolia")),
            chain_id=int(_resolve("chain_id", "chainId", default=84532)),
            rpc_url=_resolve("rpc_url", "rpcUrl"),
            verifier_contract=_resolve("verifier_contract", "verifierContract", "verifierAddress"),
            max_age_seconds=int(_resolve("max_age_seconds", "maxAgeSeconds", default=DEFAULT_MAX_AGE_SECONDS)),
            future_skew_seconds=int(
                _resolve("future_skew_seconds", "futureSkewSeconds", default=DEFAULT_FUTURE_SKEW_SECONDS)
            ),
            pass_threshold=float(_resolve("pass_threshold", "passThreshold", default=PASS_THRESHOLD)),
            integrity_endpoint=_resolve("integrity_endpoint", "integrityEndpoint"),
            integrity_timeout_seconds=float(
                _resolve("integrity_timeout_seconds", "integrityTimeoutSeconds", default=10)
            ),
            rpc_timeout_seconds=float(_resolve("rpc_timeout_seconds", "rpcTimeoutSeconds", default=30)),
            confirmation_timeout_seconds=float(
                _resolve("confirmation_timeout_seconds", "confirmationTimeoutSeconds", default=120)
            ),
            nonce_store_url=str(_resolve("nonce_store_url", "nonceStoreUrl", default="memory")),
        )


def load_config(path: str | Path) -> AttestationConfig:
    data = yaml.safe_load(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("attestation configuration must be a mapping")
    return AttestationConfig.from_mapping(data)


def config_path_from_env() -> Path:
    return Path(os.getenv(CONFIG_ENV) or DEFAULT_CONFIG_PATH)


__all__ = ["AttestationConfig", "CONFIG_ENV", "VERIFIER_KEY_ENV", "config_path_from_env", "load_config"]
