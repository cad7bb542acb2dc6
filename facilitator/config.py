"""Configuration models for the payment facilitator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from authorization.codec import DOMAIN_NAME, DOMAIN_VERSION, KNOWN_CHAIN_IDS

CONFIG_ENV = "FACILITATOR_CONFIG"
RELAYER_KEY_ENV = "FACILITATOR_RELAYER_PRIVATE_KEY"
API_KEY_ENV = "FACILITATOR_API_KEY"
DEFAULT_CONFIG_PATH = Path("config/facilitator.yaml")

MODES = ("onchain", "simulated")


def _is_address(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 42


@dataclass
class NetworkConfig:
    """One chain the facilitator relays on."""

    name: str
    chain_id: int
    relayer_contract: str
    rpc_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("network name must be a non-empty string")
        if not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ValueError(f"{self.name}: chain_id must be a positive integer")
        if not _is_address(self.relayer_contract):
            raise ValueError(f"{self.name}: relayer_contract must be a 0x-prefixed 20-byte address")
        if self.rpc_url is not None and not str(self.rpc_url).startswith(("http://", "https://")):
            raise ValueError(f"{self.name}: rpc_url must be an http(s) URL")

    @classmethod
    def from_mapping(cls, name: str, data: Dict[str, Any]) -> "NetworkConfig":
        if not isinstance(data, dict):
            raise ValueError(f"network {name!r} must be a mapping")

        def _resolve(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return default

        chain_id = _resolve("chain_id", "chainId", default=KNOWN_CHAIN_IDS.get(name))
        if chain_id is None:
            raise ValueError(f"{name}: chain_id is required for networks outside {sorted(KNOWN_CHAIN_IDS)}")
        return cls(
            name=name,
            chain_id=int(chain_id),
            relayer_contract=str(_resolve("relayer_contract", "relayerContract", default="")),
            rpc_url=_resolve("rpc_url", "rpcUrl"),
        )


@dataclass
class FacilitatorConfig:
    """Loaded facilitator configuration."""

    networks: Dict[str, NetworkConfig] = field(default_factory=dict)
    mode: str = "onchain"
    rpc_timeout_seconds: float = 30.0
    confirmation_timeout_seconds: float = 120.0
    settlement_gas_limit: int = 200_000
    domain_name: str = DOMAIN_NAME
    domain_version: str = DOMAIN_VERSION

    def __post_init__(self) -> None:
        if not self.networks:
            raise ValueError("at least one network must be configured")
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}")
        if self.mode == "onchain":
            missing = sorted(name for name, network in self.networks.items() if not network.rpc_url)
            if missing:
                raise ValueError(f"rpc_url is required in onchain mode for: {', '.join(missing)}")
        if self.rpc_timeout_seconds <= 0 or self.confirmation_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if not isinstance(self.settlement_gas_limit, int) or self.settlement_gas_limit <= 0:
            raise ValueError("settlement_gas_limit must be a positive integer")
        if not self.domain_name or not self.domain_version:
            raise ValueError("domain_name and domain_version must be non-empty")

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "FacilitatorConfig":
        def _resolve(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return default

        networks_data = _resolve("networks", default={}) or {}
        if not isinstance(networks_data, dict):
            raise ValueError("networks must be a mapping of name to settings")
        networks = {
            str(name): NetworkConfig.from_mapping(str(name), settings or {})
            for name, settings in networks_data.items()
        }
        return cls(
            networks=networks,
            mode=str(_resolve("mode", default="onchain")),
            rpc_timeout_seconds=float(_resolve("rpc_timeout_seconds", "rpcTimeoutSeconds", default=30)),
            confirmation_timeout_seconds=float(
                _resolve("confirmation_timeout_seconds", "confirmationTimeoutSeconds", default=120)
            ),
            settlement_gas_limit=int(_resolve("settlement_gas_limit", "settlementGasLimit", default=200_000)),
            domain_name=str(_resolve("domain_name", "domainName", default=DOMAIN_NAME)),
            domain_version=str(_resolve("domain_version", "domainVersion", default=DOMAIN_VERSION)),
        )

    def network(self, name: str) -> Optional[NetworkConfig]:
        return self.networks.get(name)


def load_config(path: str | Path) -> FacilitatorConfig:
    """Load facilitator configuration from disk."""

    data = yaml.safe_load(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("facilitator configuration must be a mapping")
    return FacilitatorConfig.from_mapping(data)


def config_path_from_env() -> Path:
    return Path(os.getenv(CONFIG_ENV) or DEFAULT_CONFIG_PATH)


__all__ = [
    "API_KEY_ENV",
    "CONFIG_ENV",
    "FacilitatorConfig",
    "NetworkConfig",
    "RELAYER_KEY_ENV",
    "config_path_from_env",
    "load_config",
]
