"""Core facilitator logic: verify and settle signed payment authorizations."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from eth_account import Account
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

from authorization.codec import TypedDataDomain
from authorization.errors import EncodingError, NetworkError, SettlementError
from authorization.ledger import InMemoryLedger, Ledger, Web3Ledger
from authorization.models import PaymentPayload, PaymentRequirements
from authorization.relay import SettlementRelay
from authorization.verifier import PaymentVerifier, VerificationOutcome

from .config import FacilitatorConfig, NetworkConfig
from .schemas import HealthResponse, SettleResponse, VerifyResponse

logger = logging.getLogger(__name__)


def parse_payment(
    payment_payload: Any, payment_requirements: Any
) -> Tuple[PaymentPayload, PaymentRequirements]:
    """Decode the two wire objects, raising :class:`EncodingError` when malformed."""

    return PaymentPayload.from_mapping(payment_payload), PaymentRequirements.from_mapping(payment_requirements)


def build_ledgers(
    config: FacilitatorConfig,
    *,
    relayer_key: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> Dict[str, Ledger]:
    """Instantiate one ledger collaborator per configured network."""

    if config.mode == "simulated":
        return {name: InMemoryLedger(clock=clock) for name in config.networks}
    account = Account.from_key(relayer_key) if relayer_key else None
    if account is None:
        logger.warning("No relayer key configured; /settle will fail until one is provided")
    return {
        name: Web3Ledger(
            rpc_url=network.rpc_url,
            account=account,
            relayer_contract=network.relayer_contract,
            gas_limit=config.settlement_gas_limit,
            confirmation_timeout=config.confirmation_timeout_seconds,
            request_timeout=config.rpc_timeout_seconds,
        )
        for name, network in config.networks.items()
    }


class Facilitator:
    """Stateless verify/settle handler over one ledger per network.

    Nothing here is mutated per request apart from metrics; replay protection
    lives entirely in the ledger's authorization-state set.
    """

    def __init__(
        self,
        config: FacilitatorConfig,
        *,
        ledgers: Mapping[str, Ledger],
        clock: Callable[[], float] = time.time,
        relayer_address: Optional[str] = None,
    ) -> None:
        missing = sorted(set(config.networks) - set(ledgers))
        if missing:
            raise ValueError(f"no ledger for networks: {', '.join(missing)}")
        self._config = config
        self._relayer_address = relayer_address
        timeout = config.rpc_timeout_seconds
        self._verifiers = {
            name: PaymentVerifier(ledgers[name], clock=clock, timeout=timeout) for name in config.networks
        }
        self._relays = {
            name: SettlementRelay(ledgers[name], network=name, timeout=timeout) for name in config.networks
        }
        self._metrics_registry = CollectorRegistry()
        self._verify_total = Counter(
            "facilitator_verify_total",
            "Payment verifications by result",
            labelnames=("result",),
            registry=self._metrics_registry,
        )
        self._settle_total = Counter(
            "facilitator_settle_total",
            "Payment settlements by result",
            labelnames=("result",),
            registry=self._metrics_registry,
        )
        self._rejections = Counter(
            "facilitator_rejections_total",
            "Rejected payments by reason",
            labelnames=("reason",),
            registry=self._metrics_registry,
        )
        self._settle_seconds = Histogram(
            "facilitator_settle_seconds",
            "Time spent settling a payment",
            registry=self._metrics_registry,
        )

    @classmethod
    def from_config(
        cls,
        config: FacilitatorConfig,
        *,
        relayer_key: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> "Facilitator":
        address = Account.from_key(relayer_key).address if relayer_key else None
        return cls(
            config,
            ledgers=build_ledgers(config, relayer_key=relayer_key, clock=clock),
            clock=clock,
            relayer_address=address,
        )

    @property
    def config(self) -> FacilitatorConfig:
        return self._config

    def _network(self, name: str) -> NetworkConfig:
        network = self._config.network(name)
        if network is None:
            raise EncodingError(f"unsupported network: {name}")
        return network

    def domain_for(self, network_name: str) -> TypedDataDomain:
        network = self._network(network_name)
        return TypedDataDomain(
            chain_id=network.chain_id,
            verifying_contract=network.relayer_contract,
            name=self._config.domain_name,
            version=self._config.domain_version,
        )

    async def _check(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerificationOutcome:
        if not isinstance(payload, PaymentPayload) or not isinstance(requirements, PaymentRequirements):
            raise EncodingError("expected a PaymentPayload and PaymentRequirements")
        domain = self.domain_for(requirements.network)
        outcome = await self._verifiers[requirements.network].verify(payload, domain, requirements)
        if not outcome.is_valid:
            self._rejections.labels(outcome.reason).inc()
        return outcome

    async def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResponse:
        """Answer whether ``payload`` would settle right now. Never mutates state."""

        try:
            outcome = await self._check(payload, requirements)
        except NetworkError:
            self._verify_total.labels("error").inc()
            raise
        if outcome.is_valid:
            self._verify_total.labels("valid").inc()
            return VerifyResponse(isValid=True, payer=outcome.signer)
        self._verify_total.labels("invalid").inc()
        return VerifyResponse(isValid=False, payer=outcome.signer, invalidReason=outcome.reason)

    async def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResponse:
        """Verify, then relay the transfer on the payer's behalf.

        Ledger rejections come back as ``success=False`` with the ledger's
        reason. A :class:`NetworkError` propagates so the caller can re-verify
        before deciding to retry.
        """

        with self._settle_seconds.time():
            try:
                outcome = await self._check(payload, requirements)
            except NetworkError:
                self._settle_total.labels("error").inc()
                raise
            if not outcome.is_valid:
                self._settle_total.labels("rejected").inc()
                return SettleResponse(
                    success=False,
                    network=requirements.network,
                    payer=outcome.signer,
                    errorReason=outcome.reason,
                )
            relay = self._relays[requirements.network]
            try:
                receipt = await relay.settle_payment(payload)
            except SettlementError as exc:
                logger.warning("Settlement rejected: %s", exc.reason, extra={"network": requirements.network})
                self._settle_total.labels("failed").inc()
                self._rejections.labels("ledger_rejected").inc()
                return SettleResponse(
                    success=False,
                    network=requirements.network,
                    transaction=exc.transaction_id,
                    payer=payload.payer,
                    errorReason=exc.reason,
                )
            except NetworkError as exc:
                logger.error(
                    "Settlement outcome unknown: %s",
                    exc.reason,
                    extra={"network": requirements.network, "tx": exc.transaction_id},
                )
                self._settle_total.labels("error").inc()
                raise
        self._settle_total.labels("settled").inc()
        return SettleResponse(
            success=True,
            network=receipt.network,
            transaction=receipt.transaction_id,
            payer=receipt.payer,
        )

    def health(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            mode=self._config.mode,
            networks={name: network.chain_id for name, network in self._config.networks.items()},
            relayer=self._relayer_address,
        )

    def metrics(self) -> bytes:
        return generate_latest(self._metrics_registry)

    @property
    def metrics_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


__all__ = ["Facilitator", "build_ledgers", "parse_payment"]
