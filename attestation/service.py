"""Work-attestation verifier: envelope checks, trust scoring and posting."""

from __future__ import annotations

import json
import logging
import math
import re
import time
from typing import Any, Callable, Mapping, Optional, Sequence

import httpx
from eth_account import Account
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest
from web3 import Web3

from authorization.errors import EncodingError, NetworkError, SettlementError
from authorization.fields import require_uint
from authorization.ledger import AttestationRecord, InMemoryLedger, Ledger, Web3Ledger
from authorization.models import WorkEnvelope
from authorization.nonces import NonceStore, nonce_store_from_url
from authorization.relay import SettlementRelay
from authorization.scoring import TrustScorer, VerificationCheck
from authorization.verifier import EnvelopeVerifier

from .checks import CommitFormatCheck, HttpIntegrityCheck, IntentCheck
from .config import AttestationConfig
from .schemas import StatusResponse, Verification, VerifyWorkResponse

logger = logging.getLogger(__name__)

_HEX_UINT_RE = re.compile(r"^0[xX][0-9a-fA-F]{1,64}$")

PASSED_MESSAGE = "Verification passed"
FAILED_MESSAGE = "Verification failed"


def attestation_hash(
    envelope: WorkEnvelope,
    verification: Mapping[str, bool],
    trust_score: float,
    timestamp_ms: int,
) -> str:
    """Keccak-256 over the compact, key-sorted JSON attestation document."""

    document = json.dumps(
        {
            "agent_id": envelope.agent_id,
            "bounty_id": envelope.bounty_id,
            "verification": dict(verification),
            "trustScore": trust_score,
            "timestamp_ms": timestamp_ms,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return Web3.to_hex(Web3.keccak(text=document))


def onchain_trust_score(score: float) -> int:
    """Scale a 0-5 score to the contract's uint8 (0-50)."""

    return math.floor(score * 10)


def parse_bounty_id(value: Any) -> int:
    text = str(value).strip()
    if _HEX_UINT_RE.match(text):
        return int(text, 16)
    try:
        return require_uint(text, "bounty_id")
    except EncodingError as exc:
        raise EncodingError(f"bounty_id must be an unsigned integer to be attested, got {value!r}") from exc


def default_checks(
    config: AttestationConfig, *, integrity_transport: Optional[httpx.AsyncBaseTransport] = None
) -> list[VerificationCheck]:
    return [
        IntentCheck(),
        HttpIntegrityCheck(
            config.integrity_endpoint,
            timeout=config.integrity_timeout_seconds,
            transport=integrity_transport,
        ),
        CommitFormatCheck(),
    ]


class AttestationVerifier:
    """Verifies agent work envelopes and posts passing attestations."""

    def __init__(
        self,
        config: AttestationConfig,
        *,
        ledger: Ledger,
        nonce_store: NonceStore,
        checks: Optional[Sequence[VerificationCheck]] = None,
        clock: Callable[[], float] = time.time,
        verifier_address: Optional[str] = None,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._nonce_store = nonce_store
        self._clock = clock
        self._verifier_address = verifier_address
        self._envelopes = EnvelopeVerifier(
            nonce_store,
            clock=clock,
            max_age_seconds=config.max_age_seconds,
            future_skew_seconds=config.future_skew_seconds,
        )
        self._scorer = TrustScorer(
            checks if checks is not None else default_checks(config), threshold=config.pass_threshold
        )
        self._relay = SettlementRelay(ledger, network=config.network, timeout=config.rpc_timeout_seconds)
        self._metrics_registry = CollectorRegistry()
        self._requests = Counter(
            "attestation_requests_total",
            "Work verification requests by result",
            labelnames=("result",),
            registry=self._metrics_registry,
        )
        if not config.integrity_endpoint:
            logger.warning("No integrity endpoint configured; integrity checks will fail closed")

    @classmethod
    def from_config(
        cls,
        config: AttestationConfig,
        *,
        verifier_key: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> "AttestationVerifier":
        account = Account.from_key(verifier_key) if verifier_key else None
        ledger: Ledger
        if config.mode == "simulated":
            ledger = InMemoryLedger(clock=clock)
        else:
            if account is None:
                logger.warning("No verifier key configured; attestations cannot be posted")
            ledger = Web3Ledger(
                rpc_url=config.rpc_url,
                account=account,
                verifier_contract=config.verifier_contract,
                confirmation_timeout=config.confirmation_timeout_seconds,
                request_timeout=config.rpc_timeout_seconds,
            )
        return cls(
            config,
            ledger=ledger,
            nonce_store=nonce_store_from_url(config.nonce_store_url),
            clock=clock,
            verifier_address=account.address if account is not None else None,
        )

    @property
    def config(self) -> AttestationConfig:
        return self._config

    async def verify(self, envelope: WorkEnvelope, bounty_id: Any = None) -> VerifyWorkResponse:
        """Run envelope checks, score the work and post it when it passes."""

        if not isinstance(envelope, WorkEnvelope):
            raise EncodingError("expected a WorkEnvelope")
        if bounty_id is not None and str(bounty_id) != envelope.bounty_id:
            raise EncodingError("bounty_id does not match the signed envelope")
        onchain_bounty = parse_bounty_id(envelope.bounty_id)

        outcome = await self._envelopes.verify(envelope)
        if not outcome.is_valid:
            self._requests.labels("rejected").inc()
            return VerifyWorkResponse(
                success=False,
                trust_score=0.0,
                verification=Verification(),
                message=outcome.reason or FAILED_MESSAGE,
            )

        result = await self._scorer.evaluate(envelope)
        checks = result.checks()
        digest = attestation_hash(envelope, checks, result.trust_score, int(self._clock() * 1000))
        verification = Verification(**checks)
        if not result.passed:
            self._requests.labels("failed").inc()
            return VerifyWorkResponse(
                success=False,
                trust_score=result.trust_score,
                verification=verification,
                attestation_hash=digest,
                message=FAILED_MESSAGE,
            )

        record = AttestationRecord(
            agent=envelope.agent_address,
            bounty_id=onchain_bounty,
            attestation_hash=digest,
            trust_score=onchain_trust_score(result.trust_score),
            intent_verified=result.intent,
            integrity_verified=result.integrity,
            outcome_verified=result.outcome,
        )
        try:
            receipt = await self._relay.post_attestation(record, nonce_store=self._nonce_store, nonce=envelope.nonce)
        except SettlementError as exc:
            logger.warning("Attestation not posted: %s", exc.reason, extra={"agent_id": envelope.agent_id})
            self._requests.labels("settlement_failed").inc()
            return VerifyWorkResponse(
                success=False,
                trust_score=result.trust_score,
                verification=verification,
                attestation_hash=digest,
                transaction_hash=exc.transaction_id,
                message=exc.reason,
            )
        except NetworkError:
            self._requests.labels("error").inc()
            raise
        self._requests.labels("posted").inc()
        return VerifyWorkResponse(
            success=True,
            trust_score=result.trust_score,
            verification=verification,
            attestation_hash=digest,
            transaction_hash=receipt.transaction_id,
            message=PASSED_MESSAGE,
        )

    def health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "service": "Work Attestation Verifier",
            "version": "0.1.0",
            "network": self._config.network,
        }

    async def status(self) -> StatusResponse:
        balance: Optional[str] = None
        if isinstance(self._ledger, Web3Ledger) and self._verifier_address:
            wei = await self._ledger.balance(self._verifier_address, timeout=self._config.rpc_timeout_seconds)
            balance = str(Web3.from_wei(wei, "ether"))
        return StatusResponse(
            verifier_address=self._verifier_address,
            contract_address=self._config.verifier_contract,
            network=self._config.network,
            chain_id=self._config.chain_id,
            mode=self._config.mode,
            balance=balance,
        )

    def metrics(self) -> bytes:
        return generate_latest(self._metrics_registry)

    @property
    def metrics_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


__all__ = [
    "AttestationVerifier",
    "attestation_hash",
    "default_checks",
    "onchain_trust_score",
    "parse_bounty_id",
]
