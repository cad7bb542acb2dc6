"""Stateless verification of signed authorizations.

Both variants walk the same states::

    Received -> SignatureChecked -> NonceChecked -> TimingChecked -> Valid
                                                              \\-> Invalid(reason)

Expected failures come back as a :class:`VerificationOutcome` carrying a
:class:`VerificationFailure`; only malformed input raises
(:class:`EncodingError`), and ledger connectivity problems surface as
:class:`NetworkError` so callers can tell "invalid" from "unknown".
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from eth_account import Account
from eth_account.messages import SignableMessage

from .codec import TypedDataDomain, encode_authorization, encode_envelope
from .errors import EncodingError, VerificationFailure
from .ledger import DEFAULT_TIMEOUT, Ledger
from .models import PaymentPayload, PaymentRequirements, WorkEnvelope
from .nonces import NonceStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 300
DEFAULT_FUTURE_SKEW_SECONDS = 60


class VerificationState(str, enum.Enum):
    RECEIVED = "received"
    SIGNATURE_CHECKED = "signature_checked"
    NONCE_CHECKED = "nonce_checked"
    TIMING_CHECKED = "timing_checked"
    VALID = "valid"
    INVALID = "invalid"


class InvalidReason(str, enum.Enum):
    SIGNATURE_MISMATCH = "signature mismatch"
    NONCE_USED = "nonce already used"
    NOT_YET_VALID = "not yet valid"
    EXPIRED = "expired"
    TIMESTAMP_TOO_OLD = "timestamp too old"
    TIMESTAMP_IN_FUTURE = "timestamp in future"
    SCHEME_MISMATCH = "scheme mismatch"
    NETWORK_MISMATCH = "network mismatch"
    RECIPIENT_MISMATCH = "recipient mismatch"
    ASSET_MISMATCH = "asset mismatch"
    AMOUNT_EXCEEDS_REQUIREMENT = "amount exceeds requirement"
    RELAYER_MISMATCH = "relayer contract mismatch"


@dataclass(frozen=True)
class VerificationOutcome:
    """Terminal state of one verification run."""

    state: VerificationState
    signer: Optional[str] = None
    failure: Optional[VerificationFailure] = None
    trail: Tuple[VerificationState, ...] = ()

    @property
    def is_valid(self) -> bool:
        return self.state is VerificationState.VALID

    @property
    def reason(self) -> Optional[str]:
        return self.failure.reason if self.failure else None


class _Run:
    """Records the states a single verification passes through."""

    def __init__(self) -> None:
        self.trail: List[VerificationState] = [VerificationState.RECEIVED]
        self.signer: Optional[str] = None

    def advance(self, state: VerificationState) -> None:
        self.trail.append(state)

    def reject(self, reason: InvalidReason) -> VerificationOutcome:
        failed_at = self.trail[-1]
        self.trail.append(VerificationState.INVALID)
        logger.info("Authorization rejected: %s", reason.value, extra={"state": failed_at.value, "signer": self.signer})
        return VerificationOutcome(
            state=VerificationState.INVALID,
            signer=self.signer,
            failure=VerificationFailure(reason=reason.value, state=failed_at.value),
            trail=tuple(self.trail),
        )

    def accept(self) -> VerificationOutcome:
        self.trail.append(VerificationState.VALID)
        return VerificationOutcome(state=VerificationState.VALID, signer=self.signer, trail=tuple(self.trail))


def recover_signer(signable: SignableMessage, signature: str) -> Optional[str]:
    """Recover the signing address, or ``None`` if the signature is unusable.

    A tampered signature can fail recovery outright (``r`` not on the curve,
    bad ``v``); that is a mismatch, not a crash.
    """

    try:
        return Account.recover_message(signable, signature=signature)
    except Exception as exc:
        logger.debug("Signature recovery failed: %s", exc)
        return None


def _addresses_match(left: Optional[str], right: str) -> bool:
    return left is not None and left.lower() == right.lower()


def requirements_failure(
    payload: PaymentPayload,
    requirements: PaymentRequirements,
    domain: TypedDataDomain,
) -> Optional[InvalidReason]:
    """Check a payment against the terms the payee published."""

    authorization = payload.authorization
    if payload.scheme != requirements.scheme:
        return InvalidReason.SCHEME_MISMATCH
    if payload.network != requirements.network:
        return InvalidReason.NETWORK_MISMATCH
    if payload.token.lower() != requirements.asset.lower():
        return InvalidReason.ASSET_MISMATCH
    if authorization.to.lower() != requirements.pay_to.lower():
        return InvalidReason.RECIPIENT_MISMATCH
    if authorization.value > requirements.max_amount_required:
        return InvalidReason.AMOUNT_EXCEEDS_REQUIREMENT
    if domain.verifying_contract.lower() != requirements.relayer_contract.lower():
        return InvalidReason.RELAYER_MISMATCH
    return None


class PaymentVerifier:
    """Verifies EIP-712 transfer authorizations against a ledger."""

    def __init__(
        self,
        ledger: Ledger,
        *,
        clock: Callable[[], float] = time.time,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._ledger = ledger
        self._clock = clock
        self._timeout = timeout

    async def verify(
        self,
        payload: PaymentPayload,
        domain: TypedDataDomain,
        requirements: Optional[PaymentRequirements] = None,
        *,
        now: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> VerificationOutcome:
        if not isinstance(payload, PaymentPayload):
            raise EncodingError("expected a PaymentPayload")
        if requirements is not None and not isinstance(requirements, PaymentRequirements):
            raise EncodingError("expected PaymentRequirements")
        run = _Run()
        authorization = payload.authorization

        if requirements is not None:
            mismatch = requirements_failure(payload, requirements, domain)
            if mismatch is not None:
                return run.reject(mismatch)

        recovered = recover_signer(encode_authorization(authorization, domain), payload.signature)
        if not _addresses_match(recovered, authorization.from_address):
            return run.reject(InvalidReason.SIGNATURE_MISMATCH)
        run.signer = authorization.from_address
        run.advance(VerificationState.SIGNATURE_CHECKED)

        spent = await self._ledger.authorization_state(
            authorization.from_address,
            authorization.nonce,
            timeout=timeout if timeout is not None else self._timeout,
        )
        if spent:
            return run.reject(InvalidReason.NONCE_USED)
        run.advance(VerificationState.NONCE_CHECKED)

        current = int(self._clock()) if now is None else now
        if current < authorization.valid_after:
            return run.reject(InvalidReason.NOT_YET_VALID)
        if current >= authorization.valid_before:
            return run.reject(InvalidReason.EXPIRED)
        run.advance(VerificationState.TIMING_CHECKED)
        return run.accept()


class EnvelopeVerifier:
    """Verifies agent work envelopes: signature, nonce and freshness."""

    def __init__(
        self,
        nonce_store: NonceStore,
        *,
        clock: Callable[[], float] = time.time,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        future_skew_seconds: int = DEFAULT_FUTURE_SKEW_SECONDS,
    ) -> None:
        self._nonce_store = nonce_store
        self._clock = clock
        self._max_age = max_age_seconds
        self._future_skew = future_skew_seconds

    async def verify(self, envelope: WorkEnvelope, *, now: Optional[int] = None) -> VerificationOutcome:
        if not isinstance(envelope, WorkEnvelope):
            raise EncodingError("expected a WorkEnvelope")
        run = _Run()
        claimed = envelope.agent_address

        recovered = recover_signer(encode_envelope(envelope), envelope.signature)
        if not _addresses_match(recovered, claimed):
            return run.reject(InvalidReason.SIGNATURE_MISMATCH)
        run.signer = claimed
        run.advance(VerificationState.SIGNATURE_CHECKED)

        if await self._nonce_store.is_consumed(claimed, envelope.nonce):
            return run.reject(InvalidReason.NONCE_USED)
        run.advance(VerificationState.NONCE_CHECKED)

        current = int(self._clock()) if now is None else now
        age = current - envelope.timestamp
        if age > self._max_age:
            return run.reject(InvalidReason.TIMESTAMP_TOO_OLD)
        if age < -self._future_skew:
            return run.reject(InvalidReason.TIMESTAMP_IN_FUTURE)
        run.advance(VerificationState.TIMING_CHECKED)
        return run.accept()


__all__ = [
    "DEFAULT_FUTURE_SKEW_SECONDS",
    "DEFAULT_MAX_AGE_SECONDS",
    "EnvelopeVerifier",
    "InvalidReason",
    "PaymentVerifier",
    "VerificationOutcome",
    "VerificationState",
    "recover_signer",
    "requirements_failure",
]
