"""Signing helpers for payers and agents.

The facilitator never imports this module with a payer key: signing happens
on the payer's or agent's side and only the resulting immutable payload
crosses the service boundary.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .codec import (
    TypedDataDomain,
    canonical_envelope,
    chain_id_for,
    commitment_for,
    encode_authorization,
    encode_envelope_text,
    format_agent_id,
)
from .errors import EncodingError
from .models import Authorization, PaymentPayload, PaymentRequirements, WorkEnvelope

logger = logging.getLogger(__name__)

PAYMENT_NONCE_BYTES = 32
ENVELOPE_NONCE_BYTES = 16


def generate_nonce(size: int = PAYMENT_NONCE_BYTES) -> str:
    """Return ``size`` random bytes as a ``0x`` hex string."""

    if size < 16:
        raise ValueError("nonces need at least 16 bytes of entropy")
    return "0x" + secrets.token_bytes(size).hex()


def _signature_hex(raw: bytes) -> str:
    text = raw.hex()
    return text if text.startswith("0x") else "0x" + text


class PaymentSigner:
    """Signs EIP-712 transfer authorizations on behalf of a payer."""

    def __init__(self, account: LocalAccount, *, clock: Callable[[], float] = time.time) -> None:
        self._account = account
        self._clock = clock

    @classmethod
    def from_key(cls, private_key: str | bytes, **kwargs) -> "PaymentSigner":
        return cls(Account.from_key(private_key), **kwargs)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_authorization(self, authorization: Authorization, domain: TypedDataDomain) -> str:
        if authorization.from_address.lower() != self.address.lower():
            raise EncodingError("authorization.from does not match the signing account")
        signed = self._account.sign_message(encode_authorization(authorization, domain))
        return _signature_hex(signed.signature)

    def process_payment(
        self,
        requirements: PaymentRequirements,
        *,
        chain_id: Optional[int] = None,
    ) -> PaymentPayload:
        """Build and sign a payment that exactly meets ``requirements``."""

        now = int(self._clock())
        authorization = Authorization(
            from_address=self.address,
            to=requirements.pay_to,
            value=requirements.max_amount_required,
            valid_after=0,
            valid_before=now + requirements.max_timeout_seconds,
            nonce=generate_nonce(PAYMENT_NONCE_BYTES),
        )
        domain = TypedDataDomain(
            chain_id=chain_id if chain_id is not None else chain_id_for(requirements.network),
            verifying_contract=requirements.relayer_contract,
        )
        signature = self.sign_authorization(authorization, domain)
        logger.debug(
            "Signed payment authorization",
            extra={"payer": self.address, "network": requirements.network, "validBefore": authorization.valid_before},
        )
        return PaymentPayload(
            scheme=requirements.scheme,
            network=requirements.network,
            token=requirements.asset,
            authorization=authorization,
            signature=signature,
        )


class EnvelopeSigner:
    """Creates agent work envelopes signed as EIP-191 personal messages."""

    def __init__(self, account: LocalAccount, *, clock: Callable[[], float] = time.time) -> None:
        self._account = account
        self._clock = clock

    @classmethod
    def from_key(cls, private_key: str | bytes, **kwargs) -> "EnvelopeSigner":
        return cls(Account.from_key(private_key), **kwargs)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def agent_id(self) -> str:
        return format_agent_id(self.address)

    def sign_text(self, canonical: str) -> str:
        signed = self._account.sign_message(encode_envelope_text(canonical))
        return _signature_hex(signed.signature)

    def create_envelope(self, bounty_id: str, intent: str, work: str | bytes) -> WorkEnvelope:
        commit = commitment_for(work)
        nonce = generate_nonce(ENVELOPE_NONCE_BYTES)
        timestamp = int(self._clock())
        canonical = canonical_envelope(self.agent_id, bounty_id, intent, commit, nonce, timestamp)
        return WorkEnvelope(
            agent_id=self.agent_id,
            bounty_id=bounty_id,
            intent=intent,
            commit=commit,
            nonce=nonce,
            timestamp=timestamp,
            signature=self.sign_text(canonical),
        )


__all__ = [
    "ENVELOPE_NONCE_BYTES",
    "EnvelopeSigner",
    "PAYMENT_NONCE_BYTES",
    "PaymentSigner",
    "generate_nonce",
]
