"""Settlement relay: applies verified authorizations to the ledger.

The relay pays execution cost on the signer's behalf. It never retries a
state-mutating call; a failed settlement is surfaced with the ledger's reason
and the caller decides what to do next.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import EncodingError, SettlementError
from .ledger import DEFAULT_TIMEOUT, AttestationRecord, Ledger
from .models import PaymentPayload, SettlementReceipt
from .nonces import NonceStore
from .verifier import InvalidReason

logger = logging.getLogger(__name__)


class SettlementRelay:
    """Executes the ledger mutation for one network."""

    def __init__(self, ledger: Ledger, *, network: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._ledger = ledger
        self._network = network
        self._timeout = timeout

    @property
    def network(self) -> str:
        return self._network

    async def settle_payment(self, payload: PaymentPayload, *, timeout: Optional[float] = None) -> SettlementReceipt:
        """Relay ``transferWithAuthorization`` for an already verified payload.

        The nonce is re-checked immediately before submission because verify
        and settle may be far apart in time; the ledger's own check-and-set
        still decides any race that slips between the two.
        """

        if not isinstance(payload, PaymentPayload):
            raise EncodingError("expected a PaymentPayload")
        deadline = timeout if timeout is not None else self._timeout
        authorization = payload.authorization
        if await self._ledger.authorization_state(authorization.from_address, authorization.nonce, timeout=deadline):
            raise SettlementError(InvalidReason.NONCE_USED.value)

        logger.info(
            "Settling payment %s -> %s (%s)",
            authorization.from_address,
            authorization.to,
            authorization.value,
            extra={"network": self._network},
        )
        receipt = await self._ledger.transfer_with_authorization(
            token=payload.token,
            authorization=authorization,
            signature=payload.signature,
            timeout=deadline,
        )
        logger.info("Payment settled in %s", receipt.transaction_hash, extra={"block": receipt.block_number})
        return SettlementReceipt(
            success=True,
            network=self._network,
            transaction_id=receipt.transaction_hash,
            payer=authorization.from_address,
            block_number=receipt.block_number,
        )

    async def post_attestation(
        self,
        record: AttestationRecord,
        *,
        nonce_store: NonceStore,
        nonce: object,
        timeout: Optional[float] = None,
    ) -> SettlementReceipt:
        """Consume the agent's envelope nonce and post the attestation.

        Consumption happens first so two concurrent posts of one envelope
        cannot both reach the ledger. A ledger rejection releases the nonce;
        a timeout does not, since the transaction may still land.
        """

        if not await nonce_store.consume(record.agent, nonce):
            raise SettlementError(InvalidReason.NONCE_USED.value)
        try:
            receipt = await self._ledger.post_attestation(
                record, timeout=timeout if timeout is not None else self._timeout
            )
        except SettlementError:
            await nonce_store.release(record.agent, nonce)
            raise
        logger.info(
            "Attestation posted in %s",
            receipt.transaction_hash,
            extra={"agent": record.agent, "bounty": record.bounty_id, "score": record.trust_score},
        )
        return SettlementReceipt(
            success=True,
            network=self._network,
            transaction_id=receipt.transaction_hash,
            agent=record.agent,
            block_number=receipt.block_number,
        )


__all__ = ["SettlementRelay"]
