"""The three independent checks combined by the trust scorer."""

from __future__ import annotations

import logging
import re
from typing import Optional

import httpx

from authorization.codec import encode_envelope
from authorization.models import WorkEnvelope
from authorization.scoring import CheckOutcome
from authorization.verifier import recover_signer

logger = logging.getLogger(__name__)

COMMIT_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")


class IntentCheck:
    """The agent signed exactly what it claims to have done."""

    name = "intent"

    async def __call__(self, envelope: WorkEnvelope) -> CheckOutcome:
        recovered = recover_signer(encode_envelope(envelope), envelope.signature)
        if recovered is None or recovered.lower() != envelope.agent_address.lower():
            return CheckOutcome(False, "signature does not match agent")
        return CheckOutcome(True)


class HttpIntegrityCheck:
    """Asks an external execution-integrity service about the envelope.

    Passes only on an explicit ``{"verified": true}``. Without an endpoint the
    check fails closed.
    """

    name = "integrity"

    def __init__(
        self,
        endpoint: Optional[str],
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/") if endpoint else None
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self._endpoint is not None

    async def __call__(self, envelope: WorkEnvelope) -> CheckOutcome:
        if self._endpoint is None:
            return CheckOutcome(False, "integrity endpoint not configured")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._endpoint}/verify-integrity",
                    json={"envelope": envelope.to_mapping()},
                )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Integrity service call failed: %s", exc, extra={"agent_id": envelope.agent_id})
            return CheckOutcome(False, f"integrity service error: {exc}")
        if not isinstance(body, dict) or body.get("verified") is not True:
            return CheckOutcome(False, "integrity service did not verify execution")
        return CheckOutcome(True)


class CommitFormatCheck:
    """The work commitment is a well-formed SHA-256 digest."""

    name = "outcome"

    async def __call__(self, envelope: WorkEnvelope) -> CheckOutcome:
        if COMMIT_PATTERN.match(envelope.commit) is None:
            return CheckOutcome(False, "commit is not a sha256 digest")
        return CheckOutcome(True)


__all__ = ["COMMIT_PATTERN", "CommitFormatCheck", "HttpIntegrityCheck", "IntentCheck"]
