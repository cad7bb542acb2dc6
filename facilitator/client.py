"""Async HTTP client for a remote facilitator."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from authorization.errors import EncodingError, NetworkError, ProtocolError
from authorization.models import X402_VERSION, PaymentPayload, PaymentRequirements

from .schemas import SettleResponse, VerifyResponse

logger = logging.getLogger(__name__)


class FacilitatorClient:
    """Calls ``/verify`` and ``/settle`` on a facilitator service."""

    def __init__(
        self,
        url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            raise ValueError("facilitator URL must start with http:// or https://")
        self.url = url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    def _body(payload: PaymentPayload, requirements: PaymentRequirements) -> Dict[str, Any]:
        return {
            "x402Version": X402_VERSION,
            "paymentPayload": payload.to_mapping(),
            "paymentRequirements": requirements.to_mapping(),
        }

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(f"{self.url}{path}", json=body, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{path} timed out after {self._timeout:g}s") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{path} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None
        failure = data if isinstance(data, dict) else {}
        reason = failure.get("reason")
        if response.status_code == 400:
            raise EncodingError(reason or f"{path} rejected the request as malformed")
        if response.status_code == 504:
            raise NetworkError(reason or f"{path} timed out upstream", transaction_id=failure.get("transaction"))
        if response.status_code >= 400:
            logger.warning("Facilitator returned HTTP %s for %s", response.status_code, path)
            raise ProtocolError(f"{path} failed with HTTP {response.status_code}: {reason or response.text}")
        if not isinstance(data, dict):
            raise ProtocolError(f"{path} returned a non-object body")
        return data

    async def verify(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResponse:
        data = await self._post("/verify", self._body(payload, requirements))
        return VerifyResponse.model_validate(data)

    async def settle(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResponse:
        data = await self._post("/settle", self._body(payload, requirements))
        return SettleResponse.model_validate(data)


__all__ = ["FacilitatorClient"]
