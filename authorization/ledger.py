"""Ledger collaborators: the on-chain relayer/verifier contracts and a simulator."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple

import requests
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract.contract import Contract
from web3.exceptions import ContractLogicError, MismatchedABI, TimeExhausted, Web3RPCError, Web3ValidationError

from .contracts import (
    AUTHORIZATION_STATE,
    POST_ATTESTATION,
    RELAYER_INTERFACE,
    TRANSFER_WITH_AUTHORIZATION,
    VERIFIER_INTERFACE,
    ContractInterface,
    ContractMethod,
)
from .errors import EncodingError, NetworkError, SettlementError
from .fields import UINT256_MAX, require_address, require_bytes32, require_signature
from .models import Authorization

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class LedgerReceipt:
    """Confirmed ledger mutation."""

    transaction_hash: str
    block_number: Optional[int] = None


@dataclass(frozen=True)
class AttestationRecord:
    """Arguments of ``postAttestation`` in their on-chain types."""

    agent: str
    bounty_id: int
    attestation_hash: str
    trust_score: int
    intent_verified: bool
    integrity_verified: bool
    outcome_verified: bool
    ipfs_hash: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "agent", require_address(self.agent, "agent"))
        object.__setattr__(self, "attestation_hash", require_bytes32(self.attestation_hash, "attestationHash"))
        if isinstance(self.bounty_id, bool) or not isinstance(self.bounty_id, int) or not 0 <= self.bounty_id <= UINT256_MAX:
            raise EncodingError("bountyId must be an unsigned integer")
        if isinstance(self.trust_score, bool) or not isinstance(self.trust_score, int) or not 0 <= self.trust_score <= 255:
            raise EncodingError("trustScore must fit in uint8")

    def arguments(self) -> Dict[str, Any]:
        return {
            "agent": self.agent,
            "bountyId": self.bounty_id,
            "attestationHash": bytes.fromhex(self.attestation_hash[2:]),
            "trustScore": self.trust_score,
            "ipfsHash": self.ipfs_hash,
            "intentVerified": self.intent_verified,
            "integrityVerified": self.integrity_verified,
            "outcomeVerified": self.outcome_verified,
        }


class Ledger(Protocol):
    """Read/write entry points the settlement relay depends on."""

    async def authorization_state(
        self, authorizer: str, nonce: str, *, timeout: float = DEFAULT_TIMEOUT
    ) -> bool:  # pragma: no cover - protocol
        """Return ``True`` when ``(authorizer, nonce)`` has been spent."""

    async def transfer_with_authorization(
        self,
        *,
        token: str,
        authorization: Authorization,
        signature: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> LedgerReceipt:  # pragma: no cover - protocol
        ...

    async def post_attestation(
        self, record: AttestationRecord, *, timeout: float = DEFAULT_TIMEOUT
    ) -> LedgerReceipt:  # pragma: no cover - protocol
        ...


def split_signature(signature: str) -> Tuple[int, bytes, bytes]:
    """Split a 65-byte ``r || s || v`` signature into ``(v, r, s)``."""

    raw = bytes.fromhex(require_signature(signature)[2:])
    r, s, v = raw[:32], raw[32:64], raw[64]
    if v < 27:
        v += 27
    return v, r, s


def _hex(value: Any) -> str:
    text = value.hex() if hasattr(value, "hex") else str(value)
    return text if text.startswith("0x") else "0x" + text


class Web3Ledger:
    """Ledger backed by a JSON-RPC node through web3.py.

    Writes are signed by the relayer account, which pays the gas; the payer
    or agent never submits a transaction themselves.
    """

    def __init__(
        self,
        *,
        rpc_url: Optional[str] = None,
        web3: Optional[Web3] = None,
        account: Optional[LocalAccount] = None,
        relayer_contract: Optional[str] = None,
        verifier_contract: Optional[str] = None,
        gas_limit: int = 200_000,
        confirmation_timeout: float = 120.0,
        request_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if web3 is None:
            if not rpc_url:
                raise ValueError("rpc_url or web3 is required")
            web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        self.web3 = web3
        self._account = account
        self._relayer = self._contract(RELAYER_INTERFACE, relayer_contract) if relayer_contract else None
        self._verifier = self._contract(VERIFIER_INTERFACE, verifier_contract) if verifier_contract else None
        self._gas_limit = gas_limit
        self._confirmation_timeout = confirmation_timeout
        self._submit_lock = threading.Lock()
        logger.debug("Web3 ledger initialised", extra={"relayer": relayer_contract, "verifier": verifier_contract})

    @property
    def relayer_address(self) -> Optional[str]:
        return self._account.address if self._account is not None else None

    def _contract(self, interface: ContractInterface, address: str) -> Contract:
        return self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=interface.abi())

    async def _run(self, operation: str, func: Callable[..., Any], *args: Any, timeout: float) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"{operation} timed out after {timeout:g}s") from exc
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise NetworkError(f"{operation} failed: {exc}") from exc
        except (ContractLogicError, Web3RPCError) as exc:
            raise SettlementError(str(exc)) from exc
        except (Web3ValidationError, MismatchedABI) as exc:
            raise SettlementError(f"{operation} rejected arguments: {exc}") from exc

    @staticmethod
    def _bind(contract: Contract, name: str, *args: Any) -> Any:
        try:
            return getattr(contract.functions, name)(*args)
        except (Web3ValidationError, MismatchedABI) as exc:
            raise SettlementError(f"{name} rejected arguments: {exc}") from exc

    async def balance(self, address: str, *, timeout: float = DEFAULT_TIMEOUT) -> int:
        return await self._run(
            "eth_getBalance", self.web3.eth.get_balance, Web3.to_checksum_address(address), timeout=timeout
        )

    async def authorization_state(self, authorizer: str, nonce: str, *, timeout: float = DEFAULT_TIMEOUT) -> bool:
        if self._relayer is None:
            raise SettlementError("relayer contract is not configured")
        call = self._bind(
            self._relayer,
            AUTHORIZATION_STATE.name,
            Web3.to_checksum_address(authorizer),
            bytes.fromhex(require_bytes32(nonce, "nonce")[2:]),
        )
        return bool(await self._run(AUTHORIZATION_STATE.name, call.call, timeout=timeout))

    async def transfer_with_authorization(
        self,
        *,
        token: str,
        authorization: Authorization,
        signature: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> LedgerReceipt:
        if self._relayer is None:
            raise SettlementError("relayer contract is not configured")
        v, r, s = split_signature(signature)
        arguments = {
            "token": Web3.to_checksum_address(token),
            "from": authorization.from_address,
            "to": authorization.to,
            "value": authorization.value,
            "validAfter": authorization.valid_after,
            "validBefore": authorization.valid_before,
            "nonce": bytes.fromhex(authorization.nonce[2:]),
            "v": v,
            "r": r,
            "s": s,
        }
        return await self._transact(self._relayer, TRANSFER_WITH_AUTHORIZATION, arguments, timeout=timeout)

    async def post_attestation(self, record: AttestationRecord, *, timeout: float = DEFAULT_TIMEOUT) -> LedgerReceipt:
        if self._verifier is None:
            raise SettlementError("verifier contract is not configured")
        return await self._transact(self._verifier, POST_ATTESTATION, record.arguments(), timeout=timeout)

    async def _transact(
        self,
        contract: Contract,
        method: ContractMethod,
        arguments: Dict[str, Any],
        *,
        timeout: float,
    ) -> LedgerReceipt:
        if self._account is None:
            raise SettlementError("relayer account is not configured")
        call = self._bind(contract, method.name, *method.arguments(arguments))
        # Surface revert reasons before spending gas.
        await self._run(f"{method.name} simulation", call.call, {"from": self._account.address}, timeout=timeout)
        tx_hash = await self._run(f"{method.name} submission", self._sign_and_send, call, timeout=timeout)
        logger.info("Submitted %s", method.name, extra={"tx": tx_hash})
        try:
            receipt = await asyncio.to_thread(
                self.web3.eth.wait_for_transaction_receipt, tx_hash, self._confirmation_timeout
            )
        except TimeExhausted as exc:
            raise NetworkError(
                f"{method.name} not confirmed within {self._confirmation_timeout:g}s", transaction_id=tx_hash
            ) from exc
        except (requests.ConnectionError, requests.Timeout, Web3RPCError) as exc:
            raise NetworkError(f"{method.name} receipt lookup failed: {exc}", transaction_id=tx_hash) from exc
        if int(receipt["status"]) != 1:
            raise SettlementError(f"{method.name} reverted", transaction_id=tx_hash)
        return LedgerReceipt(transaction_hash=_hex(receipt["transactionHash"]), block_number=receipt["blockNumber"])

    def _sign_and_send(self, call: Any) -> str:
        assert self._account is not None
        with self._submit_lock:
            tx = call.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": self.web3.eth.get_transaction_count(self._account.address, "pending"),
                    "gas": self._gas_limit,
                }
            )
            signed = self._account.sign_transaction(tx)
            self.web3.eth.send_raw_transaction(signed.raw_transaction)
        return _hex(signed.hash)


@dataclass
class _SimulatedState:
    balances: Dict[Tuple[str, str], int] = field(default_factory=dict)
    spent: Set[Tuple[str, str]] = field(default_factory=set)
    attestations: List[AttestationRecord] = field(default_factory=list)
    block_number: int = 0


class InMemoryLedger:
    """Deterministic ledger simulation with EIP-3009 style bookkeeping.

    The authorization-state set is updated under a lock in the same step as
    the balance transfer, which is the atomic check-and-set the protocol
    relies on. Signatures are not re-verified here.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        latency: float = 0.0,
        relayer_address: Optional[str] = None,
    ) -> None:
        self._clock = clock
        self._latency = latency
        self._lock = threading.Lock()
        self._state = _SimulatedState()
        self.relayer_address = relayer_address

    @staticmethod
    def _balance_key(token: str, holder: str) -> Tuple[str, str]:
        return token.lower(), holder.lower()

    def credit(self, token: str, holder: str, amount: int) -> None:
        key = self._balance_key(token, holder)
        with self._lock:
            self._state.balances[key] = self._state.balances.get(key, 0) + amount

    def balance_of(self, token: str, holder: str) -> int:
        with self._lock:
            return self._state.balances.get(self._balance_key(token, holder), 0)

    @property
    def attestations(self) -> List[AttestationRecord]:
        with self._lock:
            return list(self._state.attestations)

    async def _delay(self, timeout: float, operation: str) -> None:
        if self._latency <= 0:
            return
        try:
            await asyncio.wait_for(asyncio.sleep(self._latency), timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"{operation} timed out after {timeout:g}s") from exc

    def _next_receipt(self, *parts: object) -> LedgerReceipt:
        self._state.block_number += 1
        seed = "|".join([str(self._state.block_number), *map(str, parts)])
        return LedgerReceipt(
            transaction_hash=_hex(Web3.keccak(text=seed)),
            block_number=self._state.block_number,
        )

    async def authorization_state(self, authorizer: str, nonce: str, *, timeout: float = DEFAULT_TIMEOUT) -> bool:
        await self._delay(timeout, AUTHORIZATION_STATE.name)
        with self._lock:
            return (authorizer.lower(), nonce.lower()) in self._state.spent

    async def transfer_with_authorization(
        self,
        *,
        token: str,
        authorization: Authorization,
        signature: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> LedgerReceipt:
        split_signature(signature)
        await self._delay(timeout, TRANSFER_WITH_AUTHORIZATION.name)
        key = (authorization.from_address.lower(), authorization.nonce.lower())
        now = int(self._clock())
        with self._lock:
            if key in self._state.spent:
                raise SettlementError("authorization is used or canceled")
            if now < authorization.valid_after:
                raise SettlementError("authorization is not yet valid")
            if now >= authorization.valid_before:
                raise SettlementError("authorization is expired")
            source = self._balance_key(token, authorization.from_address)
            target = self._balance_key(token, authorization.to)
            available = self._state.balances.get(source, 0)
            if available < authorization.value:
                raise SettlementError("transfer amount exceeds balance")
            self._state.spent.add(key)
            self._state.balances[source] = available - authorization.value
            self._state.balances[target] = self._state.balances.get(target, 0) + authorization.value
            return self._next_receipt(token, *key, authorization.value)

    async def post_attestation(self, record: AttestationRecord, *, timeout: float = DEFAULT_TIMEOUT) -> LedgerReceipt:
        await self._delay(timeout, POST_ATTESTATION.name)
        with self._lock:
            self._state.attestations.append(record)
            return self._next_receipt(record.agent, record.bounty_id, record.attestation_hash)


__all__ = [
    "AttestationRecord",
    "DEFAULT_TIMEOUT",
    "InMemoryLedger",
    "Ledger",
    "LedgerReceipt",
    "Web3Ledger",
    "split_signature",
]
