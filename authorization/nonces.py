"""Consumed-nonce stores for work envelopes.

The store is the replay defense, so it must live with the settlement side
and offer an atomic check-and-set keyed by ``(signer, nonce)``. Client-local
state is never consulted.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Protocol, Set, Tuple


def _key(signer: str, nonce: object) -> Tuple[str, str]:
    return signer.lower(), str(nonce)


class NonceStore(Protocol):
    """Durable set of consumed ``(signer, nonce)`` pairs."""

    async def is_consumed(self, signer: str, nonce: object) -> bool:  # pragma: no cover - protocol
        ...

    async def consume(self, signer: str, nonce: object) -> bool:  # pragma: no cover - protocol
        """Mark the pair spent; return ``False`` if it already was."""

    async def release(self, signer: str, nonce: object) -> None:  # pragma: no cover - protocol
        """Undo a consumption whose settlement was rejected before submission."""


class InMemoryNonceStore:
    """Process-local store used by tests and simulated deployments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._consumed: Set[Tuple[str, str]] = set()

    async def is_consumed(self, signer: str, nonce: object) -> bool:
        with self._lock:
            return _key(signer, nonce) in self._consumed

    async def consume(self, signer: str, nonce: object) -> bool:
        key = _key(signer, nonce)
        with self._lock:
            if key in self._consumed:
                return False
            self._consumed.add(key)
            return True

    async def release(self, signer: str, nonce: object) -> None:
        with self._lock:
            self._consumed.discard(_key(signer, nonce))


class SqliteNonceStore:
    """SQLite-backed store; the primary key makes ``consume`` atomic."""

    _SCHEMA = (
        "CREATE TABLE IF NOT EXISTS consumed_nonces ("
        " signer TEXT NOT NULL,"
        " nonce TEXT NOT NULL,"
        " consumed_at REAL NOT NULL DEFAULT (strftime('%s','now')),"
        " PRIMARY KEY (signer, nonce))"
    )

    def __init__(self, path: str | Path) -> None:
        target = str(path)
        if target not in {":memory:", "memory"}:
            db_path = Path(target)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = ":memory:"
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(target, check_same_thread=False, isolation_level=None)
        self._conn.execute(self._SCHEMA)

    @classmethod
    def from_url(cls, url: str) -> "SqliteNonceStore":
        if url.startswith("sqlite:///"):
            return cls(url[len("sqlite:///"):] or ":memory:")
        if url.startswith("sqlite://"):
            return cls(url[len("sqlite://"):] or ":memory:")
        raise ValueError(f"Unsupported nonce store URL: {url}")

    def _is_consumed(self, signer: str, nonce: object) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM consumed_nonces WHERE signer = ? AND nonce = ?", _key(signer, nonce)
            ).fetchone()
        return row is not None

    def _consume(self, signer: str, nonce: object) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "INSERT OR IGNORE INTO consumed_nonces (signer, nonce) VALUES (?, ?)", _key(signer, nonce)
            )
        return cursor.rowcount == 1

    def _release(self, signer: str, nonce: object) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM consumed_nonces WHERE signer = ? AND nonce = ?", _key(signer, nonce)
            )

    async def is_consumed(self, signer: str, nonce: object) -> bool:
        return await asyncio.to_thread(self._is_consumed, signer, nonce)

    async def consume(self, signer: str, nonce: object) -> bool:
        return await asyncio.to_thread(self._consume, signer, nonce)

    async def release(self, signer: str, nonce: object) -> None:
        await asyncio.to_thread(self._release, signer, nonce)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def nonce_store_from_url(url: str | None) -> NonceStore:
    if not url or url == "memory":
        return InMemoryNonceStore()
    return SqliteNonceStore.from_url(url)


__all__ = ["InMemoryNonceStore", "NonceStore", "SqliteNonceStore", "nonce_store_from_url"]
