"""
Ledger clients used to anchor snapshot content hashes.

``HttpLedgerClient`` talks to an append-only ledger service over HTTP;
``InMemoryLedger`` keeps anchors in-process for development and tests and
can be told to fail a number of upcoming calls.
"""

import hashlib
import itertools
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, Dict, Optional, Type

import httpx

from ..exceptions import LedgerError, LedgerTimeoutError

logger = logging.getLogger(__name__)

MESSAGE_VERSION = "1.0"


@dataclass(frozen=True)
class LedgerReceipt:
    """Acknowledgement of an anchored hash."""
    transaction_id: str
    timestamp: str
    content_hash: str


def anchor_message(content_hash: str, twin_id: Optional[str] = None) -> Dict[str, str]:
    """Message body written to the ledger; the twin id is hashed for privacy."""
    message = {
        "profile_hash": content_hash,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": MESSAGE_VERSION,
    }
    if twin_id:
        message["twin_id_hash"] = hashlib.sha256(twin_id.encode("utf-8")).hexdigest()
    return message


class InMemoryLedger:
    """In-process ledger keyed by content hash."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, LedgerReceipt] = {}
        self._failures: Deque[BaseException] = deque()
        self._sequence = itertools.count(1)
        self.submit_calls = 0
        self.messages = []

    def fail_next(self, count: int = 1, error: Type[LedgerError] = LedgerTimeoutError):
        """Make the next ``count`` submit/lookup calls raise ``error``."""
        with self._lock:
            for _ in range(count):
                self._failures.append(error("injected ledger failure"))

    def _maybe_fail(self):
        if self._failures:
            raise self._failures.popleft()

    def submit(self, content_hash: str, twin_id: Optional[str] = None) -> LedgerReceipt:
        with self._lock:
            self.submit_calls += 1
            self._maybe_fail()
            existing = self._entries.get(content_hash)
            if existing:
                return existing
            message = anchor_message(content_hash, twin_id)
            receipt = LedgerReceipt(
                transaction_id=f"mem-{next(self._sequence):08d}",
                timestamp=message["timestamp"],
                content_hash=content_hash,
            )
            self._entries[content_hash] = receipt
            self.messages.append(message)
            return receipt

    def lookup(self, content_hash: str) -> Optional[LedgerReceipt]:
        with self._lock:
            self._maybe_fail()
            return self._entries.get(content_hash)


class HttpLedgerClient:
    """
    Ledger service client.

    Endpoints:
        POST /anchors          body: anchor message, returns transaction_id + timestamp
        GET  /anchors/<hash>   404 when the hash was never anchored
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        headers = {"User-Agent": "twin-engine/1.0"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=2.0),
            headers=headers,
        )

    def close(self):
        self._client.close()

    def submit(self, content_hash: str, twin_id: Optional[str] = None) -> LedgerReceipt:
        message = anchor_message(content_hash, twin_id)
        try:
            response = self._client.post("/anchors", json=message)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise LedgerTimeoutError(f"Ledger submit timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise LedgerError(f"Ledger submit failed: {exc}") from exc
        return self._receipt(response, content_hash, message["timestamp"])

    def lookup(self, content_hash: str) -> Optional[LedgerReceipt]:
        try:
            response = self._client.get(f"/anchors/{content_hash}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise LedgerTimeoutError(f"Ledger lookup timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise LedgerError(f"Ledger lookup failed: {exc}") from exc
        return self._receipt(response, content_hash, None)

    @staticmethod
    def _receipt(response: httpx.Response, content_hash: str, fallback_timestamp: Optional[str]) -> LedgerReceipt:
        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise LedgerError("Ledger returned a non-JSON body") from exc
        transaction_id = data.get("transaction_id")
        if not transaction_id:
            raise LedgerError("Ledger response missing transaction_id")
        if data.get("profile_hash", content_hash) != content_hash:
            raise LedgerError("Ledger returned a receipt for a different hash")
        return LedgerReceipt(
            transaction_id=str(transaction_id),
            timestamp=str(data.get("timestamp") or fallback_timestamp or ""),
            content_hash=content_hash,
        )
