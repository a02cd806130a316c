"""
Bank aggregator clients.

``fetch_transactions(access_token, since)`` returns the delta of added,
modified and removed transactions after a cursor; ``fetch_accounts`` returns
current balances. Amounts are converted to signed integer minor units with
positive meaning money out.
"""

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Deque, Dict, List, Optional, Type

import httpx

from ..exceptions import AggregatorError, AggregatorTimeoutError, InvalidInputError
from ..models import Account, Transaction

logger = logging.getLogger(__name__)

# Upstream categoriser confidence labels
HINT_CONFIDENCE_LEVELS = {
    "VERY_HIGH": 0.95,
    "HIGH": 0.8,
    "MEDIUM": 0.5,
    "LOW": 0.25,
    "UNKNOWN": 0.0,
}


@dataclass
class TransactionDelta:
    """Changes since a cursor."""
    added: List[Transaction] = field(default_factory=list)
    modified: List[Transaction] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    next_cursor: Optional[str] = None


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (e.g. 12.99) to integer minor units."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class InMemoryAggregator:
    """
    In-process aggregator for development and tests.

    Each access token has an ordered change log; the cursor is the number of
    log entries already delivered.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._changes: Dict[str, List] = {}
        self._accounts: Dict[str, List[Account]] = {}
        self._failures: Deque[BaseException] = deque()
        self.fetch_calls = 0

    def add_transactions(self, access_token: str, transactions: List[Transaction]):
        with self._lock:
            log = self._changes.setdefault(access_token, [])
            log.extend(("added", txn) for txn in transactions)

    def modify_transactions(self, access_token: str, transactions: List[Transaction]):
        with self._lock:
            log = self._changes.setdefault(access_token, [])
            log.extend(("modified", txn) for txn in transactions)

    def remove_transactions(self, access_token: str, transaction_ids: List[str]):
        with self._lock:
            log = self._changes.setdefault(access_token, [])
            log.extend(("removed", txn_id) for txn_id in transaction_ids)

    def set_accounts(self, access_token: str, accounts: List[Account]):
        with self._lock:
            self._accounts[access_token] = list(accounts)

    def fail_next(self, count: int = 1, error: Type[AggregatorError] = AggregatorTimeoutError):
        """Make the next ``count`` fetch calls raise ``error``."""
        with self._lock:
            for _ in range(count):
                self._failures.append(error("injected aggregator failure"))

    def _maybe_fail(self):
        if self._failures:
            raise self._failures.popleft()

    def fetch_transactions(self, access_token: str, since: Optional[str] = None) -> TransactionDelta:
        with self._lock:
            self.fetch_calls += 1
            self._maybe_fail()
            log = self._changes.get(access_token, [])
            start = int(since) if since else 0
            delta = TransactionDelta(next_cursor=str(len(log)))
            for kind, item in itertools.islice(log, start, None):
                if kind == "removed":
                    delta.removed.append(item)
                else:
                    getattr(delta, kind).append(item)
            return delta

    def fetch_accounts(self, access_token: str) -> List[Account]:
        with self._lock:
            self.fetch_calls += 1
            self._maybe_fail()
            return list(self._accounts.get(access_token, []))


class HttpAggregatorClient:
    """Client for a transactions-sync style bank aggregator API."""

    def __init__(
        self,
        base_url: str,
        client_id: Optional[str] = None,
        secret: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self._credentials = {}
        if client_id and secret:
            self._credentials = {"client_id": client_id, "secret": secret}
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=2.0),
            headers={"User-Agent": "twin-engine/1.0"},
        )

    def close(self):
        self._client.close()

    def _post(self, path: str, payload: Dict) -> Dict:
        try:
            response = self._client.post(path, json={**self._credentials, **payload})
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise AggregatorTimeoutError(f"Aggregator {path} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise AggregatorError(f"Aggregator {path} failed: {exc}") from exc
        except ValueError as exc:
            raise AggregatorError(f"Aggregator {path} returned a non-JSON body") from exc

    def fetch_transactions(self, access_token: str, since: Optional[str] = None) -> TransactionDelta:
        """Page through the sync endpoint until ``has_more`` is false."""
        delta = TransactionDelta(next_cursor=since)
        has_more = True
        while has_more:
            payload = {"access_token": access_token}
            if delta.next_cursor:
                payload["cursor"] = delta.next_cursor
            data = self._post("/transactions/sync", payload)
            delta.added.extend(self._transaction(row) for row in data.get("added", []))
            delta.modified.extend(self._transaction(row) for row in data.get("modified", []))
            delta.removed.extend(str(row["transaction_id"]) for row in data.get("removed", []))
            delta.next_cursor = data.get("next_cursor", delta.next_cursor)
            has_more = bool(data.get("has_more"))
        return delta

    def fetch_accounts(self, access_token: str) -> List[Account]:
        data = self._post("/accounts/balance/get", {"access_token": access_token})
        accounts = []
        for row in data.get("accounts", []):
            balances = row.get("balances") or {}
            current = balances.get("available")
            if current is None:
                current = balances.get("current") or 0
            accounts.append(Account(
                id=str(row["account_id"]),
                balance=to_minor_units(current),
                account_type=row.get("type") or "depository",
            ))
        return accounts

    @staticmethod
    def _transaction(row: Dict) -> Transaction:
        category = row.get("personal_finance_category") or {}
        try:
            amount = to_minor_units(row["amount"])
        except (KeyError, ArithmeticError) as exc:
            raise InvalidInputError(f"Malformed aggregator transaction: {row.get('transaction_id')}") from exc
        return Transaction.from_dict({
            "id": row.get("transaction_id"),
            "date": row.get("date"),
            "amount": amount,
            "merchant_text": row.get("merchant_name") or row.get("name"),
            "raw_category_hint": category.get("detailed") or category.get("primary"),
            "hint_confidence": HINT_CONFIDENCE_LEVELS.get(category.get("confidence_level") or "UNKNOWN"),
        })
