"""
Per-twin transaction storage.

Each twin's state (transactions, aggregator cursor, account balances) is an
immutable value that is replaced wholesale, so a failed sync run can never
leave a partially merged transaction set behind.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import Account, Transaction


@dataclass(frozen=True)
class TwinData:
    """One consistent view of a twin's ingested data."""
    transactions: Tuple[Transaction, ...] = ()
    cursor: Optional[str] = None
    accounts: Tuple[Account, ...] = field(default_factory=tuple)

    def by_id(self) -> Dict[str, Transaction]:
        return {txn.id: txn for txn in self.transactions}


def ordered(transactions: Iterable[Transaction]) -> Tuple[Transaction, ...]:
    return tuple(sorted(transactions, key=lambda t: (t.date, t.id)))


class TransactionRepository:
    """Holds the committed data for every twin."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: Dict[str, TwinData] = {}
        self._items: Dict[str, str] = {}
        self._tokens: Dict[str, str] = {}

    def get(self, twin_id: str) -> TwinData:
        with self._lock:
            return self._data.get(twin_id, TwinData())

    def transactions(self, twin_id: str) -> List[Transaction]:
        return list(self.get(twin_id).transactions)

    def accounts(self, twin_id: str) -> List[Account]:
        return list(self.get(twin_id).accounts)

    def replace(
        self,
        twin_id: str,
        transactions: Iterable[Transaction],
        cursor: Optional[str],
        accounts: Iterable[Account],
    ) -> TwinData:
        """Swap in a new state for a twin."""
        data = TwinData(transactions=ordered(transactions), cursor=cursor, accounts=tuple(accounts))
        with self._lock:
            self._data[twin_id] = data
        return data

    def link_item(self, twin_id: str, item_id: Optional[str] = None, access_token: Optional[str] = None):
        """Associate an aggregator item (linked bank connection) and its access token with a twin."""
        with self._lock:
            if item_id:
                self._items[item_id] = twin_id
            if access_token:
                self._tokens[twin_id] = access_token

    def twin_for_item(self, item_id: str) -> Optional[str]:
        with self._lock:
            return self._items.get(item_id)

    def access_token(self, twin_id: str) -> Optional[str]:
        with self._lock:
            return self._tokens.get(twin_id)
