"""
Core record types shared across the pipeline.

Transactions are immutable once ingested; recategorisation produces a new
instance with the same ``id`` via :func:`dataclasses.replace`.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, Optional

from .exceptions import InvalidInputError


# Semantic spending / income categories
CATEGORIES = (
    "rent",
    "groceries",
    "utilities",
    "insurance",
    "medical",
    "dining",
    "entertainment",
    "shopping",
    "subscriptions",
    "income",
    "savings_transfer",
    "debt_payment",
    "investment",
    "transportation",
    "other",
)

OTHER_CATEGORY = "other"

ESSENTIAL_CATEGORIES = frozenset({
    "rent",
    "groceries",
    "utilities",
    "insurance",
    "medical",
    "transportation",
    "debt_payment",
})

# Outflows that are neither essential nor discretionary spend
NON_DISCRETIONARY_CATEGORIES = ESSENTIAL_CATEGORIES | {"savings_transfer", "investment", "income"}


@dataclass(frozen=True)
class CategoryRule:
    """One entry of the ordered merchant-text fallback table."""
    pattern: str
    category: str
    priority: int
    kind: str = "keyword"  # 'keyword', 'regex', 'fuzzy'


@dataclass(frozen=True)
class Transaction:
    """
    A single bank transaction.

    ``amount`` is in currency minor units: positive = outflow, negative = inflow.
    Income is distinguished from other inflows by ``is_income_deposit``.
    """
    id: str
    twin_id: str
    date: date
    amount: int
    merchant_text: Optional[str] = None
    raw_category_hint: Optional[str] = None
    hint_confidence: Optional[float] = None
    resolved_category: str = OTHER_CATEGORY
    is_recurring: bool = False
    is_income_deposit: bool = False
    confidence_score: float = 0.0

    @property
    def month(self) -> str:
        return self.date.strftime("%Y-%m")

    @property
    def is_outflow(self) -> bool:
        return self.amount > 0

    def with_updates(self, **changes) -> "Transaction":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "twin_id": self.twin_id,
            "date": self.date.isoformat(),
            "amount": self.amount,
            "merchant_text": self.merchant_text,
            "raw_category_hint": self.raw_category_hint,
            "hint_confidence": self.hint_confidence,
            "resolved_category": self.resolved_category,
            "is_recurring": self.is_recurring,
            "is_income_deposit": self.is_income_deposit,
            "confidence_score": self.confidence_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], twin_id: Optional[str] = None) -> "Transaction":
        """
        Build a transaction from an aggregator payload.

        Raises:
            InvalidInputError: If id, date or amount are missing or malformed.
        """
        try:
            txn_id = str(data["id"])
            raw_date = data["date"]
            amount = data["amount"]
        except (KeyError, TypeError) as exc:
            raise InvalidInputError(f"Malformed transaction, missing field: {exc}") from exc

        if isinstance(raw_date, datetime):
            txn_date = raw_date.date()
        elif isinstance(raw_date, date):
            txn_date = raw_date
        else:
            try:
                txn_date = date.fromisoformat(str(raw_date)[:10])
            except ValueError as exc:
                raise InvalidInputError(f"Malformed transaction date: {raw_date!r}") from exc

        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidInputError(
                f"Transaction {txn_id} amount must be an integer in minor units, got {amount!r}"
            )

        return cls(
            id=txn_id,
            twin_id=str(twin_id or data.get("twin_id") or ""),
            date=txn_date,
            amount=amount,
            merchant_text=data.get("merchant_text"),
            raw_category_hint=data.get("raw_category_hint"),
            hint_confidence=data.get("hint_confidence"),
            resolved_category=data.get("resolved_category") or OTHER_CATEGORY,
            is_recurring=bool(data.get("is_recurring", False)),
            is_income_deposit=bool(data.get("is_income_deposit", False)),
            confidence_score=float(data.get("confidence_score") or 0.0),
        )


@dataclass(frozen=True)
class Account:
    """Account balance as returned by the bank aggregator (minor units)."""
    id: str
    balance: int
    account_type: str = "depository"

    @property
    def is_liquid(self) -> bool:
        return self.account_type == "depository"


def validate_transaction(txn: Transaction) -> None:
    """Raise InvalidInputError for a transaction that cannot be scored."""
    if not isinstance(txn, Transaction):
        raise InvalidInputError(f"Expected Transaction, got {type(txn).__name__}")
    if not txn.id:
        raise InvalidInputError("Transaction id must not be empty")
    if not isinstance(txn.date, date):
        raise InvalidInputError(f"Transaction {txn.id} has no valid date")
    if isinstance(txn.amount, bool) or not isinstance(txn.amount, int):
        raise InvalidInputError(f"Transaction {txn.id} amount must be an integer")
    if txn.resolved_category not in CATEGORIES:
        raise InvalidInputError(
            f"Transaction {txn.id} has unknown category {txn.resolved_category!r}"
        )
