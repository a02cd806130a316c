"""
Verification module for the Financial Twin engine.

This module anchors snapshot content hashes on a ledger and verifies them.
"""

from .anchor import VerificationAnchor, VerificationRecord, VerificationResult
from .ledger import HttpLedgerClient, InMemoryLedger, LedgerReceipt

__all__ = [
    "VerificationAnchor",
    "VerificationRecord",
    "VerificationResult",
    "HttpLedgerClient",
    "InMemoryLedger",
    "LedgerReceipt",
]
