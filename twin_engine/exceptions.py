"""
Exception hierarchy for the Financial Twin engine.

Input errors are rejected immediately, upstream errors are retried with a
bounded backoff, and consistency errors cause a sync run to be re-queued.
Sparse data is never an error; it is carried as a low-confidence flag.
"""


class TwinEngineError(Exception):
    """Base class for all engine errors."""


class InvalidInputError(TwinEngineError, ValueError):
    """Malformed transaction, missing transaction set or bad analysis window."""


class UpstreamError(TwinEngineError):
    """A collaborator (bank aggregator or ledger) failed."""

    retryable = True


class AggregatorError(UpstreamError):
    """Bank aggregator fetch failed."""


class AggregatorTimeoutError(AggregatorError):
    """Bank aggregator fetch timed out."""


class LedgerError(UpstreamError):
    """Ledger submission or lookup failed."""


class LedgerTimeoutError(LedgerError):
    """Ledger call timed out."""


class ConsistencyError(TwinEngineError):
    """A sync run found another run already PROCESSING for the same twin."""


class TwinNotFoundError(TwinEngineError, LookupError):
    """No committed snapshot exists for the requested twin."""
