"""
Runtime settings read from the environment.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .scoring_config import ANCHOR_CONFIG, SYNC_CONFIG


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


@dataclass
class Settings:
    """Deployment settings; collaborators left unset run in-process."""
    ledger_url: Optional[str] = None
    ledger_api_key: Optional[str] = None
    aggregator_url: Optional[str] = None
    aggregator_client_id: Optional[str] = None
    aggregator_secret: Optional[str] = None
    snapshot_dir: Optional[str] = None
    category_rules_csv: Optional[str] = None
    cohort_stats_json: Optional[str] = None
    sync_workers: int = SYNC_CONFIG["max_workers"]
    anchor_workers: int = ANCHOR_CONFIG["background_workers"]
    ledger_timeout_seconds: float = ANCHOR_CONFIG["timeout_seconds"]
    aggregator_timeout_seconds: float = SYNC_CONFIG["fetch_timeout_seconds"]
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            ledger_url=os.getenv("TWIN_LEDGER_URL"),
            ledger_api_key=os.getenv("TWIN_LEDGER_API_KEY"),
            aggregator_url=os.getenv("TWIN_AGGREGATOR_URL"),
            aggregator_client_id=os.getenv("TWIN_AGGREGATOR_CLIENT_ID"),
            aggregator_secret=os.getenv("TWIN_AGGREGATOR_SECRET"),
            snapshot_dir=os.getenv("TWIN_SNAPSHOT_DIR"),
            category_rules_csv=os.getenv("TWIN_CATEGORY_RULES_CSV"),
            cohort_stats_json=os.getenv("TWIN_COHORT_STATS_JSON"),
            sync_workers=_env_int("TWIN_SYNC_WORKERS", SYNC_CONFIG["max_workers"]),
            anchor_workers=_env_int("TWIN_ANCHOR_WORKERS", ANCHOR_CONFIG["background_workers"]),
            ledger_timeout_seconds=_env_float("TWIN_LEDGER_TIMEOUT", ANCHOR_CONFIG["timeout_seconds"]),
            aggregator_timeout_seconds=_env_float(
                "TWIN_AGGREGATOR_TIMEOUT", SYNC_CONFIG["fetch_timeout_seconds"]
            ),
            log_level=os.getenv("TWIN_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for service entry points."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
