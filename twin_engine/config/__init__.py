"""
Configuration module for the Financial Twin engine.

This module contains all configuration dictionaries for scoring, categorisation,
anchoring, sync and analytics, plus environment-driven runtime settings.
"""

from .scoring_config import (
    SCORING_CONFIG,
    RESOLVER_CONFIG,
    ANCHOR_CONFIG,
    SYNC_CONFIG,
    ANALYTICS_CONFIG,
    PILLARS,
    CURRENT_WEIGHTS_VERSION,
)
from .rule_loader import load_category_rules_csv
from .settings import Settings, configure_logging

__all__ = [
    "SCORING_CONFIG",
    "RESOLVER_CONFIG",
    "ANCHOR_CONFIG",
    "SYNC_CONFIG",
    "ANALYTICS_CONFIG",
    "PILLARS",
    "CURRENT_WEIGHTS_VERSION",
    "load_category_rules_csv",
    "Settings",
    "configure_logging",
]
