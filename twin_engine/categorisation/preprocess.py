"""
Preprocessing utilities for transaction categorization.
Handles merchant text normalization and upstream hint mapping.
"""

import re
from typing import Dict, Optional

from ..models import CATEGORIES


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize text for matching.

    Args:
        text: Raw text to normalize

    Returns:
        Normalized uppercase text with runs of whitespace collapsed
    """
    if not text:
        return ""
    # Convert to uppercase for matching
    return re.sub(r"\s+", " ", text.upper().strip())


def map_hint_to_category(hint: Optional[str], hint_map: Dict[str, str]) -> Optional[str]:
    """
    Map an upstream classifier hint to a semantic category.

    Args:
        hint: Raw hint, either a category name or an upstream category string
        hint_map: Lowercased upstream string -> category

    Returns:
        Category name or None if the hint is unknown
    """
    if not hint:
        return None
    key = hint.lower().strip()
    if key in CATEGORIES:
        return key
    return hint_map.get(key)
