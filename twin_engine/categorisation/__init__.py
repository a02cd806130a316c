"""
Categorisation module for the Financial Twin engine.

This module contains the category resolver and its text-matching helpers.
"""

from .engine import CategoryMatch, CategoryResolver
from .pattern_matching import first_matching_rule, match_rule
from .preprocess import map_hint_to_category, normalize_text

__all__ = [
    "CategoryMatch",
    "CategoryResolver",
    "first_matching_rule",
    "match_rule",
    "map_hint_to_category",
    "normalize_text",
]
