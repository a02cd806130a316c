"""
Rule Matching for Transaction Categorization.

Provides the single-rule tests behind the ordered category rule walk.
"""

import re
from typing import Iterable, Optional

from rapidfuzz import fuzz

from ..models import CategoryRule


def match_keyword(text: str, keyword: str) -> bool:
    """Substring test on normalized text."""
    return keyword in text


def match_regex(text: str, pattern: str) -> bool:
    return re.search(pattern, text) is not None


def match_fuzzy(text: str, keyword: str, fuzzy_threshold: int = 90) -> bool:
    """
    Fuzzy match a keyword against text.

    Args:
        text: Normalized text to match
        keyword: Keyword to look for
        fuzzy_threshold: Minimum partial-ratio score (0-100)

    Returns:
        True when the best partial alignment scores at or above the threshold

    Example:
        >>> match_fuzzy("STARBUKS COFFEE 12", "STARBUCKS")
        True
    """
    return fuzz.partial_ratio(keyword, text) >= fuzzy_threshold


def match_rule(text: str, rule: CategoryRule, fuzzy_threshold: int = 90) -> bool:
    """
    Test one rule against normalized text.

    Args:
        text: Normalized (uppercase) merchant text
        rule: Rule to test
        fuzzy_threshold: Threshold for 'fuzzy' rules

    Returns:
        True if the rule matches
    """
    if rule.kind == "regex":
        return match_regex(text, rule.pattern)
    if rule.kind == "fuzzy":
        return match_fuzzy(text, rule.pattern, fuzzy_threshold)
    return match_keyword(text, rule.pattern)


def first_matching_rule(
    text: str,
    rules: Iterable[CategoryRule],
    fuzzy_threshold: int = 90
) -> Optional[CategoryRule]:
    """
    Walk the ordered rules and return the first that matches.

    Rules are not scored against each other; list order decides.
    """
    if not text:
        return None
    for rule in rules:
        if match_rule(text, rule, fuzzy_threshold):
            return rule
    return None
