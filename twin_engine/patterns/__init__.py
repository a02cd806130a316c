"""
Category Pattern Definitions for the Financial Twin engine.

Contains the ordered merchant-text rule list and keyword tables used to:
- Resolve transactions to semantic spending categories
- Map upstream classifier hints to categories
- Separate income deposits from refunds and internal transfers
"""

from .category_rules import (
    CATEGORY_RULES,
    HINT_CATEGORY_MAP,
    INCOME_EXCLUSION_KEYWORDS,
    PAYROLL_KEYWORDS,
    OTHER_INCOME_KEYWORDS,
)

__all__ = [
    "CATEGORY_RULES",
    "HINT_CATEGORY_MAP",
    "INCOME_EXCLUSION_KEYWORDS",
    "PAYROLL_KEYWORDS",
    "OTHER_INCOME_KEYWORDS",
]
