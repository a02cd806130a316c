"""
Category rule loader.
Loads CSV files containing ordered merchant-text category rules.
"""

import csv
from typing import List
from pathlib import Path

from ..exceptions import InvalidInputError
from ..models import CATEGORIES, CategoryRule

RULE_KINDS = ("keyword", "regex", "fuzzy")


def load_category_rules_csv(csv_path: str) -> List[CategoryRule]:
    """
    Load category rules from a CSV file.

    Args:
        csv_path: Path to CSV file containing rules

    Returns:
        Rules sorted by priority; rows sharing a priority keep file order

    Example CSV format:
        pattern,category,priority,kind
        STARBUCKS,dining,10,keyword
        \\bRENT\\b,rent,50,regex
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"Category rule file not found: {csv_path}")

    rules = []
    with open(csv_path, 'r', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        for line_no, row in enumerate(reader, start=2):
            pattern = (row.get('pattern') or '').strip()
            if not pattern:
                continue
            category = (row.get('category') or '').strip().lower()
            kind = (row.get('kind') or 'keyword').strip().lower()
            if category not in CATEGORIES:
                raise InvalidInputError(f"{csv_path}:{line_no}: unknown category {category!r}")
            if kind not in RULE_KINDS:
                raise InvalidInputError(f"{csv_path}:{line_no}: unknown rule kind {kind!r}")
            try:
                priority = int(row.get('priority') or 0)
            except ValueError as exc:
                raise InvalidInputError(f"{csv_path}:{line_no}: priority must be an integer") from exc
            if kind != 'regex':
                pattern = pattern.upper()
            rules.append(CategoryRule(pattern=pattern, category=category, priority=priority, kind=kind))

    return sorted(rules, key=lambda rule: rule.priority)
