"""
Income detection module for the Financial Twin engine.

This module flags income deposits, payroll credits and recurring merchants.
"""

from .income_detector import IncomeDetector

__all__ = [
    "IncomeDetector",
]
