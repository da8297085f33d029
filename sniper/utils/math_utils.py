"""
Mathematical utilities for trading calculations.
"""

import math
from typing import Any


def safe_float(value: Any, default: float = 0.0) -> float:
    """Safely convert an upstream value to a finite float"""
    try:
        result = float(value)
    except (ValueError, TypeError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def calculate_profit_percentage(entry_price: float, exit_price: float) -> float:
    """Calculate profit percentage for a long position"""
    if entry_price <= 0:
        return 0.0
    return (exit_price - entry_price) / entry_price * 100


def to_base_units(amount: float, decimals: int) -> int:
    """Convert a UI amount to integer base units (lamports for SOL)"""
    return int(math.floor(amount * (10 ** decimals)))
