"""Formatting utilities for currency display in user-facing messages."""

from __future__ import annotations

from typing import Union

from .config import DEFAULT_CURRENCY_SYMBOL


def format_currency(amount: Union[float, int], include_sign: bool = True) -> str:
    """Format an amount the way the app shows pesos: no decimals, dot thousands.

    Example:
        >>> format_currency(1234.56)
        '$1.235'
        >>> format_currency(1234.56, include_sign=False)
        '1.235'
    """
    formatted = f"{amount:,.0f}".replace(",", ".")
    return f"{DEFAULT_CURRENCY_SYMBOL}{formatted}" if include_sign else formatted


def format_csv_amount(amount: Union[float, int]) -> str:
    """Two-decimal representation used for every monetary CSV field."""
    return f"{float(amount):.2f}"
