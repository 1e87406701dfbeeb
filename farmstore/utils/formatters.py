"""
Formatting helpers for receipts and API payloads.
Amounts are whole KES, shown with comma thousands separators.
"""
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Union, Optional


def num_ke(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format a number en-KE style.

    Examples:
        num_ke(1500) -> "1,500"
        num_ke(5850.0) -> "5,850"
        num_ke(None) -> "-"
    """
    if value is None or value == "":
        return "-"
    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    if num == num.to_integral_value():
        return f"{int(num):,}"
    return f"{num:,.2f}"


def money_ke(value: Union[int, float, Decimal, str, None], currency: str = 'KES') -> str:
    """num_ke with a currency prefix: money_ke(150) -> "KES 150"."""
    formatted = num_ke(value)
    if formatted == "-":
        return formatted
    if formatted.startswith('-'):
        return f"-{currency} {formatted[1:]}"
    return f"{currency} {formatted}"


def datetime_ke(value: Optional[datetime]) -> str:
    """15/03/2026 14:05"""
    if not value:
        return "-"
    return value.strftime('%d/%m/%Y %H:%M')
