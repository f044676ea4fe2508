"""Display formatting for auction values."""
import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from .models import AuctionMode

Number = Union[Decimal, int, float]


def format_money(value: Optional[Number], suffix: str = "сум") -> str:
    """
    Format a money amount with space-grouped thousands.

    Args:
        value: Amount, rounded to whole units (None or NaN shows as 0)
        suffix: Currency suffix

    Returns:
        e.g. "1 250 000 сум"
    """
    amount = 0
    if value is not None and not (isinstance(value, float) and math.isnan(value)):
        try:
            amount = int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        except InvalidOperation:
            amount = 0
    grouped = f"{amount:,}".replace(",", " ")
    return f"{grouped} {suffix}".strip()


def format_minutes(value: Optional[int]) -> str:
    """Format a duration in minutes as hours and minutes, e.g. "1 ч 30 мин"."""
    total = max(0, int(value or 0))
    hours, minutes = divmod(total, 60)
    if hours and minutes:
        return f"{hours} ч {minutes} мин"
    if hours:
        return f"{hours} ч"
    return f"{minutes} мин"


def format_bid_value(task, suffix: str = "сум") -> Optional[str]:
    """Current best offer on a task, or its base value when nobody has bid."""
    if task.mode == AuctionMode.MONEY:
        value = task.current_price if task.current_price is not None else task.base_price
        return format_money(value, suffix) if value is not None else None
    value = task.current_time_minutes if task.current_time_minutes is not None else task.base_time_minutes
    return format_minutes(value) if value is not None else None
