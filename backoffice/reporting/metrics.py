"""
Derived Metrics

Ratios and growth rates computed from aggregated scalars. A zero
denominator always yields 0, never an exception or NaN.
"""

import math
from dataclasses import dataclass
from typing import Union

Number = Union[int, float]


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with .5 going away from zero, as the dashboard front-end does."""
    factor = 10 ** digits
    return math.copysign(math.floor(abs(value) * factor + 0.5) / factor, value)


def safe_ratio(numerator: Number, denominator: Number, digits: int = 2) -> float:
    """numerator / denominator, or 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return round_half_up(numerator / denominator, digits)


def percentage(part: Number, whole: Number, digits: int = 1) -> float:
    """part as a percentage of whole, or 0 when whole is 0."""
    if not whole:
        return 0.0
    return round_half_up(part / whole * 100, digits)


def growth_rate(previous: Number, current: Number) -> float:
    """
    Period-over-period growth in percent.

    0 when both periods are empty, 100 when growing from nothing,
    otherwise (current - previous) / previous * 100 to one decimal.
    """
    if not previous:
        return 100.0 if current > 0 else 0.0
    return round_half_up((current - previous) / previous * 100, 1)


def target_progress(current_value: Number, target_value: Number) -> int:
    """Percentage of a target achieved, clamped to [0, 100]."""
    if not target_value or target_value <= 0:
        return 0
    ratio = min(current_value / target_value * 100, 100)
    return int(round_half_up(max(ratio, 0)))


def average_order_value(revenue: Number, orders: int) -> float:
    return safe_ratio(revenue, orders)


def revenue_per_user(revenue: Number, users: int) -> float:
    return safe_ratio(revenue, users)


def fulfillment_rate(delivered: int, total: int) -> float:
    return percentage(delivered, total)


def completion_rate(completed: int, total: int) -> float:
    return percentage(completed, total)


def conversion_rate(orders: int, sessions: int) -> float:
    """Orders per unique session, in percent."""
    return percentage(orders, sessions, digits=2)


@dataclass
class SessionStats:
    """Page-view sessions reduced over a window"""
    sessions: int = 0
    page_views: int = 0
    bounced_sessions: int = 0
    total_duration_seconds: float = 0.0

    @property
    def bounce_rate(self) -> float:
        return percentage(self.bounced_sessions, self.sessions)

    @property
    def avg_session_duration(self) -> float:
        """Mean seconds per session; single-view sessions count as zero-length."""
        return safe_ratio(self.total_duration_seconds, self.sessions, digits=0)

    @property
    def avg_pages_per_session(self) -> float:
        return safe_ratio(self.page_views, self.sessions, digits=1)


# =============================================================================
# DISPLAY FORMATTING
# =============================================================================

def format_change(growth: Number) -> str:
    """Signed percentage for stat cards: +12.5%, -3.0%, +0.0%."""
    sign = "+" if growth >= 0 else ""
    return f"{sign}{growth}%"


def format_indian_number(value: Number) -> str:
    """
    Group digits the Indian way: last three, then pairs (12,34,567).

    Fractions are kept to two places and dropped when zero.
    """
    negative = value < 0
    rounded = round_half_up(abs(value), 2)
    whole = int(rounded)
    fraction = round((rounded - whole) * 100)

    digits = str(whole)
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups + [tail])

    text = f"{digits}.{fraction:02d}" if fraction else digits
    return f"-{text}" if negative else text


def format_inr(value: Number) -> str:
    return f"₹{format_indian_number(value)}"
