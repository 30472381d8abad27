"""
Look-back window resolution from free-text user context.

  "focus on the last 2 weeks"  -> 14
  "last month"                 -> 30
  "anything from 3 years"      -> 730 (capped)
  ""                           -> 90 (default)
"""
import logging
import re
from datetime import date, timedelta
from typing import Optional

from liftdiag.config import DEFAULT_DAYS_BACK, MAX_DAYS_BACK, MIN_DAYS_BACK

logger = logging.getLogger("liftdiag-date-range")

# Ordered: the first matching phrasing wins
_PATTERNS = (
    (re.compile(r"last\s+(\d+)\s+weeks?"), 7),
    (re.compile(r"last\s+week"), 7),
    (re.compile(r"(\d+)\s+weeks?"), 7),
    (re.compile(r"last\s+(\d+)\s+months?"), 30),
    (re.compile(r"last\s+month"), 30),
    (re.compile(r"(\d+)\s+months?"), 30),
    (re.compile(r"last\s+(\d+)\s+days?"), 1),
    (re.compile(r"(\d+)\s+days?"), 1),
    (re.compile(r"last\s+year"), 365),
    (re.compile(r"(\d+)\s+years?"), 365),
)


def clamp_days(days: int) -> int:
    return max(MIN_DAYS_BACK, min(days, MAX_DAYS_BACK))


def resolve(context: Optional[str]) -> int:
    """Number of days to look back for the given context. Never raises."""
    if not context or not isinstance(context, str):
        return DEFAULT_DAYS_BACK

    lowered = context.lower()
    for pattern, multiplier in _PATTERNS:
        match = pattern.search(lowered)
        if not match:
            continue
        count = int(match.group(1)) if match.groups() else 1
        days = clamp_days(count * multiplier)
        logger.debug(f"Resolved '{match.group(0)}' to {days} days")
        return days
    return DEFAULT_DAYS_BACK


def window_start(days: int, today: Optional[date] = None) -> date:
    """First calendar day included in a look-back of `days` days."""
    return (today or date.today()) - timedelta(days=days)
