"""Cron matching for schedule triggers.

Dialect: standard 5-field cron (minute hour day-of-month month day-of-week),
as understood by croniter. Matching is at minute resolution and uses the
moment's own timezone; the engine's default clock is UTC.
"""

from __future__ import annotations

import logging
from datetime import datetime

from croniter import croniter

logger = logging.getLogger(__name__)


def is_valid_cron(expression: str) -> bool:
    parts = expression.split()
    return len(parts) == 5 and croniter.is_valid(expression)


def is_cron_match(expression: str, moment: datetime) -> bool:
    """True when `moment` falls inside a minute selected by `expression`."""

    if not is_valid_cron(expression):
        logger.warning("Ignoring invalid cron expression", extra={"cron": expression})
        return False
    return bool(croniter.match(expression, moment.replace(second=0, microsecond=0)))
