"""
Delivery - Cron Helpers.

============================================================
RESPONSIBILITY
============================================================
Cron expression handling for job bindings.

- next_cron_time: next fire time of an expression in a zone
- validate_cron: boundary validation of expression + zone
- schedule_to_cron: ScheduleConfig -> five-field expression

Parsing itself is delegated to croniter; time zones to
pendulum.

============================================================
"""

import logging
from datetime import datetime, timezone as dt_timezone
from typing import Optional

import pendulum
from croniter import croniter

from core.clock import ensure_utc
from core.exceptions import InvalidScheduleError
from delivery.models import Frequency, ScheduleConfig, WEEKDAYS_CRON, validate_timezone


logger = logging.getLogger(__name__)


def validate_cron(cron_expression: str, timezone: str) -> None:
    """
    Validate a cron expression and time zone.

    Raises:
        InvalidScheduleError: If either is invalid
    """
    if not cron_expression or not croniter.is_valid(cron_expression):
        raise InvalidScheduleError("cron_expression", cron_expression, "not a valid cron expression")
    validate_timezone(timezone)


def next_cron_time(
    cron_expression: str,
    timezone: str,
    after: datetime,
) -> datetime:
    """
    Calculate the next fire time strictly after `after`.

    The expression is read in `timezone` (so "0 9 * * *" means
    09:00 local, DST included); the result is aware UTC.

    Raises:
        InvalidScheduleError: If expression or zone is invalid
    """
    validate_cron(cron_expression, timezone)

    local_after = pendulum.instance(ensure_utc(after)).in_timezone(timezone)
    next_run = croniter(cron_expression, local_after).get_next(datetime)

    next_run_utc = datetime.fromtimestamp(next_run.timestamp(), tz=dt_timezone.utc)
    logger.debug(
        f"Next run for '{cron_expression}' ({timezone}) after "
        f"{local_after.isoformat()}: {next_run_utc.isoformat()}"
    )
    return next_run_utc


def schedule_to_cron(config: ScheduleConfig) -> Optional[str]:
    """
    Convert a schedule configuration to a cron expression.

    realtime and on_demand have no cron form and return None;
    such artifacts are served by the reconciliation path only.
    """
    minute, hour = config.minute, config.hour

    if config.frequency == Frequency.HOURLY:
        return f"{minute} * * * *"
    if config.frequency == Frequency.DAILY:
        return f"{minute} {hour} * * *"
    if config.frequency == Frequency.WEEKLY:
        return f"{minute} {hour} * * {WEEKDAYS_CRON[config.day_of_week]}"
    if config.frequency == Frequency.MONTHLY:
        return f"{minute} {hour} {config.day_of_month} * *"
    return None
