"""
Reads the process-wide engine settings from the EngineSetting table.

Called once at the start of every dispatch / reminder cycle, so an admin change
takes effect on the next cycle without a restart.
"""

import logging

from vacancies.policy import ConflictStrategy, DispatchPolicy

from .models import EngineSetting

logger = logging.getLogger(__name__)

REMINDER_PERCENTAGE = "reminder_percentage"
CONFLICT_STRATEGY = "ranking_conflict_strategy"


def load_policy() -> DispatchPolicy:
    values = dict(
        EngineSetting.objects.filter(key__in=[REMINDER_PERCENTAGE, CONFLICT_STRATEGY]).values_list('key', 'value')
    )
    defaults = DispatchPolicy()

    reminder_percentage = defaults.reminder_percentage
    if REMINDER_PERCENTAGE in values:
        try:
            reminder_percentage = int(values[REMINDER_PERCENTAGE])
        except ValueError:
            logger.warning("ignoring non-numeric %s=%r", REMINDER_PERCENTAGE, values[REMINDER_PERCENTAGE])
        if not 10 <= reminder_percentage <= 90:
            logger.warning("ignoring out-of-range %s=%s", REMINDER_PERCENTAGE, reminder_percentage)
            reminder_percentage = defaults.reminder_percentage

    conflict_strategy = defaults.conflict_strategy
    if CONFLICT_STRATEGY in values:
        try:
            conflict_strategy = ConflictStrategy(values[CONFLICT_STRATEGY])
        except ValueError:
            logger.warning("ignoring unknown %s=%r", CONFLICT_STRATEGY, values[CONFLICT_STRATEGY])

    policy = DispatchPolicy(reminder_percentage=reminder_percentage, conflict_strategy=conflict_strategy)
    policy.validate()
    return policy
