"""
Purpose: Central configuration for the dispatch engine (single source of truth).
What it does:

Stores all tunable process-wide settings:

REMINDER_PERCENTAGE = 75 (10-90)

CONFLICT_STRATEGY = simple | detailed | smart

Notification batching thresholds and rate limits.

A DispatchPolicy is a snapshot: the engine asks its settings provider for a
fresh one at the start of every dispatch/reminder cycle.

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from dotenv import load_dotenv


class ConflictStrategy(str, Enum):
    SIMPLE = "simple"
    DETAILED = "detailed"
    SMART = "smart"


@dataclass(frozen=True)
class DispatchPolicy:
    """
    Central configuration for offer dispatching.
    """

    # --- Reminders ---
    # Percentage of a need's response window after which one reminder is sent.
    reminder_percentage: int = 75

    # --- Conflict arbitration between needs ranking the same candidate ---
    conflict_strategy: ConflictStrategy = ConflictStrategy.SIMPLE

    # --- Notification volume modes ---
    # <= instant_threshold: sent inline
    # <= small/medium thresholds: rate-limited batches
    # above medium_threshold: queued for background processing
    instant_threshold: int = 10
    small_threshold: int = 30
    medium_threshold: int = 60

    # Transport throughput: batch_size sends, then batch_delay_seconds pause.
    batch_size: int = 2
    batch_delay_seconds: float = 1.0

    # Progress sessions are dropped this long after their last update.
    progress_ttl_seconds: int = 300

    # --- Scheduler ---
    tick_interval_seconds: int = 300

    # --- Tokens ---
    token_bytes: int = 32

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if not 10 <= self.reminder_percentage <= 90:
            raise ValueError("reminder_percentage must be between 10 and 90")

        if not isinstance(self.conflict_strategy, ConflictStrategy):
            raise ValueError(f"unknown conflict_strategy: {self.conflict_strategy!r}")

        if not 0 < self.instant_threshold <= self.small_threshold <= self.medium_threshold:
            raise ValueError("volume thresholds must satisfy 0 < instant <= small <= medium")

        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")

        if self.batch_delay_seconds < 0:
            raise ValueError("batch_delay_seconds must be >= 0")

        if self.tick_interval_seconds <= 0:
            raise ValueError("tick_interval_seconds must be > 0")

        if self.token_bytes < 16:
            raise ValueError("token_bytes must be >= 16")


SettingsProvider = Callable[[], DispatchPolicy]


def default_dispatch_policy() -> DispatchPolicy:
    """
    Convenience factory for the default policy.
    """
    p = DispatchPolicy()
    p.validate()
    return p


def policy_from_env() -> DispatchPolicy:
    """
    Build a policy from REMINDER_PERCENTAGE / CONFLICT_STRATEGY.
    Example in .env:
    REMINDER_PERCENTAGE=60
    CONFLICT_STRATEGY=smart
    """
    load_dotenv()
    p = DispatchPolicy(
        reminder_percentage=int(os.getenv("REMINDER_PERCENTAGE", "75")),
        conflict_strategy=ConflictStrategy(os.getenv("CONFLICT_STRATEGY", "simple")),
    )
    p.validate()
    return p
