"""
backend/app/services/subscription_rules.py

Purpose:
    Pure subscription state machine and note/date helpers. No I/O; used as a
    guard before every status-changing write.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from app.models.subscription import SubscriptionStatus, SubscriptionTimeInfo
from app.utils import ensure_utc, utcnow

INITIAL_STATE = SubscriptionStatus.pending.value
TERMINAL_STATES = frozenset({SubscriptionStatus.expired.value, SubscriptionStatus.rejected.value})

_VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    SubscriptionStatus.pending.value: frozenset({
        SubscriptionStatus.active.value,
        SubscriptionStatus.rejected.value,
    }),
    SubscriptionStatus.active.value: frozenset({SubscriptionStatus.expired.value}),
    SubscriptionStatus.expired.value: frozenset(),
    SubscriptionStatus.rejected.value: frozenset(),
}

NOTES_SEPARATOR = "\n\n"


def _status_value(status: SubscriptionStatus | str) -> str:
    return status.value if isinstance(status, SubscriptionStatus) else str(status)


def is_valid_transition(current: SubscriptionStatus | str, target: SubscriptionStatus | str) -> bool:
    """Return True only for pending->active, pending->rejected and active->expired.

    Total over any input: unknown states and self-transitions are invalid.
    """
    allowed = _VALID_TRANSITIONS.get(_status_value(current), frozenset())
    return _status_value(target) in allowed


def append_note(existing: str | None, prefix: str, reason: str) -> str:
    """Append '<PREFIX>: <reason>' to existing notes, separated by a blank line."""
    entry = f"{prefix}: {reason.strip()}"
    return NOTES_SEPARATOR.join(part for part in (existing, entry) if part)


def calculate_end_date(start: datetime, duration_days: int) -> datetime:
    return ensure_utc(start) + timedelta(days=duration_days)


def subscription_time_info(
    status: SubscriptionStatus | str,
    end_at: datetime | None,
    now: datetime | None = None,
) -> SubscriptionTimeInfo:
    """Days remaining for an active subscription; zero for anything else."""
    status = _status_value(status)
    if status != SubscriptionStatus.active.value or end_at is None:
        return SubscriptionTimeInfo(
            days_remaining=0,
            is_expired=status == SubscriptionStatus.expired.value,
            expires_at=None,
        )

    now = now or utcnow()
    expires_at = ensure_utc(end_at)
    days = math.ceil((expires_at - now).total_seconds() / 86400)
    return SubscriptionTimeInfo(
        days_remaining=max(0, days),
        is_expired=days <= 0,
        expires_at=expires_at,
    )
