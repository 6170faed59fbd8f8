"""Subscription sweeper: expires active subscriptions whose end date has passed."""

import logging
from datetime import timedelta

from app.config import settings
from app.services.subscription_service import expire_ended_subscriptions
from app.workers._state import recently_synced, set_synced

logger = logging.getLogger("vipslips.subscription_sweeper")

STATE_KEY = "subscription_sweeper"


async def run_subscription_sweep() -> None:
    """Scheduled job. Never raises into the scheduler.

    Skips the run if another instance swept within half the interval.
    """
    window = timedelta(minutes=max(1, settings.SUBSCRIPTION_SWEEP_INTERVAL_MINUTES) / 2)
    if await recently_synced(STATE_KEY, window):
        logger.debug("Smart sleep: subscription sweep ran recently")
        return

    try:
        expired = await expire_ended_subscriptions()
    except Exception:
        logger.exception("Subscription sweep failed")
        return

    if expired:
        logger.info("Subscription sweep complete: %d expired", expired)
    else:
        logger.debug("Subscription sweep complete: nothing to expire")

    await set_synced(STATE_KEY, expired_count=expired)
