# src/services/subscription.py

"""Profile loading with lazy downgrade of expired subscriptions."""

import logging
from dataclasses import replace
from datetime import datetime, timezone

from src.models.cart import Profile, Tier
from src.storage.base_store import ProfileProvider

logger = logging.getLogger("chango.subscription")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def load_profile(
    profiles: ProfileProvider,
    user_id: str,
    now: datetime | None = None,
) -> Profile | None:
    """Fetch a profile, downgrading an expired PRO to FREE.

    The downgrade is written back to the provider.  The write is
    idempotent and a failure does not fail the load: the returned
    profile is FREE either way.  A failing fetch yields ``None``.
    """
    current = now or utc_now()
    try:
        profile = profiles.get_profile(user_id)
    except Exception as exc:
        logger.warning(
            "Profile fetch failed for %s: %s", user_id, exc,
            exc_info=True,
        )
        return None
    if profile is None:
        logger.info("No profile stored for %s", user_id)
        return None

    if not profile.is_expired_pro(current):
        return profile

    logger.info(
        "Subscription of %s expired at %s, downgrading to free",
        user_id, profile.subscription_end,
    )
    try:
        profiles.set_subscription(user_id, Tier.FREE)
    except Exception as exc:
        logger.error(
            "Could not persist downgrade for %s: %s", user_id, exc,
            exc_info=True,
        )
    return replace(profile, subscription=Tier.FREE)


def effective_tier(
    profile: Profile | None,
    now: datetime | None = None,
) -> Tier:
    """Tier that gates limits right now (no profile -> FREE)."""
    if profile is None:
        return Tier.FREE
    return profile.effective_tier(now or utc_now())
