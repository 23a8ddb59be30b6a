# src/models/cart.py

"""Saved cart, profile and subscription tier models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# product id -> quantity (always >= 1)
FavoritesMap = dict[int, int]


class Tier(Enum):
    """Subscription tier stored on a profile."""

    FREE = "free"
    PRO = "pro"

    @classmethod
    def parse(cls, raw: object) -> "Tier":
        """Map a stored tier string to a Tier (unknown -> FREE)."""
        if str(raw).strip().lower() == cls.PRO.value:
            return cls.PRO
        return cls.FREE


@dataclass(frozen=True)
class Profile:
    """A user's profile record as stored by the profile provider."""

    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    subscription: Tier = Tier.FREE
    subscription_end: datetime | None = None

    def effective_tier(self, now: datetime) -> Tier:
        """PRO only while ``subscription_end`` lies in the future."""
        if self.subscription is not Tier.PRO:
            return Tier.FREE
        if self.subscription_end is None:
            return Tier.FREE
        if self.subscription_end > now:
            return Tier.PRO
        return Tier.FREE

    def is_expired_pro(self, now: datetime) -> bool:
        """True for a stored PRO whose end date has passed."""
        return (
            self.subscription is Tier.PRO
            and self.subscription_end is not None
            and self.subscription_end <= now
        )


@dataclass
class SavedCart:
    """A named favorites snapshot persisted for a user."""

    id: str
    user_id: str
    title: str
    items: FavoritesMap = field(
        default_factory=lambda: FavoritesMap()
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None
    is_public: bool = False
