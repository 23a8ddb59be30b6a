# src/storage/base_store.py

"""Abstract provider interfaces consumed by the services layer."""

from abc import ABC, abstractmethod
from typing import Any

from src.models.cart import FavoritesMap, Profile, SavedCart, Tier
from src.models.price_snapshot import PriceHistoryPoint
from src.models.product import Product


class StoreError(Exception):
    """A provider call failed (network, HTTP status or database)."""


class CatalogProvider(ABC):
    """Source of products and their price history."""

    @abstractmethod
    def list_products(self) -> list[Product]:
        """Return every catalog product."""
        ...

    @abstractmethod
    def list_recent_price_history(
        self, days: int,
    ) -> list[PriceHistoryPoint]:
        """Return history rows of the last *days* days, oldest first."""
        ...

    @abstractmethod
    def get_product_history(
        self, product_name: str, days: int,
    ) -> list[PriceHistoryPoint]:
        """Return one product's history for the last *days* days."""
        ...


class ProfileProvider(ABC):
    """Source of user profiles and subscription state."""

    @abstractmethod
    def get_profile(self, user_id: str) -> Profile | None:
        """Return the profile for *user_id*, or None if there is none."""
        ...

    @abstractmethod
    def set_subscription(self, user_id: str, tier: Tier) -> None:
        """Persist the subscription tier for *user_id*."""
        ...


class CartStore(ABC):
    """Persistence for named carts."""

    @abstractmethod
    def list_carts(self, user_id: str) -> list[SavedCart]:
        """Return the user's carts, most recently updated first."""
        ...

    @abstractmethod
    def create_cart(
        self, user_id: str, title: str, items: FavoritesMap,
    ) -> SavedCart:
        """Insert a cart and return it as stored."""
        ...

    @abstractmethod
    def update_cart(
        self, cart_id: str, fields: dict[str, Any],
    ) -> SavedCart:
        """Apply a partial update (``items``, ``titulo``, ``is_public``)."""
        ...

    @abstractmethod
    def delete_cart(self, cart_id: str) -> None:
        """Remove a cart."""
        ...

    @abstractmethod
    def get_shared_cart(self, cart_id: str) -> SavedCart | None:
        """Return a cart only if it is publicly shared."""
        ...
