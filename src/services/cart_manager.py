# src/services/cart_manager.py

"""Favorites/cart state owned by a single controller.

The manager holds the canonical favorites map, the user's saved carts,
the active-cart binding and the purchased checklist.  Mutations apply
locally and synchronously; edits to the active cart are written
through to the cart store after a quiet period (see
:class:`~src.services.write_scheduler.WriteScheduler`).

Policy denials come back as :class:`Outcome` values, never as raised
exceptions.  Provider failures are logged and leave local state as it
was after the optimistic update.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from enum import Enum

from src.config.settings import Settings
from src.models.cart import FavoritesMap, Profile, SavedCart, Tier
from src.services.subscription import effective_tier, load_profile, utc_now
from src.services.write_scheduler import Binding, WriteScheduler
from src.storage.base_store import CartStore, ProfileProvider

logger = logging.getLogger("chango.cart")


class Outcome(Enum):
    """Result of a cart operation."""

    OK = "ok"
    AUTH_REQUIRED = "auth_required"
    FAVORITES_LIMIT = "favorites_limit"
    CARTS_LIMIT = "carts_limit"
    PRO_REQUIRED = "pro_required"
    NOT_FOUND = "not_found"
    PERSISTENCE_FAILED = "persistence_failed"

    @property
    def ok(self) -> bool:
        return self is Outcome.OK

    @property
    def message(self) -> str:
        """User-facing explanation."""
        return _MESSAGES[self]


_MESSAGES: dict[Outcome, str] = {
    Outcome.OK: "",
    Outcome.AUTH_REQUIRED: "Sign in to keep favorites.",
    Outcome.FAVORITES_LIMIT: (
        f"Limit reached: free accounts keep up to "
        f"{Settings.FREE_FAVORITES_LIMIT} favorites. Go PRO for unlimited."
    ),
    Outcome.CARTS_LIMIT: (
        f"Limit reached: you can keep up to "
        f"{Settings.SAVED_CARTS_LIMIT} saved lists."
    ),
    Outcome.PRO_REQUIRED: "Saving lists is a PRO feature.",
    Outcome.NOT_FOUND: "That list is not available.",
    Outcome.PERSISTENCE_FAILED: "Could not reach the server. Changes are kept locally.",
}


class CartManager:
    """Reconciles local favorites with persisted saved carts."""

    def __init__(
        self,
        carts: CartStore,
        profiles: ProfileProvider,
        clock: Callable[[], datetime] | None = None,
        debounce: float | None = None,
    ) -> None:
        self._carts = carts
        self._profiles = profiles
        self._clock = clock or utc_now
        self._user_id: str | None = None
        self._profile: Profile | None = None
        self._favorites: FavoritesMap = {}
        self._saved_carts: list[SavedCart] = []
        self._active_cart_id: str | None = None
        self._purchased: set[int] = set()
        self._saves_in_flight: int = 0
        self.writer = WriteScheduler(
            carts, self._binding, delay=debounce,
        )

    # ── Read accessors (copies only) ─────────────────────

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def profile(self) -> Profile | None:
        return self._profile

    @property
    def tier(self) -> Tier:
        return effective_tier(self._profile, self._clock())

    @property
    def is_pro(self) -> bool:
        return self.tier is Tier.PRO

    @property
    def favorites(self) -> FavoritesMap:
        return dict(self._favorites)

    @property
    def saved_carts(self) -> tuple[SavedCart, ...]:
        return tuple(
            replace(c, items=dict(c.items)) for c in self._saved_carts
        )

    @property
    def active_cart_id(self) -> str | None:
        return self._active_cart_id

    @property
    def purchased(self) -> frozenset[int]:
        return frozenset(self._purchased)

    @property
    def can_save_cart(self) -> bool:
        return (
            self._user_id is not None
            and self.is_pro
            and len(self._saved_carts) < Settings.SAVED_CARTS_LIMIT
        )

    def is_favorite(self, product_id: int) -> bool:
        return product_id in self._favorites

    # ── Favorites ────────────────────────────────────────

    def _binding(self) -> Binding | None:
        if self._user_id is None or self._active_cart_id is None:
            return None
        return (self._user_id, self._active_cart_id)

    def _favorites_limit_hit(self, product_id: int) -> bool:
        return (
            self.tier is Tier.FREE
            and product_id not in self._favorites
            and len(self._favorites) >= Settings.FREE_FAVORITES_LIMIT
        )

    def _favorites_changed(self) -> None:
        """Mirror the edit into the active cart and schedule its write."""
        binding = self._binding()
        if binding is None:
            return
        cart_id = binding[1]
        for index, cart in enumerate(self._saved_carts):
            if cart.id == cart_id:
                cart.items = dict(self._favorites)
                cart.updated_at = self._clock()
                self._saved_carts.insert(0, self._saved_carts.pop(index))
                break
        self.writer.schedule(binding, self._favorites)

    def toggle_favorite(self, product_id: int) -> Outcome:
        """Add *product_id* at quantity 1, or remove it entirely."""
        if self._user_id is None:
            logger.info("Favorite toggle for %d without a user", product_id)
            return Outcome.AUTH_REQUIRED
        if self._favorites_limit_hit(product_id):
            logger.info(
                "Favorites limit reached for %s (%d lines)",
                self._user_id, len(self._favorites),
            )
            return Outcome.FAVORITES_LIMIT

        if product_id in self._favorites:
            del self._favorites[product_id]
        else:
            self._favorites[product_id] = 1
        self._favorites_changed()
        return Outcome.OK

    def change_quantity(self, product_id: int, delta: int) -> Outcome:
        """Shift a line's quantity by *delta*; at or below 0 it is removed.

        Raising an existing line is never limited.  A positive delta on
        an absent product opens a new line and counts toward the free
        tier's line limit.
        """
        current = self._favorites.get(product_id, 0)
        new_qty = current + delta
        if current == 0 and new_qty > 0 and self._favorites_limit_hit(product_id):
            return Outcome.FAVORITES_LIMIT

        if new_qty <= 0:
            if product_id not in self._favorites:
                return Outcome.OK
            del self._favorites[product_id]
        else:
            self._favorites[product_id] = new_qty
        self._favorites_changed()
        return Outcome.OK

    def toggle_purchased(self, product_id: int) -> Outcome:
        """Tick or untick a product on the shopping checklist."""
        if product_id in self._purchased:
            self._purchased.discard(product_id)
        else:
            self._purchased.add(product_id)
        return Outcome.OK

    # ── Saved carts ──────────────────────────────────────

    def load_cart(self, cart: SavedCart) -> Outcome:
        """Make *cart* active, replacing favorites with its snapshot.

        Edits still waiting for the previous cart are written to it.
        """
        self.writer.release()
        self._favorites = dict(cart.items)
        self._active_cart_id = cart.id
        self._purchased = set()
        logger.info(
            "Loaded cart %s (%d lines)", cart.id, len(self._favorites),
        )
        return Outcome.OK

    async def save_current_cart(self, title: str) -> Outcome:
        """Persist the current favorites as a new active cart."""
        user_id = self._user_id
        if user_id is None:
            return Outcome.AUTH_REQUIRED
        if not self.is_pro:
            return Outcome.PRO_REQUIRED
        if (
            len(self._saved_carts) + self._saves_in_flight
            >= Settings.SAVED_CARTS_LIMIT
        ):
            logger.info("Saved-cart limit reached for %s", user_id)
            return Outcome.CARTS_LIMIT

        snapshot = dict(self._favorites)
        name = title.strip() or f"List {len(self._saved_carts) + 1}"
        self._saves_in_flight += 1
        try:
            cart = await asyncio.to_thread(
                self._carts.create_cart, user_id, name, snapshot,
            )
        except Exception as exc:
            logger.error(
                "Saving cart '%s' for %s failed: %s", name, user_id, exc,
                exc_info=True,
            )
            return Outcome.PERSISTENCE_FAILED
        finally:
            self._saves_in_flight -= 1

        if self._user_id != user_id:
            logger.info(
                "Session changed while saving, cart %s left unbound", cart.id,
            )
            return Outcome.OK

        self.writer.release()
        self._saved_carts.insert(0, cart)
        self._active_cart_id = cart.id
        logger.info("Saved cart %s '%s' for %s", cart.id, name, user_id)
        if self._favorites != snapshot:
            # edits landed while the insert was in flight
            self._favorites_changed()
        return Outcome.OK

    async def delete_cart(self, cart_id: str) -> Outcome:
        """Delete a saved cart; deleting the active one rebinds."""
        if self._user_id is None:
            return Outcome.AUTH_REQUIRED
        binding = self._binding()
        deleting_active = cart_id == self._active_cart_id
        if deleting_active:
            # no write may target a cart that is being deleted
            self.writer.cancel()
        try:
            await asyncio.to_thread(self._carts.delete_cart, cart_id)
        except Exception as exc:
            logger.error(
                "Deleting cart %s failed: %s", cart_id, exc, exc_info=True,
            )
            if (
                deleting_active
                and binding is not None
                and self._binding() == binding
            ):
                self.writer.schedule(binding, self._favorites)
            return Outcome.PERSISTENCE_FAILED

        self._saved_carts = [c for c in self._saved_carts if c.id != cart_id]
        if self._active_cart_id != cart_id:
            return Outcome.OK

        self.writer.cancel()
        if self._saved_carts:
            return self.load_cart(self._saved_carts[0])
        self._active_cart_id = None
        self._favorites = {}
        logger.info("Deleted the last cart, favorites cleared")
        return Outcome.OK

    async def set_cart_public(self, cart_id: str, public: bool) -> Outcome:
        """Share or unshare a saved cart."""
        if self._user_id is None:
            return Outcome.AUTH_REQUIRED
        cart = next((c for c in self._saved_carts if c.id == cart_id), None)
        if cart is None:
            return Outcome.NOT_FOUND
        try:
            await asyncio.to_thread(
                self._carts.update_cart, cart_id, {"is_public": public},
            )
        except Exception as exc:
            logger.error(
                "Changing visibility of cart %s failed: %s", cart_id, exc,
                exc_info=True,
            )
            return Outcome.PERSISTENCE_FAILED
        cart.is_public = public
        return Outcome.OK

    async def open_shared_cart(self, cart_id: str) -> Outcome:
        """Show someone's public cart as the current favorites.

        The shared cart is not owned by the viewer, so it never becomes
        the active (write-through) cart.
        """
        try:
            cart = await asyncio.to_thread(
                self._carts.get_shared_cart, cart_id,
            )
        except Exception as exc:
            logger.warning(
                "Fetching shared cart %s failed: %s", cart_id, exc,
                exc_info=True,
            )
            return Outcome.NOT_FOUND
        if cart is None:
            return Outcome.NOT_FOUND

        self.writer.release()
        self._active_cart_id = None
        self._favorites = dict(cart.items)
        self._purchased = set()
        return Outcome.OK

    # ── Session ──────────────────────────────────────────

    async def sign_in(self, user_id: str) -> Outcome:
        """Bind *user_id* and load their profile and saved carts."""
        if self._user_id is not None and self._user_id != user_id:
            self.sign_out()
        self._user_id = user_id

        profile = await asyncio.to_thread(
            load_profile, self._profiles, user_id, self._clock(),
        )
        try:
            carts = await asyncio.to_thread(self._carts.list_carts, user_id)
        except Exception as exc:
            logger.warning(
                "Listing carts for %s failed: %s", user_id, exc,
                exc_info=True,
            )
            carts = []

        if self._user_id != user_id:
            logger.info("Session changed during sign-in of %s", user_id)
            return Outcome.OK

        self._profile = profile
        self._saved_carts = list(carts)
        known = {c.id for c in carts}
        if self._active_cart_id not in known:
            self._active_cart_id = None
        if self._active_cart_id is None and carts:
            self.load_cart(carts[0])
        logger.info(
            "Signed in %s (%s, %d saved carts)",
            user_id, self.tier.value, len(carts),
        )
        return Outcome.OK

    def sign_out(self) -> None:
        """Forget all user state locally; nothing is persisted."""
        self.writer.cancel()
        logger.info("Signed out %s", self._user_id)
        self._user_id = None
        self._profile = None
        self._favorites = {}
        self._saved_carts = []
        self._purchased = set()
        self._active_cart_id = None

    async def flush(self) -> bool:
        """Write any pending favorites snapshot immediately."""
        return await self.writer.flush()

    def close(self) -> None:
        """Cancel outstanding scheduled writes."""
        self.writer.cancel()
