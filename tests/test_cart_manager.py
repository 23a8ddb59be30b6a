# tests/test_cart_manager.py

"""Tests for the favorites/cart reconciliation manager."""

import asyncio
import itertools
import threading
import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from src.models.cart import FavoritesMap, Profile, SavedCart, Tier
from src.services.cart_manager import CartManager, Outcome
from src.storage.base_store import CartStore, ProfileProvider, StoreError

NOW = datetime(2026, 6, 1, 12, tzinfo=timezone.utc)
DEBOUNCE = 0.01


class FakeBackend(CartStore, ProfileProvider):
    """In-memory cart/profile store with failure switches."""

    def __init__(self) -> None:
        self.profiles: dict[str, Profile] = {}
        self.carts: dict[str, SavedCart] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.deleted: list[str] = []
        self.subscription_writes: list[tuple[str, Tier]] = []
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False
        self.fail_list = False
        # when set, delete_cart blocks until the event fires
        self.delete_gate: threading.Event | None = None
        self._seq = itertools.count(1)
        self._ids = itertools.count(1)

    def _stamp(self) -> datetime:
        return NOW + timedelta(seconds=next(self._seq))

    @staticmethod
    def _copy(cart: SavedCart) -> SavedCart:
        return replace(cart, items=dict(cart.items))

    def add_cart(self, cart_id: str, user_id: str, items: FavoritesMap,
                 public: bool = False) -> SavedCart:
        ts = self._stamp()
        cart = SavedCart(id=cart_id, user_id=user_id, title=cart_id,
                         items=dict(items), created_at=ts, updated_at=ts,
                         is_public=public)
        self.carts[cart_id] = cart
        return cart

    # ProfileProvider
    def get_profile(self, user_id: str) -> Profile | None:
        return self.profiles.get(user_id)

    def set_subscription(self, user_id: str, tier: Tier) -> None:
        self.subscription_writes.append((user_id, tier))

    # CartStore
    def list_carts(self, user_id: str) -> list[SavedCart]:
        if self.fail_list:
            raise StoreError("list failed")
        carts = [self._copy(c) for c in self.carts.values()
                 if c.user_id == user_id]
        return sorted(carts, key=lambda c: c.updated_at or NOW, reverse=True)

    def create_cart(self, user_id: str, title: str,
                    items: FavoritesMap) -> SavedCart:
        if self.fail_create:
            raise StoreError("create failed")
        cart = self.add_cart(f"cart-{next(self._ids)}", user_id, items)
        cart.title = title
        return self._copy(cart)

    def update_cart(self, cart_id: str,
                    fields: dict[str, Any]) -> SavedCart:
        if self.fail_update:
            raise StoreError("update failed")
        self.updates.append((cart_id, dict(fields)))
        cart = self.carts[cart_id]
        if "items" in fields:
            cart.items = dict(fields["items"])
        if "is_public" in fields:
            cart.is_public = bool(fields["is_public"])
        cart.updated_at = self._stamp()
        return self._copy(cart)

    def delete_cart(self, cart_id: str) -> None:
        if self.delete_gate is not None:
            self.delete_gate.wait(5)
        if self.fail_delete:
            raise StoreError("delete failed")
        self.deleted.append(cart_id)
        self.carts.pop(cart_id, None)

    def get_shared_cart(self, cart_id: str) -> SavedCart | None:
        cart = self.carts.get(cart_id)
        if cart is None or not cart.is_public:
            return None
        return self._copy(cart)


def _pro(user_id: str = "u1") -> Profile:
    return Profile(id=user_id, subscription=Tier.PRO,
                   subscription_end=NOW + timedelta(days=30))


async def _settle() -> None:
    """Let debounce timers fire and threaded writes finish."""
    await asyncio.sleep(DEBOUNCE * 10)


class _ManagerCase(unittest.IsolatedAsyncioTestCase):
    """Shared setup: a manager over a fake backend."""

    def setUp(self) -> None:
        self.backend = FakeBackend()
        self.manager = CartManager(
            self.backend, self.backend,
            clock=lambda: NOW, debounce=DEBOUNCE,
        )

    async def asyncTearDown(self) -> None:
        self.manager.close()


class TestFavorites(_ManagerCase):
    """toggle_favorite / change_quantity semantics."""

    async def test_toggle_requires_user(self) -> None:
        """Without a signed-in user nothing changes."""
        self.assertIs(self.manager.toggle_favorite(1), Outcome.AUTH_REQUIRED)
        self.assertEqual(self.manager.favorites, {})
        self.assertTrue(Outcome.AUTH_REQUIRED.message)

    async def test_toggle_on_and_off(self) -> None:
        await self.manager.sign_in("u1")
        self.assertIs(self.manager.toggle_favorite(5), Outcome.OK)
        self.assertEqual(self.manager.favorites, {5: 1})
        self.manager.toggle_favorite(5)
        self.assertEqual(self.manager.favorites, {})

    async def test_double_toggle_restores_state(self) -> None:
        """Two toggles of one id return to the original map."""
        await self.manager.sign_in("u1")
        self.manager.change_quantity(1, 3)
        before = self.manager.favorites
        self.manager.toggle_favorite(2)
        self.manager.toggle_favorite(2)
        self.assertEqual(self.manager.favorites, before)

    async def test_free_limit_blocks_sixth_line(self) -> None:
        """A free user with 5 lines cannot add a 6th."""
        await self.manager.sign_in("u1")
        for product_id in range(1, 6):
            self.assertIs(self.manager.toggle_favorite(product_id), Outcome.OK)
        self.assertIs(self.manager.toggle_favorite(6), Outcome.FAVORITES_LIMIT)
        self.assertNotIn(6, self.manager.favorites)
        self.assertEqual(len(self.manager.favorites), 5)

    async def test_free_limit_still_allows_removal(self) -> None:
        await self.manager.sign_in("u1")
        for product_id in range(1, 6):
            self.manager.toggle_favorite(product_id)
        self.assertIs(self.manager.toggle_favorite(3), Outcome.OK)
        self.assertNotIn(3, self.manager.favorites)

    async def test_pro_has_no_line_limit(self) -> None:
        """An active PRO user can add a 6th line."""
        self.backend.profiles["u1"] = _pro()
        await self.manager.sign_in("u1")
        for product_id in range(1, 7):
            self.assertIs(self.manager.toggle_favorite(product_id), Outcome.OK)
        self.assertEqual(len(self.manager.favorites), 6)

    async def test_expired_pro_is_limited(self) -> None:
        self.backend.profiles["u1"] = Profile(
            id="u1", subscription=Tier.PRO,
            subscription_end=NOW - timedelta(days=1),
        )
        await self.manager.sign_in("u1")
        for product_id in range(1, 6):
            self.manager.toggle_favorite(product_id)
        self.assertIs(self.manager.toggle_favorite(6), Outcome.FAVORITES_LIMIT)

    async def test_quantity_example(self) -> None:
        """{} +1 on 42 gives {42: 1}; -1 gives {}."""
        self.manager.change_quantity(42, 1)
        self.assertEqual(self.manager.favorites, {42: 1})
        self.manager.change_quantity(42, -1)
        self.assertEqual(self.manager.favorites, {})

    async def test_quantity_running_total(self) -> None:
        """The entry exists exactly while the running total is positive."""
        total = 0
        for delta in (2, 3, -4, -1, -2, 5, 1, -6):
            self.manager.change_quantity(9, delta)
            total = max(total + delta, 0)
            if total > 0:
                self.assertEqual(self.manager.favorites, {9: total})
            else:
                self.assertNotIn(9, self.manager.favorites)

    async def test_quantity_never_zero(self) -> None:
        self.manager.change_quantity(1, 2)
        self.manager.change_quantity(1, -2)
        self.assertNotIn(1, self.manager.favorites)
        self.assertNotIn(0, self.manager.favorites.values())

    async def test_quantity_increase_ignores_limit(self) -> None:
        """Raising an existing line works at the free limit."""
        await self.manager.sign_in("u1")
        for product_id in range(1, 6):
            self.manager.toggle_favorite(product_id)
        self.assertIs(self.manager.change_quantity(3, 4), Outcome.OK)
        self.assertEqual(self.manager.favorites[3], 5)

    async def test_quantity_new_line_respects_limit(self) -> None:
        await self.manager.sign_in("u1")
        for product_id in range(1, 6):
            self.manager.toggle_favorite(product_id)
        self.assertIs(self.manager.change_quantity(6, 1),
                      Outcome.FAVORITES_LIMIT)

    async def test_favorites_snapshot_is_a_copy(self) -> None:
        """Mutating the returned map does not touch manager state."""
        self.manager.change_quantity(1, 1)
        snapshot = self.manager.favorites
        snapshot[2] = 5
        self.assertEqual(self.manager.favorites, {1: 1})


class TestPurchased(_ManagerCase):
    """Purchased checklist."""

    async def test_toggle_membership(self) -> None:
        self.manager.toggle_purchased(3)
        self.assertEqual(self.manager.purchased, frozenset({3}))
        self.manager.toggle_purchased(3)
        self.assertEqual(self.manager.purchased, frozenset())

    async def test_independent_of_favorites(self) -> None:
        self.manager.toggle_purchased(99)
        self.assertEqual(self.manager.favorites, {})

    async def test_cleared_on_load(self) -> None:
        self.manager.toggle_purchased(3)
        self.manager.load_cart(SavedCart(id="c", user_id="u1", title="x"))
        self.assertEqual(self.manager.purchased, frozenset())


class TestSavedCarts(_ManagerCase):
    """save/load/delete of saved carts."""

    async def test_save_requires_user(self) -> None:
        self.assertIs(await self.manager.save_current_cart("x"),
                      Outcome.AUTH_REQUIRED)

    async def test_save_requires_pro(self) -> None:
        await self.manager.sign_in("u1")
        self.assertIs(await self.manager.save_current_cart("x"),
                      Outcome.PRO_REQUIRED)
        self.assertEqual(self.backend.carts, {})

    async def test_save_binds_new_cart(self) -> None:
        self.backend.profiles["u1"] = _pro()
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(1)
        self.assertIs(await self.manager.save_current_cart("Semana"),
                      Outcome.OK)
        carts = self.manager.saved_carts
        self.assertEqual(len(carts), 1)
        self.assertEqual(carts[0].title, "Semana")
        self.assertEqual(carts[0].items, {1: 1})
        self.assertEqual(self.manager.active_cart_id, carts[0].id)

    async def test_save_prepends(self) -> None:
        self.backend.profiles["u1"] = _pro()
        await self.manager.sign_in("u1")
        await self.manager.save_current_cart("A")
        await self.manager.save_current_cart("B")
        titles = [c.title for c in self.manager.saved_carts]
        self.assertEqual(titles, ["B", "A"])

    async def test_never_more_than_two_carts(self) -> None:
        """Repeated saves stop at the cart limit."""
        self.backend.profiles["u1"] = _pro()
        await self.manager.sign_in("u1")
        outcomes = [await self.manager.save_current_cart(f"L{i}")
                    for i in range(4)]
        self.assertEqual(outcomes[:2], [Outcome.OK, Outcome.OK])
        self.assertEqual(outcomes[2:], [Outcome.CARTS_LIMIT] * 2)
        self.assertEqual(len(self.manager.saved_carts), 2)
        self.assertFalse(self.manager.can_save_cart)

    async def test_concurrent_saves_respect_limit(self) -> None:
        """Saves in flight count toward the limit."""
        self.backend.profiles["u1"] = _pro()
        await self.manager.sign_in("u1")
        outcomes = await asyncio.gather(
            *(self.manager.save_current_cart(f"L{i}") for i in range(3))
        )
        self.assertEqual(outcomes.count(Outcome.OK), 2)
        self.assertLessEqual(len(self.manager.saved_carts), 2)

    async def test_save_failure_keeps_local_state(self) -> None:
        self.backend.profiles["u1"] = _pro()
        self.backend.fail_create = True
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(1)
        outcome = await self.manager.save_current_cart("x")
        self.assertIs(outcome, Outcome.PERSISTENCE_FAILED)
        self.assertEqual(self.manager.favorites, {1: 1})
        self.assertIsNone(self.manager.active_cart_id)
        self.assertEqual(self.manager.saved_carts, ())

    async def test_load_is_full_replace(self) -> None:
        """Loading replaces favorites rather than merging."""
        self.manager.change_quantity(1, 3)
        cart = SavedCart(id="c9", user_id="u1", title="x", items={2: 2})
        self.manager.load_cart(cart)
        self.assertEqual(self.manager.favorites, {2: 2})
        self.assertEqual(self.manager.active_cart_id, "c9")

    async def test_delete_only_active_cart_clears(self) -> None:
        """Deleting the only, active cart empties favorites."""
        self.backend.add_cart("c1", "u1", {1: 2})
        await self.manager.sign_in("u1")
        self.assertEqual(self.manager.active_cart_id, "c1")
        self.assertIs(await self.manager.delete_cart("c1"), Outcome.OK)
        self.assertEqual(self.manager.favorites, {})
        self.assertIsNone(self.manager.active_cart_id)
        self.assertEqual(self.manager.saved_carts, ())
        self.assertEqual(self.backend.deleted, ["c1"])

    async def test_delete_active_promotes_most_recent(self) -> None:
        self.backend.add_cart("old", "u1", {1: 1})
        self.backend.add_cart("mid", "u1", {2: 1})
        self.backend.add_cart("new", "u1", {3: 1})
        await self.manager.sign_in("u1")
        self.assertEqual(self.manager.active_cart_id, "new")
        self.manager.toggle_purchased(3)
        await self.manager.delete_cart("new")
        self.assertEqual(self.manager.active_cart_id, "mid")
        self.assertEqual(self.manager.favorites, {2: 1})
        self.assertEqual(self.manager.purchased, frozenset())

    async def test_delete_inactive_keeps_binding(self) -> None:
        self.backend.add_cart("a", "u1", {1: 1})
        self.backend.add_cart("b", "u1", {2: 1})
        await self.manager.sign_in("u1")
        await self.manager.delete_cart("a")
        self.assertEqual(self.manager.active_cart_id, "b")
        self.assertEqual(self.manager.favorites, {2: 1})

    async def test_delete_failure_keeps_cart(self) -> None:
        self.backend.add_cart("c1", "u1", {1: 1})
        await self.manager.sign_in("u1")
        self.backend.fail_delete = True
        outcome = await self.manager.delete_cart("c1")
        self.assertIs(outcome, Outcome.PERSISTENCE_FAILED)
        self.assertEqual(len(self.manager.saved_carts), 1)
        self.assertEqual(self.manager.active_cart_id, "c1")

    async def test_share_and_open_shared(self) -> None:
        """A public cart can be opened by another user, unbound."""
        self.backend.add_cart("c1", "owner", {4: 2})
        await self.manager.sign_in("owner")
        self.assertIs(await self.manager.set_cart_public("c1", True),
                      Outcome.OK)
        self.assertTrue(self.manager.saved_carts[0].is_public)

        viewer = CartManager(self.backend, self.backend,
                             clock=lambda: NOW, debounce=DEBOUNCE)
        await viewer.sign_in("viewer")
        self.assertIs(await viewer.open_shared_cart("c1"), Outcome.OK)
        self.assertEqual(viewer.favorites, {4: 2})
        self.assertIsNone(viewer.active_cart_id)

    async def test_private_cart_not_shared(self) -> None:
        self.backend.add_cart("c1", "owner", {4: 2})
        self.assertIs(await self.manager.open_shared_cart("c1"),
                      Outcome.NOT_FOUND)


class TestWriteThrough(_ManagerCase):
    """Debounced persistence of the active cart."""

    async def test_edits_coalesce_into_one_write(self) -> None:
        """Only the settled state is written."""
        self.backend.add_cart("c1", "u1", {})
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(1)
        self.manager.change_quantity(1, 2)
        self.manager.toggle_favorite(2)
        await _settle()
        self.assertEqual(self.backend.updates, [("c1", {"items": {1: 3, 2: 1}})])

    async def test_no_write_without_active_cart(self) -> None:
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(1)
        await _settle()
        self.assertEqual(self.backend.updates, [])

    async def test_write_failure_is_not_rolled_back(self) -> None:
        self.backend.add_cart("c1", "u1", {})
        await self.manager.sign_in("u1")
        self.backend.fail_update = True
        self.manager.toggle_favorite(1)
        await _settle()
        self.assertEqual(self.manager.favorites, {1: 1})
        self.assertEqual(self.manager.writer.failed_writes, 1)

    async def test_switching_cart_writes_pending_to_previous_cart(self) -> None:
        """Edits pending at a switch land on the cart they were made on."""
        a = self.backend.add_cart("a", "u1", {})
        b = self.backend.add_cart("b", "u1", {9: 1})
        await self.manager.sign_in("u1")
        self.assertEqual(self.manager.active_cart_id, "b")
        self.manager.toggle_favorite(1)
        self.manager.load_cart(self.manager.saved_carts[1])
        await _settle()
        self.assertEqual(self.backend.updates, [("b", {"items": {9: 1, 1: 1}})])
        self.assertEqual(a.items, {})
        local_b = next(c for c in self.manager.saved_carts if c.id == "b")
        self.assertEqual(local_b.items, b.items)

    async def test_switch_then_edit_keeps_carts_apart(self) -> None:
        """Edits after a switch go to the new cart only."""
        a = self.backend.add_cart("a", "u1", {})
        b = self.backend.add_cart("b", "u1", {9: 1})
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(1)
        self.manager.load_cart(self.backend.carts["a"])
        self.manager.toggle_favorite(2)
        await _settle()
        self.assertEqual(b.items, {9: 1, 1: 1})
        self.assertEqual(a.items, {2: 1})

    async def test_save_writes_pending_to_previous_cart(self) -> None:
        self.backend.profiles["u1"] = _pro()
        old = self.backend.add_cart("old", "u1", {})
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(4)
        self.assertIs(await self.manager.save_current_cart("Nueva"),
                      Outcome.OK)
        await _settle()
        self.assertEqual(old.items, {4: 1})
        self.assertNotEqual(self.manager.active_cart_id, "old")

    async def test_open_shared_writes_pending_to_active_cart(self) -> None:
        mine = self.backend.add_cart("mine", "u1", {})
        self.backend.add_cart("theirs", "u2", {7: 1}, public=True)
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(3)
        await self.manager.open_shared_cart("theirs")
        await _settle()
        self.assertEqual(mine.items, {3: 1})
        self.assertEqual(self.manager.favorites, {7: 1})

    async def test_flush_waits_for_released_writes(self) -> None:
        b = self.backend.add_cart("b", "u1", {})
        self.backend.add_cart("c", "u1", {})
        manager = CartManager(self.backend, self.backend,
                              clock=lambda: NOW, debounce=60)
        await manager.sign_in("u1")
        manager.toggle_favorite(5)
        manager.load_cart(self.backend.carts["b"])
        self.assertTrue(await manager.flush())
        self.assertEqual(self.backend.carts["c"].items, {5: 1})
        self.assertEqual(b.items, {})
        manager.close()

    async def test_timer_during_delete_does_not_touch_deleted_cart(self) -> None:
        """No write targets the active cart while it is being deleted."""
        self.backend.add_cart("c1", "u1", {})
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(1)
        self.backend.delete_gate = threading.Event()
        task = asyncio.create_task(self.manager.delete_cart("c1"))
        # the debounce window elapses while the delete is blocked
        await _settle()
        self.backend.delete_gate.set()
        self.assertIs(await task, Outcome.OK)
        await _settle()
        self.assertEqual(self.backend.updates, [])

    async def test_failed_delete_keeps_pending_edits(self) -> None:
        c1 = self.backend.add_cart("c1", "u1", {})
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(1)
        self.backend.fail_delete = True
        outcome = await self.manager.delete_cart("c1")
        self.assertIs(outcome, Outcome.PERSISTENCE_FAILED)
        await _settle()
        self.assertEqual(c1.items, {1: 1})

    async def test_sign_out_cancels_pending_write(self) -> None:
        self.backend.add_cart("c1", "u1", {})
        await self.manager.sign_in("u1")
        self.manager.toggle_favorite(1)
        self.manager.sign_out()
        await _settle()
        self.assertEqual(self.backend.updates, [])

    async def test_flush_writes_immediately(self) -> None:
        self.backend.add_cart("c1", "u1", {})
        manager = CartManager(self.backend, self.backend,
                              clock=lambda: NOW, debounce=60)
        await manager.sign_in("u1")
        manager.toggle_favorite(7)
        self.assertTrue(await manager.flush())
        self.assertEqual(self.backend.carts["c1"].items, {7: 1})
        manager.close()

    async def test_local_mirror_tracks_edits(self) -> None:
        """Reloading a cart edited this session shows the edits."""
        self.backend.add_cart("a", "u1", {1: 1})
        self.backend.add_cart("b", "u1", {2: 1})
        await self.manager.sign_in("u1")
        self.manager.change_quantity(2, 1)
        await _settle()
        other = next(c for c in self.manager.saved_carts if c.id == "a")
        self.manager.load_cart(other)
        again = next(c for c in self.manager.saved_carts if c.id == "b")
        self.assertEqual(again.items, {2: 2})


class TestSession(_ManagerCase):
    """sign_in / sign_out transitions."""

    async def test_sign_in_adopts_most_recent_cart(self) -> None:
        self.backend.add_cart("old", "u1", {1: 1})
        self.backend.add_cart("new", "u1", {2: 3})
        await self.manager.sign_in("u1")
        self.assertEqual(self.manager.active_cart_id, "new")
        self.assertEqual(self.manager.favorites, {2: 3})
        self.assertEqual([c.id for c in self.manager.saved_carts],
                         ["new", "old"])

    async def test_sign_in_keeps_known_active_cart(self) -> None:
        self.backend.add_cart("a", "u1", {1: 1})
        self.backend.add_cart("b", "u1", {2: 1})
        await self.manager.sign_in("u1")
        self.manager.load_cart(self.backend.carts["a"])
        await self.manager.sign_in("u1")
        self.assertEqual(self.manager.active_cart_id, "a")

    async def test_sign_in_falls_back_on_list_failure(self) -> None:
        self.backend.fail_list = True
        self.assertIs(await self.manager.sign_in("u1"), Outcome.OK)
        self.assertEqual(self.manager.saved_carts, ())
        self.assertEqual(self.manager.user_id, "u1")

    async def test_sign_in_downgrades_expired_pro(self) -> None:
        self.backend.profiles["u1"] = Profile(
            id="u1", subscription=Tier.PRO,
            subscription_end=NOW - timedelta(hours=1),
        )
        await self.manager.sign_in("u1")
        self.assertIs(self.manager.tier, Tier.FREE)
        self.assertEqual(self.backend.subscription_writes, [("u1", Tier.FREE)])

    async def test_sign_out_resets_everything(self) -> None:
        self.backend.add_cart("c1", "u1", {1: 1})
        await self.manager.sign_in("u1")
        self.manager.toggle_purchased(1)
        self.manager.sign_out()
        self.assertEqual(self.manager.favorites, {})
        self.assertEqual(self.manager.saved_carts, ())
        self.assertEqual(self.manager.purchased, frozenset())
        self.assertIsNone(self.manager.active_cart_id)
        self.assertIsNone(self.manager.user_id)
        self.assertEqual(self.backend.updates, [])
        self.assertEqual(self.backend.deleted, [])

    async def test_switching_user_resets_state(self) -> None:
        self.backend.add_cart("c1", "u1", {1: 1})
        await self.manager.sign_in("u1")
        await self.manager.sign_in("u2")
        self.assertEqual(self.manager.favorites, {})
        self.assertIsNone(self.manager.active_cart_id)


if __name__ == "__main__":
    unittest.main()
