# src/services/write_scheduler.py

"""Debounced write-through of favorites to the active saved cart."""

import asyncio
import logging
from collections.abc import Callable

from src.config.settings import Settings
from src.models.cart import FavoritesMap
from src.storage.base_store import CartStore

logger = logging.getLogger("chango.write_through")

# (user id, cart id) the write was scheduled for
Binding = tuple[str, str]


class WriteScheduler:
    """Coalesces favorites edits into one cart update per quiet period.

    ``schedule()`` captures the binding and a snapshot of the items and
    (re)starts the quiescence timer.  When the timer fires the snapshot
    is written only if the owner's current binding still matches the
    captured one.  ``release()`` is called by the owner before it
    rebinds: the pending snapshot then goes to the cart it was captured
    for, right away, whatever the binding becomes.  Writes are
    serialized so an older snapshot can never land after a newer one.
    """

    def __init__(
        self,
        store: CartStore,
        current_binding: Callable[[], Binding | None],
        delay: float | None = None,
    ) -> None:
        self._store = store
        self._current_binding = current_binding
        self._delay = (
            Settings.WRITE_DEBOUNCE_SECONDS if delay is None else delay
        )
        self._pending: tuple[Binding, FavoritesMap] | None = None
        self._timer: asyncio.Task[None] | None = None
        self._released: list[tuple[Binding, FavoritesMap]] = []
        self._release_tasks: set[asyncio.Task[bool]] = set()
        self._write_lock = asyncio.Lock()
        self.completed_writes: int = 0
        self.failed_writes: int = 0

    @property
    def has_pending(self) -> bool:
        return (
            self._pending is not None
            or bool(self._released)
            or bool(self._release_tasks)
        )

    def schedule(self, binding: Binding, items: FavoritesMap) -> None:
        """Queue *items* for *binding*, restarting the timer."""
        self._pending = (binding, dict(items))
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(
                "No running loop, write for cart %s held until flush",
                binding[1],
            )
            return
        self._timer = loop.create_task(self._fire_after_delay())

    def release(self) -> None:
        """Write the pending snapshot to its captured binding now."""
        self._cancel_timer()
        pending, self._pending = self._pending, None
        if pending is None:
            return
        logger.debug("Releasing pending write for cart %s", pending[0][1])
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._released.append(pending)
            return
        task = loop.create_task(self._write(*pending, check_binding=False))
        self._release_tasks.add(task)
        task.add_done_callback(self._release_tasks.discard)

    def cancel(self) -> None:
        """Drop any pending snapshot and its timer.

        Released writes already in flight are left to finish.
        """
        if self._pending is not None:
            logger.debug(
                "Cancelled pending write for cart %s", self._pending[0][1],
            )
        self._pending = None
        self._released.clear()
        self._cancel_timer()

    async def flush(self) -> bool:
        """Write everything outstanding now. True if nothing failed."""
        self._cancel_timer()
        ok = True
        released, self._released = self._released, []
        for binding, items in released:
            ok = await self._write(binding, items, check_binding=False) and ok
        if self._release_tasks:
            results = await asyncio.gather(*self._release_tasks)
            ok = all(results) and ok
        pending, self._pending = self._pending, None
        if pending is not None:
            ok = await self._write(*pending) and ok
        return ok

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self._delay)
        # past this point a new schedule() must not cancel the write
        self._timer = None
        pending, self._pending = self._pending, None
        if pending is not None:
            await self._write(*pending)

    async def _write(
        self,
        binding: Binding,
        items: FavoritesMap,
        check_binding: bool = True,
    ) -> bool:
        async with self._write_lock:
            if check_binding and self._current_binding() != binding:
                logger.info(
                    "Skipping stale write for cart %s (binding changed)",
                    binding[1],
                )
                return True
            try:
                await asyncio.to_thread(
                    self._store.update_cart, binding[1], {"items": items},
                )
            except Exception as exc:
                self.failed_writes += 1
                logger.error(
                    "Write-through to cart %s failed: %s", binding[1], exc,
                    exc_info=True,
                )
                return False
            self.completed_writes += 1
            logger.debug(
                "Wrote %d items to cart %s", len(items), binding[1],
            )
            return True
