# src/cli/runner.py

"""Headless CLI commands built on the catalog service and cart manager."""

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.table import Table

from src.config.settings import Settings
from src.filters.product_filter import CatalogRow
from src.models.product import Product
from src.services.cart_manager import CartManager, Outcome
from src.services.catalog_service import CatalogService
from src.services.price_stats import Direction, ProductDetail, cart_totals
from src.storage.base_store import StoreError
from src.storage.file_manager import FileManager
from src.storage.rest_store import RestStore
from src.storage.sqlite_store import SQLiteStore

logger = logging.getLogger("chango.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

_TREND_STYLE: dict[Direction, str] = {
    Direction.UP: "red",
    Direction.DOWN: "green",
    Direction.FLAT: "dim",
}


def build_store(backend: str | None = None) -> SQLiteStore | RestStore:
    """Instantiate the configured backend (``sqlite`` or ``rest``).

    Raises ``SystemExit`` on an unknown or misconfigured backend.
    """
    name = (backend or Settings.BACKEND).lower()
    if name == "sqlite":
        return SQLiteStore()
    if name == "rest":
        try:
            return RestStore()
        except StoreError as exc:
            _err.print(f"[red]{exc}[/red]")
            raise SystemExit(1) from exc
    _err.print(f"[red]Unknown backend: {name}[/red]")
    _err.print("[dim]Available: sqlite, rest[/dim]")
    raise SystemExit(1)


def _close(store: SQLiteStore | RestStore) -> None:
    if isinstance(store, SQLiteStore):
        store.close()


def _money(value: float) -> str:
    return f"${value:,.2f}" if value > 0 else "—"


def _rows_to_dicts(rows: list[CatalogRow]) -> list[dict[str, object]]:
    """Serialise catalog rows to plain dicts for JSON output."""
    return [
        {
            "id": r.product.id,
            "ticker": r.product.display_ticker,
            "name": r.product.name,
            "category": r.product.category,
            "prices": r.product.prices,
            "offers": list(r.product.offers),
            "min_price": r.stats.min_price,
            "reference_min": r.stats.reference_min,
            "spread": r.stats.percent_spread,
            "direction": r.stats.direction.value,
        }
        for r in rows
    ]


def _print_rows(rows: list[CatalogRow], title: str) -> None:
    table = Table(title=title, show_lines=False, title_style="bold cyan")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Ticker", style="bold")
    table.add_column("Product", max_width=50)
    table.add_column("Min", justify="right", style="green")
    table.add_column("Trend", justify="right")
    table.add_column("Offers", style="magenta")

    for r in rows:
        style = _TREND_STYLE[r.stats.direction]
        table.add_row(
            str(r.product.id),
            r.product.display_ticker,
            r.product.name,
            _money(r.stats.min_price),
            f"[{style}]{r.stats.direction.icon} {r.stats.percent_spread}%[/{style}]",
            ", ".join(r.product.offers),
        )
    Console().print(table)


async def run_list(
    search: str,
    tab: str,
    trend: str | None,
    output_format: str,
    backend: str | None = None,
) -> int:
    """Print the catalog with comparison statistics."""
    store = build_store(backend)
    try:
        catalog = CatalogService(store)
        snapshot = await catalog.load()
        for error in snapshot.errors:
            _err.print(f"[yellow]Warning: {error}[/yellow]")

        view = catalog.view(tab=tab, search=search, trend=trend)
        if not view.rows:
            _err.print("[yellow]No products found.[/yellow]")
            return 1

        _err.print(
            f"[green]✓ {len(view.rows)} of {view.total} products[/green]"
        )
        if output_format == "table":
            _print_rows(view.rows, f"Prices — {tab}")
        else:
            json.dump(
                _rows_to_dicts(view.rows),
                sys.stdout,
                ensure_ascii=False,
                indent=2,
            )
            sys.stdout.write("\n")
        return 0
    finally:
        _close(store)


def _print_detail(detail: ProductDetail, days: int) -> None:
    p = detail.product
    _err.print(
        f"[bold]{p.display_ticker}[/bold] {p.name}  "
        f"[dim]min {_money(detail.min_price)} · avg {_money(detail.avg_price)}[/dim]"
    )
    table = Table(title="Market comparison", title_style="bold cyan")
    table.add_column("Store", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Offer", style="magenta")
    for row in detail.stores:
        if not row.in_stock:
            price = "[dim]out of stock[/dim]"
        elif row.is_best:
            price = f"[bold green]{_money(row.price)}[/bold green]"
        else:
            price = _money(row.price)
        table.add_row(row.label, price, row.offer)
    Console().print(table)

    if detail.variation is None:
        _err.print(f"[dim]No price history for the last {days} days.[/dim]")
    else:
        v = detail.variation
        style = _TREND_STYLE[v.direction]
        _err.print(
            f"{days}d: {_money(v.first_price)} → {_money(v.last_price)} "
            f"[{style}]{v.percent}%[/{style}]"
        )


async def run_detail(
    product_id: int,
    days: int,
    output_format: str,
    backend: str | None = None,
) -> int:
    """Show one product's store comparison and history variation."""
    store = build_store(backend)
    try:
        catalog = CatalogService(store)
        await catalog.load()
        product = catalog.find(product_id)
        if product is None:
            _err.print(f"[red]Unknown product id {product_id}[/red]")
            return 1

        detail = await catalog.detail(product, days)
        if output_format == "table":
            _print_detail(detail, days)
        else:
            json.dump(
                {
                    "id": product.id,
                    "name": product.name,
                    "min_price": detail.min_price,
                    "avg_price": detail.avg_price,
                    "best_stores": detail.best_stores,
                    "stores": [
                        {
                            "store": r.label,
                            "price": r.price,
                            "offer": r.offer,
                            "best": r.is_best,
                        }
                        for r in detail.stores
                    ],
                    "variation": (
                        detail.variation.percent if detail.variation else None
                    ),
                    "history": [
                        {
                            "date": h.day.isoformat(),
                            "price": h.min_price,
                            "store": h.store,
                        }
                        for h in detail.history
                    ],
                },
                sys.stdout,
                ensure_ascii=False,
                indent=2,
            )
            sys.stdout.write("\n")
        return 0
    finally:
        _close(store)


@dataclass
class CartActions:
    """Cart operations requested on the command line, in apply order."""

    load: str | None = None
    toggle: list[int] = field(default_factory=lambda: list[int]())
    quantities: list[tuple[int, int]] = field(
        default_factory=lambda: list[tuple[int, int]]()
    )
    purchased: list[int] = field(default_factory=lambda: list[int]())
    save: str | None = None
    share: str | None = None
    delete: str | None = None
    open_shared: str | None = None
    export: str | None = None


def parse_quantity(raw: str) -> tuple[int, int]:
    """Parse ``ID:DELTA`` (e.g. ``42:+2``, ``42:-1``)."""
    product_id, _, delta = raw.partition(":")
    try:
        return int(product_id), int(delta)
    except ValueError:
        _err.print(f"[red]Bad quantity change '{raw}', expected ID:DELTA[/red]")
        raise SystemExit(1) from None


def _report(action: str, outcome: Outcome) -> bool:
    if outcome.ok:
        return True
    _err.print(f"[yellow]{action}: {outcome.message}[/yellow]")
    return False


def _print_cart(manager: CartManager, products: list[Product]) -> None:
    favorites = manager.favorites
    by_id = {p.id: p for p in products}
    table = Table(title="Chango", title_style="bold cyan")
    table.add_column("", width=2)
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Product")
    table.add_column("Qty", justify="right")
    for product_id, qty in favorites.items():
        product = by_id.get(product_id)
        table.add_row(
            "✓" if product_id in manager.purchased else "",
            str(product_id),
            product.name if product else "[dim]unknown[/dim]",
            str(qty),
        )
    Console().print(table)

    totals = Table(title="Total per store", title_style="bold cyan")
    totals.add_column("Store", style="bold")
    totals.add_column("Total", justify="right", style="green")
    totals.add_column("Missing", justify="right")
    for t in cart_totals(products, favorites):
        totals.add_row(t.label, _money(t.total), str(t.missing or ""))
    Console().print(totals)

    for cart in manager.saved_carts:
        marker = "*" if cart.id == manager.active_cart_id else " "
        shared = " (public)" if cart.is_public else ""
        _err.print(
            f"[dim]{marker} {cart.id}  {cart.title}{shared} "
            f"— {len(cart.items)} lines[/dim]"
        )


async def run_cart(
    user_id: str,
    actions: CartActions,
    backend: str | None = None,
) -> int:
    """Apply cart actions for *user_id*, sync, then show the cart."""
    store = build_store(backend)
    manager = CartManager(store, store)
    ok = True
    try:
        catalog = CatalogService(store)
        await catalog.load()
        await manager.sign_in(user_id)

        if actions.load is not None:
            cart = next(
                (c for c in manager.saved_carts if c.id == actions.load),
                None,
            )
            if cart is None:
                ok = _report("load", Outcome.NOT_FOUND) and ok
            else:
                manager.load_cart(cart)
        for product_id in actions.toggle:
            ok = _report(
                f"toggle {product_id}", manager.toggle_favorite(product_id),
            ) and ok
        for product_id, delta in actions.quantities:
            ok = _report(
                f"quantity {product_id}",
                manager.change_quantity(product_id, delta),
            ) and ok
        for product_id in actions.purchased:
            manager.toggle_purchased(product_id)
        if actions.save is not None:
            ok = _report("save", await manager.save_current_cart(actions.save)) and ok
        if actions.share is not None:
            ok = _report(
                "share", await manager.set_cart_public(actions.share, True),
            ) and ok
        if actions.delete is not None:
            ok = _report("delete", await manager.delete_cart(actions.delete)) and ok
        if actions.open_shared is not None:
            ok = _report(
                "open shared", await manager.open_shared_cart(actions.open_shared),
            ) and ok

        if not await manager.flush():
            _err.print(f"[yellow]{Outcome.PERSISTENCE_FAILED.message}[/yellow]")
            ok = False

        products = catalog.snapshot.products
        _print_cart(manager, products)

        if actions.export is not None:
            title = next(
                (c.title for c in manager.saved_carts
                 if c.id == manager.active_cart_id),
                "chango",
            )
            file_manager = FileManager()
            if actions.export == "tsv":
                sys.stdout.write(
                    file_manager.format_tsv(products, manager.favorites) + "\n"
                )
                return 0 if ok else 1
            try:
                if actions.export == "csv":
                    path = file_manager.export_cart_csv(
                        title, products, manager.favorites, manager.purchased,
                    )
                else:
                    path = file_manager.save_cart_json(
                        title, products, manager.favorites,
                    )
                _err.print(f"[dim]Exported → {path}[/dim]")
            except OSError as exc:
                logger.error("Cart export failed: %s", exc, exc_info=True)
                _err.print(f"[red]Export failed: {exc}[/red]")
                ok = False
        return 0 if ok else 1
    finally:
        manager.close()
        _close(store)


def run_import_catalog(path: str) -> int:
    """Import a JSON catalog dump into the local SQLite store."""
    filepath = Path(path)
    if not filepath.exists():
        _err.print(f"[red]File not found: {filepath}[/red]")
        return 1

    store = SQLiteStore()
    try:
        products, history, profiles = store.import_catalog(filepath)
    finally:
        store.close()
    if not products and not history and not profiles:
        _err.print("[yellow]Nothing imported.[/yellow]")
        return 1
    _err.print(
        f"[green]✓ Imported {products:,} products,"
        f" {history:,} history rows and {profiles:,} profiles[/green]"
    )
    return 0


def run_record_prices() -> int:
    """Record today's cheapest price of every product as history."""
    store = SQLiteStore()
    try:
        count = store.record_daily_minimums(store.list_products())
    finally:
        store.close()
    _err.print(f"[green]✓ Recorded {count:,} daily minimums[/green]")
    return 0
