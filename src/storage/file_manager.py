# src/storage/file_manager.py

"""Writes cart shopping lists to disk."""

import csv
import json
import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

from src.config.settings import Settings
from src.models.product import Product
from src.services.price_stats import best_stores, cart_totals, positive_prices

logger = logging.getLogger("chango.storage")


def _cart_lines(
    products: list[Product],
    favorites: Mapping[int, int],
) -> list[dict[str, object]]:
    """One dict per favorited product, cheapest unit price first."""
    keyed: list[tuple[float, dict[str, object]]] = []
    for p in products:
        qty = favorites.get(p.id, 0)
        if qty <= 0:
            continue
        available = positive_prices(p.prices.values())
        unit = min(available) if available else 0.0
        stores = best_stores(p)
        keyed.append((unit or float("inf"), {
            "id": p.id,
            "name": p.name,
            "quantity": qty,
            "best_price": unit,
            "best_store": Settings.store_label(stores[0]) if stores else "",
            "subtotal": round(unit * qty, 2),
        }))
    # out-of-stock lines go last
    keyed.sort(key=lambda pair: pair[0])
    return [line for _unit, line in keyed]


class FileManager:
    """Exports carts as JSON or CSV files."""

    def __init__(self) -> None:
        self.results_dir: Path = Settings.RESULTS_DIR
        self.results_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("FileManager initialised, results_dir=%s", self.results_dir)

    def _target(self, title: str, suffix: str) -> Path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        slug = title.strip().replace(" ", "_").replace("/", "_") or "cart"
        return self.results_dir / f"cart_{slug}_{timestamp}.{suffix}"

    def save_cart_json(
        self,
        title: str,
        products: list[Product],
        favorites: Mapping[int, int],
    ) -> Path:
        """Save the cart lines and per-store totals as JSON."""
        filepath = self._target(title, "json")
        data = {
            "title": title,
            "lines": _cart_lines(products, favorites),
            "totals": [
                {
                    "store": t.label,
                    "total": t.total,
                    "missing": t.missing,
                }
                for t in cart_totals(products, favorites)
            ],
        }
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

        logger.info("Saved cart '%s' to %s", title, filepath)
        return filepath

    def export_cart_csv(
        self,
        title: str,
        products: list[Product],
        favorites: Mapping[int, int],
        purchased: frozenset[int] = frozenset(),
    ) -> Path:
        """Export a printable shopping checklist."""
        filepath = self._target(title, "csv")
        with open(filepath, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(
                ["Done", "Product", "Qty", "Best Price", "Store", "Subtotal"]
            )
            for line in _cart_lines(products, favorites):
                writer.writerow([
                    "x" if line["id"] in purchased else "",
                    line["name"],
                    line["quantity"],
                    line["best_price"],
                    line["best_store"],
                    line["subtotal"],
                ])

        logger.info("Exported cart '%s' to %s", title, filepath)
        return filepath

    def format_tsv(
        self,
        products: list[Product],
        favorites: Mapping[int, int],
    ) -> str:
        """Format the cart as tab-separated text."""
        rows: list[str] = ["Product\tQty\tBest Price\tStore"]
        for line in _cart_lines(products, favorites):
            rows.append(
                f"{line['name']}\t{line['quantity']}"
                f"\t{line['best_price']}\t{line['best_store']}"
            )
        return "\n".join(rows)
