# src/filters/product_filter.py

"""Catalog list filtering by tab, search term and trend."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from src.models.product import Product
from src.services.price_stats import ComparisonRecord

logger = logging.getLogger("chango.filters")


@dataclass(frozen=True)
class CatalogRow:
    """A product together with its comparison record for one pass."""

    product: Product
    stats: ComparisonRecord


def _category(row: CatalogRow) -> str:
    return row.product.category.lower()


class ProductFilter:
    """Narrow catalog rows the way the list views do."""

    @staticmethod
    def filter_by_tab(
        rows: list[CatalogRow],
        tab: str,
        favorites: Mapping[int, int] | None = None,
    ) -> list[CatalogRow]:
        """Keep rows belonging to *tab*.

        ``home`` keeps everything; ``favs`` keeps favorited products.
        """
        if tab == "carnes":
            return [r for r in rows if "carne" in _category(r)]
        if tab == "verdu":
            return [
                r for r in rows
                if "verdu" in _category(r) or "fruta" in _category(r)
            ]
        if tab == "varios":
            return [
                r for r in rows
                if "carne" not in _category(r)
                and "verdu" not in _category(r)
            ]
        if tab == "favs":
            favs = favorites or {}
            return [r for r in rows if r.product.id in favs]
        return rows

    @staticmethod
    def filter_by_search(
        rows: list[CatalogRow],
        term: str,
    ) -> tuple[list[CatalogRow], int]:
        """Keep rows whose name or ticker contains *term*.

        Returns the kept rows and the count of excluded rows.
        """
        needle = term.strip().lower()
        if not needle:
            return rows, 0
        kept = [
            r for r in rows
            if needle in r.product.name.lower()
            or (r.product.ticker and needle in r.product.ticker.lower())
        ]
        excluded = len(rows) - len(kept)
        if excluded:
            logger.debug(
                "Search '%s' excluded %d products", term, excluded,
            )
        return kept, excluded

    @staticmethod
    def filter_by_trend(
        rows: list[CatalogRow],
        trend: str | None,
        tab: str = "home",
    ) -> list[CatalogRow]:
        """Keep rising (``up``) or falling (``down``) products.

        The cart tab ignores the trend filter.
        """
        if trend is None or tab == "favs":
            return rows
        if trend == "up":
            return [r for r in rows if r.stats.is_up]
        if trend == "down":
            return [r for r in rows if r.stats.is_down]
        logger.warning("Unknown trend filter '%s' ignored", trend)
        return rows
