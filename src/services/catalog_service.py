# src/services/catalog_service.py

"""Loads the catalog and turns it into comparison rows."""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from src.config.settings import Settings
from src.filters.product_filter import CatalogRow, ProductFilter
from src.models.price_snapshot import PriceHistoryPoint
from src.models.product import Product
from src.services.price_stats import (
    ProductDetail,
    product_detail,
    product_stats,
    reference_minimums,
)
from src.storage.base_store import CatalogProvider

logger = logging.getLogger("chango.catalog")


@dataclass
class CatalogSnapshot:
    """Products and recent history fetched together."""

    products: list[Product] = field(
        default_factory=lambda: list[Product]()
    )
    history: list[PriceHistoryPoint] = field(
        default_factory=lambda: list[PriceHistoryPoint]()
    )
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )


@dataclass
class CatalogView:
    """Filtered rows for one render pass."""

    rows: list[CatalogRow] = field(
        default_factory=lambda: list[CatalogRow]()
    )
    total: int = 0
    search_excluded: int = 0


class CatalogService:
    """Fetches catalog data and derives comparison rows from it."""

    def __init__(self, provider: CatalogProvider) -> None:
        self._provider = provider
        self.snapshot = CatalogSnapshot()

    async def load(
        self,
        lookback_days: int | None = None,
    ) -> CatalogSnapshot:
        """Fetch products and the reference history concurrently.

        A failing fetch falls back to an empty collection; the error
        text is kept on the snapshot.
        """
        days = lookback_days or Settings.REFERENCE_LOOKBACK_DAYS
        products, history = await asyncio.gather(
            asyncio.to_thread(self._provider.list_products),
            asyncio.to_thread(
                self._provider.list_recent_price_history, days,
            ),
            return_exceptions=True,
        )

        snapshot = CatalogSnapshot()
        if isinstance(products, BaseException):
            snapshot.errors.append(f"products: {products}")
            logger.error(
                "Product fetch failed: %s", products, exc_info=products,
            )
        else:
            snapshot.products = products
        if isinstance(history, BaseException):
            snapshot.errors.append(f"history: {history}")
            logger.warning(
                "History fetch failed, statistics will be neutral: %s",
                history, exc_info=history,
            )
        else:
            snapshot.history = history

        logger.info(
            "Catalog loaded: %d products, %d history rows",
            len(snapshot.products), len(snapshot.history),
        )
        self.snapshot = snapshot
        return snapshot

    def rows(self) -> list[CatalogRow]:
        """Comparison rows for every product, recomputed on each call."""
        references = reference_minimums(self.snapshot.history)
        return [
            CatalogRow(product=p, stats=product_stats(p, references))
            for p in self.snapshot.products
        ]

    def view(
        self,
        tab: str = "home",
        search: str = "",
        trend: str | None = None,
        favorites: Mapping[int, int] | None = None,
    ) -> CatalogView:
        """Rows for *tab* narrowed by search term and trend."""
        rows = self.rows()
        result = CatalogView(total=len(rows))
        rows = ProductFilter.filter_by_tab(rows, tab, favorites)
        rows, result.search_excluded = ProductFilter.filter_by_search(
            rows, search,
        )
        result.rows = ProductFilter.filter_by_trend(rows, trend, tab)
        return result

    def find(self, product_id: int) -> Product | None:
        """Look up a loaded product by id."""
        return next(
            (p for p in self.snapshot.products if p.id == product_id),
            None,
        )

    async def detail(
        self,
        product: Product,
        days: int | None = None,
    ) -> ProductDetail:
        """Detail comparison with the product's history for *days*."""
        window = days or Settings.DEFAULT_DETAIL_DAYS
        try:
            points = await asyncio.to_thread(
                self._provider.get_product_history, product.name, window,
            )
        except Exception as exc:
            logger.warning(
                "History for '%s' unavailable: %s", product.name, exc,
                exc_info=True,
            )
            points = []
        return product_detail(product, points)
