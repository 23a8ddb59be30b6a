# src/services/price_stats.py

"""Price statistics: cross-store minimums, trends and cart totals.

Every function here is pure.  Non-positive prices mean "out of stock"
and are ignored by all derivations.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from src.config.settings import Settings
from src.models.price_snapshot import PriceHistoryPoint
from src.models.product import Product


class Direction(Enum):
    """Trend of the current minimum against its reference."""

    UP = "up"
    DOWN = "down"
    FLAT = "flat"

    @property
    def icon(self) -> str:
        """Arrow glyph used by list views."""
        return {"up": "▲", "down": "▼", "flat": "-"}[self.value]


@dataclass(frozen=True)
class ComparisonRecord:
    """Derived comparison signals for one product."""

    min_price: float
    reference_min: float
    percent_spread: str
    direction: Direction
    delta_pct: float = 0.0

    @property
    def is_up(self) -> bool:
        return self.direction is Direction.UP

    @property
    def is_down(self) -> bool:
        return self.direction is Direction.DOWN


NEUTRAL_RECORD = ComparisonRecord(
    min_price=0.0,
    reference_min=0.0,
    percent_spread="0.0",
    direction=Direction.FLAT,
)


def positive_prices(prices: Iterable[float]) -> list[float]:
    """Drop unavailable (non-positive) prices."""
    return [p for p in prices if p > 0]


def compute_stats(
    prices: Sequence[float],
    reference_min: float,
) -> ComparisonRecord:
    """Compare the cheapest available price with a historical minimum.

    The spread is the absolute percent delta with one decimal.  A
    missing reference (``<= 0``) always yields a flat ``"0.0"`` record.
    """
    available = positive_prices(prices)
    if not available:
        return NEUTRAL_RECORD

    current_min = min(available)
    if reference_min <= 0:
        return ComparisonRecord(
            min_price=current_min,
            reference_min=0.0,
            percent_spread="0.0",
            direction=Direction.FLAT,
        )

    delta = (current_min - reference_min) / reference_min * 100
    threshold = Settings.TREND_THRESHOLD_PCT
    if delta > threshold:
        direction = Direction.UP
    elif delta < -threshold:
        direction = Direction.DOWN
    else:
        direction = Direction.FLAT

    return ComparisonRecord(
        min_price=current_min,
        reference_min=reference_min,
        percent_spread=f"{abs(delta):.1f}",
        direction=direction,
        delta_pct=delta,
    )


def product_stats(
    product: Product,
    references: Mapping[str, float],
) -> ComparisonRecord:
    """Comparison record for a catalog product."""
    return compute_stats(
        product.price_list(Settings.store_ids()),
        references.get(product.name, 0.0),
    )


def reference_minimums(
    history: Iterable[PriceHistoryPoint],
) -> dict[str, float]:
    """Reference minimum per product name from a lookback series.

    The series is ascending by date, so the first row seen for each
    product is the one at the start of the lookback window.
    """
    references: dict[str, float] = {}
    for point in history:
        references.setdefault(point.product_name, point.min_price)
    return references


def average_price(prices: Iterable[float]) -> int:
    """Mean of the available prices, rounded to a whole amount."""
    available = positive_prices(prices)
    if not available:
        return 0
    # round-half-up, as shoppers read it
    return int(sum(available) / len(available) + 0.5)


def best_stores(product: Product) -> list[str]:
    """Store ids offering the product at its lowest available price."""
    available = positive_prices(product.prices.values())
    if not available:
        return []
    cheapest = min(available)
    return [
        store_id
        for store_id in Settings.store_ids()
        if product.price_at(store_id) == cheapest
    ]


@dataclass(frozen=True)
class HistoryVariation:
    """Change across a product's price series for a detail window."""

    first_price: float
    last_price: float
    percent: str
    direction: Direction


def history_variation(
    points: Sequence[PriceHistoryPoint],
) -> HistoryVariation | None:
    """Signed first-to-last change of a series, ``None`` below 2 points."""
    if len(points) < 2:
        return None
    first = points[0].min_price
    last = points[-1].min_price
    if first <= 0:
        return None
    delta = (last - first) / first * 100
    if last > first:
        direction = Direction.UP
    elif last < first:
        direction = Direction.DOWN
    else:
        direction = Direction.FLAT
    return HistoryVariation(
        first_price=first,
        last_price=last,
        percent=f"{delta:.1f}",
        direction=direction,
    )


@dataclass(frozen=True)
class StoreRow:
    """One store line of a product detail comparison."""

    store_id: str
    label: str
    price: float
    offer: str
    is_best: bool

    @property
    def in_stock(self) -> bool:
        return self.price > 0


@dataclass(frozen=True)
class ProductDetail:
    """Everything a detail view shows for a product and window."""

    product: Product
    min_price: float
    avg_price: int
    best_stores: list[str]
    stores: list[StoreRow]
    variation: HistoryVariation | None
    history: list[PriceHistoryPoint] = field(
        default_factory=lambda: list[PriceHistoryPoint]()
    )


def product_detail(
    product: Product,
    points: Sequence[PriceHistoryPoint],
) -> ProductDetail:
    """Assemble the detail comparison for *product*."""
    available = positive_prices(product.prices.values())
    cheapest = min(available) if available else 0.0
    best = best_stores(product)
    rows = [
        StoreRow(
            store_id=store["id"],
            label=store["label"],
            price=product.price_at(store["id"]),
            offer=product.store_offers.get(store["label"], ""),
            is_best=store["id"] in best,
        )
        for store in Settings.STORES
    ]
    return ProductDetail(
        product=product,
        min_price=cheapest,
        avg_price=average_price(product.prices.values()),
        best_stores=best,
        stores=rows,
        variation=history_variation(points),
        history=list(points),
    )


@dataclass(frozen=True)
class StoreTotal:
    """What the whole cart costs at one store."""

    store_id: str
    label: str
    total: float
    missing: int

    @property
    def complete(self) -> bool:
        return self.missing == 0


def cart_totals(
    products: Iterable[Product],
    favorites: Mapping[int, int],
) -> list[StoreTotal]:
    """Per-store cart totals, complete stores first, then cheapest."""
    lines = [p for p in products if favorites.get(p.id, 0) > 0]
    totals: list[StoreTotal] = []
    for store in Settings.STORES:
        total = 0.0
        missing = 0
        for product in lines:
            price = product.price_at(store["id"])
            if price > 0:
                total += price * favorites[product.id]
            else:
                missing += 1
        totals.append(StoreTotal(
            store_id=store["id"],
            label=store["label"],
            total=round(total, 2),
            missing=missing,
        ))
    return sorted(totals, key=lambda t: (t.missing, t.total))
