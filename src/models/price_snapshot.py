# src/models/price_snapshot.py

"""Daily minimum-price observation used for trend references."""

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class PriceHistoryPoint:
    """Cheapest price seen for a product on a given day."""

    product_name: str
    day: date
    min_price: float
    store: str
