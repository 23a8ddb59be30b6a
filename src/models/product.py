# src/models/product.py

"""Product data model shared by providers, statistics and the cart."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Product:
    """A catalog product with its current price at each store.

    ``prices`` maps store id to price; ``0`` (or a missing key) means
    the store is out of stock.
    """

    id: int
    name: str
    category: str = ""
    ticker: str = ""
    prices: dict[str, float] = field(
        default_factory=lambda: dict[str, float]()
    )
    offers: tuple[str, ...] = ()
    store_offers: dict[str, str] = field(
        default_factory=lambda: dict[str, str]()
    )
    image_url: str = ""

    @property
    def display_ticker(self) -> str:
        """Ticker symbol, or the first five letters of the name."""
        return self.ticker or self.name[:5].upper()

    def price_at(self, store_id: str) -> float:
        """Return the price at *store_id* (0.0 when out of stock)."""
        return self.prices.get(store_id, 0.0)

    def price_list(self, store_ids: list[str]) -> list[float]:
        """Return prices in *store_ids* order."""
        return [self.price_at(s) for s in store_ids]
