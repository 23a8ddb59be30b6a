# src/filters/product_validator.py

"""Row validation at the provider boundary.

Backend rows use the remote table columns (``nombre``, ``p_coto``,
``precio_minimo``, ...).  These helpers coerce them into the typed
models and drop rows that cannot be used.
"""

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone
from typing import Any, cast

from src.config.settings import Settings
from src.filters.offer_normalizer import normalize_offers, offers_by_store
from src.models.cart import FavoritesMap, Profile, SavedCart, Tier
from src.models.price_snapshot import PriceHistoryPoint
from src.models.product import Product

logger = logging.getLogger("chango.validator")

Row = Mapping[str, Any]


def parse_price(value: object) -> float:
    """Coerce a price cell to float; anything unusable becomes 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return 0.0


def parse_datetime(value: object) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug("Unparseable timestamp: %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_day(value: object) -> date | None:
    """Parse a ``YYYY-MM-DD`` (or full ISO) value into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.debug("Unparseable date: %r", value)
        return None


def parse_items(raw: object) -> FavoritesMap:
    """Coerce a stored items payload into a clean FavoritesMap.

    Keys arrive as strings from JSON; entries with a non-positive or
    non-numeric quantity are dropped.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError:
            logger.warning("Discarding malformed cart items payload")
            return {}
    if not isinstance(raw, dict):
        return {}
    items: FavoritesMap = {}
    for key, qty in cast(dict[Any, Any], raw).items():
        try:
            product_id = int(key)
            quantity = int(qty)
        except (TypeError, ValueError):
            continue
        if quantity >= 1:
            items[product_id] = quantity
    return items


def parse_product(row: Row) -> Product | None:
    """Build a Product from a ``productos`` row, or None if unusable."""
    try:
        product_id = int(row["id"])
    except (KeyError, TypeError, ValueError):
        logger.debug("Dropped product row without id: %r", row)
        return None
    name = str(row.get("nombre") or "").strip()
    if not name:
        logger.debug("Dropped product %d with empty name", product_id)
        return None

    prices = {
        store["id"]: max(parse_price(row.get(store["column"])), 0.0)
        for store in Settings.STORES
    }
    raw_offer = row.get("oferta_gondola")
    return Product(
        id=product_id,
        name=name,
        category=str(row.get("categoria") or ""),
        ticker=str(row.get("ticker") or ""),
        prices=prices,
        offers=normalize_offers(raw_offer),
        store_offers=offers_by_store(raw_offer),
        image_url=str(row.get("imagen_url") or ""),
    )


def parse_products(rows: Iterable[Row]) -> tuple[list[Product], int]:
    """Parse product rows, returning the valid ones and a drop count."""
    products: list[Product] = []
    dropped = 0
    for row in rows:
        product = parse_product(row)
        if product is None:
            dropped += 1
        else:
            products.append(product)
    if dropped:
        logger.info("Validation dropped %d product rows", dropped)
    return products, dropped


def parse_history(rows: Iterable[Row]) -> list[PriceHistoryPoint]:
    """Parse ``historial_precios`` rows, skipping incomplete ones."""
    points: list[PriceHistoryPoint] = []
    for row in rows:
        day = parse_day(row.get("fecha"))
        name = str(row.get("nombre_producto") or "").strip()
        if day is None or not name:
            continue
        points.append(PriceHistoryPoint(
            product_name=name,
            day=day,
            min_price=parse_price(row.get("precio_minimo")),
            store=str(row.get("supermercado") or ""),
        ))
    return points


def parse_profile(row: Row) -> Profile:
    """Build a Profile from a ``perfiles`` row."""
    return Profile(
        id=str(row["id"]),
        email=str(row.get("email") or ""),
        first_name=str(row.get("nombre") or ""),
        last_name=str(row.get("apellido") or ""),
        subscription=Tier.parse(row.get("subscription")),
        subscription_end=parse_datetime(row.get("subscription_end")),
    )


def parse_cart(row: Row) -> SavedCart:
    """Build a SavedCart from a ``carritos_guardados`` row."""
    return SavedCart(
        id=str(row["id"]),
        user_id=str(row.get("user_id") or ""),
        title=str(row.get("titulo") or row.get("name") or ""),
        items=parse_items(row.get("items")),
        created_at=parse_datetime(row.get("created_at")),
        updated_at=parse_datetime(row.get("updated_at")),
        is_public=bool(row.get("is_public")),
    )
