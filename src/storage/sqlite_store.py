# src/storage/sqlite_store.py

"""SQLite-backed catalog, profile and cart store.

The tables mirror the remote backend schema so rows from either
backend go through the same parsers in ``product_validator``.
"""

import json
import logging
import sqlite3
import uuid
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, cast

from src.config.settings import Settings
from src.filters.product_validator import (
    parse_cart,
    parse_history,
    parse_items,
    parse_price,
    parse_products,
    parse_profile,
)
from src.models.cart import FavoritesMap, Profile, SavedCart, Tier
from src.models.price_snapshot import PriceHistoryPoint
from src.models.product import Product
from src.services.price_stats import best_stores
from src.storage.base_store import (
    CartStore,
    CatalogProvider,
    ProfileProvider,
    StoreError,
)

logger = logging.getLogger("chango.sqlite")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS productos (
    id             INTEGER PRIMARY KEY,
    nombre         TEXT    NOT NULL,
    categoria      TEXT    NOT NULL DEFAULT '',
    ticker         TEXT,
    p_coto         REAL    NOT NULL DEFAULT 0,
    p_carrefour    REAL    NOT NULL DEFAULT 0,
    p_dia          REAL    NOT NULL DEFAULT 0,
    p_jumbo        REAL    NOT NULL DEFAULT 0,
    p_masonline    REAL    NOT NULL DEFAULT 0,
    imagen_url     TEXT,
    oferta_gondola TEXT
);

CREATE TABLE IF NOT EXISTS historial_precios (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    nombre_producto TEXT    NOT NULL,
    fecha           TEXT    NOT NULL,
    precio_minimo   REAL    NOT NULL,
    supermercado    TEXT    NOT NULL DEFAULT '',
    UNIQUE (nombre_producto, fecha)
);

CREATE INDEX IF NOT EXISTS idx_historial_fecha
    ON historial_precios(fecha);

CREATE TABLE IF NOT EXISTS perfiles (
    id               TEXT PRIMARY KEY,
    email            TEXT NOT NULL DEFAULT '',
    nombre           TEXT,
    apellido         TEXT,
    subscription     TEXT NOT NULL DEFAULT 'free',
    subscription_end TEXT
);

CREATE TABLE IF NOT EXISTS carritos_guardados (
    id         TEXT    PRIMARY KEY,
    user_id    TEXT    NOT NULL,
    titulo     TEXT    NOT NULL,
    items      TEXT    NOT NULL DEFAULT '{}',
    created_at TEXT    NOT NULL,
    updated_at TEXT    NOT NULL,
    is_public  INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_carritos_user
    ON carritos_guardados(user_id, updated_at);
"""

_PRODUCT_COLUMNS: tuple[str, ...] = (
    "id", "nombre", "categoria", "ticker",
    *(s["column"] for s in Settings.STORES),
    "imagen_url", "oferta_gondola",
)

_CART_FIELDS: frozenset[str] = frozenset({"items", "titulo", "is_public"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore(CatalogProvider, ProfileProvider, CartStore):
    """Local store implementing every provider interface."""

    def __init__(
        self,
        db_path: Path | None = None,
        today: date | None = None,
    ) -> None:
        path = db_path or Settings.DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(path), check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._today = today
        logger.debug("SQLiteStore opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _current_day(self) -> date:
        return self._today or date.today()

    # ── Catalog ──────────────────────────────────────────

    def list_products(self) -> list[Product]:
        rows = self._conn.execute(
            "SELECT * FROM productos ORDER BY nombre",
        ).fetchall()
        products, _dropped = parse_products(dict(r) for r in rows)
        return products

    def list_recent_price_history(
        self, days: int,
    ) -> list[PriceHistoryPoint]:
        cutoff = self._current_day() - timedelta(days=days)
        rows = self._conn.execute(
            "SELECT * FROM historial_precios "
            "WHERE fecha >= ? ORDER BY fecha ASC, id ASC",
            (cutoff.isoformat(),),
        ).fetchall()
        return parse_history(dict(r) for r in rows)

    def get_product_history(
        self, product_name: str, days: int,
    ) -> list[PriceHistoryPoint]:
        cutoff = self._current_day() - timedelta(days=days)
        rows = self._conn.execute(
            "SELECT * FROM historial_precios "
            "WHERE nombre_producto = ? AND fecha >= ? "
            "ORDER BY fecha ASC",
            (product_name, cutoff.isoformat()),
        ).fetchall()
        return parse_history(dict(r) for r in rows)

    def upsert_products(self, rows: list[dict[str, Any]]) -> int:
        """Insert or replace product rows. Returns the stored count."""
        count = 0
        cur = self._conn.cursor()
        for row in rows:
            if "id" not in row or not str(row.get("nombre") or "").strip():
                logger.debug("Skipping catalog row: %r", row)
                continue
            values: list[object] = []
            for column in _PRODUCT_COLUMNS:
                value = row.get(column)
                if column.startswith("p_"):
                    value = parse_price(value)
                elif column == "oferta_gondola" and value is not None:
                    if not isinstance(value, str):
                        value = json.dumps(value, ensure_ascii=False)
                values.append(value)
            placeholders = ", ".join("?" for _ in _PRODUCT_COLUMNS)
            cur.execute(
                f"INSERT OR REPLACE INTO productos "
                f"({', '.join(_PRODUCT_COLUMNS)}) "
                f"VALUES ({placeholders})",
                values,
            )
            count += 1
        self._conn.commit()
        logger.info("Stored %d catalog products", count)
        return count

    def insert_history(self, rows: list[dict[str, Any]]) -> int:
        """Insert history rows, keeping the lower price per product/day."""
        points = parse_history(rows)
        cur = self._conn.cursor()
        for point in points:
            cur.execute(
                "INSERT INTO historial_precios "
                "(nombre_producto, fecha, precio_minimo, supermercado) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(nombre_producto, fecha) DO UPDATE SET "
                "supermercado = CASE "
                "WHEN excluded.precio_minimo < precio_minimo "
                "THEN excluded.supermercado ELSE supermercado END, "
                "precio_minimo = MIN(precio_minimo, excluded.precio_minimo)",
                (
                    point.product_name,
                    point.day.isoformat(),
                    point.min_price,
                    point.store,
                ),
            )
        self._conn.commit()
        return len(points)

    def record_daily_minimums(
        self,
        products: list[Product],
        day: date | None = None,
    ) -> int:
        """Record today's cheapest price of each product as history.

        Products with no store in stock are skipped.  Returns the
        number of rows written.
        """
        fecha = (day or self._current_day()).isoformat()
        rows: list[dict[str, Any]] = []
        for product in products:
            stores = best_stores(product)
            if not stores:
                continue
            rows.append({
                "nombre_producto": product.name,
                "fecha": fecha,
                "precio_minimo": product.price_at(stores[0]),
                "supermercado": Settings.store_label(stores[0]),
            })
        count = self.insert_history(rows)
        if count:
            logger.info("Recorded %d daily minimums for %s", count, fecha)
        return count

    def import_catalog(self, filepath: Path) -> tuple[int, int, int]:
        """Import a JSON catalog dump.

        Accepts a list of product rows, or an object with
        ``productos`` and optional ``historial_precios`` and
        ``perfiles`` lists.  Returns ``(products, history rows,
        profiles)`` imported.
        """
        try:
            with open(filepath, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read %s: %s", filepath.name, exc)
            return 0, 0, 0

        product_rows: list[object]
        history_rows: list[object] = []
        profile_rows: list[object] = []
        if isinstance(data, list):
            product_rows = cast(list[object], data)
        elif isinstance(data, dict):
            payload = cast(dict[str, Any], data)
            product_rows = list(payload.get("productos") or [])
            history_rows = list(payload.get("historial_precios") or [])
            profile_rows = list(payload.get("perfiles") or [])
        else:
            logger.warning("Unsupported catalog layout in %s", filepath.name)
            return 0, 0, 0

        products = self.upsert_products(
            [cast(dict[str, Any], r) for r in product_rows if isinstance(r, dict)]
        )
        history = self.insert_history(
            [cast(dict[str, Any], r) for r in history_rows if isinstance(r, dict)]
        )
        profiles = self.upsert_profiles(
            [cast(dict[str, Any], r) for r in profile_rows if isinstance(r, dict)]
        )
        logger.info(
            "Catalog import from %s: %d products, %d history rows, "
            "%d profiles",
            filepath.name, products, history, profiles,
        )
        return products, history, profiles

    # ── Profiles ─────────────────────────────────────────

    def get_profile(self, user_id: str) -> Profile | None:
        row = self._conn.execute(
            "SELECT * FROM perfiles WHERE id = ?", (user_id,),
        ).fetchone()
        return parse_profile(dict(row)) if row else None

    def set_subscription(self, user_id: str, tier: Tier) -> None:
        self._conn.execute(
            "UPDATE perfiles SET subscription = ? WHERE id = ?",
            (tier.value, user_id),
        )
        self._conn.commit()

    def upsert_profile(self, profile: Profile) -> None:
        """Insert or replace a profile record."""
        end = (
            profile.subscription_end.isoformat()
            if profile.subscription_end else None
        )
        self._conn.execute(
            "INSERT OR REPLACE INTO perfiles "
            "(id, email, nombre, apellido, subscription, subscription_end) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                profile.id, profile.email, profile.first_name,
                profile.last_name, profile.subscription.value, end,
            ),
        )
        self._conn.commit()

    def upsert_profiles(self, rows: list[dict[str, Any]]) -> int:
        """Store ``perfiles`` rows. Rows without an id are skipped."""
        count = 0
        for row in rows:
            if not str(row.get("id") or "").strip():
                logger.debug("Skipping profile row without id: %r", row)
                continue
            self.upsert_profile(parse_profile(row))
            count += 1
        if count:
            logger.info("Stored %d profiles", count)
        return count

    # ── Carts ────────────────────────────────────────────

    def _fetch_cart(self, cart_id: str) -> SavedCart | None:
        row = self._conn.execute(
            "SELECT * FROM carritos_guardados WHERE id = ?", (cart_id,),
        ).fetchone()
        return parse_cart(dict(row)) if row else None

    def list_carts(self, user_id: str) -> list[SavedCart]:
        rows = self._conn.execute(
            "SELECT * FROM carritos_guardados WHERE user_id = ? "
            "ORDER BY updated_at DESC, rowid DESC",
            (user_id,),
        ).fetchall()
        return [parse_cart(dict(r)) for r in rows]

    def create_cart(
        self, user_id: str, title: str, items: FavoritesMap,
    ) -> SavedCart:
        cart_id = str(uuid.uuid4())
        ts = _now()
        self._conn.execute(
            "INSERT INTO carritos_guardados "
            "(id, user_id, titulo, items, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (cart_id, user_id, title, json.dumps(items), ts, ts),
        )
        self._conn.commit()
        logger.info("Created cart %s for user %s", cart_id, user_id)
        cart = self._fetch_cart(cart_id)
        assert cart is not None
        return cart

    def update_cart(
        self, cart_id: str, fields: dict[str, Any],
    ) -> SavedCart:
        unknown = set(fields) - _CART_FIELDS
        if unknown:
            raise StoreError(f"Unsupported cart fields: {sorted(unknown)}")

        assignments: list[str] = []
        values: list[object] = []
        for name, value in fields.items():
            if name == "items":
                value = json.dumps(parse_items(value))
            elif name == "is_public":
                value = int(bool(value))
            assignments.append(f"{name} = ?")
            values.append(value)
        assignments.append("updated_at = ?")
        values.extend([_now(), cart_id])

        cur = self._conn.execute(
            f"UPDATE carritos_guardados SET {', '.join(assignments)} "
            "WHERE id = ?",
            values,
        )
        self._conn.commit()
        if cur.rowcount == 0:
            raise StoreError(f"Cart {cart_id} not found")
        cart = self._fetch_cart(cart_id)
        assert cart is not None
        return cart

    def delete_cart(self, cart_id: str) -> None:
        self._conn.execute(
            "DELETE FROM carritos_guardados WHERE id = ?", (cart_id,),
        )
        self._conn.commit()
        logger.info("Deleted cart %s", cart_id)

    def get_shared_cart(self, cart_id: str) -> SavedCart | None:
        row = self._conn.execute(
            "SELECT * FROM carritos_guardados "
            "WHERE id = ? AND is_public = 1",
            (cart_id,),
        ).fetchone()
        return parse_cart(dict(row)) if row else None
