# src/storage/rest_store.py

"""HTTP store for a PostgREST (Supabase-style) backend."""

import logging
import time
from datetime import date, timedelta
from typing import Any, cast

from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.filters.product_validator import (
    parse_cart,
    parse_history,
    parse_products,
    parse_profile,
)
from src.models.cart import FavoritesMap, Profile, SavedCart, Tier
from src.models.price_snapshot import PriceHistoryPoint
from src.models.product import Product
from src.storage.base_store import (
    CartStore,
    CatalogProvider,
    ProfileProvider,
    StoreError,
)

_RETRY_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})


class RestStore(CatalogProvider, ProfileProvider, CartStore):
    """Talks to the remote tables and RPCs over HTTP."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
    ) -> None:
        self.logger = logging.getLogger("chango.rest")
        self.settings = Settings()
        self.base_url = (base_url or self.settings.SUPABASE_URL).rstrip("/")
        if not self.base_url:
            raise StoreError("SUPABASE_URL is not configured")
        key = api_key or self.settings.SUPABASE_KEY
        self.headers: dict[str, str] = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT
        self._consecutive_failures: int = 0
        self._circuit_open: bool = False
        self._circuit_opened_at: float = 0.0

    # ── Resilience ───────────────────────────────────────

    def _check_circuit(self) -> bool:
        """Return True if the circuit breaker blocks this request."""
        if not self._circuit_open:
            return False
        elapsed = time.time() - self._circuit_opened_at
        if elapsed >= self.settings.CIRCUIT_BREAKER_COOLDOWN:
            self.logger.info(
                "Circuit breaker half-open after %.0fs", elapsed,
            )
            self._circuit_open = False
            return False
        return True

    def _record_success(self) -> None:
        self._consecutive_failures = 0
        self._circuit_open = False
        self._circuit_opened_at = 0.0

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.settings.CIRCUIT_BREAKER_THRESHOLD:
            self._circuit_open = True
            self._circuit_opened_at = time.time()
            self.logger.error(
                "Circuit breaker opened after %d consecutive failures",
                self._consecutive_failures,
            )

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        payload: object = None,
        prefer: str | None = None,
    ) -> Any:
        """Send a request with retries; return the decoded JSON body.

        Raises:
            StoreError: on a non-retryable status, when retries are
                exhausted, or while the circuit breaker is open.
        """
        if self._check_circuit():
            raise StoreError(f"Circuit open, skipping {method} {path}")

        url = f"{self.base_url}/rest/v1/{path}"
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer

        last_error = ""
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=payload,
                    timeout=self._request_timeout,
                )
            except Exception as exc:
                last_error = str(exc)
                self.logger.warning(
                    "%s %s failed on attempt %d: %s",
                    method, path, attempt + 1, exc,
                    exc_info=True,
                )
                time.sleep(self.settings.REQUEST_DELAY * (attempt + 1))
                continue

            if resp.status_code in (200, 201, 204):
                self._record_success()
                if resp.status_code == 204 or not resp.text.strip():
                    return None
                return resp.json()

            last_error = f"HTTP {resp.status_code}"
            self.logger.warning(
                "%s %s returned HTTP %d on attempt %d",
                method, path, resp.status_code, attempt + 1,
            )
            if resp.status_code not in _RETRY_STATUSES:
                raise StoreError(
                    f"{method} {path}: HTTP {resp.status_code} "
                    f"{resp.text[:120]}"
                )
            time.sleep(self.settings.REQUEST_DELAY * (attempt + 1))

        self._record_failure()
        raise StoreError(f"{method} {path}: {last_error}")

    @staticmethod
    def _rows(body: Any) -> list[dict[str, Any]]:
        if not isinstance(body, list):
            return []
        items = cast(list[object], body)
        return [cast(dict[str, Any], r) for r in items if isinstance(r, dict)]

    def _single(self, body: Any, what: str) -> dict[str, Any]:
        rows = self._rows(body)
        if not rows:
            raise StoreError(f"Empty response for {what}")
        return rows[0]

    # ── Catalog ──────────────────────────────────────────

    def list_products(self) -> list[Product]:
        body = self._request("GET", "productos", params={"select": "*"})
        products, _dropped = parse_products(self._rows(body))
        return products

    def list_recent_price_history(
        self, days: int,
    ) -> list[PriceHistoryPoint]:
        body = self._request(
            "POST",
            "rpc/get_price_history_last_n_days",
            payload={"days": days},
        )
        return parse_history(self._rows(body))

    def get_product_history(
        self, product_name: str, days: int,
    ) -> list[PriceHistoryPoint]:
        cutoff = date.today() - timedelta(days=days)
        body = self._request(
            "GET",
            "historial_precios",
            params={
                "select": "*",
                "nombre_producto": f"eq.{product_name}",
                "fecha": f"gte.{cutoff.isoformat()}",
                "order": "fecha.asc",
            },
        )
        return parse_history(self._rows(body))

    # ── Profiles ─────────────────────────────────────────

    def get_profile(self, user_id: str) -> Profile | None:
        body = self._request(
            "GET",
            "perfiles",
            params={"select": "*", "id": f"eq.{user_id}"},
        )
        rows = self._rows(body)
        return parse_profile(rows[0]) if rows else None

    def set_subscription(self, user_id: str, tier: Tier) -> None:
        self._request(
            "PATCH",
            "perfiles",
            params={"id": f"eq.{user_id}"},
            payload={"subscription": tier.value},
        )

    # ── Carts ────────────────────────────────────────────

    def list_carts(self, user_id: str) -> list[SavedCart]:
        body = self._request(
            "GET",
            "carritos_guardados",
            params={
                "select": "*",
                "user_id": f"eq.{user_id}",
                "order": "updated_at.desc",
            },
        )
        return [parse_cart(r) for r in self._rows(body)]

    def create_cart(
        self, user_id: str, title: str, items: FavoritesMap,
    ) -> SavedCart:
        body = self._request(
            "POST",
            "carritos_guardados",
            payload={
                "user_id": user_id,
                "titulo": title,
                "items": {str(k): v for k, v in items.items()},
            },
            prefer="return=representation",
        )
        return parse_cart(self._single(body, "create_cart"))

    def update_cart(
        self, cart_id: str, fields: dict[str, Any],
    ) -> SavedCart:
        payload = dict(fields)
        if "items" in payload:
            items = cast(FavoritesMap, payload["items"])
            payload["items"] = {str(k): v for k, v in items.items()}
        body = self._request(
            "PATCH",
            "carritos_guardados",
            params={"id": f"eq.{cart_id}"},
            payload=payload,
            prefer="return=representation",
        )
        return parse_cart(self._single(body, f"update_cart {cart_id}"))

    def delete_cart(self, cart_id: str) -> None:
        self._request(
            "DELETE",
            "carritos_guardados",
            params={"id": f"eq.{cart_id}"},
        )

    def get_shared_cart(self, cart_id: str) -> SavedCart | None:
        body = self._request(
            "GET",
            "carritos_guardados",
            params={
                "select": "*",
                "id": f"eq.{cart_id}",
                "is_public": "eq.true",
            },
        )
        rows = self._rows(body)
        return parse_cart(rows[0]) if rows else None
