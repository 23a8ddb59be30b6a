# src/config/settings.py

"""Central configuration for the chango price comparison core."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the chango price comparison core."""

    # --- Stores (registry, display order) ---
    STORES: list[dict[str, str]] = [
        {"id": "coto", "label": "COTO", "column": "p_coto"},
        {"id": "carrefour", "label": "CARREFOUR", "column": "p_carrefour"},
        {"id": "dia", "label": "DIA", "column": "p_dia"},
        {"id": "jumbo", "label": "JUMBO", "column": "p_jumbo"},
        {"id": "masonline", "label": "MAS ONLINE", "column": "p_masonline"},
    ]

    # --- Statistics ---
    TREND_THRESHOLD_PCT: float = 0.1    # Signed delta (%) beyond which a trend shows
    REFERENCE_LOOKBACK_DAYS: int = 7    # History window for the list reference
    DETAIL_WINDOWS: list[int] = [7, 30, 90, 180, 365]
    DEFAULT_DETAIL_DAYS: int = 7

    # --- Cart policy ---
    FREE_FAVORITES_LIMIT: int = 5       # Favorited lines allowed on the free tier
    SAVED_CARTS_LIMIT: int = 2          # Saved carts per user, any tier
    WRITE_DEBOUNCE_SECONDS: float = 0.5 # Quiescence window before write-through

    # --- Backend ---
    BACKEND: str = os.getenv("CHANGO_BACKEND", "sqlite")
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    REQUEST_DELAY: float = 0.5          # Base backoff between retries
    MAX_RETRIES: int = 3                # Retry count on transient failures
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 60.0
    IMPERSONATE_BROWSER: str = "chrome131"

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    DB_PATH: Path = DATA_DIR / "chango.db"
    RESULTS_DIR: Path = BASE_DIR / "results"
    LOGS_DIR: Path = BASE_DIR / "logs"

    # --- Catalog tabs ---
    TABS: list[str] = ["home", "carnes", "verdu", "varios", "favs"]

    @classmethod
    def store_ids(cls) -> list[str]:
        """Return store ids in display order."""
        return [s["id"] for s in cls.STORES]

    @classmethod
    def store_label(cls, store_id: str) -> str:
        """Return the display label for a store id."""
        for store in cls.STORES:
            if store["id"] == store_id:
                return store["label"]
        return store_id.upper()
