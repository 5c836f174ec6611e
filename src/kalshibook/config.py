from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import find_dotenv, load_dotenv

from kalshibook.errors import ConfigError

DEFAULT_WS_URL = "wss://api.elections.kalshi.com/trade-api/ws/v2"
DEFAULT_API_BASE = "https://api.elections.kalshi.com/trade-api/v2"


@dataclass(frozen=True)
class FeedConfig:
    # Endpoints
    ws_url: str = DEFAULT_WS_URL
    api_base: str = DEFAULT_API_BASE

    # Credentials
    key_id: str = ""
    private_key_path: str = ""

    # Markets
    market_tickers: List[str] = field(default_factory=list)

    # WebSocket
    open_timeout: float = 25.0
    ping_interval: float = 20.0
    ping_timeout: float = 20.0
    min_backoff: float = 1.0
    max_backoff: float = 60.0
    reconnect: bool = True
    output_maxsize: int = 1

    # REST
    rest_timeout: float = 5.0
    verify_every: int = 0

    # Logging
    log_level: str = "INFO"
    log_dir: str = "./logs"

    @property
    def has_credentials(self) -> bool:
        return bool(self.key_id and self.private_key_path)

    def require_credentials(self) -> None:
        if not self.has_credentials:
            raise ConfigError("Missing KALSHI_KEY_ID or KALSHI_PRIVATE_KEY_PATH")


def _get_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _get_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _get_list(name: str) -> List[str]:
    return [t.strip() for t in os.getenv(name, "").split(",") if t.strip()]


def load_config(*, dotenv: bool = True) -> FeedConfig:
    if dotenv:
        # Load .env reliably even when running from src/
        load_dotenv(find_dotenv(usecwd=True) or None)

    output_maxsize = _get_int("FEED_OUTPUT_MAXSIZE", 1)
    if output_maxsize < 0:
        raise ConfigError(f"FEED_OUTPUT_MAXSIZE must be >= 0, got {output_maxsize}")

    return FeedConfig(
        ws_url=os.getenv("KALSHI_WS_URL", DEFAULT_WS_URL).strip(),
        api_base=os.getenv("KALSHI_API_BASE", DEFAULT_API_BASE).rstrip("/"),
        key_id=(os.getenv("KALSHI_KEY_ID") or "").strip(),
        private_key_path=(os.getenv("KALSHI_PRIVATE_KEY_PATH") or "").strip(),
        market_tickers=_get_list("MARKET_TICKERS"),
        open_timeout=_get_float("WS_OPEN_TIMEOUT", 25.0),
        ping_interval=_get_float("WS_PING_INTERVAL", 20.0),
        ping_timeout=_get_float("WS_PING_TIMEOUT", 20.0),
        min_backoff=_get_float("FEED_MIN_BACKOFF", 1.0),
        max_backoff=_get_float("FEED_MAX_BACKOFF", 60.0),
        reconnect=_get_bool("FEED_RECONNECT", True),
        output_maxsize=output_maxsize,
        rest_timeout=_get_float("REST_TIMEOUT", 5.0),
        verify_every=max(0, _get_int("BOOK_VERIFY_EVERY", 0)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=os.getenv("LOG_DIR", "./logs"),
    )
