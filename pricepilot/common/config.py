"""Configuration management for the market value engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = PROJECT_ROOT / "config"
load_dotenv(PROJECT_ROOT / ".env")

DEFAULT_SOURCES = ["autotrader", "cars_com", "ebay_motors", "cargurus"]


@dataclass
class Config:
    """Central configuration loaded from defaults, settings.yaml and env."""

    # Database (durable cache, audit log, price history)
    database_path: str = field(
        default_factory=lambda: os.getenv(
            "DATABASE_PATH", "data/pricepilot.db"
        )
    )

    # Fetching
    request_timeout: float = 15.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 5.0
    min_body_length: int = 1000
    bot_name: str = "PricePilotBot/1.0"
    bot_info_url: str = "https://pricepilot.app/bot"
    bot_contact: str = "bot@pricepilot.app"

    # Proxy pool
    proxy_list_url: str = (
        "https://api.proxyscrape.com/?request=getproxies&proxytype=https"
        "&timeout=5000&country=all&ssl=yes&anonymity=all"
    )
    proxy_list_timeout: float = 10.0
    proxy_max_candidates: int = 50
    proxy_probe_url: str = "https://httpbin.org/ip"
    proxy_probe_timeout: float = 8.0
    proxy_batch_size: int = 10
    proxy_batch_pause: float = 1.0
    proxy_refresh_interval: float = 2 * 60 * 60
    proxy_cooldown: float = 30.0
    proxy_max_failures: int = 3
    # Share of the aggregation deadline a pool refresh may use before fan-out
    proxy_refresh_share: float = 0.5

    # Extraction
    price_min: float = 1_000
    price_max: float = 200_000
    min_strategy_matches: int = 1
    default_zip: str = "90210"
    currency: str = "USD"

    # Caching
    source_cache_size: int = 100
    source_cache_ttl: float = 5 * 60
    durable_cache_ttl: float = 4 * 60 * 60

    # Aggregation
    aggregation_timeout: float = 60.0
    enabled_sources: list[str] = field(default_factory=lambda: list(DEFAULT_SOURCES))

    def __post_init__(self) -> None:
        """Load overrides from environment."""
        if timeout := os.getenv("REQUEST_TIMEOUT"):
            self.request_timeout = float(timeout)
        if attempts := os.getenv("MAX_ATTEMPTS"):
            self.max_attempts = int(attempts)
        if (url := os.getenv("PROXY_LIST_URL")) is not None:
            self.proxy_list_url = url.strip()
        if url := os.getenv("PROXY_PROBE_URL"):
            self.proxy_probe_url = url
        if deadline := os.getenv("AGGREGATION_TIMEOUT"):
            self.aggregation_timeout = float(deadline)
        if ttl := os.getenv("DURABLE_CACHE_TTL"):
            self.durable_cache_ttl = float(ttl)
        if ttl := os.getenv("SOURCE_CACHE_TTL"):
            self.source_cache_ttl = float(ttl)
        if low := os.getenv("PRICE_MIN"):
            self.price_min = float(low)
        if high := os.getenv("PRICE_MAX"):
            self.price_max = float(high)
        if sources := os.getenv("ENABLED_SOURCES"):
            self.enabled_sources = [s.strip() for s in sources.split(",") if s.strip()]
        if contact := os.getenv("BOT_CONTACT"):
            self.bot_contact = contact

        if self.price_min >= self.price_max:
            raise ValueError("price_min must be lower than price_max")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0 <= self.proxy_refresh_share <= 1:
            raise ValueError("proxy_refresh_share must be between 0 and 1")

    @classmethod
    def load(cls, path: Path | None = None) -> Config:
        """Load config/settings.yaml (if present), then apply env overrides."""
        settings_path = path or CONFIG_DIR / "settings.yaml"
        data: dict = {}
        if settings_path.exists():
            with open(settings_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return cls(**data)

    @property
    def user_agent(self) -> str:
        """Descriptive client identifier sent with every request."""
        return f"{self.bot_name} (+{self.bot_info_url}; {self.bot_contact})"

    @property
    def database_abs_path(self) -> Path:
        """Resolve database path relative to project root."""
        p = Path(self.database_path)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p
