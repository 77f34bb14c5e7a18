"""Base class for listing-site price extractors.

Each source declares an ordered list of strategies. A strategy is a
callable from a parsed document to raw numeric candidates; the base class
range-filters the candidates and stops at the first strategy that yields
at least ``min_matches`` plausible prices. Extraction never raises:
malformed or missing markup produces an empty tuple.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from bs4 import BeautifulSoup

from ...common.config import Config
from ..models import VehicleQuery

logger = logging.getLogger(__name__)

_BARE_AMOUNT = re.compile(r"(\d[\d,]*(?:\.\d+)?)")
_DOLLAR_AMOUNTS = re.compile(r"\$\s*(\d[\d,]*(?:\.\d+)?)")


def parse_amount(token: str) -> float | None:
    """'$15,999' -> 15999.0. Returns None for unparseable tokens."""
    cleaned = token.replace("$", "").replace(",", "").strip()
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def first_amount(text: str) -> list[float]:
    """First ``$`` amount of ``text``, else its first bare number."""
    match = _DOLLAR_AMOUNTS.search(text) or _BARE_AMOUNT.search(text)
    if not match:
        return []
    value = parse_amount(match.group(1))
    return [] if value is None else [value]


def all_dollar_amounts(text: str) -> list[float]:
    """Every ``$``-prefixed amount, e.g. both ends of '$15,000 to $18,000'.

    Falls back to the first bare number when the cell has no dollar sign.
    """
    values = [v for v in (parse_amount(m) for m in _DOLLAR_AMOUNTS.findall(text)) if v is not None]
    return values or first_amount(text)


Strategy = Callable[[BeautifulSoup], list[float]]


@dataclass(frozen=True)
class SelectorStrategy:
    """Select elements by CSS and read amounts from their text."""

    selector: str
    parse: Callable[[str], list[float]] = first_amount

    def __call__(self, soup: BeautifulSoup) -> list[float]:
        values: list[float] = []
        for el in soup.select(self.selector):
            text = el.get_text(" ", strip=True)
            if text:
                values.extend(self.parse(text))
        return values

    def __str__(self) -> str:
        return self.selector


class SourceExtractor(ABC):
    """One listing source: builds its search URL and extracts prices."""

    name: str = ""
    display_name: str = ""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()

    @property
    @abstractmethod
    def strategies(self) -> Sequence[Strategy]:
        """Ordered extraction strategies, most specific first."""
        ...

    @abstractmethod
    def build_url(self, query: VehicleQuery) -> str:
        """Search URL for ``query`` on this source."""
        ...

    def zip_for(self, query: VehicleQuery) -> str:
        return query.zip_code or self.config.default_zip

    def is_plausible(self, price: float) -> bool:
        return self.config.price_min < price < self.config.price_max

    def extract(self, document: str, query: VehicleQuery) -> tuple[float, ...]:
        """Plausible prices from ``document``; empty tuple when nothing matches."""
        if not document:
            return ()

        try:
            soup = BeautifulSoup(document, "lxml")
        except Exception:
            logger.debug("[%s] failed to parse document", self.name, exc_info=True)
            return ()

        for strategy in self.strategies:
            try:
                candidates = strategy(soup)
            except Exception:
                logger.debug("[%s] strategy %s failed", self.name, strategy, exc_info=True)
                continue

            prices = [p for p in candidates if self.is_plausible(p)]
            logger.debug(
                "[%s] %s: %d candidates, %d plausible",
                self.name,
                strategy,
                len(candidates),
                len(prices),
            )
            if len(prices) >= max(self.config.min_strategy_matches, 1):
                logger.info(
                    "[%s] extracted %d prices for %s via %s",
                    self.name,
                    len(prices),
                    query.label,
                    strategy,
                )
                return tuple(prices)

        logger.info("[%s] no prices found for %s", self.name, query.label)
        return ()
