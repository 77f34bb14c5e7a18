"""Listing-source extractors and their registry."""

from __future__ import annotations

from ...common.config import Config
from .autotrader import AutoTraderExtractor
from .base_extractor import SelectorStrategy, SourceExtractor
from .cargurus import CarGurusExtractor
from .cars_com import CarsComExtractor
from .ebay_motors import EbayMotorsExtractor

# Registry of available sources, in fan-out order
EXTRACTORS: dict[str, type[SourceExtractor]] = {
    AutoTraderExtractor.name: AutoTraderExtractor,
    CarsComExtractor.name: CarsComExtractor,
    EbayMotorsExtractor.name: EbayMotorsExtractor,
    CarGurusExtractor.name: CarGurusExtractor,
}


def build_extractors(config: Config) -> list[SourceExtractor]:
    """Instantiate the sources enabled in ``config``.

    Raises:
        ValueError: an enabled source name is not registered.
    """
    unknown = [name for name in config.enabled_sources if name not in EXTRACTORS]
    if unknown:
        raise ValueError(f"Unknown sources: {', '.join(unknown)}")
    return [EXTRACTORS[name](config) for name in config.enabled_sources]


__all__ = [
    "EXTRACTORS",
    "AutoTraderExtractor",
    "CarGurusExtractor",
    "CarsComExtractor",
    "EbayMotorsExtractor",
    "SelectorStrategy",
    "SourceExtractor",
    "build_extractors",
]
