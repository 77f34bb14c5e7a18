"""AutoTrader listing price extractor.

Search results render each vehicle card with a ``first-price`` element;
newer layouts tag the price with ``data-testid`` / ``data-cy`` attributes.
"""

from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import quote

from ..models import VehicleQuery
from .base_extractor import SelectorStrategy, SourceExtractor, Strategy


class AutoTraderExtractor(SourceExtractor):
    """Extractor for autotrader.com search results."""

    name = "autotrader"
    display_name = "AutoTrader"

    SEARCH_URL = "https://www.autotrader.com/cars-for-sale/all-cars/{make}/{model}/{year}"

    STRATEGIES = (
        SelectorStrategy('[data-cmp="vehicleCardPricingDetails"] .first-price'),
        SelectorStrategy(".vehicle-card-pricing .first-price"),
        SelectorStrategy(".first-price"),
        SelectorStrategy('[data-testid="vehicle-card-price"]'),
        SelectorStrategy(".inventory-listing-price"),
        SelectorStrategy('[data-cy="vehicle-card-price"]'),
    )

    @property
    def strategies(self) -> Sequence[Strategy]:
        return self.STRATEGIES

    def build_url(self, query: VehicleQuery) -> str:
        base = self.SEARCH_URL.format(
            make=quote(query.make.lower()),
            model=quote(query.model.lower()),
            year=query.year,
        )
        return f"{base}?searchRadius=0&zip={quote(self.zip_for(query))}"
