"""Cars.com listing price extractor."""

from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import quote

from ..models import VehicleQuery
from .base_extractor import SelectorStrategy, SourceExtractor, Strategy


class CarsComExtractor(SourceExtractor):
    """Extractor for cars.com used-inventory search results."""

    name = "cars_com"
    display_name = "Cars.com"

    SEARCH_URL = "https://www.cars.com/shopping/results/"

    STRATEGIES = (
        SelectorStrategy(".price-section .primary-price"),
        SelectorStrategy('[data-testid="vehicle-card-price"]'),
        SelectorStrategy(".vehicle-card-price"),
        SelectorStrategy(".listing-price"),
    )

    @property
    def strategies(self) -> Sequence[Strategy]:
        return self.STRATEGIES

    def build_url(self, query: VehicleQuery) -> str:
        make = quote(query.make.lower().replace(" ", "_"))
        model = quote(query.model.lower().replace(" ", "_"))
        return (
            f"{self.SEARCH_URL}?stock_type=used"
            f"&makes[]={make}&models[]={make}-{model}"
            f"&maximum_distance=all&zip={quote(self.zip_for(query))}"
            f"&year_max={query.year}&year_min={query.year}"
        )
