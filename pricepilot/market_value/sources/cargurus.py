"""CarGurus listing price extractor."""

from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import quote

from ..models import VehicleQuery
from .base_extractor import SelectorStrategy, SourceExtractor, Strategy


class CarGurusExtractor(SourceExtractor):
    """Extractor for CarGurus inventory listings."""

    name = "cargurus"
    display_name = "CarGurus"

    SEARCH_URL = (
        "https://www.cargurus.com/Cars/inventorylisting/"
        "viewDetailsFilterViewInventoryListing.action"
    )

    STRATEGIES = (
        SelectorStrategy('[data-testid="listing-price"]'),
        SelectorStrategy(".listing-row__price"),
        SelectorStrategy(".price-section__price"),
        SelectorStrategy('[data-cg-ft="srp-listing-price"]'),
        SelectorStrategy(".cg-dealRating-price"),
    )

    @property
    def strategies(self) -> Sequence[Strategy]:
        return self.STRATEGIES

    def build_url(self, query: VehicleQuery) -> str:
        entity = f"{query.year}_{query.make}_{query.model}".replace(" ", "_")
        return (
            f"{self.SEARCH_URL}?sourceContext=carGurusHomePageModel"
            f"&entitySelectingHelper.selectedEntity={quote(entity)}"
            f"&zip={quote(self.zip_for(query))}"
        )
