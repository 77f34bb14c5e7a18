"""eBay Motors listing price extractor.

Price cells can hold ranges ("$15,000 to $18,000"), so every dollar
amount in a cell is taken rather than only the first.
"""

from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import quote_plus

from ..models import VehicleQuery
from .base_extractor import SelectorStrategy, SourceExtractor, Strategy, all_dollar_amounts


class EbayMotorsExtractor(SourceExtractor):
    """Extractor for eBay Motors (Cars & Trucks, category 6001) searches."""

    name = "ebay_motors"
    display_name = "eBay Motors"

    SEARCH_URL = "https://www.ebay.com/sch/Cars-Trucks/6001/i.html"

    STRATEGIES = (
        SelectorStrategy(".s-item__price .notranslate", all_dollar_amounts),
        SelectorStrategy(".s-item__price", all_dollar_amounts),
        SelectorStrategy('.notranslate[role="img"]', all_dollar_amounts),
        SelectorStrategy('.cldt[data-testid="item-price"]', all_dollar_amounts),
        SelectorStrategy(".u-flL.condText", all_dollar_amounts),
    )

    @property
    def strategies(self) -> Sequence[Strategy]:
        return self.STRATEGIES

    def build_url(self, query: VehicleQuery) -> str:
        terms = [str(query.year), query.make, query.model]
        if query.trim:
            terms.append(query.trim)
        keywords = "+".join(quote_plus(t) for t in terms)
        return (
            f"{self.SEARCH_URL}?_nkw={keywords}"
            f"&_stpos={quote_plus(self.zip_for(query))}&_fspt=1&_sop=1"
        )
