"""
Opportunity extraction from a Segmentation.

An opportunity is one (X, Y) cell whose share of the whole market exceeds
``OPPORTUNITY_THRESHOLD_PCT``. The list is used to point the scan at the
cells that carry most of the market.
"""

from dataclasses import dataclass
from typing import List

from app.domain.market_data import Segmentation

OPPORTUNITY_THRESHOLD_PCT = 5.0


@dataclass(frozen=True)
class Opportunity:
    category_x: str
    category_y: str
    measure: float
    market_share_pct: float

    def to_dict(self) -> dict:
        return {
            "category_x": self.category_x,
            "category_y": self.category_y,
            "measure": self.measure,
            "market_share_pct": self.market_share_pct,
        }


def find_opportunities(
    segmentation: Segmentation,
    threshold_pct: float = OPPORTUNITY_THRESHOLD_PCT,
) -> List[Opportunity]:
    """
    Return cells whose global share is strictly above ``threshold_pct``,
    largest first.
    """
    found = []
    for column in segmentation.columns:
        for segment in column.segments:
            market_share = column.total_share_pct * segment.share_pct / 100
            if market_share > threshold_pct:
                found.append(
                    Opportunity(
                        category_x=column.category_x,
                        category_y=segment.category_y,
                        measure=segment.measure,
                        market_share_pct=market_share,
                    )
                )
    found.sort(key=lambda item: item.market_share_pct, reverse=True)
    return found
