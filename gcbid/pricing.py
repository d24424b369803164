"""Vendor price spreads and price suggestions from the price cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from gccore.store import Store

logger = logging.getLogger(__name__)

SIMILAR_MATERIAL_LIMIT = 10


@dataclass
class PriceSummary:
    material_id: str
    prices: pd.DataFrame
    lowest: Optional[float] = None
    highest: Optional[float] = None
    average: Optional[float] = None

    @property
    def has_pricing(self) -> bool:
        return not self.prices.empty

    @property
    def spread(self) -> Optional[float]:
        if self.lowest is None or self.highest is None:
            return None
        return self.highest - self.lowest

    @property
    def spread_pct(self) -> Optional[float]:
        if self.spread is None or not self.lowest:
            return None
        return self.spread / self.lowest * 100.0


@dataclass
class PriceSuggestion:
    material_id: str
    suggested_price: Optional[float]
    confidence: str
    source: str
    data_points: int = 0
    details: Dict[str, float] = field(default_factory=dict)


def price_summary(store: Store, material_id: str) -> PriceSummary:
    """All active vendor prices for a material, lowest first."""

    store.get_material(material_id)
    pricing = store.list_pricing(material_id=material_id)
    columns = [
        "vendor_id",
        "vendor_name",
        "unit_cost",
        "uom",
        "lead_time_days",
        "last_quote_date",
        "pct_above_lowest",
        "is_best_price",
    ]
    if not pricing:
        return PriceSummary(material_id=material_id, prices=pd.DataFrame(columns=columns))

    rows = []
    for entry in pricing:
        vendor = store.get_vendor(entry.vendor_id)
        rows.append(
            {
                "vendor_id": entry.vendor_id,
                "vendor_name": vendor.name,
                "unit_cost": entry.unit_cost,
                "uom": entry.uom,
                "lead_time_days": entry.lead_time_days,
                "last_quote_date": entry.last_quote_date,
            }
        )
    frame = pd.DataFrame(rows).sort_values("unit_cost", kind="stable").reset_index(drop=True)
    lowest = float(frame["unit_cost"].min())
    if lowest:
        frame["pct_above_lowest"] = (frame["unit_cost"] - lowest) / lowest * 100.0
    else:
        frame["pct_above_lowest"] = float("nan")
    frame["is_best_price"] = frame["unit_cost"] == lowest
    return PriceSummary(
        material_id=material_id,
        prices=frame.loc[:, columns],
        lowest=lowest,
        highest=float(frame["unit_cost"].max()),
        average=float(frame["unit_cost"].mean()),
    )


def suggest_price(store: Store, material_id: str) -> PriceSuggestion:
    """Suggest a unit price: own history, then similar materials, else none."""

    material = store.get_material(material_id)
    own = [entry.unit_cost for entry in store.list_pricing(material_id=material_id)]
    if own:
        return PriceSuggestion(
            material_id=material_id,
            suggested_price=sum(own) / len(own),
            confidence="HIGH",
            source="Historical Average",
            data_points=len(own),
        )

    similar_prices: List[float] = []
    if material.category:
        similar = store.search_materials(
            trade=material.trade,
            category=material.category,
            active_only=False,
            limit=SIMILAR_MATERIAL_LIMIT + 1,
        )
        for other in similar:
            if other.id == material.id:
                continue
            similar_prices.extend(entry.unit_cost for entry in store.list_pricing(material_id=other.id))
    if similar_prices:
        return PriceSuggestion(
            material_id=material_id,
            suggested_price=sum(similar_prices) / len(similar_prices),
            confidence="MEDIUM",
            source="Similar Materials",
            data_points=len(similar_prices),
        )

    logger.debug("No price data for material %s", material_id)
    return PriceSuggestion(material_id=material_id, suggested_price=None, confidence="LOW", source="No Data")


def vendor_catalog(store: Store, vendor_id: str) -> pd.DataFrame:
    """Active cached prices of one vendor with material details."""

    store.get_vendor(vendor_id)
    rows = []
    for entry in store.list_pricing(vendor_id=vendor_id):
        material = store.get_material(entry.material_id)
        rows.append(
            {
                "material_id": material.id,
                "material_name": material.name,
                "trade": material.trade,
                "category": material.category,
                "unit_cost": entry.unit_cost,
                "uom": entry.uom or material.uom,
                "last_quote_date": entry.last_quote_date,
                "source_quote_id": entry.source_quote_id,
            }
        )
    return pd.DataFrame(
        rows,
        columns=[
            "material_id",
            "material_name",
            "trade",
            "category",
            "unit_cost",
            "uom",
            "last_quote_date",
            "source_quote_id",
        ],
    )


__all__ = ["PriceSuggestion", "PriceSummary", "price_summary", "suggest_price", "vendor_catalog"]
