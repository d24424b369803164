"""Side-by-side quote comparison and bid leveling."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from gccore.models import Quote, QuoteStatus
from gccore.store import Store
from gccore.utils import timestamp

logger = logging.getLogger(__name__)

ITEM_COLUMNS = [
    "description",
    "quote_id",
    "quote_number",
    "vendor_id",
    "vendor_name",
    "bom_item_id",
    "quantity",
    "uom",
    "unit_price",
    "total_price",
    "is_lowest",
]


@dataclass
class ComparisonResult:
    """Structured output from :func:`compare_quotes`."""

    items: pd.DataFrame
    groups: pd.DataFrame
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LevelingResult:
    """Both notions of "lowest", kept side by side.

    ``item_level`` is the per-description composite that may span vendors;
    ``vendor_level`` ranks each vendor's single quoted total.
    """

    item_level: pd.DataFrame
    vendor_level: pd.DataFrame
    lowest_total: float
    highest_total: float
    cheapest_vendor_id: Optional[str] = None
    most_expensive_vendor_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def potential_savings(self) -> float:
        return self.highest_total - self.lowest_total


def _active_quotes(quotes: Sequence[Quote]) -> List[Quote]:
    return [quote for quote in quotes if QuoteStatus(quote.status) is not QuoteStatus.REJECTED]


def quote_items_frame(quotes: Sequence[Quote], vendor_names: Optional[Mapping[str, str]] = None) -> pd.DataFrame:
    names = vendor_names or {}
    rows = [
        {
            "description": item.description,
            "quote_id": quote.id,
            "quote_number": quote.quote_number,
            "vendor_id": quote.vendor_id,
            "vendor_name": names.get(quote.vendor_id, quote.vendor_id),
            "bom_item_id": item.bom_item_id,
            "quantity": item.quantity,
            "uom": item.uom,
            "unit_price": item.unit_price,
            "total_price": item.total_price,
        }
        for quote in _active_quotes(quotes)
        for item in quote.items
    ]
    return pd.DataFrame(rows, columns=ITEM_COLUMNS[:-1])


def compare_quotes(quotes: Sequence[Quote], vendor_names: Optional[Mapping[str, str]] = None) -> ComparisonResult:
    """Group quote lines by exact description and flag the lowest unit price."""

    items = quote_items_frame(quotes, vendor_names)
    if items.empty:
        items["is_lowest"] = pd.Series(dtype=bool)
        groups = pd.DataFrame(
            columns=["description", "quote_count", "lowest_unit_price", "highest_unit_price", "lowest_vendors"]
        )
    else:
        group_min = items.groupby("description", sort=False)["unit_price"].transform("min")
        items["is_lowest"] = items["unit_price"] == group_min
        grouped = items.groupby("description", sort=False)
        groups = pd.DataFrame(
            {
                "quote_count": grouped["quote_id"].nunique(),
                "lowest_unit_price": grouped["unit_price"].min(),
                "highest_unit_price": grouped["unit_price"].max(),
                "lowest_vendors": items.loc[items["is_lowest"]]
                .groupby("description", sort=False)["vendor_name"]
                .agg(lambda names: ", ".join(dict.fromkeys(names))),
            }
        ).reset_index()

    metadata = {
        "generated_at": timestamp(),
        "quote_count": len(_active_quotes(quotes)),
        "line_count": int(items.shape[0]),
        "description_groups": int(groups.shape[0]),
    }
    return ComparisonResult(items=items.loc[:, ITEM_COLUMNS], groups=groups, metadata=metadata)


def level_bids(
    quotes: Sequence[Quote],
    vendor_names: Optional[Mapping[str, str]] = None,
    bom_item_count: Optional[int] = None,
) -> LevelingResult:
    """Compute the item-level composite and the vendor-level ranking."""

    active = _active_quotes(quotes)
    names = vendor_names or {}
    items = quote_items_frame(active, names)

    if items.empty:
        item_level = pd.DataFrame(
            columns=["description", "lowest_total", "highest_total", "spread", "lowest_vendor", "highest_vendor"]
        )
    else:
        grouped = items.groupby("description", sort=False)["total_price"]
        lowest_idx = grouped.idxmin()
        highest_idx = grouped.idxmax()
        item_level = pd.DataFrame(
            {
                "lowest_total": grouped.min(),
                "highest_total": grouped.max(),
                "lowest_vendor": items.loc[lowest_idx.values, "vendor_name"].values,
                "highest_vendor": items.loc[highest_idx.values, "vendor_name"].values,
            }
        )
        item_level["spread"] = item_level["highest_total"] - item_level["lowest_total"]
        item_level = item_level.reset_index().loc[
            :, ["description", "lowest_total", "highest_total", "spread", "lowest_vendor", "highest_vendor"]
        ]

    lowest_total = float(item_level["lowest_total"].sum()) if not item_level.empty else 0.0
    highest_total = float(item_level["highest_total"].sum()) if not item_level.empty else 0.0

    vendor_level = _vendor_ranking(active, names, lowest_total, bom_item_count)
    cheapest = most_expensive = None
    if not vendor_level.empty:
        cheapest = str(vendor_level.iloc[0]["vendor_id"])
        most_expensive = str(vendor_level.iloc[-1]["vendor_id"])
        if cheapest_item_vendor_differs(item_level, vendor_level):
            logger.info("Composite lowest spans other vendors than the cheapest single quote")

    logger.info(
        "Leveled %d quote(s): composite lowest %.2f, highest %.2f, potential savings %.2f",
        len(active),
        lowest_total,
        highest_total,
        highest_total - lowest_total,
    )
    return LevelingResult(
        item_level=item_level,
        vendor_level=vendor_level,
        lowest_total=lowest_total,
        highest_total=highest_total,
        cheapest_vendor_id=cheapest,
        most_expensive_vendor_id=most_expensive,
        metadata={"generated_at": timestamp(), "quote_count": len(active)},
    )


def _vendor_ranking(
    quotes: Sequence[Quote],
    names: Mapping[str, str],
    lowest_total: float,
    bom_item_count: Optional[int],
) -> pd.DataFrame:
    columns = [
        "rank",
        "vendor_id",
        "vendor_name",
        "quote_id",
        "quote_number",
        "quoted_total",
        "item_count",
        "coverage_pct",
        "savings_vs_composite",
        "savings_pct",
    ]
    rows = []
    for quote in quotes:
        covered = len({item.bom_item_id for item in quote.items if item.bom_item_id})
        rows.append(
            {
                "vendor_id": quote.vendor_id,
                "vendor_name": names.get(quote.vendor_id, quote.vendor_id),
                "quote_id": quote.id,
                "quote_number": quote.quote_number,
                "quoted_total": float(quote.total_amount),
                "item_count": len(quote.items),
                "coverage_pct": covered / bom_item_count * 100.0 if bom_item_count else np.nan,
            }
        )
    if not rows:
        return pd.DataFrame(columns=columns)

    frame = pd.DataFrame(rows).sort_values(["quoted_total", "vendor_name"], kind="stable").reset_index(drop=True)
    frame["rank"] = np.arange(1, len(frame) + 1)
    frame["savings_vs_composite"] = frame["quoted_total"] - lowest_total
    with np.errstate(divide="ignore", invalid="ignore"):
        frame["savings_pct"] = np.where(
            frame["quoted_total"] != 0,
            frame["savings_vs_composite"] / frame["quoted_total"] * 100.0,
            np.nan,
        )
    return frame.loc[:, columns]


def cheapest_item_vendor_differs(item_level: pd.DataFrame, vendor_level: pd.DataFrame) -> bool:
    """True when some per-item minimum comes from a vendor other than the cheapest single quote."""

    if item_level.empty or vendor_level.empty:
        return False
    cheapest_name = vendor_level.iloc[0]["vendor_name"]
    return bool((item_level["lowest_vendor"] != cheapest_name).any())


def _project_context(store: Store, project_id: str):
    store.get_project(project_id)
    quotes = store.list_quotes(project_id, include_rejected=False)
    names = {vendor_id: store.get_vendor(vendor_id).name for vendor_id in {quote.vendor_id for quote in quotes}}
    return quotes, names


def compare_project(store: Store, project_id: str) -> ComparisonResult:
    quotes, names = _project_context(store, project_id)
    result = compare_quotes(quotes, names)
    result.metadata["project_id"] = project_id
    return result


def level_project(store: Store, project_id: str) -> LevelingResult:
    quotes, names = _project_context(store, project_id)
    bom_count = len(store.list_bom_items(project_id))
    result = level_bids(quotes, names, bom_item_count=bom_count)
    result.metadata["project_id"] = project_id
    return result


__all__ = [
    "ComparisonResult",
    "LevelingResult",
    "cheapest_item_vendor_differs",
    "compare_project",
    "compare_quotes",
    "level_bids",
    "level_project",
    "quote_items_frame",
]
