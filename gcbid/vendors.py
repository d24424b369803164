"""Vendor-to-material matching and coverage reporting."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from gccore.models import BOMLineItem, Material, Vendor
from gccore.store import Store
from gccore.trades import TRADE_CODES, classify_trade, trade_name

logger = logging.getLogger(__name__)


@dataclass
class VendorCoverage:
    vendor_id: str
    vendor_name: str
    covered_items: List[str]
    total_items: int
    trades: List[str]
    rating: float = 0.0

    @property
    def covered_count(self) -> int:
        return len(self.covered_items)

    @property
    def coverage(self) -> float:
        if self.total_items == 0:
            return 0.0
        return self.covered_count / self.total_items


@dataclass
class RemainingMaterials:
    """Items not yet covered by the caller's vendor selection, by trade."""

    remaining: Dict[str, List[BOMLineItem]]
    selected_vendor_ids: List[str]
    covered_count: int
    total_items: int

    @property
    def remaining_count(self) -> int:
        return sum(len(items) for items in self.remaining.values())

    @property
    def coverage_pct(self) -> float:
        if self.total_items == 0:
            return 0.0
        return self.covered_count / self.total_items * 100.0

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "trade": trade,
                "trade_name": trade_name(trade),
                "bom_item_id": item.id,
                "description": item.description,
                "final_quantity": item.final_quantity,
                "uom": item.uom,
            }
            for trade, items in self.remaining.items()
            for item in items
        ]
        return pd.DataFrame(rows, columns=["trade", "trade_name", "bom_item_id", "description", "final_quantity", "uom"])


@dataclass
class CoverSuggestion:
    """Greedy vendor set suggestion; advisory only."""

    vendor_ids: List[str]
    covered_count: int
    total_items: int
    uncoverable: Dict[str, List[BOMLineItem]] = field(default_factory=dict)


def item_trade(item: BOMLineItem) -> str:
    return item.trade or classify_trade(item.csi_division, item.category)


def group_by_trade(items: Iterable[BOMLineItem]) -> Dict[str, List[BOMLineItem]]:
    """Group items by trade, in the fixed trade order."""

    groups: Dict[str, List[BOMLineItem]] = {}
    for item in items:
        groups.setdefault(item_trade(item), []).append(item)
    ordered = {trade: groups[trade] for trade in TRADE_CODES if trade in groups}
    for trade, trade_items in groups.items():
        ordered.setdefault(trade, trade_items)
    return ordered


def score_vendors(items: Sequence[BOMLineItem], vendors: Iterable[Vendor]) -> List[VendorCoverage]:
    """Coverage of each vendor on its own, highest first.

    This is not a set cover: every vendor is scored independently.
    """

    groups = group_by_trade(items)
    total = len(items)
    scores: List[VendorCoverage] = []
    for vendor in vendors:
        covered: List[str] = []
        for trade in vendor.trades:
            covered.extend(item.id for item in groups.get(trade, []))
        scores.append(
            VendorCoverage(
                vendor_id=vendor.id,
                vendor_name=vendor.name,
                covered_items=covered,
                total_items=total,
                trades=list(vendor.trades),
                rating=vendor.rating,
            )
        )
    scores.sort(key=lambda score: (-score.coverage, -score.rating, score.vendor_name))
    return scores


def coverage_frame(scores: Sequence[VendorCoverage]) -> pd.DataFrame:
    rows = [
        {
            "vendor_id": score.vendor_id,
            "vendor_name": score.vendor_name,
            "trades": ",".join(score.trades),
            "covered_items": score.covered_count,
            "total_items": score.total_items,
            "coverage_pct": score.coverage * 100.0,
            "rating": score.rating,
        }
        for score in scores
    ]
    return pd.DataFrame(
        rows,
        columns=["vendor_id", "vendor_name", "trades", "covered_items", "total_items", "coverage_pct", "rating"],
    )


def remaining_materials(
    items: Sequence[BOMLineItem],
    vendors: Iterable[Vendor],
    selected_ids: Iterable[str],
) -> RemainingMaterials:
    """Report what the caller-selected vendors leave uncovered."""

    roster = {vendor.id: vendor for vendor in vendors}
    selected: List[str] = []
    covered_trades = set()
    for vendor_id in selected_ids:
        vendor = roster.get(vendor_id)
        if vendor is None:
            logger.warning("Selected vendor '%s' is not in the roster; ignoring", vendor_id)
            continue
        selected.append(vendor_id)
        covered_trades.update(vendor.trades)

    remaining: Dict[str, List[BOMLineItem]] = {}
    covered = 0
    for trade, trade_items in group_by_trade(items).items():
        if trade in covered_trades:
            covered += len(trade_items)
        else:
            remaining[trade] = list(trade_items)
    return RemainingMaterials(
        remaining=remaining,
        selected_vendor_ids=selected,
        covered_count=covered,
        total_items=len(items),
    )


def suggest_vendor_cover(items: Sequence[BOMLineItem], vendors: Iterable[Vendor]) -> CoverSuggestion:
    """Greedy set cover: repeatedly pick the vendor adding the most items.

    Ties go to the higher rated vendor, then the name. Stops when no vendor
    adds coverage; whatever is left is reported as uncoverable.
    """

    groups = group_by_trade(items)
    uncovered = set(groups)
    candidates = sorted(vendors, key=lambda vendor: (-vendor.rating, vendor.name))
    picked: List[str] = []

    while uncovered:
        best: Optional[Vendor] = None
        best_gain = 0
        for vendor in candidates:
            if vendor.id in picked:
                continue
            gain = sum(len(groups[trade]) for trade in uncovered.intersection(vendor.trades))
            if gain == 0:
                continue
            if gain > best_gain:
                best, best_gain = vendor, gain
        if best is None:
            break
        picked.append(best.id)
        uncovered.difference_update(best.trades)
        logger.debug("Cover suggestion picked %s (+%d items)", best.id, best_gain)

    uncoverable = {trade: groups[trade] for trade in groups if trade in uncovered}
    covered = len(items) - sum(len(trade_items) for trade_items in uncoverable.values())
    return CoverSuggestion(vendor_ids=picked, covered_count=covered, total_items=len(items), uncoverable=uncoverable)


def vendors_for_material(material: Material, vendors: Iterable[Vendor]) -> List[Vendor]:
    """Active vendors declaring the material by name/SKU or its trade, best rated first."""

    keys = {text.casefold() for text in (material.name, material.sku) if text}
    matches = [
        vendor
        for vendor in vendors
        if vendor.active
        and (keys.intersection(name.casefold() for name in vendor.materials) or vendor.covers_trade(material.trade))
    ]
    return sorted(matches, key=lambda vendor: (-vendor.rating, vendor.name))


@dataclass
class VendorMatch:
    materials_needed: Dict[str, List[BOMLineItem]]
    vendors: List[Vendor]
    coverage: List[VendorCoverage]


def match_project_vendors(store: Store, project_id: str, trade: Optional[str] = None) -> VendorMatch:
    store.get_project(project_id)
    items = store.list_bom_items(project_id)
    vendors = store.list_vendors(trade=trade)
    scores = score_vendors(items, vendors)
    logger.info("Scored %d vendor(s) against %d BOM item(s) for project %s", len(vendors), len(items), project_id)
    return VendorMatch(materials_needed=group_by_trade(items), vendors=vendors, coverage=scores)


__all__ = [
    "CoverSuggestion",
    "RemainingMaterials",
    "VendorCoverage",
    "VendorMatch",
    "coverage_frame",
    "group_by_trade",
    "match_project_vendors",
    "remaining_materials",
    "score_vendors",
    "suggest_vendor_cover",
    "vendors_for_material",
]
