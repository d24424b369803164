"""Labor hours and cost by trade for a project's BOM."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from gccore.errors import NoBOMItemsError
from gccore.models import BOMLineItem, RuleSet
from gccore.store import Store
from gccore.trades import classify_trade, trade_name

logger = logging.getLogger(__name__)

DEFAULT_LABOR_RATE = 50.00

# (hours per unit, hourly rate) by category and unit of measure
DEFAULT_LABOR_TABLE: Dict[str, Dict[str, Tuple[float, float]]] = {
    "Flooring": {"SF": (0.015, 45.00)},
    "Painting": {"SF": (0.012, 40.00)},
    "Ceilings": {"SF": (0.020, 45.00)},
    "Plumbing": {"LF": (0.25, 55.00), "EA": (2.0, 55.00)},
    "Plumbing Fixtures": {"EA": (3.0, 55.00)},
    "HVAC Equipment": {"EA": (16.0, 60.00)},
    "Electrical": {"LF": (0.10, 50.00), "EA": (1.5, 50.00)},
}
FALLBACK_LABOR: Tuple[float, float] = (0.5, 45.00)


@dataclass
class LaborLine:
    bom_item_id: str
    description: str
    trade: str
    quantity: float
    hours_per_unit: float
    total_hours: float
    labor_rate: float
    total_cost: float
    rule_source: str


@dataclass
class TradeLabor:
    trade: str
    hours: float = 0.0
    cost: float = 0.0
    markup: float = 0.0
    cost_with_markup: float = 0.0
    items: List[LaborLine] = field(default_factory=list)


@dataclass
class LaborEstimate:
    """Per-trade breakdown plus raw and marked-up grand totals."""

    trades: List[TradeLabor]
    total_hours: float
    total_cost: float
    total_with_markup: float
    rule_version: str = "defaults"

    @property
    def total_markup(self) -> float:
        return self.total_with_markup - self.total_cost

    @property
    def average_rate(self) -> Optional[float]:
        """Blended hourly rate; ``None`` when no hours were estimated."""

        if self.total_hours <= 0:
            return None
        return self.total_cost / self.total_hours

    def trade_frame(self) -> pd.DataFrame:
        rows = [
            {
                "trade": entry.trade,
                "trade_name": trade_name(entry.trade),
                "hours": entry.hours,
                "cost": entry.cost,
                "markup_pct": entry.markup,
                "cost_with_markup": entry.cost_with_markup,
                "items": len(entry.items),
            }
            for entry in self.trades
        ]
        return pd.DataFrame(
            rows,
            columns=["trade", "trade_name", "hours", "cost", "markup_pct", "cost_with_markup", "items"],
        )

    def to_frame(self) -> pd.DataFrame:
        rows = [line.__dict__ for entry in self.trades for line in entry.items]
        return pd.DataFrame(
            rows,
            columns=[
                "bom_item_id",
                "description",
                "trade",
                "quantity",
                "hours_per_unit",
                "total_hours",
                "labor_rate",
                "total_cost",
                "rule_source",
            ],
        )


def labor_rule_for(item: BOMLineItem, rules: RuleSet, default_rate: float = DEFAULT_LABOR_RATE) -> Tuple[float, float, str]:
    """Return ``(hours_per_unit, rate, source)`` for ``item``."""

    rule = rules.rule_for(item.description)
    if rule is not None and rule.labor_per_unit:
        rate = rule.labor_rate if rule.labor_rate is not None else default_rate
        return float(rule.labor_per_unit), float(rate), "rule"
    hours, rate = DEFAULT_LABOR_TABLE.get(item.category, {}).get(item.uom, FALLBACK_LABOR)
    return hours, rate, "default"


def estimate_labor(
    items: Sequence[BOMLineItem],
    rules: Optional[RuleSet] = None,
    default_rate: float = DEFAULT_LABOR_RATE,
) -> LaborEstimate:
    """Accumulate labor per trade and apply each trade's markup.

    BOM items are read only; the labor figures live on the returned estimate.
    """

    if not items:
        raise NoBOMItemsError("No BOM items found for project; nothing to estimate")
    rules = rules or RuleSet()

    breakdown: Dict[str, TradeLabor] = {}
    for item in items:
        trade = classify_trade(item.csi_division, item.category)
        hours_per_unit, rate, source = labor_rule_for(item, rules, default_rate)
        total_hours = item.final_quantity * hours_per_unit
        total_cost = total_hours * rate

        entry = breakdown.setdefault(trade, TradeLabor(trade=trade))
        entry.hours += total_hours
        entry.cost += total_cost
        entry.items.append(
            LaborLine(
                bom_item_id=item.id,
                description=item.description,
                trade=trade,
                quantity=item.final_quantity,
                hours_per_unit=hours_per_unit,
                total_hours=total_hours,
                labor_rate=rate,
                total_cost=total_cost,
                rule_source=source,
            )
        )

    total_hours = 0.0
    total_cost = 0.0
    total_with_markup = 0.0
    for entry in breakdown.values():
        entry.markup = rules.markup_for(entry.trade)
        entry.cost_with_markup = entry.cost * (1 + entry.markup / 100)
        total_hours += entry.hours
        total_cost += entry.cost
        total_with_markup += entry.cost_with_markup

    logger.info(
        "Estimated %.1f labor hours across %d trade(s), cost %.2f (%.2f with markup)",
        total_hours,
        len(breakdown),
        total_cost,
        total_with_markup,
    )
    return LaborEstimate(
        trades=sorted(breakdown.values(), key=lambda entry: entry.trade),
        total_hours=total_hours,
        total_cost=total_cost,
        total_with_markup=total_with_markup,
        rule_version=rules.version,
    )


def estimate_project_labor(
    store: Store,
    project_id: str,
    rules: Optional[RuleSet] = None,
    default_rate: float = DEFAULT_LABOR_RATE,
) -> LaborEstimate:
    store.get_project(project_id)
    items = store.list_bom_items(project_id)
    return estimate_labor(items, rules=rules, default_rate=default_rate)


__all__ = [
    "DEFAULT_LABOR_RATE",
    "DEFAULT_LABOR_TABLE",
    "LaborEstimate",
    "LaborLine",
    "TradeLabor",
    "estimate_labor",
    "estimate_project_labor",
    "labor_rule_for",
]
