"""Utilities for exporting pipeline outputs to disk."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping

import pandas as pd

from gccore.utils import json_default, timestamp

from .bom import BOMResult
from .comparison import ComparisonResult, LevelingResult
from .config import OutputConfig
from .labor import LaborEstimate
from .quotes import IngestResult

logger = logging.getLogger(__name__)


def export_report(
    report_name: str,
    frames: Mapping[str, pd.DataFrame],
    metadata: Mapping[str, Any],
    output: OutputConfig,
) -> Dict[str, Path]:
    """Write ``frames`` as CSV files plus a JSON audit record."""

    output_dir = output.directory
    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Writing %s reports to %s", report_name, output_dir)

    paths: Dict[str, Path] = {}
    for key, frame in frames.items():
        path = output_dir / f"{report_name}_{key}.csv"
        frame.to_csv(path, index=False)
        paths[key] = path

    audit_payload = {"report": report_name, "written_at": timestamp(), **metadata}
    audit_path = output_dir / f"{report_name}_{output.audit_log}"
    with audit_path.open("w", encoding="utf-8") as handle:
        json.dump(audit_payload, handle, ensure_ascii=False, indent=2, default=json_default)
    paths["audit"] = audit_path
    return paths


def export_bom(result: BOMResult, output: OutputConfig) -> Dict[str, Path]:
    failures = pd.DataFrame(
        [failure.__dict__ for failure in result.failures], columns=["feature_id", "feature_type", "error"]
    )
    metadata = {
        "project_id": result.estimate.project_id,
        "estimate_id": result.estimate.id,
        "version": result.estimate.version,
        "status": result.estimate.status.value,
        "item_count": result.estimate.item_count,
        "material_cost": result.estimate.material_cost,
        "average_confidence": result.estimate.average_confidence,
        "failed_features": len(result.failures),
        "unlinked_items": result.unlinked_items,
        "superseded_estimates": result.superseded_estimates,
    }
    return export_report("bom", {"items": result.to_frame(), "failures": failures}, metadata, output)


def export_labor(estimate: LaborEstimate, output: OutputConfig, project_id: str) -> Dict[str, Path]:
    metadata = {
        "project_id": project_id,
        "total_hours": estimate.total_hours,
        "total_cost": estimate.total_cost,
        "total_with_markup": estimate.total_with_markup,
        "total_markup": estimate.total_markup,
        "average_rate": estimate.average_rate,
        "rule_version": estimate.rule_version,
    }
    return export_report("labor", {"items": estimate.to_frame(), "trades": estimate.trade_frame()}, metadata, output)


def export_comparison(result: ComparisonResult, output: OutputConfig) -> Dict[str, Path]:
    return export_report("comparison", {"items": result.items, "groups": result.groups}, result.metadata, output)


def export_leveling(result: LevelingResult, output: OutputConfig) -> Dict[str, Path]:
    metadata = {
        **result.metadata,
        "lowest_total": result.lowest_total,
        "highest_total": result.highest_total,
        "potential_savings": result.potential_savings,
        "cheapest_vendor_id": result.cheapest_vendor_id,
        "most_expensive_vendor_id": result.most_expensive_vendor_id,
    }
    return export_report(
        "leveling",
        {"items": result.item_level, "vendors": result.vendor_level},
        metadata,
        output,
    )


def export_ingest(result: IngestResult, output: OutputConfig) -> Dict[str, Path]:
    quote = result.quote
    items = pd.DataFrame(
        [item.__dict__ for item in quote.items],
        columns=["id", "quote_id", "bom_item_id", "description", "quantity", "uom", "unit_price", "total_price", "sku"],
    )
    metadata = {
        "quote_id": quote.id,
        "quote_number": quote.quote_number,
        "rfq_id": quote.rfq_id,
        "vendor_id": quote.vendor_id,
        "total_amount": quote.total_amount,
        "parse_tier": result.tier,
        "matched_items": result.matched_count,
        "unmatched_items": len(result.unmatched),
        "pricing_updates": result.pricing_updates,
    }
    return export_report("quote", {"items": items, "unmatched": result.unmatched_frame()}, metadata, output)


__all__ = [
    "export_bom",
    "export_comparison",
    "export_ingest",
    "export_labor",
    "export_leveling",
    "export_report",
]
