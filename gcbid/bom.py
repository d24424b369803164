"""Derive priced bill-of-materials lines from takeoff geometry."""

from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from gccore.errors import RegistryError, TakeoffUnavailableError
from gccore.models import (
    BOMLineItem,
    Estimate,
    EstimateStatus,
    FeatureType,
    MaterialDescriptor,
    ProjectStatus,
    RuleSet,
    TakeoffFeature,
)
from gccore.registry import MaterialRegistry
from gccore.store import Store
from gccore.takeoff import TakeoffSource
from gccore.trades import classify_trade
from gccore.utils import clean_text, new_id

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TAG = "Generated from takeoff"
CEILING_HEIGHT_FT = 8.0
FEET_PER_FITTING = 10.0

# Placeholder unit costs by category and unit, replaced once real quotes exist.
DEFAULT_UNIT_COSTS: Dict[str, Dict[str, float]] = {
    "Flooring": {"SF": 3.50},
    "Painting": {"SF": 2.00},
    "Ceilings": {"SF": 4.00},
    "Plumbing": {"LF": 8.00, "EA": 50.00},
    "Plumbing Fixtures": {"EA": 350.00},
    "HVAC Equipment": {"EA": 5000.00},
}
FALLBACK_UNIT_COST = 10.00


@dataclass(frozen=True)
class DerivedLine:
    """Unpriced line derived from exactly one takeoff feature."""

    feature_id: str
    csi_division: str
    category: str
    description: str
    sku: str
    quantity: float
    uom: str
    waste_factor: float
    confidence: float
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    specs: Optional[Dict[str, Any]] = None


@dataclass
class FeatureFailure:
    feature_id: str
    feature_type: str
    error: str


@dataclass
class BOMResult:
    """Structured output from :meth:`BOMGenerator.generate`."""

    estimate: Estimate
    items: List[BOMLineItem]
    failures: List[FeatureFailure] = field(default_factory=list)
    unlinked_items: int = 0
    superseded_estimates: int = 0

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)

    @property
    def total_material_cost(self) -> float:
        return float(sum(item.total_cost for item in self.items))

    @property
    def average_confidence(self) -> Optional[float]:
        if not self.items:
            return None
        return float(sum(item.confidence for item in self.items) / len(self.items))

    def to_frame(self) -> pd.DataFrame:
        return bom_items_frame(self.items)


def bom_items_frame(items: Sequence[BOMLineItem]) -> pd.DataFrame:
    columns = [
        "id",
        "csi_division",
        "category",
        "trade",
        "description",
        "sku",
        "quantity",
        "uom",
        "waste_factor",
        "final_quantity",
        "unit_cost",
        "total_cost",
        "confidence",
        "material_id",
        "source",
    ]
    return pd.DataFrame([{column: getattr(item, column) for column in columns} for item in items], columns=columns)


def _format_size(value: Optional[float], default: float) -> str:
    size = value if value is not None and value > 0 else default
    return f"{size:g}"


def _pipe_template(feature: TakeoffFeature) -> Dict[str, str]:
    material = clean_text(feature.meta.get("material")).casefold()
    description = feature.description.casefold()
    if "copper" in description or material == "copper":
        size = _format_size(feature.diameter, 0.75)
        return {
            "csi_division": "22 11 00",
            "description": f'Copper Pipe Type L {size}"',
            "sku": f"COPPER-L-{size}",
        }
    if "pvc" in description or material == "pvc":
        size = _format_size(feature.diameter, 2)
        return {
            "csi_division": "22 13 00",
            "description": f'PVC DWV Pipe {size}"',
            "sku": f"PVC-DWV-{size}",
        }
    size = _format_size(feature.diameter, 1)
    return {"csi_division": "22 00 00", "description": f'Pipe {size}"', "sku": f"PIPE-{size}"}


def _fixture_template(feature: TakeoffFeature) -> Dict[str, str]:
    description = feature.description.casefold()
    model = clean_text(feature.meta.get("model"))
    if "water closet" in description or "toilet" in description:
        return {
            "csi_division": "22 41 00",
            "category": "Plumbing Fixtures",
            "description": "Water Closet - Wall Hung",
            "sku": model or "WC-WALL-HUNG",
        }
    if "lavatory" in description or "sink" in description:
        return {
            "csi_division": "22 41 00",
            "category": "Plumbing Fixtures",
            "description": "Lavatory - Undermount",
            "sku": model or "LAV-UNDERMOUNT",
        }
    if "rtu" in description or "rooftop" in description:
        return {
            "csi_division": "23 74 00",
            "category": "HVAC Equipment",
            "description": "Rooftop Unit",
            "sku": model or "RTU-5TON",
        }
    return {
        "csi_division": "00 00 00",
        "category": "Equipment",
        "description": feature.description or "Equipment",
        "sku": model or "EQUIPMENT",
    }


def derive_line_items(feature: TakeoffFeature) -> List[DerivedLine]:
    """Return the unpriced lines for one feature.

    Depends only on ``feature`` so features may be processed in any order.
    """

    manufacturer = clean_text(feature.meta.get("manufacturer")) or None
    model = clean_text(feature.meta.get("model")) or None

    if feature.type is FeatureType.ROOM:
        area = feature.area or 0.0
        if area <= 0:
            return []
        wall_area = math.sqrt(area) * 4 * CEILING_HEIGHT_FT
        return [
            DerivedLine(feature.id, "09 65 00", "Flooring", "VCT Flooring 12x12", "VCT-12X12-STANDARD", area, "SF", 0.10, 0.85),
            DerivedLine(feature.id, "09 91 00", "Painting", "Interior Paint - 2 Coats", "PAINT-INT-EGGSHELL", wall_area, "SF", 0.05, 0.80),
            DerivedLine(feature.id, "09 51 00", "Ceilings", "Acoustical Ceiling Tile 2x2", "ACT-2X2-STANDARD", area, "SF", 0.08, 0.85),
        ]

    if feature.type is FeatureType.PIPE:
        length = feature.length or 0.0
        if length <= 0:
            return []
        template = _pipe_template(feature)
        specs = {"diameter": feature.diameter} if feature.diameter else None
        return [
            DerivedLine(
                feature.id,
                template["csi_division"],
                "Plumbing",
                template["description"],
                template["sku"],
                length,
                "LF",
                0.15,
                0.90,
                specs=specs,
            ),
            DerivedLine(
                feature.id,
                template["csi_division"],
                "Plumbing",
                f"{template['description']} - Fittings",
                f"{template['sku']}-FITTING",
                float(math.ceil(length / FEET_PER_FITTING)),
                "EA",
                0.10,
                0.75,
            ),
        ]

    template = _fixture_template(feature)
    count = feature.count if feature.count and feature.count > 0 else 1
    return [
        DerivedLine(
            feature.id,
            template["csi_division"],
            template["category"],
            template["description"],
            template["sku"],
            float(count),
            "EA",
            0.05,
            0.95,
            manufacturer=manufacturer,
            model=model,
        )
    ]


def default_unit_cost(category: str, uom: str) -> float:
    return DEFAULT_UNIT_COSTS.get(category, {}).get(uom, FALLBACK_UNIT_COST)


class BOMGenerator:
    """Turn a project's takeoff into one estimate worth of BOM line items."""

    def __init__(
        self,
        store: Store,
        takeoff: Optional[TakeoffSource],
        rules: Optional[RuleSet] = None,
        registry: Optional[MaterialRegistry] = None,
        regeneration: str = "append",
        source_tag: str = DEFAULT_SOURCE_TAG,
    ) -> None:
        if regeneration not in {"append", "supersede"}:
            raise ValueError(f"Unknown regeneration mode '{regeneration}'")
        self.store = store
        self.takeoff = takeoff
        self.rules = rules or RuleSet()
        self.registry = registry or MaterialRegistry(store)
        self.regeneration = regeneration
        self.source_tag = source_tag

    def generate(self, project_id: str) -> BOMResult:
        project = self.store.get_project(project_id)
        features = self._load_features(project.takeoff_job_id)
        failures: List[FeatureFailure] = []
        for row in self.takeoff.rejected(project.takeoff_job_id):
            logger.warning("Takeoff row %s (%s) was not readable: %s", row["id"], row["type"], row["error"])
            failures.append(FeatureFailure(row["id"], row["type"], row["error"]))

        estimate = self.store.create_estimate(project_id, rule_version=self.rules.version)
        logger.info(
            "Generating BOM for project %s from %d takeoff features (estimate %s, rules %s)",
            project_id,
            len(features),
            estimate.version,
            self.rules.version,
        )

        items: List[BOMLineItem] = []
        unlinked = 0
        for feature in features:
            try:
                lines = derive_line_items(feature)
                for line in lines:
                    item = self._create_item(project_id, estimate.id, line)
                    if item.material_id is None:
                        unlinked += 1
                    items.append(item)
            except (ValueError, TypeError, ArithmeticError, sqlite3.Error) as exc:
                logger.warning("Feature %s (%s) failed: %s", feature.id, feature.type.value, exc)
                failures.append(FeatureFailure(feature.id, feature.type.value, str(exc)))

        status = EstimateStatus.PARTIAL if failures else EstimateStatus.COMPLETE
        estimate = self.store.finalize_estimate(estimate.id, status, failed_features=len(failures))

        superseded = 0
        if self.regeneration == "supersede":
            superseded = self.store.supersede_estimates(project_id, estimate.id)
            if superseded:
                logger.info("Superseded %d earlier estimate(s) for project %s", superseded, project_id)
        self.store.set_project_status(project_id, ProjectStatus.BOM_GENERATION)

        logger.info(
            "Generated %d BOM items for project %s (%s, %d failed features, %d unlinked)",
            len(items),
            project_id,
            status.value,
            len(failures),
            unlinked,
        )
        return BOMResult(
            estimate=estimate,
            items=items,
            failures=failures,
            unlinked_items=unlinked,
            superseded_estimates=superseded,
        )

    def _load_features(self, job_id: Optional[str]) -> List[TakeoffFeature]:
        if self.takeoff is None:
            raise TakeoffUnavailableError("Takeoff source is not configured")
        if not job_id:
            raise TakeoffUnavailableError("Project is not linked to a takeoff job")
        if not self.takeoff.has_job(job_id):
            raise TakeoffUnavailableError(f"Takeoff job '{job_id}' was not found")
        return self.takeoff.features(job_id)

    def _create_item(self, project_id: str, estimate_id: str, line: DerivedLine) -> BOMLineItem:
        rule = self.rules.rule_for(line.description)
        unit_cost = default_unit_cost(line.category, line.uom)
        waste_factor = line.waste_factor
        if rule is not None:
            if rule.unit_cost is not None:
                unit_cost = float(rule.unit_cost)
            if rule.waste_factor is not None:
                waste_factor = float(rule.waste_factor)

        trade = classify_trade(line.csi_division, line.category)
        final_quantity = line.quantity * (1 + waste_factor)
        material_id = self._resolve_material(line, trade, waste_factor)

        item = BOMLineItem(
            id=new_id("bom"),
            project_id=project_id,
            estimate_id=estimate_id,
            csi_division=line.csi_division,
            category=line.category,
            description=line.description,
            sku=line.sku,
            quantity=line.quantity,
            uom=line.uom,
            waste_factor=waste_factor,
            final_quantity=final_quantity,
            unit_cost=unit_cost,
            total_cost=final_quantity * unit_cost,
            confidence=line.confidence,
            source=self.source_tag,
            trade=trade,
            material_id=material_id,
            manufacturer=line.manufacturer,
            model=line.model,
        )
        return self.store.add_bom_item(item)

    def _resolve_material(self, line: DerivedLine, trade: str, waste_factor: float) -> Optional[str]:
        descriptor = MaterialDescriptor(
            name=line.description,
            trade=trade,
            description=line.description,
            sku=line.sku,
            category=line.category,
            manufacturer=line.manufacturer,
            model=line.model,
            specs=line.specs,
            uom=line.uom,
            waste_factor=waste_factor,
        )
        try:
            return self.registry.resolve(descriptor).id
        except RegistryError as exc:
            logger.warning("Material registry write failed for '%s'; item left unlinked: %s", line.description, exc)
            return None


__all__ = [
    "BOMGenerator",
    "BOMResult",
    "DEFAULT_UNIT_COSTS",
    "DerivedLine",
    "FeatureFailure",
    "bom_items_frame",
    "default_unit_cost",
    "derive_line_items",
]
