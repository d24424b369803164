"""Domain records shared by the estimating and procurement pipeline."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .utils import clean_text, json_default, new_id, safe_float, safe_text


class FeatureType(str, Enum):
    ROOM = "ROOM"
    PIPE = "PIPE"
    FIXTURE = "FIXTURE"
    EQUIPMENT = "EQUIPMENT"


class VendorType(str, Enum):
    MATERIAL_SUPPLIER = "MATERIAL_SUPPLIER"
    SUBCONTRACTOR = "SUBCONTRACTOR"
    BOTH = "BOTH"


class ProjectStatus(str, Enum):
    SCOPE_DIAGNOSIS = "SCOPE_DIAGNOSIS"
    BOM_GENERATION = "BOM_GENERATION"
    AWARD_PENDING = "AWARD_PENDING"


class EstimateStatus(str, Enum):
    DRAFT = "DRAFT"
    COMPLETE = "COMPLETE"
    PARTIAL = "PARTIAL"
    SUPERSEDED = "SUPERSEDED"


class RFQStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    RESPONDED = "RESPONDED"


class QuoteStatus(str, Enum):
    RECEIVED = "RECEIVED"
    AWARDED = "AWARDED"
    REJECTED = "REJECTED"


def _as_tuple(values: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    if values is None or isinstance(values, float):
        return ()
    if isinstance(values, str):
        values = re.split(r"[,;|]", values)
    return tuple(text for text in (clean_text(v) for v in values) if text)


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().casefold()
        if not text:
            return default
        return text not in {"0", "false", "no", "n", "off"}
    if isinstance(value, float) and value != value:
        return default
    return bool(value)


def _as_meta(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    text = clean_text(value)
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except ValueError:
        return {}
    return dict(parsed) if isinstance(parsed, Mapping) else {}


@dataclass(frozen=True)
class TakeoffFeature:
    """A geometric measurement produced by the upstream takeoff system."""

    id: str
    type: FeatureType
    job_id: Optional[str] = None
    area: Optional[float] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    diameter: Optional[float] = None
    count: Optional[int] = None
    description: str = ""
    meta: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TakeoffFeature":
        raw_type = clean_text(record.get("type")).upper()
        count = safe_float(record.get("count"))
        return cls(
            id=clean_text(record.get("id")),
            type=FeatureType(raw_type),
            job_id=safe_text(record.get("job_id")),
            area=safe_float(record.get("area")),
            length=safe_float(record.get("length")),
            width=safe_float(record.get("width")),
            height=safe_float(record.get("height")),
            diameter=safe_float(record.get("diameter")),
            count=int(count) if count is not None else None,
            description=clean_text(record.get("description")),
            meta=_as_meta(record.get("meta")),
        )


@dataclass
class Project:
    id: str
    name: str
    takeoff_job_id: Optional[str] = None
    location: Optional[str] = None
    status: ProjectStatus = ProjectStatus.SCOPE_DIAGNOSIS


@dataclass
class MaterialDescriptor:
    """Input handed to :class:`gccore.registry.MaterialRegistry`."""

    name: str
    trade: str
    description: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    specs: Optional[Dict[str, Any]] = None
    uom: Optional[str] = None
    waste_factor: Optional[float] = None


@dataclass
class Material:
    id: str
    name: str
    trade: str
    description: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    specs: Dict[str, Any] = field(default_factory=dict)
    uom: Optional[str] = None
    waste_factor: Optional[float] = None
    times_used: int = 0
    last_used: Optional[datetime] = None
    active: bool = True


@dataclass
class Estimate:
    id: str
    project_id: str
    version: str
    status: EstimateStatus = EstimateStatus.DRAFT
    material_cost: float = 0.0
    average_confidence: Optional[float] = None
    item_count: int = 0
    failed_features: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class BOMLineItem:
    """A priced bill-of-materials line. Never mutated after creation."""

    id: str
    project_id: str
    estimate_id: str
    csi_division: str
    category: str
    description: str
    sku: Optional[str]
    quantity: float
    uom: str
    waste_factor: float
    final_quantity: float
    unit_cost: float
    total_cost: float
    confidence: float
    source: str
    trade: str
    material_id: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class SupplierCapabilities:
    materials: Tuple[str, ...] = ()
    alternates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SubcontractorCapabilities:
    services: Tuple[str, ...] = ()
    crew_size: Optional[int] = None
    certifications: Tuple[str, ...] = ()


_SUPPLIER_TYPES = {VendorType.MATERIAL_SUPPLIER, VendorType.BOTH}
_SUBCONTRACTOR_TYPES = {VendorType.SUBCONTRACTOR, VendorType.BOTH}


@dataclass
class Vendor:
    """Roster entry; capability payloads are fixed per :class:`VendorType`."""

    id: str
    name: str
    type: VendorType
    trades: Tuple[str, ...] = ()
    email: Optional[str] = None
    supplies: Optional[SupplierCapabilities] = None
    performs: Optional[SubcontractorCapabilities] = None
    service_radius: Optional[float] = None
    rating: float = 0.0
    active: bool = True

    def __post_init__(self) -> None:
        self.type = VendorType(self.type)
        self.trades = tuple(dict.fromkeys(trade.upper() for trade in _as_tuple(self.trades)))
        if self.supplies is not None and self.type not in _SUPPLIER_TYPES:
            raise ValueError(f"Vendor '{self.name}' of type {self.type.value} cannot declare supplied materials")
        if self.performs is not None and self.type not in _SUBCONTRACTOR_TYPES:
            raise ValueError(f"Vendor '{self.name}' of type {self.type.value} cannot declare subcontract services")
        if self.supplies is None and self.type in _SUPPLIER_TYPES:
            self.supplies = SupplierCapabilities()
        if self.performs is None and self.type in _SUBCONTRACTOR_TYPES:
            self.performs = SubcontractorCapabilities()

    @property
    def materials(self) -> Tuple[str, ...]:
        return self.supplies.materials if self.supplies else ()

    def covers_trade(self, trade: str) -> bool:
        return trade in self.trades

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Vendor":
        vendor_type = VendorType(clean_text(record.get("type") or VendorType.MATERIAL_SUPPLIER.value).upper())
        supplies = None
        performs = None
        if vendor_type in _SUPPLIER_TYPES:
            supplies = SupplierCapabilities(
                materials=_as_tuple(record.get("materials")),
                alternates=_as_tuple(record.get("alternates")),
            )
        elif record.get("materials"):
            raise ValueError(f"Vendor '{record.get('name')}' is not a supplier but lists materials")
        if vendor_type in _SUBCONTRACTOR_TYPES:
            crew = safe_float(record.get("crew_size"))
            performs = SubcontractorCapabilities(
                services=_as_tuple(record.get("services")),
                crew_size=int(crew) if crew is not None else None,
                certifications=_as_tuple(record.get("certifications")),
            )
        elif record.get("services"):
            raise ValueError(f"Vendor '{record.get('name')}' is not a subcontractor but lists services")
        return cls(
            id=clean_text(record.get("id")) or new_id("ven"),
            name=clean_text(record.get("name")),
            type=vendor_type,
            trades=_as_tuple(record.get("trades")),
            email=safe_text(record.get("email")),
            supplies=supplies,
            performs=performs,
            service_radius=safe_float(record.get("service_radius")),
            rating=safe_float(record.get("rating")) or 0.0,
            active=_as_bool(record.get("active")),
        )


@dataclass
class VendorMaterialPricing:
    vendor_id: str
    material_id: str
    unit_cost: float
    uom: Optional[str] = None
    lead_time_days: Optional[int] = None
    last_quote_date: Optional[date] = None
    source_quote_id: Optional[str] = None
    active: bool = True


@dataclass
class RFQItem:
    id: str
    rfq_id: str
    bom_item_id: str
    quantity: float
    uom: str
    description: str


@dataclass
class RFQ:
    id: str
    project_id: str
    vendor_id: str
    rfq_number: str
    subject: str
    status: RFQStatus = RFQStatus.DRAFT
    due_date: Optional[date] = None
    sent_at: Optional[datetime] = None
    items: Tuple[RFQItem, ...] = ()


@dataclass
class QuoteItem:
    id: str
    quote_id: str
    bom_item_id: Optional[str]
    description: str
    quantity: float
    uom: str
    unit_price: float
    total_price: float
    sku: Optional[str] = None


@dataclass
class Quote:
    id: str
    project_id: str
    vendor_id: str
    rfq_id: Optional[str]
    quote_number: str
    total_amount: float
    status: QuoteStatus = QuoteStatus.RECEIVED
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: Tuple[QuoteItem, ...] = ()


@dataclass(frozen=True)
class MaterialRule:
    """Admin override keyed by material description."""

    material: str
    trade: Optional[str] = None
    unit_cost: Optional[float] = None
    labor_per_unit: Optional[float] = None
    labor_rate: Optional[float] = None
    waste_factor: Optional[float] = None
    active: bool = True


@dataclass(frozen=True)
class TradeMarkup:
    trade: str
    markup: float


@dataclass(frozen=True)
class RuleSet:
    """Immutable snapshot of the admin override tables."""

    material_rules: Mapping[str, MaterialRule] = field(default_factory=dict)
    trade_markups: Mapping[str, float] = field(default_factory=dict)
    version: str = "defaults"

    @classmethod
    def from_rules(
        cls,
        rules: Iterable[MaterialRule] = (),
        markups: Iterable[TradeMarkup] = (),
    ) -> "RuleSet":
        rule_map = {rule.material: rule for rule in rules if rule.active}
        markup_map = {markup.trade: float(markup.markup) for markup in markups}
        payload = json.dumps(
            {
                "rules": {name: rule.__dict__ for name, rule in sorted(rule_map.items())},
                "markups": dict(sorted(markup_map.items())),
            },
            sort_keys=True,
            default=json_default,
        )
        version = hashlib.sha1(payload.encode("utf-8")).hexdigest()[:12]
        return cls(material_rules=rule_map, trade_markups=markup_map, version=version)

    def rule_for(self, description: str) -> Optional[MaterialRule]:
        rule = self.material_rules.get(description)
        if rule is None or not rule.active:
            return None
        return rule

    def markup_for(self, trade: str) -> float:
        return float(self.trade_markups.get(trade, 0.0))


__all__ = [
    "BOMLineItem",
    "Estimate",
    "EstimateStatus",
    "FeatureType",
    "Material",
    "MaterialDescriptor",
    "MaterialRule",
    "Project",
    "ProjectStatus",
    "Quote",
    "QuoteItem",
    "QuoteStatus",
    "RFQ",
    "RFQItem",
    "RFQStatus",
    "RuleSet",
    "SubcontractorCapabilities",
    "SupplierCapabilities",
    "TakeoffFeature",
    "TradeMarkup",
    "Vendor",
    "VendorMaterialPricing",
    "VendorType",
]
