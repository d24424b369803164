"""Configuration loading utilities for the bid estimator."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd
import yaml

from gccore.models import MaterialRule, TradeMarkup, Vendor
from gccore.utils import clean_text, safe_float

REGENERATION_MODES = ("append", "supersede")


@dataclass
class DatabaseConfig:
    """Location of the SQLite database backing the store."""

    path: Path = Path("data") / "estimating.sqlite"

    def resolved(self, base_path: Path) -> "DatabaseConfig":
        return DatabaseConfig(path=_resolve_path(self.path, base_path))


@dataclass
class EstimatingConfig:
    """Settings for BOM generation and labor estimation."""

    takeoff_path: Optional[Path] = None
    regeneration: str = "append"
    default_labor_rate: float = 50.0
    source_tag: str = "Generated from takeoff"

    def resolved(self, base_path: Path) -> "EstimatingConfig":
        takeoff_path = _resolve_path(self.takeoff_path, base_path) if self.takeoff_path else None
        return EstimatingConfig(
            takeoff_path=takeoff_path,
            regeneration=self.regeneration,
            default_labor_rate=self.default_labor_rate,
            source_tag=self.source_tag,
        )


@dataclass
class QuoteConfig:
    """Settings for RFQ preparation and quote ingestion."""

    suggestion_top_k: int = 3
    suggestion_provider: str = "tfidf"
    rfq_due_days: Optional[int] = 14
    attachment_extensions: List[str] = field(default_factory=lambda: [".xlsx", ".xlsm", ".csv"])


@dataclass
class OutputConfig:
    """Paths describing where reports should be written."""

    directory: Path = Path("output")
    audit_log: str = "audit.json"

    def resolved(self, base_path: Path) -> "OutputConfig":
        return OutputConfig(directory=_resolve_path(self.directory, base_path), audit_log=self.audit_log)


@dataclass
class AppConfig:
    """Container for all configuration required by the CLI pipeline."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    estimating: EstimatingConfig = field(default_factory=EstimatingConfig)
    quotes: QuoteConfig = field(default_factory=QuoteConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def resolved(self, base_path: Path) -> "AppConfig":
        return AppConfig(
            database=self.database.resolved(base_path),
            estimating=self.estimating.resolved(base_path),
            quotes=self.quotes,
            output=self.output.resolved(base_path),
        )


def default_config(base_path: Optional[Path] = None) -> AppConfig:
    """Return the built-in configuration resolved against ``base_path``."""

    return AppConfig().resolved(Path(base_path) if base_path else Path.cwd())


def load_config(path: Path) -> AppConfig:
    """Load :class:`AppConfig` from a YAML file."""

    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file '{config_path}' does not exist")

    with config_path.open("r", encoding="utf-8") as stream:
        raw_config: Mapping[str, Any] = yaml.safe_load(stream) or {}

    if not isinstance(raw_config, Mapping):
        raise ValueError("Configuration root must be a mapping")

    database = DatabaseConfig(**_parse_paths(raw_config.get("database", {}), DatabaseConfig, {"path"}))
    estimating = EstimatingConfig(
        **_parse_paths(raw_config.get("estimating", {}), EstimatingConfig, {"takeoff_path"})
    )
    quotes = QuoteConfig(**_known_keys(raw_config.get("quotes", {}), QuoteConfig))
    output = OutputConfig(**_parse_paths(raw_config.get("output", {}), OutputConfig, {"directory"}))

    _validate_estimating(estimating)
    if quotes.suggestion_top_k < 0:
        raise ValueError("quotes.suggestion_top_k must not be negative")

    config = AppConfig(database=database, estimating=estimating, quotes=quotes, output=output)
    return config.resolved(config_path.parent)


@dataclass
class RuleFile:
    """Admin overrides read from a YAML rules file."""

    material_rules: List[MaterialRule] = field(default_factory=list)
    trade_markups: List[TradeMarkup] = field(default_factory=list)
    email_templates: Dict[str, Dict[str, Optional[str]]] = field(default_factory=dict)


def load_rules(path: Path) -> RuleFile:
    """Load material rules, trade markups and email templates from YAML.

    ``trade_markups`` may be a mapping of trade to percentage or a list of
    ``{trade, markup}`` entries.
    """

    raw = _read_yaml(path)
    rules: List[MaterialRule] = []
    for entry in raw.get("material_rules") or []:
        material = clean_text(entry.get("material"))
        if not material:
            raise ValueError("Every material rule needs a 'material' name")
        rules.append(
            MaterialRule(
                material=material,
                trade=clean_text(entry.get("trade")).upper() or None,
                unit_cost=safe_float(entry.get("unit_cost")),
                labor_per_unit=safe_float(entry.get("labor_per_unit")),
                labor_rate=safe_float(entry.get("labor_rate")),
                waste_factor=safe_float(entry.get("waste_factor")),
                active=bool(entry.get("active", True)),
            )
        )

    markups_section = raw.get("trade_markups") or {}
    if isinstance(markups_section, Mapping):
        markup_items = list(markups_section.items())
    else:
        markup_items = [(entry.get("trade"), entry.get("markup")) for entry in markups_section]
    markups: List[TradeMarkup] = []
    for trade, markup in markup_items:
        value = safe_float(markup)
        if not clean_text(trade) or value is None:
            raise ValueError(f"Invalid trade markup entry: {trade!r} -> {markup!r}")
        markups.append(TradeMarkup(trade=clean_text(trade).upper(), markup=value))

    templates: Dict[str, Dict[str, Optional[str]]] = {}
    for template_type, entry in (raw.get("email_templates") or {}).items():
        if isinstance(entry, str):
            entry = {"body": entry}
        if not entry.get("body"):
            raise ValueError(f"Email template '{template_type}' has no body")
        templates[str(template_type).upper()] = {"subject": entry.get("subject"), "body": entry["body"]}

    return RuleFile(material_rules=rules, trade_markups=markups, email_templates=templates)


def load_vendors(path: Path) -> List[Vendor]:
    """Load a vendor roster from YAML (list or ``vendors:`` key) or CSV."""

    source = Path(path).expanduser()
    if source.suffix.lower() in {".csv", ".txt"}:
        if not source.exists():
            raise FileNotFoundError(f"Vendor file '{source}' does not exist")
        frame = pd.read_csv(source, dtype=str)
        records = frame.astype(object).where(frame.notna(), None).to_dict(orient="records")
    else:
        raw = _read_yaml(source, allow_list=True)
        records = raw.get("vendors", []) if isinstance(raw, Mapping) else raw
    return [Vendor.from_record(record) for record in records]


def _read_yaml(path: Path, allow_list: bool = False) -> Any:
    source = Path(path).expanduser()
    if not source.exists():
        raise FileNotFoundError(f"File '{source}' does not exist")
    with source.open("r", encoding="utf-8") as stream:
        payload = yaml.safe_load(stream) or {}
    if isinstance(payload, Mapping) or (allow_list and isinstance(payload, list)):
        return payload
    raise ValueError(f"File '{source}' must contain a mapping")


def _validate_estimating(section: EstimatingConfig) -> None:
    mode = str(section.regeneration).strip().lower()
    if mode not in REGENERATION_MODES:
        raise ValueError(
            f"estimating.regeneration must be one of {', '.join(REGENERATION_MODES)}, got '{section.regeneration}'"
        )
    section.regeneration = mode
    section.default_labor_rate = float(section.default_labor_rate)
    if section.default_labor_rate < 0:
        raise ValueError("estimating.default_labor_rate must not be negative")


def _known_keys(section: Any, config_type: type) -> Dict[str, Any]:
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ValueError(f"Section for {config_type.__name__} must be a mapping")
    allowed = {field_info.name for field_info in fields(config_type)}
    unknown = sorted(set(section) - allowed)
    if unknown:
        raise ValueError(f"Unknown {config_type.__name__} option(s): {', '.join(unknown)}")
    return dict(section)


def _parse_paths(section: Any, config_type: type, path_keys: set) -> Dict[str, Any]:
    parsed = _known_keys(section, config_type)
    for key in path_keys:
        if parsed.get(key) is not None:
            parsed[key] = Path(parsed[key])
    return parsed


def _resolve_path(path: Path, base_path: Path) -> Path:
    expanded = Path(path).expanduser()
    if expanded.is_absolute():
        return expanded
    return (base_path / expanded).resolve()


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "EstimatingConfig",
    "OutputConfig",
    "QuoteConfig",
    "REGENERATION_MODES",
    "RuleFile",
    "default_config",
    "load_config",
    "load_rules",
    "load_vendors",
]
