"""SQLite persistence for projects, materials, BOM lines, vendors and quotes."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import NotFoundError, RegistryError
from .models import (
    BOMLineItem,
    Estimate,
    EstimateStatus,
    Material,
    MaterialDescriptor,
    MaterialRule,
    Project,
    ProjectStatus,
    Quote,
    QuoteItem,
    QuoteStatus,
    RFQ,
    RFQItem,
    RFQStatus,
    RuleSet,
    SubcontractorCapabilities,
    SupplierCapabilities,
    TradeMarkup,
    Vendor,
    VendorMaterialPricing,
    VendorType,
)
from .utils import dumps, new_id, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = Path.home() / ".gcbid" / "estimating.sqlite"

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    takeoff_job_id TEXT,
    location TEXT,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS estimates (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    version TEXT NOT NULL,
    status TEXT NOT NULL,
    material_cost REAL NOT NULL DEFAULT 0,
    average_confidence REAL,
    item_count INTEGER NOT NULL DEFAULT 0,
    failed_features INTEGER NOT NULL DEFAULT 0,
    rule_version TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS materials (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    trade TEXT NOT NULL,
    description TEXT,
    sku TEXT,
    category TEXT,
    manufacturer TEXT,
    model TEXT,
    specs TEXT,
    uom TEXT,
    waste_factor REAL,
    times_used INTEGER NOT NULL DEFAULT 0,
    last_used TEXT,
    active INTEGER NOT NULL DEFAULT 1,
    UNIQUE(name, trade)
);

CREATE TABLE IF NOT EXISTS bom_items (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    estimate_id TEXT NOT NULL REFERENCES estimates(id) ON DELETE CASCADE,
    material_id TEXT REFERENCES materials(id),
    csi_division TEXT,
    category TEXT,
    description TEXT NOT NULL,
    sku TEXT,
    quantity REAL NOT NULL,
    uom TEXT NOT NULL,
    waste_factor REAL NOT NULL,
    final_quantity REAL NOT NULL,
    unit_cost REAL NOT NULL,
    total_cost REAL NOT NULL,
    confidence REAL NOT NULL,
    source TEXT,
    trade TEXT NOT NULL,
    manufacturer TEXT,
    model TEXT
);

CREATE TABLE IF NOT EXISTS vendors (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    email TEXT,
    trades TEXT NOT NULL,
    materials TEXT,
    alternates TEXT,
    services TEXT,
    crew_size INTEGER,
    certifications TEXT,
    service_radius REAL,
    rating REAL NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS vendor_material_pricing (
    vendor_id TEXT NOT NULL REFERENCES vendors(id) ON DELETE CASCADE,
    material_id TEXT NOT NULL REFERENCES materials(id) ON DELETE CASCADE,
    unit_cost REAL NOT NULL,
    uom TEXT,
    lead_time_days INTEGER,
    last_quote_date TEXT,
    source_quote_id TEXT,
    active INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT NOT NULL,
    UNIQUE(vendor_id, material_id)
);

CREATE TABLE IF NOT EXISTS rfqs (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    vendor_id TEXT NOT NULL REFERENCES vendors(id),
    rfq_number TEXT NOT NULL,
    subject TEXT,
    status TEXT NOT NULL,
    due_date TEXT,
    sent_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rfq_items (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    rfq_id TEXT NOT NULL REFERENCES rfqs(id) ON DELETE CASCADE,
    bom_item_id TEXT NOT NULL REFERENCES bom_items(id),
    quantity REAL NOT NULL,
    uom TEXT,
    description TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quotes (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    vendor_id TEXT NOT NULL REFERENCES vendors(id),
    rfq_id TEXT REFERENCES rfqs(id),
    quote_number TEXT NOT NULL,
    total_amount REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    accepted_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quote_items (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    quote_id TEXT NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
    bom_item_id TEXT REFERENCES bom_items(id),
    description TEXT NOT NULL,
    quantity REAL NOT NULL,
    uom TEXT,
    unit_price REAL NOT NULL,
    total_price REAL NOT NULL,
    sku TEXT
);

CREATE TABLE IF NOT EXISTS material_rules (
    material TEXT PRIMARY KEY,
    trade TEXT,
    unit_cost REAL,
    labor_per_unit REAL,
    labor_rate REAL,
    waste_factor REAL,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS trade_markups (
    trade TEXT PRIMARY KEY,
    markup REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS email_templates (
    type TEXT PRIMARY KEY,
    subject TEXT,
    body TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_bom_items_project ON bom_items(project_id);
CREATE INDEX IF NOT EXISTS idx_bom_items_estimate ON bom_items(estimate_id);
CREATE INDEX IF NOT EXISTS idx_quotes_project ON quotes(project_id);
CREATE INDEX IF NOT EXISTS idx_pricing_material ON vendor_material_pricing(material_id);
"""


def _iso(value: Optional[object]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _json_list(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(json.loads(value))


class Store:
    """Store estimating records in a SQLite database."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path else DEFAULT_DATABASE_PATH
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _ensure_schema(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            conn = self._connect()
            try:
                conn.execute("PRAGMA journal_mode = WAL;")
                conn.executescript(SCHEMA)
                conn.commit()
            finally:
                conn.close()
            try:
                os.chmod(self.path, 0o600)
            except OSError:
                pass
            self._initialized = True

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose statements commit or roll back together."""

        self._ensure_schema()
        with self._lock:
            conn = self._connect()
            try:
                if immediate:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def _fetchall(self, query: str, params: Sequence[object] = ()) -> List[sqlite3.Row]:
        self._ensure_schema()
        with self._lock:
            conn = self._connect()
            try:
                return conn.execute(query, params).fetchall()
            finally:
                conn.close()

    def _fetchone(self, query: str, params: Sequence[object] = ()) -> Optional[sqlite3.Row]:
        rows = self._fetchall(query + " LIMIT 1", params)
        return rows[0] if rows else None

    # Projects -------------------------------------------------------------

    def create_project(self, project: Project) -> Project:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO projects (id, name, takeoff_job_id, location, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    project.id,
                    project.name,
                    project.takeoff_job_id,
                    project.location,
                    ProjectStatus(project.status).value,
                    _iso(utc_now()),
                ),
            )
        return project

    def get_project(self, project_id: str) -> Project:
        row = self._fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        if row is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        return Project(
            id=row["id"],
            name=row["name"],
            takeoff_job_id=row["takeoff_job_id"],
            location=row["location"],
            status=ProjectStatus(row["status"]),
        )

    def set_project_status(self, project_id: str, status: ProjectStatus) -> None:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE projects SET status = ? WHERE id = ?",
                (ProjectStatus(status).value, project_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Project '{project_id}' not found")

    # Estimates ------------------------------------------------------------

    def create_estimate(self, project_id: str, rule_version: Optional[str] = None) -> Estimate:
        created_at = utc_now()
        with self.transaction(immediate=True) as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM estimates WHERE project_id = ?",
                (project_id,),
            ).fetchone()[0]
            estimate = Estimate(
                id=new_id("est"),
                project_id=project_id,
                version=f"{int(count) + 1}.0",
                status=EstimateStatus.DRAFT,
                created_at=created_at,
            )
            conn.execute(
                """
                INSERT INTO estimates (id, project_id, version, status, rule_version, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    estimate.id,
                    project_id,
                    estimate.version,
                    estimate.status.value,
                    rule_version,
                    _iso(created_at),
                ),
            )
        return estimate

    def finalize_estimate(self, estimate_id: str, status: EstimateStatus, failed_features: int = 0) -> Estimate:
        """Recompute estimate aggregates from its persisted line items."""

        with self.transaction() as conn:
            totals = conn.execute(
                """
                SELECT COUNT(*) AS item_count,
                       COALESCE(SUM(total_cost), 0) AS material_cost,
                       AVG(confidence) AS average_confidence
                FROM bom_items WHERE estimate_id = ?
                """,
                (estimate_id,),
            ).fetchone()
            conn.execute(
                """
                UPDATE estimates
                SET status = ?, material_cost = ?, average_confidence = ?,
                    item_count = ?, failed_features = ?
                WHERE id = ?
                """,
                (
                    EstimateStatus(status).value,
                    float(totals["material_cost"]),
                    totals["average_confidence"],
                    int(totals["item_count"]),
                    int(failed_features),
                    estimate_id,
                ),
            )
        return self.get_estimate(estimate_id)

    def supersede_estimates(self, project_id: str, keep_estimate_id: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE estimates SET status = ?
                WHERE project_id = ? AND id != ? AND status != ?
                """,
                (
                    EstimateStatus.SUPERSEDED.value,
                    project_id,
                    keep_estimate_id,
                    EstimateStatus.SUPERSEDED.value,
                ),
            )
            return cursor.rowcount

    def get_estimate(self, estimate_id: str) -> Estimate:
        row = self._fetchone("SELECT * FROM estimates WHERE id = ?", (estimate_id,))
        if row is None:
            raise NotFoundError(f"Estimate '{estimate_id}' not found")
        return self._estimate_from_row(row)

    def list_estimates(self, project_id: str) -> List[Estimate]:
        rows = self._fetchall(
            "SELECT * FROM estimates WHERE project_id = ? ORDER BY created_at, version",
            (project_id,),
        )
        return [self._estimate_from_row(row) for row in rows]

    @staticmethod
    def _estimate_from_row(row: sqlite3.Row) -> Estimate:
        return Estimate(
            id=row["id"],
            project_id=row["project_id"],
            version=row["version"],
            status=EstimateStatus(row["status"]),
            material_cost=float(row["material_cost"] or 0.0),
            average_confidence=row["average_confidence"],
            item_count=int(row["item_count"] or 0),
            failed_features=int(row["failed_features"] or 0),
            created_at=_parse_datetime(row["created_at"]),
        )

    # Materials ------------------------------------------------------------

    def resolve_material(self, descriptor: MaterialDescriptor) -> Material:
        """Create or touch the material identified by ``(name, trade)``."""

        now = _iso(utc_now())
        try:
            with self.transaction(immediate=True) as conn:
                existing = conn.execute(
                    "SELECT specs FROM materials WHERE name = ? AND trade = ?",
                    (descriptor.name, descriptor.trade),
                ).fetchone()
                specs: Optional[Dict[str, Any]] = None
                if existing is not None and existing["specs"]:
                    specs = dict(json.loads(existing["specs"]))
                if descriptor.specs:
                    specs = {**(specs or {}), **descriptor.specs}
                conn.execute(
                    """
                    INSERT INTO materials (
                        id, name, trade, description, sku, category, manufacturer,
                        model, specs, uom, waste_factor, times_used, last_used, active
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, 1)
                    ON CONFLICT(name, trade) DO UPDATE SET
                        times_used = materials.times_used + 1,
                        last_used = excluded.last_used,
                        description = COALESCE(excluded.description, materials.description),
                        sku = COALESCE(excluded.sku, materials.sku),
                        category = COALESCE(excluded.category, materials.category),
                        manufacturer = COALESCE(excluded.manufacturer, materials.manufacturer),
                        model = COALESCE(excluded.model, materials.model),
                        specs = COALESCE(excluded.specs, materials.specs),
                        uom = COALESCE(excluded.uom, materials.uom),
                        waste_factor = COALESCE(excluded.waste_factor, materials.waste_factor);
                    """,
                    (
                        new_id("mat"),
                        descriptor.name,
                        descriptor.trade,
                        descriptor.description,
                        descriptor.sku,
                        descriptor.category,
                        descriptor.manufacturer,
                        descriptor.model,
                        dumps(specs) if specs is not None else None,
                        descriptor.uom,
                        descriptor.waste_factor,
                        now,
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM materials WHERE name = ? AND trade = ?",
                    (descriptor.name, descriptor.trade),
                ).fetchone()
        except sqlite3.Error as exc:
            raise RegistryError(f"Could not register material '{descriptor.name}': {exc}") from exc
        return self._material_from_row(row)

    def get_material(self, material_id: str) -> Material:
        row = self._fetchone("SELECT * FROM materials WHERE id = ?", (material_id,))
        if row is None:
            raise NotFoundError(f"Material '{material_id}' not found")
        return self._material_from_row(row)

    def find_material(self, name: str, trade: str) -> Optional[Material]:
        row = self._fetchone(
            "SELECT * FROM materials WHERE name = ? AND trade = ?",
            (name, trade),
        )
        return self._material_from_row(row) if row is not None else None

    def search_materials(
        self,
        *,
        search: Optional[str] = None,
        trade: Optional[str] = None,
        category: Optional[str] = None,
        active_only: bool = True,
        limit: int = 50,
    ) -> List[Material]:
        conditions: List[str] = []
        params: List[object] = []
        if active_only:
            conditions.append("active = 1")
        if trade:
            conditions.append("trade = ?")
            params.append(trade)
        if category:
            conditions.append("category = ?")
            params.append(category)
        if search:
            pattern = f"%{search.casefold()}%"
            conditions.append(
                "(LOWER(name) LIKE ? OR LOWER(IFNULL(description, '')) LIKE ? "
                "OR LOWER(IFNULL(sku, '')) LIKE ? OR LOWER(IFNULL(category, '')) LIKE ?)"
            )
            params.extend([pattern, pattern, pattern, pattern])
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)
        rows = self._fetchall(
            f"SELECT * FROM materials {where_clause} ORDER BY times_used DESC, name ASC LIMIT ?",
            params,
        )
        return [self._material_from_row(row) for row in rows]

    def deactivate_material(self, material_id: str) -> None:
        with self.transaction() as conn:
            cursor = conn.execute("UPDATE materials SET active = 0 WHERE id = ?", (material_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Material '{material_id}' not found")

    @staticmethod
    def _material_from_row(row: sqlite3.Row) -> Material:
        return Material(
            id=row["id"],
            name=row["name"],
            trade=row["trade"],
            description=row["description"],
            sku=row["sku"],
            category=row["category"],
            manufacturer=row["manufacturer"],
            model=row["model"],
            specs=json.loads(row["specs"]) if row["specs"] else {},
            uom=row["uom"],
            waste_factor=row["waste_factor"],
            times_used=int(row["times_used"]),
            last_used=_parse_datetime(row["last_used"]),
            active=bool(row["active"]),
        )

    # BOM line items -------------------------------------------------------

    def add_bom_item(self, item: BOMLineItem) -> BOMLineItem:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO bom_items (
                    id, project_id, estimate_id, material_id, csi_division, category,
                    description, sku, quantity, uom, waste_factor, final_quantity,
                    unit_cost, total_cost, confidence, source, trade, manufacturer, model
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.project_id,
                    item.estimate_id,
                    item.material_id,
                    item.csi_division,
                    item.category,
                    item.description,
                    item.sku,
                    item.quantity,
                    item.uom,
                    item.waste_factor,
                    item.final_quantity,
                    item.unit_cost,
                    item.total_cost,
                    item.confidence,
                    item.source,
                    item.trade,
                    item.manufacturer,
                    item.model,
                ),
            )
        return item

    def list_bom_items(
        self,
        project_id: str,
        *,
        estimate_id: Optional[str] = None,
        include_superseded: bool = False,
    ) -> List[BOMLineItem]:
        conditions = ["b.project_id = ?"]
        params: List[object] = [project_id]
        if estimate_id:
            conditions.append("b.estimate_id = ?")
            params.append(estimate_id)
        if not include_superseded:
            conditions.append("e.status != ?")
            params.append(EstimateStatus.SUPERSEDED.value)
        rows = self._fetchall(
            f"""
            SELECT b.* FROM bom_items b
            INNER JOIN estimates e ON e.id = b.estimate_id
            WHERE {' AND '.join(conditions)}
            ORDER BY b.seq
            """,
            params,
        )
        return [self._bom_item_from_row(row) for row in rows]

    def get_bom_items(self, item_ids: Sequence[str]) -> Dict[str, BOMLineItem]:
        if not item_ids:
            return {}
        placeholders = ",".join(["?"] * len(item_ids))
        rows = self._fetchall(
            f"SELECT * FROM bom_items WHERE id IN ({placeholders})",
            list(item_ids),
        )
        return {row["id"]: self._bom_item_from_row(row) for row in rows}

    @staticmethod
    def _bom_item_from_row(row: sqlite3.Row) -> BOMLineItem:
        return BOMLineItem(
            id=row["id"],
            project_id=row["project_id"],
            estimate_id=row["estimate_id"],
            csi_division=row["csi_division"],
            category=row["category"],
            description=row["description"],
            sku=row["sku"],
            quantity=float(row["quantity"]),
            uom=row["uom"],
            waste_factor=float(row["waste_factor"]),
            final_quantity=float(row["final_quantity"]),
            unit_cost=float(row["unit_cost"]),
            total_cost=float(row["total_cost"]),
            confidence=float(row["confidence"]),
            source=row["source"],
            trade=row["trade"],
            material_id=row["material_id"],
            manufacturer=row["manufacturer"],
            model=row["model"],
        )

    # Vendors --------------------------------------------------------------

    def upsert_vendor(self, vendor: Vendor) -> Vendor:
        supplies = vendor.supplies
        performs = vendor.performs
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO vendors (
                    id, name, type, email, trades, materials, alternates, services,
                    crew_size, certifications, service_radius, rating, active
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    type = excluded.type,
                    email = excluded.email,
                    trades = excluded.trades,
                    materials = excluded.materials,
                    alternates = excluded.alternates,
                    services = excluded.services,
                    crew_size = excluded.crew_size,
                    certifications = excluded.certifications,
                    service_radius = excluded.service_radius,
                    rating = excluded.rating,
                    active = excluded.active;
                """,
                (
                    vendor.id,
                    vendor.name,
                    vendor.type.value,
                    vendor.email,
                    json.dumps(list(vendor.trades)),
                    json.dumps(list(supplies.materials)) if supplies else None,
                    json.dumps(list(supplies.alternates)) if supplies else None,
                    json.dumps(list(performs.services)) if performs else None,
                    performs.crew_size if performs else None,
                    json.dumps(list(performs.certifications)) if performs else None,
                    vendor.service_radius,
                    vendor.rating,
                    int(vendor.active),
                ),
            )
        return vendor

    def get_vendor(self, vendor_id: str) -> Vendor:
        row = self._fetchone("SELECT * FROM vendors WHERE id = ?", (vendor_id,))
        if row is None:
            raise NotFoundError(f"Vendor '{vendor_id}' not found")
        return self._vendor_from_row(row)

    def list_vendors(self, *, trade: Optional[str] = None, active_only: bool = True) -> List[Vendor]:
        where_clause = "WHERE active = 1" if active_only else ""
        rows = self._fetchall(f"SELECT * FROM vendors {where_clause} ORDER BY rating DESC, name ASC")
        vendors = [self._vendor_from_row(row) for row in rows]
        if trade:
            vendors = [vendor for vendor in vendors if vendor.covers_trade(trade)]
        return vendors

    @staticmethod
    def _vendor_from_row(row: sqlite3.Row) -> Vendor:
        vendor_type = VendorType(row["type"])
        supplies = None
        performs = None
        if vendor_type in {VendorType.MATERIAL_SUPPLIER, VendorType.BOTH}:
            supplies = SupplierCapabilities(
                materials=_json_list(row["materials"]),
                alternates=_json_list(row["alternates"]),
            )
        if vendor_type in {VendorType.SUBCONTRACTOR, VendorType.BOTH}:
            performs = SubcontractorCapabilities(
                services=_json_list(row["services"]),
                crew_size=row["crew_size"],
                certifications=_json_list(row["certifications"]),
            )
        return Vendor(
            id=row["id"],
            name=row["name"],
            type=vendor_type,
            trades=_json_list(row["trades"]),
            email=row["email"],
            supplies=supplies,
            performs=performs,
            service_radius=row["service_radius"],
            rating=float(row["rating"] or 0.0),
            active=bool(row["active"]),
        )

    # Vendor price cache ---------------------------------------------------

    def upsert_pricing(self, pricing: VendorMaterialPricing) -> None:
        """Atomic upsert keyed by ``(vendor_id, material_id)``; last write wins."""

        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO vendor_material_pricing (
                    vendor_id, material_id, unit_cost, uom, lead_time_days,
                    last_quote_date, source_quote_id, active, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(vendor_id, material_id) DO UPDATE SET
                    unit_cost = excluded.unit_cost,
                    uom = COALESCE(excluded.uom, vendor_material_pricing.uom),
                    lead_time_days = COALESCE(excluded.lead_time_days, vendor_material_pricing.lead_time_days),
                    last_quote_date = COALESCE(excluded.last_quote_date, vendor_material_pricing.last_quote_date),
                    source_quote_id = COALESCE(excluded.source_quote_id, vendor_material_pricing.source_quote_id),
                    active = excluded.active,
                    updated_at = excluded.updated_at;
                """,
                (
                    pricing.vendor_id,
                    pricing.material_id,
                    pricing.unit_cost,
                    pricing.uom,
                    pricing.lead_time_days,
                    _iso(pricing.last_quote_date),
                    pricing.source_quote_id,
                    int(pricing.active),
                    _iso(utc_now()),
                ),
            )

    def get_pricing(self, vendor_id: str, material_id: str) -> Optional[VendorMaterialPricing]:
        row = self._fetchone(
            "SELECT * FROM vendor_material_pricing WHERE vendor_id = ? AND material_id = ?",
            (vendor_id, material_id),
        )
        return self._pricing_from_row(row) if row is not None else None

    def list_pricing(
        self,
        *,
        material_id: Optional[str] = None,
        vendor_id: Optional[str] = None,
        active_only: bool = True,
    ) -> List[VendorMaterialPricing]:
        conditions: List[str] = []
        params: List[object] = []
        if material_id:
            conditions.append("material_id = ?")
            params.append(material_id)
        if vendor_id:
            conditions.append("vendor_id = ?")
            params.append(vendor_id)
        if active_only:
            conditions.append("active = 1")
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self._fetchall(
            f"SELECT * FROM vendor_material_pricing {where_clause} ORDER BY unit_cost ASC, updated_at DESC",
            params,
        )
        return [self._pricing_from_row(row) for row in rows]

    @staticmethod
    def _pricing_from_row(row: sqlite3.Row) -> VendorMaterialPricing:
        return VendorMaterialPricing(
            vendor_id=row["vendor_id"],
            material_id=row["material_id"],
            unit_cost=float(row["unit_cost"]),
            uom=row["uom"],
            lead_time_days=row["lead_time_days"],
            last_quote_date=_parse_date(row["last_quote_date"]),
            source_quote_id=row["source_quote_id"],
            active=bool(row["active"]),
        )

    # RFQs -----------------------------------------------------------------

    def create_rfq(self, rfq: RFQ) -> RFQ:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO rfqs (id, project_id, vendor_id, rfq_number, subject, status, due_date, sent_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rfq.id,
                    rfq.project_id,
                    rfq.vendor_id,
                    rfq.rfq_number,
                    rfq.subject,
                    RFQStatus(rfq.status).value,
                    _iso(rfq.due_date),
                    _iso(rfq.sent_at),
                    _iso(utc_now()),
                ),
            )
            conn.executemany(
                """
                INSERT INTO rfq_items (id, rfq_id, bom_item_id, quantity, uom, description)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (item.id, rfq.id, item.bom_item_id, item.quantity, item.uom, item.description)
                    for item in rfq.items
                ],
            )
        return rfq

    def get_rfq(self, rfq_id: str) -> RFQ:
        row = self._fetchone("SELECT * FROM rfqs WHERE id = ?", (rfq_id,))
        if row is None:
            raise NotFoundError(f"RFQ '{rfq_id}' not found")
        item_rows = self._fetchall("SELECT * FROM rfq_items WHERE rfq_id = ? ORDER BY seq", (rfq_id,))
        items = tuple(
            RFQItem(
                id=item["id"],
                rfq_id=item["rfq_id"],
                bom_item_id=item["bom_item_id"],
                quantity=float(item["quantity"]),
                uom=item["uom"],
                description=item["description"],
            )
            for item in item_rows
        )
        return RFQ(
            id=row["id"],
            project_id=row["project_id"],
            vendor_id=row["vendor_id"],
            rfq_number=row["rfq_number"],
            subject=row["subject"],
            status=RFQStatus(row["status"]),
            due_date=_parse_date(row["due_date"]),
            sent_at=_parse_datetime(row["sent_at"]),
            items=items,
        )

    def list_rfqs(self, project_id: str) -> List[RFQ]:
        rows = self._fetchall(
            "SELECT id FROM rfqs WHERE project_id = ? ORDER BY created_at, rfq_number",
            (project_id,),
        )
        return [self.get_rfq(row["id"]) for row in rows]

    def set_rfq_status(self, rfq_id: str, status: RFQStatus, sent_at: Optional[datetime] = None) -> None:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE rfqs SET status = ?, sent_at = COALESCE(?, sent_at) WHERE id = ?",
                (RFQStatus(status).value, _iso(sent_at), rfq_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"RFQ '{rfq_id}' not found")

    # Quotes ---------------------------------------------------------------

    def create_quote(self, quote: Quote) -> Quote:
        """Persist ``quote`` with its items and mark the source RFQ responded."""

        with self.transaction(immediate=True) as conn:
            conn.execute(
                """
                INSERT INTO quotes (
                    id, project_id, vendor_id, rfq_id, quote_number,
                    total_amount, status, accepted_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    quote.id,
                    quote.project_id,
                    quote.vendor_id,
                    quote.rfq_id,
                    quote.quote_number,
                    quote.total_amount,
                    QuoteStatus(quote.status).value,
                    _iso(quote.accepted_at),
                    _iso(quote.created_at or utc_now()),
                ),
            )
            conn.executemany(
                """
                INSERT INTO quote_items (
                    id, quote_id, bom_item_id, description, quantity,
                    uom, unit_price, total_price, sku
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.id,
                        quote.id,
                        item.bom_item_id,
                        item.description,
                        item.quantity,
                        item.uom,
                        item.unit_price,
                        item.total_price,
                        item.sku,
                    )
                    for item in quote.items
                ],
            )
            if quote.rfq_id:
                conn.execute(
                    "UPDATE rfqs SET status = ? WHERE id = ?",
                    (RFQStatus.RESPONDED.value, quote.rfq_id),
                )
        return quote

    def get_quote(self, quote_id: str) -> Quote:
        row = self._fetchone("SELECT * FROM quotes WHERE id = ?", (quote_id,))
        if row is None:
            raise NotFoundError(f"Quote '{quote_id}' not found")
        return self._quotes_with_items([row])[0]

    def list_quotes(self, project_id: str, *, include_rejected: bool = True) -> List[Quote]:
        query = "SELECT * FROM quotes WHERE project_id = ?"
        params: List[object] = [project_id]
        if not include_rejected:
            query += " AND status != ?"
            params.append(QuoteStatus.REJECTED.value)
        rows = self._fetchall(query + " ORDER BY created_at, quote_number", params)
        return self._quotes_with_items(rows)

    def award_quote(self, quote_id: str) -> Tuple[Quote, int]:
        """Award ``quote_id`` and reject its rivals in one project-scoped transaction.

        Returns the awarded quote and the number of rival quotes rejected.
        """

        accepted_at = utc_now()
        with self.transaction(immediate=True) as conn:
            row = conn.execute("SELECT project_id FROM quotes WHERE id = ?", (quote_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Quote '{quote_id}' not found")
            project_id = row["project_id"]
            conn.execute(
                "UPDATE quotes SET status = ?, accepted_at = ? WHERE id = ?",
                (QuoteStatus.AWARDED.value, _iso(accepted_at), quote_id),
            )
            rejected = conn.execute(
                """
                UPDATE quotes SET status = ?
                WHERE project_id = ? AND id != ? AND status != ?
                """,
                (
                    QuoteStatus.REJECTED.value,
                    project_id,
                    quote_id,
                    QuoteStatus.REJECTED.value,
                ),
            ).rowcount
            conn.execute(
                "UPDATE projects SET status = ? WHERE id = ?",
                (ProjectStatus.AWARD_PENDING.value, project_id),
            )
        return self.get_quote(quote_id), int(rejected)

    def _quotes_with_items(self, rows: Sequence[sqlite3.Row]) -> List[Quote]:
        if not rows:
            return []
        quote_ids = [row["id"] for row in rows]
        placeholders = ",".join(["?"] * len(quote_ids))
        item_rows = self._fetchall(
            f"SELECT * FROM quote_items WHERE quote_id IN ({placeholders}) ORDER BY seq",
            quote_ids,
        )
        items_by_quote: Dict[str, List[QuoteItem]] = {quote_id: [] for quote_id in quote_ids}
        for item in item_rows:
            items_by_quote[item["quote_id"]].append(
                QuoteItem(
                    id=item["id"],
                    quote_id=item["quote_id"],
                    bom_item_id=item["bom_item_id"],
                    description=item["description"],
                    quantity=float(item["quantity"]),
                    uom=item["uom"],
                    unit_price=float(item["unit_price"]),
                    total_price=float(item["total_price"]),
                    sku=item["sku"],
                )
            )
        return [
            Quote(
                id=row["id"],
                project_id=row["project_id"],
                vendor_id=row["vendor_id"],
                rfq_id=row["rfq_id"],
                quote_number=row["quote_number"],
                total_amount=float(row["total_amount"] or 0.0),
                status=QuoteStatus(row["status"]),
                accepted_at=_parse_datetime(row["accepted_at"]),
                created_at=_parse_datetime(row["created_at"]),
                items=tuple(items_by_quote[row["id"]]),
            )
            for row in rows
        ]

    # Admin overrides ------------------------------------------------------

    def upsert_material_rule(self, rule: MaterialRule) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO material_rules (material, trade, unit_cost, labor_per_unit, labor_rate, waste_factor, active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(material) DO UPDATE SET
                    trade = excluded.trade,
                    unit_cost = excluded.unit_cost,
                    labor_per_unit = excluded.labor_per_unit,
                    labor_rate = excluded.labor_rate,
                    waste_factor = excluded.waste_factor,
                    active = excluded.active;
                """,
                (
                    rule.material,
                    rule.trade,
                    rule.unit_cost,
                    rule.labor_per_unit,
                    rule.labor_rate,
                    rule.waste_factor,
                    int(rule.active),
                ),
            )

    def set_trade_markup(self, markup: TradeMarkup) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO trade_markups (trade, markup) VALUES (?, ?)
                ON CONFLICT(trade) DO UPDATE SET markup = excluded.markup;
                """,
                (markup.trade, markup.markup),
            )

    def load_rule_set(self) -> RuleSet:
        """Snapshot the override tables for injection into the estimators."""

        rule_rows = self._fetchall("SELECT * FROM material_rules WHERE active = 1 ORDER BY material")
        markup_rows = self._fetchall("SELECT * FROM trade_markups ORDER BY trade")
        rules = [
            MaterialRule(
                material=row["material"],
                trade=row["trade"],
                unit_cost=row["unit_cost"],
                labor_per_unit=row["labor_per_unit"],
                labor_rate=row["labor_rate"],
                waste_factor=row["waste_factor"],
                active=bool(row["active"]),
            )
            for row in rule_rows
        ]
        markups = [TradeMarkup(trade=row["trade"], markup=float(row["markup"])) for row in markup_rows]
        return RuleSet.from_rules(rules, markups)

    def upsert_email_template(self, template_type: str, body: str, subject: Optional[str] = None) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO email_templates (type, subject, body, active) VALUES (?, ?, ?, 1)
                ON CONFLICT(type) DO UPDATE SET
                    subject = excluded.subject,
                    body = excluded.body,
                    active = 1;
                """,
                (template_type.upper(), subject, body),
            )

    def get_email_template(self, template_type: str) -> Optional[Dict[str, Optional[str]]]:
        row = self._fetchone(
            "SELECT subject, body FROM email_templates WHERE type = ? AND active = 1",
            (template_type.upper(),),
        )
        if row is None:
            return None
        return {"subject": row["subject"], "body": row["body"]}

    def stats(self) -> Dict[str, int]:
        row = self._fetchone(
            """
            SELECT
                (SELECT COUNT(*) FROM projects) AS projects,
                (SELECT COUNT(*) FROM materials) AS materials,
                (SELECT COUNT(*) FROM bom_items) AS bom_items,
                (SELECT COUNT(*) FROM vendors WHERE active = 1) AS vendors,
                (SELECT COUNT(*) FROM rfqs) AS rfqs,
                (SELECT COUNT(*) FROM quotes) AS quotes
            """
        )
        if row is None:
            return {key: 0 for key in ("projects", "materials", "bom_items", "vendors", "rfqs", "quotes")}
        return {key: int(row[key]) for key in row.keys()}


__all__ = ["DEFAULT_DATABASE_PATH", "SCHEMA", "Store"]
