"""IO helpers for decoding quote attachments into tabular rows."""

from __future__ import annotations

import io
import logging
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from gccore.errors import AttachmentDecodeError
from gccore.normalize import coerce_numeric, normalize_uom
from gccore.utils import normalise_header

logger = logging.getLogger(__name__)

CANONICAL_COLUMNS: Sequence[str] = (
    "sku",
    "description",
    "unit",
    "quantity",
    "unit_price",
    "total_price",
)
NUMERIC_COLUMNS = {"quantity", "unit_price", "total_price"}

HEADER_HINTS: Dict[str, Sequence[str]] = {
    "sku": [
        "sku",
        "part number",
        "part no",
        "regex:^part ?#$",
        "item code",
        "product code",
        "code",
    ],
    "description": [
        "description",
        "item",
        "material",
        "product",
        "regex:^desc\\.?$",
    ],
    "unit": ["uom", "unit", "units", "u/m", "unit of measure"],
    "quantity": ["quantity", "qty", "regex:^qty\\.?$", "count"],
    "unit_price": [
        "unit price",
        "unitprice",
        "price",
        "unit cost",
        "rate",
        "price each",
        "each",
    ],
    "total_price": [
        "total price",
        "total",
        "amount",
        "extended",
        "ext price",
        "extended price",
        "line total",
    ],
}

# Detection order: price columns claim their headers before the bare "unit" hint can.
DETECTION_ORDER: Sequence[str] = (
    "unit_price",
    "total_price",
    "description",
    "quantity",
    "sku",
    "unit",
)

EXCEL_EXTENSIONS = {".xlsx", ".xlsm"}
LEGACY_EXCEL_EXTENSIONS = {".xls"}

AttachmentDecoder = Callable[[bytes, str], List[Dict[str, Any]]]


@dataclass(frozen=True)
class Attachment:
    """Raw attachment bytes as received with a vendor response."""

    filename: str
    content: bytes


def decode_attachment(content: bytes, filename: str = "") -> List[Dict[str, Any]]:
    """Decode spreadsheet bytes into ordered row records.

    Excel workbooks are read through openpyxl; anything else is tried as CSV.
    """

    if not content:
        raise AttachmentDecodeError(f"Attachment '{filename}' is empty")

    ext = Path(filename).suffix.lower()
    if ext in LEGACY_EXCEL_EXTENSIONS:
        raise AttachmentDecodeError(f"Attachment '{filename}' is a legacy .xls workbook; save it as .xlsx or CSV")
    buffer = io.BytesIO(content)
    try:
        if ext in EXCEL_EXTENSIONS:
            frame = pd.read_excel(buffer, dtype=object)
        else:
            frame = pd.read_csv(buffer, dtype=str, skipinitialspace=True)
    except (ImportError, ValueError, OSError, KeyError, zipfile.BadZipFile) as exc:
        raise AttachmentDecodeError(f"Could not decode attachment '{filename}': {exc}") from exc

    frame = frame.dropna(how="all")
    logger.debug("Decoded %d rows from attachment '%s'", len(frame), filename)
    return frame.astype(object).where(frame.notna(), None).to_dict(orient="records")


def rows_to_frame(rows: Sequence[Mapping[str, Any]]) -> pd.DataFrame:
    """Map decoded rows onto the canonical quote columns.

    Raises :class:`AttachmentDecodeError` when no description or SKU column and
    no unit price column can be detected.
    """

    raw = pd.DataFrame(list(rows))
    if raw.empty:
        raise AttachmentDecodeError("Attachment holds no rows")

    mapping = detect_columns(raw.columns)
    if mapping.get("unit_price") is None or (mapping.get("description") is None and mapping.get("sku") is None):
        raise AttachmentDecodeError(
            "Attachment headers do not describe quote lines: " + ", ".join(str(col) for col in raw.columns)
        )

    frame = pd.DataFrame(index=raw.index)
    for column in CANONICAL_COLUMNS:
        source = mapping.get(column)
        if source is not None:
            frame[column] = raw[source]
        else:
            frame[column] = np.nan if column in NUMERIC_COLUMNS else None

    for column in NUMERIC_COLUMNS:
        frame[column] = coerce_numeric(frame[column])
    for column in ("sku", "description"):
        frame[column] = frame[column].where(frame[column].notna(), "").astype(str).str.strip()
    frame["unit"] = frame["unit"].map(normalize_uom)
    return frame.reset_index(drop=True)


def detect_columns(columns: Iterable[Any]) -> Dict[str, Optional[str]]:
    """Best-effort inference of canonical columns using header hints."""

    header_pairs = [(col, normalise_header(col)) for col in columns]
    detected: Dict[str, Optional[str]] = {target: None for target in CANONICAL_COLUMNS}
    claimed: set = set()

    for target in DETECTION_ORDER:
        available = [pair for pair in header_pairs if pair[0] not in claimed]
        match = _match_header(available, _build_hint_patterns(target))
        if match is not None:
            detected[target] = match
            claimed.add(match)
            logger.debug("Autodetected column '%s' for '%s'", match, target)
        else:
            logger.debug("Failed to autodetect column for '%s'", target)
    return detected


def _build_hint_patterns(target: str) -> Dict[str, List[str]]:
    patterns: Dict[str, List[str]] = {"exact": [], "regex": [], "contains": []}
    for hint in HEADER_HINTS.get(target, []):
        if hint.startswith("regex:"):
            patterns["regex"].append(hint[len("regex:") :])
            continue
        normalised = normalise_header(hint)
        if normalised:
            patterns["exact"].append(normalised)
            patterns["contains"].append(rf"(?:^|\b){re.escape(normalised)}(?:\b|$)")
    return patterns


def _match_header(headers: Sequence[tuple], patterns: Dict[str, List[str]]) -> Optional[str]:
    exact = patterns.get("exact", [])
    for hint in exact:
        for original, normalised in headers:
            if normalised == hint:
                return original

    for kind in ("regex", "contains"):
        for pattern in patterns.get(kind, []):
            compiled = re.compile(pattern, flags=re.IGNORECASE)
            for original, normalised in headers:
                if compiled.search(normalised):
                    return original
    return None


__all__ = [
    "Attachment",
    "AttachmentDecoder",
    "CANONICAL_COLUMNS",
    "HEADER_HINTS",
    "decode_attachment",
    "detect_columns",
    "rows_to_frame",
]
