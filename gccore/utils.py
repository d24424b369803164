"""Utility helpers shared across the core pipeline."""
from __future__ import annotations

import json
import math
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional


def clean_text(value: Any) -> str:
    """Normalise textual values for matching/search."""

    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value)
    text = re.sub(r"\s+", " ", text.strip())
    return text


def normalise_header(value: Any) -> str:
    """Normalise header text to ease column matching."""

    text = "" if value is None else str(value)
    text = text.strip().lower()
    return re.sub(r"\s+", " ", text)


def safe_float(value: object) -> Optional[float]:
    if value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(numeric):
        return None
    return numeric


def safe_text(value: object) -> Optional[str]:
    text = clean_text(value)
    return text or None


def json_default(value: object) -> object:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, set):
        return sorted(value)
    return str(value)


def dumps(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=json_default)


def new_id(prefix: str) -> str:
    """Return a short random identifier such as ``bom-1f2e3d4c5b6a``."""

    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def timestamp() -> str:
    """Return an ISO-8601 timestamp string."""

    return utc_now().isoformat().replace("+00:00", "Z")


def document_number(prefix: str, moment: Optional[datetime] = None) -> str:
    """Human facing number such as ``RFQ-20250101-4F2A``."""

    moment = moment or utc_now()
    return f"{prefix}-{moment:%Y%m%d}-{uuid.uuid4().hex[:4].upper()}"


__all__ = [
    "clean_text",
    "document_number",
    "dumps",
    "json_default",
    "new_id",
    "normalise_header",
    "safe_float",
    "safe_text",
    "timestamp",
    "utc_now",
]
