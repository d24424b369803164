"""Normalization helpers for currency amounts and units of measure."""
from __future__ import annotations

import math
import re
from typing import Any, Optional

import pandas as pd

from .utils import clean_text

# Decimal number with optional thousands separators: 3.50, 1,250.00, 12
AMOUNT_PATTERN = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?")
CURRENCY_AMOUNT_PATTERN = re.compile(r"\$\s*(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)")

UNIT_ALIASES = {
    "ea": "EA",
    "each": "EA",
    "pc": "EA",
    "pcs": "EA",
    "lf": "LF",
    "ft": "LF",
    "lin ft": "LF",
    "sf": "SF",
    "sqft": "SF",
    "sq ft": "SF",
    "ft2": "SF",
}


def coerce_numeric(values: pd.Series) -> pd.Series:
    """Coerce textual representations of amounts into floats."""

    if not isinstance(values, pd.Series):
        values = pd.Series(values)
    if values.empty:
        return pd.to_numeric(values, errors="coerce")

    cleaned = values.astype(str)
    cleaned = cleaned.str.replace("\u00A0", "", regex=False)
    cleaned = cleaned.str.replace(r"\s+", "", regex=True)
    cleaned = cleaned.str.replace(r"(?i)(usd|cad|eur|gbp|\$|€|£)", "", regex=True)
    cleaned = cleaned.str.replace(r"[^0-9,\.\-]", "", regex=True)
    cleaned = cleaned.str.replace(",", "", regex=False)
    cleaned = cleaned.str.replace(r"\.$", "", regex=True)

    return pd.to_numeric(cleaned, errors="coerce")


def parse_amount(value: Any) -> Optional[float]:
    """Scalar counterpart of :func:`coerce_numeric`; ``None`` when unparseable."""

    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        numeric = float(value)
        return None if math.isnan(numeric) else numeric
    parsed = coerce_numeric(pd.Series([value])).iloc[0]
    if pd.isna(parsed):
        return None
    return float(parsed)


def first_amount(text: str) -> Optional[float]:
    """Return the first currency-like number in ``text``.

    A ``$``-prefixed amount wins over bare numbers so that sizes such as
    ``12x12`` or ``1in`` are not mistaken for prices.
    """

    if not text:
        return None
    match = CURRENCY_AMOUNT_PATTERN.search(text)
    raw = match.group(1) if match else None
    if raw is None:
        bare = AMOUNT_PATTERN.search(text)
        raw = bare.group(0) if bare else None
    if raw is None:
        return None
    return float(raw.replace(",", ""))


def normalize_uom(value: Any, default: str = "EA") -> str:
    text = clean_text(value)
    if not text:
        return default
    return UNIT_ALIASES.get(text.casefold(), text.upper())


__all__ = [
    "AMOUNT_PATTERN",
    "CURRENCY_AMOUNT_PATTERN",
    "coerce_numeric",
    "first_amount",
    "normalize_uom",
    "parse_amount",
]
