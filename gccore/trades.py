"""Trade detection utilities."""
from __future__ import annotations

import re
from typing import Dict, Optional, Sequence, Tuple

from .utils import clean_text

MECHANICAL = "M"
ELECTRICAL = "E"
PLUMBING = "P"
ARCHITECTURAL = "A"
STRUCTURAL = "S"
FIRE_PROTECTION = "F"

TRADE_CODES: Tuple[str, ...] = (
    MECHANICAL,
    ELECTRICAL,
    PLUMBING,
    ARCHITECTURAL,
    STRUCTURAL,
    FIRE_PROTECTION,
)

TRADE_NAMES: Dict[str, str] = {
    MECHANICAL: "Mechanical",
    ELECTRICAL: "Electrical",
    PLUMBING: "Plumbing",
    ARCHITECTURAL: "Architectural",
    STRUCTURAL: "Structural",
    FIRE_PROTECTION: "Fire Protection",
}

DEFAULT_TRADE = ARCHITECTURAL

# MasterFormat division (first two digits) -> trade
DIVISION_TRADES: Dict[str, str] = {
    "03": STRUCTURAL,
    "04": STRUCTURAL,
    "05": STRUCTURAL,
    "06": ARCHITECTURAL,
    "07": ARCHITECTURAL,
    "08": ARCHITECTURAL,
    "09": ARCHITECTURAL,
    "10": ARCHITECTURAL,
    "12": ARCHITECTURAL,
    "21": FIRE_PROTECTION,
    "22": PLUMBING,
    "23": MECHANICAL,
    "26": ELECTRICAL,
    "27": ELECTRICAL,
    "28": ELECTRICAL,
}

# Order matters: the first keyword group found in the category wins.
TRADE_KEYWORDS: Sequence[Tuple[str, Sequence[str]]] = (
    (PLUMBING, ("plumbing", "pipe")),
    (MECHANICAL, ("hvac", "mechanical", "duct")),
    (ELECTRICAL, ("electric", "wire", "conduit")),
    (ARCHITECTURAL, ("floor", "wall", "ceiling")),
    (FIRE_PROTECTION, ("fire", "sprinkler")),
    (STRUCTURAL, ("concrete", "steel", "structural")),
)

_DIVISION_PATTERN = re.compile(r"^\s*(\d{2})")


def division_prefix(csi_division: Optional[str]) -> Optional[str]:
    """Return the two digit division of ``csi_division`` (``"22 11 00"`` -> ``"22"``)."""

    if not csi_division:
        return None
    match = _DIVISION_PATTERN.match(str(csi_division))
    return match.group(1) if match else None


def classify_trade(csi_division: Optional[str] = None, category: Optional[str] = None) -> str:
    """Map a CSI division and/or category string to one trade code.

    Total and deterministic: unknown inputs fall back to architectural.
    """

    prefix = division_prefix(csi_division)
    if prefix is not None and prefix in DIVISION_TRADES:
        return DIVISION_TRADES[prefix]

    haystack = clean_text(category).casefold()
    if haystack:
        for trade, keywords in TRADE_KEYWORDS:
            if any(keyword in haystack for keyword in keywords):
                return trade
    return DEFAULT_TRADE


def trade_name(code: str) -> str:
    return TRADE_NAMES.get(code, code)


__all__ = [
    "DEFAULT_TRADE",
    "DIVISION_TRADES",
    "TRADE_CODES",
    "TRADE_KEYWORDS",
    "TRADE_NAMES",
    "classify_trade",
    "division_prefix",
    "trade_name",
]
