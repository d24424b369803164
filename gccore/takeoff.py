"""Read-only access to takeoff features produced by the upstream system."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .errors import TakeoffUnavailableError
from .models import FeatureType, TakeoffFeature

logger = logging.getLogger(__name__)

FEATURE_COLUMNS: Sequence[str] = (
    "id",
    "job_id",
    "type",
    "area",
    "length",
    "width",
    "height",
    "diameter",
    "count",
    "description",
    "meta",
)


class TakeoffSource(ABC):
    """Abstract base class that all takeoff sources must implement."""

    @abstractmethod
    def has_job(self, job_id: str) -> bool:
        """Return True when ``job_id`` is known to the source."""

    @abstractmethod
    def features(self, job_id: str, types: Optional[Iterable[FeatureType]] = None) -> List[TakeoffFeature]:
        """Return the features of ``job_id``, optionally restricted to ``types``."""

    def rejected(self, job_id: str) -> List[Dict[str, Any]]:
        """Rows of ``job_id`` that could not be read as features.

        Each entry carries ``id``, ``type`` and ``error``.
        """

        return []


class FrameTakeoffSource(TakeoffSource):
    """Takeoff source backed by a dataframe of feature rows."""

    def __init__(self, frame: pd.DataFrame) -> None:
        missing = [column for column in ("job_id", "type") if column not in frame.columns]
        if missing:
            raise ValueError(f"Takeoff data is missing required columns: {', '.join(missing)}")
        prepared = frame.copy()
        for column in FEATURE_COLUMNS:
            if column not in prepared.columns:
                prepared[column] = None
        if prepared["id"].isna().any():
            generated = pd.Series([f"feature-{idx}" for idx in range(len(prepared))], index=prepared.index)
            prepared["id"] = prepared["id"].fillna(generated)
        prepared["job_id"] = prepared["job_id"].astype(str).str.strip()
        prepared["type"] = prepared["type"].astype(str).str.strip().str.upper()
        self._frame = prepared

    def has_job(self, job_id: str) -> bool:
        return bool((self._frame["job_id"] == str(job_id)).any())

    def features(self, job_id: str, types: Optional[Iterable[FeatureType]] = None) -> List[TakeoffFeature]:
        rows = self._frame.loc[self._frame["job_id"] == str(job_id)]
        if types is not None:
            wanted = {FeatureType(value).value for value in types}
            rows = rows.loc[rows["type"].isin(wanted)]
        features, _ = self._read(rows)
        return features

    def rejected(self, job_id: str) -> List[Dict[str, Any]]:
        _, rejected = self._read(self._frame.loc[self._frame["job_id"] == str(job_id)])
        return rejected

    @staticmethod
    def _read(rows: pd.DataFrame) -> Tuple[List[TakeoffFeature], List[Dict[str, Any]]]:
        records = rows.astype(object).where(rows.notna(), None).to_dict(orient="records")
        features: List[TakeoffFeature] = []
        rejected: List[Dict[str, Any]] = []
        for record in records:
            try:
                features.append(TakeoffFeature.from_record(record))
            except ValueError as exc:
                logger.debug("Takeoff row %s could not be read: %s", record.get("id"), exc)
                rejected.append({"id": str(record.get("id")), "type": str(record.get("type")), "error": str(exc)})
        return features, rejected


def load_takeoff_source(path: Path) -> FrameTakeoffSource:
    """Load a takeoff export (CSV or JSON list of features)."""

    path = Path(path)
    if not path.exists():
        raise TakeoffUnavailableError(f"Takeoff export '{path}' does not exist")

    ext = path.suffix.lower()
    if ext in {".csv", ".txt"}:
        frame = pd.read_csv(path, dtype={"id": str, "job_id": str})
    elif ext == ".json":
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if isinstance(payload, dict):
            payload = payload.get("features", [])
        frame = pd.DataFrame(payload)
    else:
        raise ValueError(f"Unsupported takeoff export extension '{ext}'")

    logger.info("Loaded %d takeoff features from %s", len(frame), path)
    return FrameTakeoffSource(frame)


__all__ = [
    "FEATURE_COLUMNS",
    "FrameTakeoffSource",
    "TakeoffSource",
    "load_takeoff_source",
]
