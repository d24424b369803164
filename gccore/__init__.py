"""Core building blocks for the GC bid estimator."""

from .errors import (
    AttachmentDecodeError,
    EstimatorError,
    NoBOMItemsError,
    NotFoundError,
    QuoteParseError,
    RegistryError,
    TakeoffUnavailableError,
)
from .registry import MaterialRegistry
from .store import Store
from .takeoff import FrameTakeoffSource, TakeoffSource, load_takeoff_source
from .trades import classify_trade, trade_name

__all__ = [
    "AttachmentDecodeError",
    "EstimatorError",
    "FrameTakeoffSource",
    "MaterialRegistry",
    "NoBOMItemsError",
    "NotFoundError",
    "QuoteParseError",
    "RegistryError",
    "Store",
    "TakeoffSource",
    "TakeoffUnavailableError",
    "classify_trade",
    "load_takeoff_source",
    "trade_name",
]
