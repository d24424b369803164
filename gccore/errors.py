"""Exception hierarchy for the estimating pipeline."""

from __future__ import annotations


class EstimatorError(Exception):
    """Base class for errors reported to callers of the pipeline."""


class NotFoundError(EstimatorError, KeyError):
    """A referenced project, RFQ, quote, vendor or material does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class TakeoffUnavailableError(EstimatorError, RuntimeError):
    """The takeoff source is not configured or does not know the job."""


class NoBOMItemsError(EstimatorError, ValueError):
    """Labor cannot be estimated for a project without BOM line items."""


class QuoteParseError(EstimatorError, ValueError):
    """Neither the structured nor the free-text tier produced a line item."""


class AttachmentDecodeError(EstimatorError, ValueError):
    """An attachment could not be decoded into tabular rows."""


class RegistryError(EstimatorError, RuntimeError):
    """The material registry could not persist a material."""


__all__ = [
    "AttachmentDecodeError",
    "EstimatorError",
    "NoBOMItemsError",
    "NotFoundError",
    "QuoteParseError",
    "RegistryError",
    "TakeoffUnavailableError",
]
