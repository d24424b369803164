"""GC bid estimator application package.

This package turns takeoff measurements into a bill of materials and a labor
estimate, matches the project's materials to vendors, prepares RFQs, ingests
the quotes vendors send back and levels them so a bid can be awarded.  The
command line interface in :mod:`gcbid.cli` drives the same functions that any
other front end would call.
"""

from .bom import BOMGenerator, BOMResult, derive_line_items
from .comparison import ComparisonResult, LevelingResult, compare_quotes, level_bids
from .config import AppConfig, OutputConfig, load_config, load_rules, load_vendors
from .labor import LaborEstimate, estimate_labor
from .pricing import price_summary, suggest_price
from .quotes import IngestResult, QuotePayload, award_quote, ingest_quote, parse_quote
from .reporting import export_comparison, export_leveling
from .rfq import EmailSender, OutboxSender, create_rfq, render_rfq_email, send_rfq
from .search import SearchProvider, TfidfSearchProvider
from .vendors import group_by_trade, remaining_materials, score_vendors, suggest_vendor_cover

__all__ = [
    "AppConfig",
    "BOMGenerator",
    "BOMResult",
    "ComparisonResult",
    "EmailSender",
    "IngestResult",
    "LaborEstimate",
    "LevelingResult",
    "OutboxSender",
    "OutputConfig",
    "QuotePayload",
    "SearchProvider",
    "TfidfSearchProvider",
    "award_quote",
    "compare_quotes",
    "create_rfq",
    "derive_line_items",
    "estimate_labor",
    "export_comparison",
    "export_leveling",
    "group_by_trade",
    "ingest_quote",
    "level_bids",
    "load_config",
    "load_rules",
    "load_vendors",
    "parse_quote",
    "price_summary",
    "remaining_materials",
    "render_rfq_email",
    "score_vendors",
    "send_rfq",
    "suggest_price",
    "suggest_vendor_cover",
]
