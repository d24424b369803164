"""Vendor quote parsing, reconciliation against BOM lines, and awards."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from gccore.errors import AttachmentDecodeError, QuoteParseError
from gccore.models import BOMLineItem, Quote, QuoteItem, QuoteStatus, VendorMaterialPricing
from gccore.normalize import first_amount
from gccore.store import Store
from gccore.utils import clean_text, document_number, new_id, utc_now

from .io import Attachment, AttachmentDecoder, decode_attachment, rows_to_frame
from .search import create_search_provider

logger = logging.getLogger(__name__)

STRUCTURED = "structured"
FREE_TEXT = "text"
# Summary labels such as "Total", "Grand Total", "Subtotal" or "Total Due".
SUMMARY_LABEL_PATTERN = re.compile(
    r"^(?:[a-z]+ ){0,2}(?:sub ?)?total(?: (?:due|amount|price|cost|quote|bid|incl|including|tax)){0,3}$"
)
LABEL_END_PATTERN = re.compile(r"[$\d]")


@dataclass
class ParsedLine:
    description: str
    quantity: float
    uom: str
    unit_price: float
    total_price: float
    sku: Optional[str] = None
    raw: str = ""


@dataclass
class ParsedQuote:
    items: List[ParsedLine]
    total_amount: float
    tier: str


@dataclass
class QuotePayload:
    """Raw vendor response: body text plus optional attachments."""

    text: str = ""
    attachments: Sequence[Attachment] = ()
    quote_number: Optional[str] = None


@dataclass
class UnmatchedLine:
    """Parsed line that matched no RFQ item; returned, never persisted."""

    line: ParsedLine
    suggestions: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class IngestResult:
    quote: Quote
    tier: str
    unmatched: List[UnmatchedLine]
    pricing_updates: int = 0

    @property
    def matched_count(self) -> int:
        return len(self.quote.items)

    def unmatched_frame(self) -> pd.DataFrame:
        rows = [
            {
                "description": entry.line.description,
                "sku": entry.line.sku,
                "quantity": entry.line.quantity,
                "uom": entry.line.uom,
                "unit_price": entry.line.unit_price,
                "total_price": entry.line.total_price,
                "suggestions": "; ".join(
                    f"{suggestion['description']} ({suggestion['score']:.2f})" for suggestion in entry.suggestions
                ),
            }
            for entry in self.unmatched
        ]
        return pd.DataFrame(
            rows,
            columns=["description", "sku", "quantity", "uom", "unit_price", "total_price", "suggestions"],
        )


@dataclass
class AwardResult:
    quote: Quote
    rejected_count: int


def is_summary_label(text: str) -> bool:
    """True for quote-total labels, not for materials that merely mention "total"."""

    label = re.sub(r"[^a-z]+", " ", (text or "").casefold()).strip()
    return bool(label) and SUMMARY_LABEL_PATTERN.match(label) is not None


def parse_structured_rows(rows: Sequence[Dict[str, Any]]) -> ParsedQuote:
    """Parse decoded spreadsheet rows.

    Rows with a non-positive unit price are dropped; a row whose description
    mentions "total" supplies the quote total instead of a line.
    """

    frame = rows_to_frame(rows)
    items: List[ParsedLine] = []
    summary_total: Optional[float] = None

    for record in frame.to_dict(orient="records"):
        description = record["description"] or record["sku"]
        unit_price = record["unit_price"]
        total_price = record["total_price"]
        if is_summary_label(description):
            candidate = total_price if pd.notna(total_price) else unit_price
            if pd.notna(candidate):
                summary_total = float(candidate)
            continue
        if not description or pd.isna(unit_price) or unit_price <= 0:
            logger.debug("Skipping quote row without a positive unit price: %s", record)
            continue
        quantity = float(record["quantity"]) if pd.notna(record["quantity"]) else 1.0
        if pd.isna(total_price):
            total_price = quantity * unit_price
        items.append(
            ParsedLine(
                description=description,
                quantity=quantity,
                uom=record["unit"],
                unit_price=float(unit_price),
                total_price=float(total_price),
                sku=record["sku"] or None,
                raw=description,
            )
        )

    total_amount = summary_total if summary_total is not None else float(sum(item.total_price for item in items))
    return ParsedQuote(items=items, total_amount=total_amount, tier=STRUCTURED)


def parse_free_text(text: str) -> ParsedQuote:
    """Parse one priced item per line from a plain-text response.

    The description is the text before the first hyphen, quantity defaults
    to 1 and the unit to ``EA``.
    """

    items: List[ParsedLine] = []
    summary_total: Optional[float] = None

    for raw_line in (text or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if is_summary_label(LABEL_END_PATTERN.split(line, 1)[0]):
            amount = first_amount(line)
            if amount is not None:
                summary_total = amount
            continue
        description, hyphen, remainder = line.partition("-")
        price = first_amount(remainder if hyphen else line)
        if price is None or price <= 0 or not description.strip():
            continue
        items.append(
            ParsedLine(
                description=description,
                quantity=1.0,
                uom="EA",
                unit_price=price,
                total_price=price,
                raw=line,
            )
        )

    total_amount = summary_total if summary_total is not None else float(sum(item.total_price for item in items))
    return ParsedQuote(items=items, total_amount=total_amount, tier=FREE_TEXT)


def parse_quote(payload: QuotePayload, decoder: AttachmentDecoder = decode_attachment) -> ParsedQuote:
    """Structured attachments first, then the body text.

    Raises :class:`QuoteParseError` when neither tier yields a line.
    """

    for attachment in payload.attachments:
        try:
            parsed = parse_structured_rows(decoder(attachment.content, attachment.filename))
        except AttachmentDecodeError as exc:
            logger.warning("Failed to parse attachment '%s': %s", attachment.filename, exc)
            continue
        if parsed.items:
            logger.debug("Parsed %d line(s) from attachment '%s'", len(parsed.items), attachment.filename)
            return parsed
        logger.warning("Attachment '%s' held no priced rows", attachment.filename)

    parsed = parse_free_text(payload.text)
    if parsed.items:
        return parsed
    raise QuoteParseError("Could not parse quote from email or attachments")


def match_line(line: ParsedLine, bom_items: Sequence[BOMLineItem]) -> Optional[BOMLineItem]:
    """Exact SKU first, then case-insensitive containment either way round."""

    sku = clean_text(line.sku)
    if sku:
        for item in bom_items:
            if item.sku and item.sku.strip() == sku:
                return item

    needle = clean_text(line.description).casefold()
    if not needle:
        return None
    for item in bom_items:
        haystack = clean_text(item.description).casefold()
        if haystack and (needle in haystack or haystack in needle):
            return item
    return None


def suggest_matches(
    lines: Sequence[ParsedLine],
    bom_items: Sequence[BOMLineItem],
    top_k: int = 3,
    provider_name: str = "tfidf",
) -> List[List[Dict[str, Any]]]:
    """Closest RFQ items for each line, for manual reconciliation."""

    if not lines or not bom_items or top_k <= 0:
        return [[] for _ in lines]

    frame = pd.DataFrame(
        [{"bom_item_id": item.id, "description": item.description, "sku": item.sku or ""} for item in bom_items]
    )
    provider = create_search_provider(provider_name)
    provider.index(frame, text_columns=["description"], metadata_columns=["bom_item_id", "description", "sku"])
    suggestions: List[List[Dict[str, Any]]] = []
    for line in lines:
        results = provider.search(clean_text(line.description), top_k=top_k)
        suggestions.append([{**result.metadata, "score": round(result.score, 4)} for result in results])
    return suggestions


def ingest_quote(
    store: Store,
    rfq_id: str,
    payload: QuotePayload,
    decoder: AttachmentDecoder = decode_attachment,
    suggestion_top_k: int = 3,
    suggestion_provider: str = "tfidf",
) -> IngestResult:
    """Parse a vendor response to ``rfq_id`` and persist the matched lines.

    Unmatched lines come back in :attr:`IngestResult.unmatched`. Matched lines
    with a positive price and a linked material refresh the vendor price cache.
    """

    rfq = store.get_rfq(rfq_id)
    parsed = parse_quote(payload, decoder)

    bom_lookup = store.get_bom_items([item.bom_item_id for item in rfq.items])
    bom_items = [bom_lookup[item.bom_item_id] for item in rfq.items if item.bom_item_id in bom_lookup]

    quote_id = new_id("quo")
    quote_items: List[QuoteItem] = []
    matched_bom: List[BOMLineItem] = []
    unmatched_lines: List[ParsedLine] = []
    for line in parsed.items:
        bom_item = match_line(line, bom_items)
        if bom_item is None:
            unmatched_lines.append(line)
            continue
        matched_bom.append(bom_item)
        quote_items.append(
            QuoteItem(
                id=new_id("qit"),
                quote_id=quote_id,
                bom_item_id=bom_item.id,
                description=line.description,
                quantity=line.quantity,
                uom=line.uom,
                unit_price=line.unit_price,
                total_price=line.total_price,
                sku=line.sku,
            )
        )

    quote = store.create_quote(
        Quote(
            id=quote_id,
            project_id=rfq.project_id,
            vendor_id=rfq.vendor_id,
            rfq_id=rfq.id,
            quote_number=payload.quote_number or document_number("Q"),
            total_amount=parsed.total_amount,
            status=QuoteStatus.RECEIVED,
            created_at=utc_now(),
            items=tuple(quote_items),
        )
    )

    pricing_updates = 0
    quote_date = utc_now().date()
    for quote_item, bom_item in zip(quote_items, matched_bom):
        if quote_item.unit_price <= 0 or not bom_item.material_id:
            continue
        store.upsert_pricing(
            VendorMaterialPricing(
                vendor_id=rfq.vendor_id,
                material_id=bom_item.material_id,
                unit_cost=quote_item.unit_price,
                uom=quote_item.uom,
                last_quote_date=quote_date,
                source_quote_id=quote.id,
            )
        )
        pricing_updates += 1

    suggestions = suggest_matches(unmatched_lines, bom_items, suggestion_top_k, suggestion_provider)
    unmatched = [UnmatchedLine(line=line, suggestions=hints) for line, hints in zip(unmatched_lines, suggestions)]
    if unmatched:
        logger.warning(
            "%d line(s) of quote %s did not match any RFQ item and were not saved",
            len(unmatched),
            quote.quote_number,
        )
    logger.info(
        "Ingested quote %s for RFQ %s via %s parse: %d matched, %d unmatched, %d price(s) cached",
        quote.quote_number,
        rfq.rfq_number,
        parsed.tier,
        len(quote_items),
        len(unmatched),
        pricing_updates,
    )
    return IngestResult(quote=quote, tier=parsed.tier, unmatched=unmatched, pricing_updates=pricing_updates)


def award_quote(store: Store, quote_id: str) -> AwardResult:
    """Award ``quote_id``; every other non-rejected quote of the project is rejected."""

    quote, rejected = store.award_quote(quote_id)
    logger.info("Awarded quote %s on project %s; rejected %d rival quote(s)", quote.quote_number, quote.project_id, rejected)
    return AwardResult(quote=quote, rejected_count=rejected)


__all__ = [
    "AwardResult",
    "IngestResult",
    "ParsedLine",
    "ParsedQuote",
    "QuotePayload",
    "UnmatchedLine",
    "award_quote",
    "ingest_quote",
    "is_summary_label",
    "match_line",
    "parse_free_text",
    "parse_quote",
    "parse_structured_rows",
    "suggest_matches",
]
