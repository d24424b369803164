import pytest

from gccore.errors import AttachmentDecodeError, NotFoundError, QuoteParseError
from gccore.models import ProjectStatus, QuoteStatus, RFQStatus
from gcbid.bom import BOMGenerator
from gcbid.io import Attachment
from gcbid.quotes import (
    QuotePayload,
    award_quote,
    ingest_quote,
    match_line,
    parse_free_text,
    parse_quote,
    parse_structured_rows,
)
from gcbid.rfq import create_rfq

CSV_QUOTE = b"Description,Qty,Unit,Unit Price,Total\nCopper Pipe 1in,10,LF,5.00,\nFittings,4,ea,2.50,10.00\n"


def test_structured_rows_fill_missing_totals():
    parsed = parse_structured_rows(
        [
            {"Description": "Copper Pipe 1in", "Qty": "10", "Unit Price": "5.00", "Total": None},
            {"Description": "Freight", "Qty": None, "Unit Price": "$0", "Total": None},
        ]
    )

    (line,) = parsed.items
    assert line.description == "Copper Pipe 1in"
    assert line.quantity == 10.0
    assert line.total_price == pytest.approx(50.0)
    assert parsed.total_amount == pytest.approx(50.0)
    assert parsed.tier == "structured"


def test_structured_total_row_sets_quote_total():
    parsed = parse_structured_rows(
        [
            {"Item": "Paint", "Price": "20", "Amount": "40", "Qty": "2"},
            {"Item": "Grand Total", "Price": None, "Amount": "45.00", "Qty": None},
        ]
    )

    assert len(parsed.items) == 1
    assert parsed.total_amount == pytest.approx(45.0)


def test_free_text_takes_description_before_first_hyphen():
    parsed = parse_free_text("Hello,\nVCT Flooring - $3.50\nInterior Paint - 2 Coats - $1.85 per SF\nThanks")

    first, second = parsed.items
    assert first.description == "VCT Flooring "
    assert first.unit_price == pytest.approx(3.5)
    assert first.quantity == 1.0
    assert first.uom == "EA"
    assert second.description == "Interior Paint "
    assert second.unit_price == pytest.approx(1.85)
    assert parsed.total_amount == pytest.approx(5.35)
    assert parsed.tier == "text"


def test_free_text_total_line():
    parsed = parse_free_text("Pipe - $100\nTotal: $1,250.00")

    assert len(parsed.items) == 1
    assert parsed.total_amount == pytest.approx(1250.0)


def test_parse_quote_prefers_attachment_and_falls_back_to_text():
    payload = QuotePayload(
        text="Paint - $9.99",
        attachments=[Attachment("broken.csv", b"just,some\nwords,here\n"), Attachment("quote.csv", CSV_QUOTE)],
    )
    assert parse_quote(payload).tier == "structured"

    def failing_decoder(content, filename):
        raise AttachmentDecodeError("unreadable")

    fallback = parse_quote(QuotePayload(text="Paint - $9.99", attachments=[Attachment("q.xlsx", b"x")]), failing_decoder)
    assert fallback.tier == "text"
    assert fallback.items[0].unit_price == pytest.approx(9.99)


def test_parse_quote_raises_when_nothing_parses():
    with pytest.raises(QuoteParseError):
        parse_quote(QuotePayload(text="Thanks, we will get back to you."))


def test_match_line_prefers_sku_then_containment(make_item):
    pipe = make_item('Copper Pipe Type L 1"', trade="P", sku="COPPER-L-1")
    paint = make_item("Interior Paint - 2 Coats")
    parsed = parse_free_text("Interior Paint - $2.00")

    assert match_line(parsed.items[0], [pipe, paint]) is paint

    sku_line = parse_structured_rows([{"SKU": " COPPER-L-1 ", "Description": "Something else", "Price": "4"}]).items[0]
    assert match_line(sku_line, [paint, pipe]) is pipe

    unrelated = parse_free_text("Door hardware - $40").items[0]
    assert match_line(unrelated, [pipe, paint]) is None


def _seed_rfq(store, project, takeoff, vendors, vendor_id="ven-arch"):
    for vendor in vendors:
        store.upsert_vendor(vendor)
    result = BOMGenerator(store, takeoff).generate(project.id)
    items = [item.id for item in result.items if item.trade == store.get_vendor(vendor_id).trades[0]]
    return create_rfq(store, project.id, vendor_id, items), result


def test_ingest_persists_matched_lines_and_caches_prices(store, project, takeoff, vendors):
    rfq, bom = _seed_rfq(store, project, takeoff, vendors)
    text = "VCT Flooring 12x12 - $3.10\nAcoustical Ceiling Tile - $4.25\nDoor closer - $85.00\nTotal: $500.00"

    result = ingest_quote(store, rfq.id, QuotePayload(text=text, quote_number="Q-100"))

    assert result.matched_count == 2
    assert result.quote.quote_number == "Q-100"
    assert result.quote.total_amount == pytest.approx(500.0)
    assert [entry.line.description.strip() for entry in result.unmatched] == ["Door closer"]
    assert result.pricing_updates == 2
    assert len(store.get_quote(result.quote.id).items) == 2
    assert store.get_rfq(rfq.id).status is RFQStatus.RESPONDED

    flooring = next(item for item in bom.items if item.description == "VCT Flooring 12x12")
    cached = store.get_pricing("ven-arch", flooring.material_id)
    assert cached.unit_cost == pytest.approx(3.10)
    assert cached.source_quote_id == result.quote.id


def test_ingest_returns_suggestions_for_unmatched_lines(store, project, takeoff, vendors):
    rfq, _ = _seed_rfq(store, project, takeoff, vendors)

    result = ingest_quote(store, rfq.id, QuotePayload(text="Ceiling tiles acoustical 2x2 panels - $4.00"))

    assert result.matched_count == 0
    (entry,) = result.unmatched
    assert entry.suggestions
    assert entry.suggestions[0]["description"] == "Acoustical Ceiling Tile 2x2"
    assert not result.unmatched_frame().empty


def test_ingest_unknown_rfq_raises(store):
    with pytest.raises(NotFoundError):
        ingest_quote(store, "rfq-missing", QuotePayload(text="Pipe - $1"))


def test_award_rejects_rivals_and_moves_project(store, project, takeoff, vendors):
    rfq_a, bom = _seed_rfq(store, project, takeoff, vendors, "ven-arch")
    plumbing = [item.id for item in bom.items if item.trade == "P"]
    rfq_p = create_rfq(store, project.id, "ven-plumb", plumbing)

    first = ingest_quote(store, rfq_a.id, QuotePayload(text="VCT Flooring 12x12 - $3.10"))
    second = ingest_quote(store, rfq_p.id, QuotePayload(text='Copper Pipe Type L 1" - $6.00'))

    result = award_quote(store, second.quote.id)

    assert result.quote.status is QuoteStatus.AWARDED
    assert result.quote.accepted_at is not None
    assert result.rejected_count == 1
    assert store.get_quote(first.quote.id).status is QuoteStatus.REJECTED
    assert store.get_project(project.id).status is ProjectStatus.AWARD_PENDING

    again = award_quote(store, first.quote.id)
    assert again.rejected_count == 1
    assert store.get_quote(second.quote.id).status is QuoteStatus.REJECTED


def test_award_unknown_quote_raises(store):
    with pytest.raises(NotFoundError):
        award_quote(store, "quo-missing")


def test_parse_quote_falls_back_to_text_for_legacy_xls():
    workbook = Attachment("quote.xls", b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 504)

    parsed = parse_quote(QuotePayload(text="VCT Flooring - $3.50", attachments=[workbook]))

    assert parsed.tier == "text"
    assert parsed.items[0].unit_price == pytest.approx(3.5)


def test_materials_mentioning_total_are_kept_as_lines():
    structured = parse_structured_rows(
        [
            {"Description": "Total Flex Conduit 1/2in", "Qty": "3", "Unit Price": "2.00"},
            {"Description": "Subtotal", "Qty": None, "Unit Price": None, "Total": "6.00"},
        ]
    )
    assert [line.description for line in structured.items] == ["Total Flex Conduit 1/2in"]
    assert structured.total_amount == pytest.approx(6.0)

    text = parse_free_text("Total Flex Conduit - $2.10\nGrand Total: $2.10")
    assert [line.description for line in text.items] == ["Total Flex Conduit "]
    assert text.total_amount == pytest.approx(2.1)
