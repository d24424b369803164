import pytest

from gccore.models import Material, SubcontractorCapabilities, SupplierCapabilities, Vendor, VendorType
from gcbid.bom import BOMGenerator
from gcbid.vendors import (
    group_by_trade,
    match_project_vendors,
    remaining_materials,
    score_vendors,
    suggest_vendor_cover,
    vendors_for_material,
)


@pytest.fixture
def items(make_item):
    return [
        make_item("Copper Pipe", trade="P"),
        make_item("VCT Flooring", trade="A"),
        make_item("Paint", trade="A"),
        make_item("RTU", trade="M"),
    ]


def test_group_by_trade_follows_trade_order(items):
    groups = group_by_trade(items)

    assert list(groups) == ["M", "P", "A"]
    assert [item.description for item in groups["A"]] == ["VCT Flooring", "Paint"]


def test_score_vendors_ranks_independent_coverage(items, vendors):
    scores = score_vendors(items, vendors)

    assert [score.vendor_id for score in scores] == ["ven-full", "ven-arch", "ven-mech", "ven-plumb"]
    assert scores[0].covered_count == 3
    assert scores[0].coverage == pytest.approx(0.75)
    # rating breaks the 1-item tie between mechanical and plumbing
    assert scores[2].coverage == scores[3].coverage


def test_score_vendors_without_items_is_zero(vendors):
    scores = score_vendors([], vendors)

    assert all(score.coverage == 0.0 for score in scores)


def test_remaining_materials_ignores_unknown_vendors(items, vendors):
    remaining = remaining_materials(items, vendors, ["ven-arch", "ven-missing"])

    assert remaining.selected_vendor_ids == ["ven-arch"]
    assert remaining.covered_count == 2
    assert set(remaining.remaining) == {"M", "P"}
    assert remaining.coverage_pct == pytest.approx(50.0)
    assert len(remaining.to_frame()) == 2


def test_suggest_vendor_cover_is_greedy(items, vendors):
    suggestion = suggest_vendor_cover(items, vendors)

    assert suggestion.vendor_ids == ["ven-full", "ven-mech"]
    assert suggestion.covered_count == 4
    assert suggestion.uncoverable == {}


def test_suggest_vendor_cover_reports_uncoverable_trades(items, vendors):
    suggestion = suggest_vendor_cover(items, [vendor for vendor in vendors if vendor.id != "ven-mech"])

    assert set(suggestion.uncoverable) == {"M"}
    assert suggestion.covered_count == 3


def test_vendors_for_material_by_name_or_trade(vendors):
    supplier = Vendor(
        id="ven-tile",
        name="Tile Co",
        type=VendorType.MATERIAL_SUPPLIER,
        trades=("S",),
        supplies=SupplierCapabilities(materials=("VCT Flooring",)),
        rating=5.0,
    )
    material = Material(id="mat-1", name="VCT Flooring", trade="A")

    matches = vendors_for_material(material, [supplier, *vendors])

    assert [vendor.id for vendor in matches] == ["ven-tile", "ven-arch", "ven-full"]


def test_capability_payload_must_match_vendor_type():
    with pytest.raises(ValueError):
        Vendor(
            id="ven-bad",
            name="Bad",
            type=VendorType.SUBCONTRACTOR,
            supplies=SupplierCapabilities(materials=("Pipe",)),
        )
    with pytest.raises(ValueError):
        Vendor.from_record({"name": "Bad", "type": "MATERIAL_SUPPLIER", "services": "Install"})

    both = Vendor(id="ven-both", name="Both", type=VendorType.BOTH)
    assert isinstance(both.supplies, SupplierCapabilities)
    assert isinstance(both.performs, SubcontractorCapabilities)


def test_vendor_from_record_parses_lists_and_flags():
    vendor = Vendor.from_record(
        {"name": "Metro", "type": "both", "trades": "p, m", "materials": "Pipe;Fittings", "active": "no"}
    )

    assert vendor.id.startswith("ven-")
    assert vendor.trades == ("P", "M")
    assert vendor.materials == ("Pipe", "Fittings")
    assert vendor.active is False


def test_match_project_vendors(store, project, takeoff, vendors):
    for vendor in vendors:
        store.upsert_vendor(vendor)
    BOMGenerator(store, takeoff).generate(project.id)

    match = match_project_vendors(store, project.id)

    assert set(match.materials_needed) == {"A", "P"}
    assert match.coverage[0].vendor_id == "ven-full"
    assert match.coverage[0].coverage == pytest.approx(1.0)


def test_repeated_trades_count_items_once(make_item):
    vendor = Vendor(id="ven-dup", name="Dup Plumbing", type=VendorType.MATERIAL_SUPPLIER, trades="P, p")
    items = [make_item("Copper Pipe", trade="P"), make_item("VCT Flooring", trade="A")]

    (score,) = score_vendors(items, [vendor])

    assert vendor.trades == ("P",)
    assert score.covered_count == 1
    assert score.coverage == pytest.approx(0.5)
