import pytest

from gccore.errors import NotFoundError
from gccore.models import (
    EstimateStatus,
    MaterialDescriptor,
    MaterialRule,
    ProjectStatus,
    TradeMarkup,
    VendorMaterialPricing,
)
from gccore.registry import MaterialRegistry


def test_project_round_trip_and_status(store, project):
    loaded = store.get_project(project.id)
    assert loaded.name == "Main Street Clinic"
    assert loaded.status is ProjectStatus.SCOPE_DIAGNOSIS

    store.set_project_status(project.id, ProjectStatus.BOM_GENERATION)
    assert store.get_project(project.id).status is ProjectStatus.BOM_GENERATION

    with pytest.raises(NotFoundError):
        store.get_project("missing")


def test_estimate_versions_increment(store, project):
    first = store.create_estimate(project.id)
    second = store.create_estimate(project.id)

    assert first.version == "1.0"
    assert second.version == "2.0"
    assert store.supersede_estimates(project.id, second.id) == 1
    statuses = {estimate.id: estimate.status for estimate in store.list_estimates(project.id)}
    assert statuses[first.id] is EstimateStatus.SUPERSEDED
    assert statuses[second.id] is EstimateStatus.DRAFT


def test_registry_resolve_reuses_and_counts_usage(store):
    registry = MaterialRegistry(store)
    descriptor = MaterialDescriptor(name="VCT Flooring 12x12", trade="A", category="Flooring", uom="SF")

    first = registry.resolve(descriptor)
    second = registry.resolve(descriptor)

    assert first.id == second.id
    assert second.times_used == 2
    assert len(registry.search("vct")) == 1


def test_registry_same_name_different_trade_is_distinct(store):
    registry = MaterialRegistry(store)
    arch = registry.resolve(MaterialDescriptor(name="Sealant", trade="A"))
    plumb = registry.resolve(MaterialDescriptor(name="Sealant", trade="P"))

    assert arch.id != plumb.id
    assert [material.id for material in registry.search(trade="P")] == [plumb.id]


def test_registry_merges_specs_and_keeps_known_fields(store):
    registry = MaterialRegistry(store)
    registry.resolve(MaterialDescriptor(name="Copper Pipe", trade="P", sku="CU-1", specs={"diameter": 1.0}))
    merged = registry.resolve(MaterialDescriptor(name="Copper Pipe", trade="P", specs={"type": "L"}))

    assert merged.specs == {"diameter": 1.0, "type": "L"}
    assert merged.sku == "CU-1"


def test_registry_classifies_missing_trade(store):
    registry = MaterialRegistry(store)
    material = registry.resolve(MaterialDescriptor(name="Ductwork", trade="", category="HVAC"))

    assert material.trade == "M"


def test_deactivated_materials_are_hidden_from_search(store):
    registry = MaterialRegistry(store)
    material = registry.resolve(MaterialDescriptor(name="Paint", trade="A"))
    registry.deactivate(material.id)

    assert registry.search("paint") == []
    assert registry.get(material.id).active is False
    with pytest.raises(NotFoundError):
        registry.deactivate("mat-missing")


def test_pricing_upsert_keeps_one_row_per_vendor_material(store, vendors):
    store.upsert_vendor(vendors[0])
    material = store.resolve_material(MaterialDescriptor(name="Paint", trade="A"))

    store.upsert_pricing(VendorMaterialPricing(vendor_id="ven-arch", material_id=material.id, unit_cost=2.0, uom="GAL"))
    store.upsert_pricing(VendorMaterialPricing(vendor_id="ven-arch", material_id=material.id, unit_cost=1.5))

    pricing = store.list_pricing(material_id=material.id)
    assert len(pricing) == 1
    assert pricing[0].unit_cost == pytest.approx(1.5)
    assert pricing[0].uom == "GAL"


def test_vendor_round_trip_and_trade_filter(store, vendors):
    for vendor in vendors:
        store.upsert_vendor(vendor)

    plumbing = store.list_vendors(trade="P")
    assert {vendor.id for vendor in plumbing} == {"ven-plumb", "ven-full"}

    loaded = store.get_vendor("ven-plumb")
    assert loaded.supplies is not None
    assert loaded.performs is not None
    assert loaded.email == "bids@metro.example"


def test_rule_set_snapshot_version_changes_with_rules(store):
    empty = store.load_rule_set()
    store.upsert_material_rule(MaterialRule(material="VCT Flooring 12x12", unit_cost=3.0))
    store.set_trade_markup(TradeMarkup(trade="A", markup=10.0))
    rules = store.load_rule_set()

    assert rules.version != empty.version
    assert rules.rule_for("VCT Flooring 12x12").unit_cost == pytest.approx(3.0)
    assert rules.markup_for("A") == pytest.approx(10.0)
    assert rules.markup_for("P") == 0.0


def test_email_template_upsert(store):
    assert store.get_email_template("rfq") is None
    store.upsert_email_template("rfq", "<p>{{VENDOR_NAME}}</p>", subject="Quote please")

    assert store.get_email_template("RFQ") == {"subject": "Quote please", "body": "<p>{{VENDOR_NAME}}</p>"}


def test_stats_counts_catalog_rows(store, project, vendors):
    store.resolve_material(MaterialDescriptor(name="VCT Flooring 12x12", trade="A"))
    for vendor in vendors:
        store.upsert_vendor(vendor)

    counts = store.stats()

    assert counts["projects"] == 1
    assert counts["materials"] == 1
    assert counts["vendors"] == 4
    assert counts["quotes"] == 0
