from pathlib import Path

import pytest

from gccore.models import VendorType
from gcbid.config import default_config, load_config, load_rules, load_vendors

ROOT = Path(__file__).resolve().parent.parent


def test_repository_config_resolves_relative_paths():
    config = load_config(ROOT / "config" / "config.yaml")

    assert config.database.path == (ROOT / "data" / "estimating.sqlite").resolve()
    assert config.estimating.takeoff_path == (ROOT / "sample_data" / "takeoff.csv").resolve()
    assert config.estimating.regeneration == "append"
    assert config.quotes.suggestion_top_k == 3
    assert config.output.directory == (ROOT / "output").resolve()


def test_default_config_uses_base_path(tmp_path):
    config = default_config(tmp_path)

    assert config.database.path == (tmp_path / "data" / "estimating.sqlite").resolve()
    assert config.estimating.takeoff_path is None
    assert config.estimating.default_labor_rate == 50.0


def test_load_config_rejects_unknown_keys_and_modes(tmp_path):
    unknown = tmp_path / "unknown.yaml"
    unknown.write_text("estimating:\n  colour: blue\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(unknown)

    bad_mode = tmp_path / "mode.yaml"
    bad_mode.write_text("estimating:\n  regeneration: Replace\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(bad_mode)

    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_load_config_normalizes_regeneration_mode(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("estimating:\n  regeneration: SUPERSEDE\n", encoding="utf-8")

    assert load_config(path).estimating.regeneration == "supersede"


def test_load_rules_sample_file():
    rules = load_rules(ROOT / "sample_data" / "rules.yaml")

    by_material = {rule.material: rule for rule in rules.material_rules}
    assert by_material["VCT Flooring 12x12"].unit_cost == pytest.approx(3.25)
    assert by_material["Water Closet - Wall Hung"].waste_factor == 0.0
    assert {markup.trade: markup.markup for markup in rules.trade_markups} == {"A": 10.0, "P": 15.0, "M": 12.0}
    assert "{{MATERIALS_TABLE}}" in rules.email_templates["RFQ"]["body"]


def test_load_rules_accepts_markup_list_and_rejects_bad_entries(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text("trade_markups:\n  - trade: e\n    markup: 8\n", encoding="utf-8")
    assert load_rules(path).trade_markups[0].trade == "E"

    path.write_text("material_rules:\n  - unit_cost: 3\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_rules(path)


def test_load_vendors_from_yaml_and_csv(tmp_path):
    vendors = load_vendors(ROOT / "sample_data" / "vendors.yaml")
    assert [vendor.id for vendor in vendors] == ["ven-abc-supply", "ven-metro-plumbing", "ven-coolair"]
    assert vendors[1].type is VendorType.BOTH
    assert vendors[1].performs.crew_size == 6

    csv_path = tmp_path / "vendors.csv"
    csv_path.write_text(
        "id,name,type,trades,email,materials,rating,active\n"
        "v1,Tile Co,MATERIAL_SUPPLIER,A;S,tile@example.com,VCT,4.1,\n"
        "v2,Sparky,SUBCONTRACTOR,E,,,3,false\n",
        encoding="utf-8",
    )
    loaded = load_vendors(csv_path)
    assert loaded[0].trades == ("A", "S")
    assert loaded[0].active is True
    assert loaded[1].email is None
    assert loaded[1].active is False
