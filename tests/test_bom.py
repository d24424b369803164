import math

import pandas as pd
import pytest

from gccore.errors import RegistryError, TakeoffUnavailableError
from gccore.models import EstimateStatus, FeatureType, MaterialRule, Project, ProjectStatus, RuleSet, TakeoffFeature
from gccore.registry import MaterialRegistry
from gccore.takeoff import FrameTakeoffSource
from gcbid.bom import BOMGenerator, derive_line_items


def test_room_produces_flooring_paint_and_ceiling_lines():
    feature = TakeoffFeature(id="rm-1", type=FeatureType.ROOM, area=1000.0)
    lines = derive_line_items(feature)

    assert [line.category for line in lines] == ["Flooring", "Painting", "Ceilings"]
    assert lines[0].quantity == pytest.approx(1000.0)
    assert lines[1].quantity == pytest.approx(math.sqrt(1000.0) * 4 * 8)
    assert lines[2].quantity == pytest.approx(1000.0)
    assert all(line.feature_id == "rm-1" for line in lines)


def test_pipe_fittings_are_one_per_ten_feet_rounded_up():
    feature = TakeoffFeature(id="pp-1", type=FeatureType.PIPE, length=45.0, diameter=1.0, description="Copper line")
    pipe, fittings = derive_line_items(feature)

    assert pipe.description == 'Copper Pipe Type L 1"'
    assert pipe.uom == "LF"
    assert fittings.quantity == 5.0
    assert fittings.uom == "EA"


def test_empty_measurements_produce_no_lines():
    assert derive_line_items(TakeoffFeature(id="rm-0", type=FeatureType.ROOM, area=0.0)) == []
    assert derive_line_items(TakeoffFeature(id="pp-0", type=FeatureType.PIPE)) == []


def test_equipment_defaults_to_one_unit():
    feature = TakeoffFeature(id="eq-1", type=FeatureType.EQUIPMENT, description="RTU 5 ton", meta={"model": "48TC"})
    (line,) = derive_line_items(feature)

    assert line.category == "HVAC Equipment"
    assert line.quantity == 1.0
    assert line.sku == "48TC"


def test_generate_applies_waste_and_links_materials(store, project, takeoff):
    result = BOMGenerator(store, takeoff).generate(project.id)

    assert result.estimate.status is EstimateStatus.COMPLETE
    assert result.estimate.version == "1.0"
    assert len(result.items) == 6
    assert result.unlinked_items == 0

    by_description = {item.description: item for item in result.items}
    flooring = by_description["VCT Flooring 12x12"]
    ceiling = by_description["Acoustical Ceiling Tile 2x2"]
    paint = by_description["Interior Paint - 2 Coats"]
    assert flooring.final_quantity == pytest.approx(1100.0)
    assert ceiling.final_quantity == pytest.approx(1080.0)
    assert paint.final_quantity == pytest.approx(math.sqrt(1000.0) * 4 * 8 * 1.05)
    assert flooring.total_cost == pytest.approx(1100.0 * 3.50)
    assert flooring.trade == "A"
    assert all(item.material_id for item in result.items)

    fixture = by_description["Water Closet - Wall Hung"]
    assert fixture.trade == "P"
    assert fixture.quantity == 3.0
    assert fixture.manufacturer == "Kohler"

    estimate = result.estimate
    assert estimate.item_count == 6
    assert estimate.material_cost == pytest.approx(result.total_material_cost)
    assert store.get_project(project.id).status is ProjectStatus.BOM_GENERATION


def test_generate_uses_rule_overrides(store, project, takeoff):
    rules = RuleSet.from_rules([MaterialRule(material="VCT Flooring 12x12", unit_cost=2.0, waste_factor=0.0)])
    result = BOMGenerator(store, takeoff, rules=rules).generate(project.id)

    flooring = next(item for item in result.items if item.description == "VCT Flooring 12x12")
    assert flooring.final_quantity == pytest.approx(1000.0)
    assert flooring.total_cost == pytest.approx(2000.0)


def test_regenerating_reuses_materials(store, project, takeoff):
    generator = BOMGenerator(store, takeoff)
    generator.generate(project.id)
    generator.generate(project.id)

    material = MaterialRegistry(store).find("VCT Flooring 12x12", "A")
    assert material is not None
    assert material.times_used == 2


def test_append_keeps_both_estimates_visible(store, project, takeoff):
    generator = BOMGenerator(store, takeoff, regeneration="append")
    generator.generate(project.id)
    second = generator.generate(project.id)

    assert second.estimate.version == "2.0"
    assert len(store.list_bom_items(project.id)) == 12


def test_supersede_hides_older_estimates(store, project, takeoff):
    generator = BOMGenerator(store, takeoff, regeneration="supersede")
    first = generator.generate(project.id)
    second = generator.generate(project.id)

    assert second.superseded_estimates == 1
    visible = store.list_bom_items(project.id)
    assert {item.estimate_id for item in visible} == {second.estimate.id}
    assert store.get_estimate(first.estimate.id).status is EstimateStatus.SUPERSEDED
    assert len(store.list_bom_items(project.id, include_superseded=True)) == 12


@pytest.mark.parametrize("job_id", [None, "JOB-404"])
def test_missing_takeoff_job_raises(store, takeoff, job_id):
    store.create_project(Project(id="prj-x", name="No takeoff", takeoff_job_id=job_id))

    with pytest.raises(TakeoffUnavailableError):
        BOMGenerator(store, takeoff).generate("prj-x")


def test_missing_takeoff_source_raises(store, project):
    with pytest.raises(TakeoffUnavailableError):
        BOMGenerator(store, None).generate(project.id)


def test_registry_failure_leaves_items_unlinked(store, project, takeoff):
    class BrokenRegistry(MaterialRegistry):
        def resolve(self, descriptor):
            raise RegistryError("disk full")

    result = BOMGenerator(store, takeoff, registry=BrokenRegistry(store)).generate(project.id)

    assert len(result.items) == 6
    assert result.unlinked_items == 6
    assert all(item.material_id is None for item in result.items)
    assert result.estimate.status is EstimateStatus.COMPLETE


def test_failing_feature_marks_estimate_partial(store, project):
    frame = pd.DataFrame(
        [
            {"id": "rm-1", "job_id": "JOB-1", "type": "ROOM", "area": 400.0},
            {"id": "pp-bad", "job_id": "JOB-1", "type": "PIPE", "length": 20.0},
        ]
    )

    class FailingGenerator(BOMGenerator):
        def _create_item(self, project_id, estimate_id, line):
            if line.feature_id == "pp-bad":
                raise ValueError("bad geometry")
            return super()._create_item(project_id, estimate_id, line)

    result = FailingGenerator(store, FrameTakeoffSource(frame)).generate(project.id)

    assert result.is_partial
    assert result.estimate.status is EstimateStatus.PARTIAL
    assert result.estimate.failed_features == 1
    assert [failure.feature_id for failure in result.failures] == ["pp-bad"]
    assert len(result.items) == 3


def test_unknown_regeneration_mode_is_rejected(store, takeoff):
    with pytest.raises(ValueError):
        BOMGenerator(store, takeoff, regeneration="replace")


def test_negative_fixture_count_defaults_to_one():
    feature = TakeoffFeature(id="fx-1", type=FeatureType.FIXTURE, count=-2, description="Water closet")
    (line,) = derive_line_items(feature)

    assert line.quantity == 1.0


def test_unreadable_takeoff_rows_mark_estimate_partial(store, project):
    frame = pd.DataFrame(
        [
            {"id": "rm-1", "job_id": "JOB-1", "type": "ROOM", "area": 400.0},
            {"id": "fx-bad", "job_id": "JOB-1", "type": "FIXTURES", "count": 2},
        ]
    )

    result = BOMGenerator(store, FrameTakeoffSource(frame)).generate(project.id)

    assert result.estimate.status is EstimateStatus.PARTIAL
    assert result.estimate.failed_features == 1
    (failure,) = result.failures
    assert failure.feature_id == "fx-bad"
    assert failure.feature_type == "FIXTURES"
    assert len(result.items) == 3
