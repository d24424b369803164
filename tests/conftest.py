from __future__ import annotations

from pathlib import Path
from typing import Callable, List
import sys

import pandas as pd
import pytest

# Ensure project root is on sys.path for absolute imports
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from gccore.models import BOMLineItem, Project, Vendor, VendorType
from gccore.store import Store
from gccore.takeoff import FrameTakeoffSource
from gccore.utils import new_id

JOB_ID = "JOB-1"


@pytest.fixture
def store(tmp_path) -> Store:
    return Store(tmp_path / "estimating.sqlite")


@pytest.fixture
def takeoff_frame() -> pd.DataFrame:
    return pd.DataFrame(
        [
            {"id": "rm-1", "job_id": JOB_ID, "type": "ROOM", "area": 1000.0, "description": "Open office"},
            {
                "id": "pp-1",
                "job_id": JOB_ID,
                "type": "PIPE",
                "length": 45.0,
                "diameter": 1.0,
                "description": "Copper domestic water",
            },
            {
                "id": "fx-1",
                "job_id": JOB_ID,
                "type": "FIXTURE",
                "count": 3,
                "description": "Water closet",
                "meta": {"manufacturer": "Kohler", "model": "K-4325"},
            },
            {"id": "rm-9", "job_id": "JOB-2", "type": "ROOM", "area": 50.0},
        ]
    )


@pytest.fixture
def takeoff(takeoff_frame: pd.DataFrame) -> FrameTakeoffSource:
    return FrameTakeoffSource(takeoff_frame)


@pytest.fixture
def project(store: Store) -> Project:
    return store.create_project(Project(id="prj-1", name="Main Street Clinic", takeoff_job_id=JOB_ID))


@pytest.fixture
def vendors() -> List[Vendor]:
    return [
        Vendor(id="ven-arch", name="ABC Building Supply", type=VendorType.MATERIAL_SUPPLIER, trades=("A",), rating=4.5,
               email="quotes@abc.example"),
        Vendor(id="ven-plumb", name="Metro Plumbing", type=VendorType.BOTH, trades=("P",), rating=4.0,
               email="bids@metro.example"),
        Vendor(id="ven-full", name="General Supply", type=VendorType.MATERIAL_SUPPLIER, trades=("A", "P"), rating=3.0),
        Vendor(id="ven-mech", name="CoolAir", type=VendorType.SUBCONTRACTOR, trades=("M",), rating=5.0),
    ]


@pytest.fixture
def make_item() -> Callable[..., BOMLineItem]:
    def factory(description: str = "VCT Flooring 12x12", trade: str = "A", **overrides) -> BOMLineItem:
        values = {
            "id": new_id("bom"),
            "project_id": "prj-1",
            "estimate_id": "est-1",
            "csi_division": "09 65 00",
            "category": "Flooring",
            "description": description,
            "sku": None,
            "quantity": 100.0,
            "uom": "SF",
            "waste_factor": 0.0,
            "final_quantity": 100.0,
            "unit_cost": 1.0,
            "total_cost": 100.0,
            "confidence": 0.9,
            "source": "test",
            "trade": trade,
        }
        values.update(overrides)
        return BOMLineItem(**values)

    return factory
