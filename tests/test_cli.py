from pathlib import Path

import pandas as pd

from gccore.models import ProjectStatus, QuoteStatus, RFQStatus
from gccore.store import Store
from gcbid.cli import main

ROOT = Path(__file__).resolve().parent.parent
SAMPLE = ROOT / "sample_data"


def _write_config(tmp_path: Path) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "database:\n"
        "  path: estimating.sqlite\n"
        "estimating:\n"
        f"  takeoff_path: {SAMPLE / 'takeoff.csv'}\n"
        "output:\n"
        "  directory: reports\n",
        encoding="utf-8",
    )
    return config_path


def test_cli_runs_estimate_to_award(tmp_path):
    config_path = _write_config(tmp_path)
    output_dir = tmp_path / "reports"
    base = ["--config", str(config_path), "--quiet"]

    def run(*args):
        return main([*base, *args])

    assert run("init-project", "--name", "Main Street Clinic", "--takeoff-job", "JOB-1001", "--id", "prj-cli") == 0
    assert run("import-vendors", str(SAMPLE / "vendors.yaml")) == 0
    assert run("import-rules", str(SAMPLE / "rules.yaml")) == 0
    assert run("generate-bom", "prj-cli") == 0

    bom = pd.read_csv(output_dir / "bom_items.csv")
    assert len(bom) == 13
    flooring = bom.loc[bom["description"] == "VCT Flooring 12x12"].iloc[0]
    assert flooring["unit_cost"] == 3.25
    assert (output_dir / "bom_audit.json").exists()

    assert run("labor", "prj-cli") == 0
    trades = pd.read_csv(output_dir / "labor_trades.csv")
    assert set(trades["trade"]) == {"A", "P", "M"}

    assert run("match-vendors", "prj-cli", "--select", "ven-abc-supply", "--suggest") == 0
    assert run("create-rfq", "prj-cli", "ven-abc-supply") == 0

    store = Store(tmp_path / "estimating.sqlite")
    (rfq,) = store.list_rfqs("prj-cli")
    assert len(rfq.items) == 12
    assert rfq.due_date is not None

    assert run("render-rfq", rfq.id, "--outbox", str(tmp_path / "outbox")) == 0
    assert store.get_rfq(rfq.id).status is RFQStatus.SENT
    assert list((tmp_path / "outbox").glob("*.html"))

    assert run("ingest-quote", rfq.id, "--text", str(SAMPLE / "quote_abc.txt"), "--quote-number", "Q-ABC-1") == 0
    quote_items = pd.read_csv(output_dir / "quote_items.csv")
    assert len(quote_items) == 2
    unmatched = pd.read_csv(output_dir / "quote_unmatched.csv")
    assert list(unmatched["description"].str.strip()) == ["Delivery"]

    assert run("compare", "prj-cli") == 0
    assert (output_dir / "comparison_groups.csv").exists()
    assert run("level", "prj-cli") == 0
    vendors = pd.read_csv(output_dir / "leveling_vendors.csv")
    assert vendors.loc[0, "quoted_total"] == 5420.0

    (quote,) = store.list_quotes("prj-cli")
    assert run("award", quote.id) == 0
    assert store.get_quote(quote.id).status is QuoteStatus.AWARDED
    assert store.get_project("prj-cli").status is ProjectStatus.AWARD_PENDING

    assert run("materials", "--search", "vct") == 0
    material = store.search_materials(search="vct")[0]
    assert run("price", material.id) == 0
    assert store.list_pricing(material_id=material.id)[0].unit_cost == 3.10


def test_cli_reports_failures_with_exit_code(tmp_path):
    config_path = _write_config(tmp_path)
    base = ["--config", str(config_path), "--quiet"]

    assert main([*base, "award", "quo-missing"]) == 1
    assert main([*base, "labor", "prj-missing"]) == 1
    assert main(["--config", str(tmp_path / "missing.yaml"), "materials"]) == 1


def test_cli_generate_bom_without_takeoff_job_fails(tmp_path):
    config_path = _write_config(tmp_path)
    base = ["--config", str(config_path), "--quiet"]

    assert main([*base, "init-project", "--name", "Unlinked", "--id", "prj-x"]) == 0
    assert main([*base, "generate-bom", "prj-x"]) == 1
