import json
import sys

from scripts import local_run


def _run(monkeypatch, *args) -> None:
    monkeypatch.setattr(sys, "argv", ["local_run.py", *args])
    local_run.main()


def test_allocate_writes_landed_costs(monkeypatch, data_dir, tmp_path) -> None:
    output = tmp_path / "allocation.json"

    _run(
        monkeypatch,
        "--config",
        str(data_dir / "engine_config.yaml"),
        "--output",
        str(output),
        "allocate",
        "--shipment",
        str(data_dir / "shipment.json"),
        "--method",
        "by_weight",
    )

    payload = json.loads(output.read_text())
    assert payload["shipment_id"] == "SHP-001"
    assert payload["method"] == "BY_WEIGHT"
    assert [item["item_id"] for item in payload["items"]] == ["PAD-01", "PISTON-02"]
    assert payload["items"][0]["factor"] == "0.25"


def test_rental_quotes_every_bundled_plan(monkeypatch, data_dir, tmp_path) -> None:
    output = tmp_path / "rental.json"

    _run(
        monkeypatch,
        "--config",
        str(data_dir / "engine_config.yaml"),
        "--output",
        str(output),
        "rental",
        "--model",
        "CG-150",
        "--landed-cost-foreign",
        "1500",
        "--plans",
        str(data_dir / "rental_plans.yaml"),
    )

    payload = json.loads(output.read_text())
    assert payload["landed_cost_local"] == "1800000"
    assert [plan["plan_code"] for plan in payload["plans"]] == ["FLEX_3M", "SEMI_6M", "ANUAL_12M", "RTO_24M"]
    assert payload["plans"][3]["rent_to_own_projection"] is not None
