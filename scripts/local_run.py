#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from decimal import Decimal
from pathlib import Path
from typing import Any, List

import yaml

from fleet_pricing.app.config.loader import load_engine_config
from fleet_pricing.engine.canonical.models import ItemCostBasis, RentalPlan, Shipment
from fleet_pricing.engine.costing.landed_cost import LogisticsCosts, allocate_shipment_costs
from fleet_pricing.engine.rental.calculator import quote_rental

DEFAULT_CONFIG = Path("data/fleet_pricing/engine_config.yaml")
DEFAULT_PLANS = Path("data/fleet_pricing/rental_plans.yaml")


def load_plans(path: Path) -> List[RentalPlan]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return [RentalPlan.model_validate(plan) for plan in data.get("plans", [])]


def write_json(path: Path | None, payload: Any) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if path is None:
        print(text)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text + "\n", encoding="utf-8")


def run_allocate(args: argparse.Namespace) -> None:
    config = load_engine_config(args.config)
    with open(args.shipment, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    shipment = Shipment.model_validate(data["shipment"])
    catalog = {
        item.item_id: item for item in (ItemCostBasis.model_validate(row) for row in data.get("catalog", []))
    }
    logistics = LogisticsCosts(**{key: Decimal(str(value)) for key, value in data.get("logistics", {}).items()})
    rate = Decimal(args.exchange_rate) if args.exchange_rate else config.exchange_rate.rate
    result = allocate_shipment_costs(
        shipment,
        catalog,
        config=config,
        exchange_rate=rate,
        method=args.method,
        logistics=logistics,
    )
    write_json(args.output, asdict(result))


def run_rental(args: argparse.Namespace) -> None:
    config = load_engine_config(args.config)
    plans = load_plans(args.plans)
    quote = quote_rental(
        args.model,
        plans,
        config,
        landed_cost_local=Decimal(args.landed_cost) if args.landed_cost else None,
        landed_cost_foreign=Decimal(args.landed_cost_foreign) if args.landed_cost_foreign else None,
        target_margin=Decimal(args.target_margin) if args.target_margin else None,
    )
    write_json(args.output, asdict(quote))


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Path to engine config YAML")
    parser.add_argument("--output", type=Path, help="Write JSON here instead of stdout")
    subparsers = parser.add_subparsers(dest="command", required=True)

    allocate = subparsers.add_parser("allocate", help="Simulate landed cost allocation for a shipment")
    allocate.add_argument("--shipment", required=True, help="Shipment JSON with shipment, catalog and logistics")
    allocate.add_argument("--method", default="BY_VALUE")
    allocate.add_argument("--exchange-rate", help="Overrides the configured reference rate")
    allocate.set_defaults(handler=run_allocate)

    rental = subparsers.add_parser("rental", help="Quote a vehicle model under every active plan")
    rental.add_argument("--model", required=True)
    rental.add_argument("--landed-cost", help="Landed cost in local currency")
    rental.add_argument("--landed-cost-foreign", help="Landed cost in foreign currency")
    rental.add_argument("--target-margin", help="Target margin as a fraction, e.g. 0.25")
    rental.add_argument("--plans", type=Path, default=DEFAULT_PLANS, help="Path to rental plans YAML")
    rental.set_defaults(handler=run_rental)

    args = parser.parse_args()
    args.handler(args)


if __name__ == "__main__":
    main()
