#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path

from chaldduck_pricing.app.config.loader import (
    build_catalog,
    build_settings,
    load_service_config,
    seed_policies,
)
from chaldduck_pricing.app.models.pricing import PricingRequest
from chaldduck_pricing.engine.pricing.pricing import PricingEngine
from chaldduck_pricing.engine.rules.store import RuleStore
from chaldduck_pricing.persistence.memory_policies import InMemoryPolicies


def main() -> None:
    parser = argparse.ArgumentParser(description="Price an order draft against a local policy config")
    parser.add_argument("--config", required=True, help="Path to service config YAML with seed policies")
    parser.add_argument("--order", required=True, help="Path to order draft JSON")
    parser.add_argument("--at", help="Evaluation time (ISO 8601), defaults to now")
    parser.add_argument("--output", help="Write the pricing result JSON here instead of stdout")
    args = parser.parse_args()

    config = load_service_config(args.config)
    store = RuleStore(InMemoryPolicies(), timezone=config.timezone)
    seed_policies(store, config)
    engine = PricingEngine(
        store,
        catalog=build_catalog(config) if config.catalog else None,
        settings=build_settings(config),
    )

    request = PricingRequest.model_validate(json.loads(Path(args.order).read_text(encoding="utf-8")))
    at = datetime.fromisoformat(args.at) if args.at else None
    result = engine.price(request, at=at)
    rendered = result.model_dump_json(by_alias=True, indent=2)

    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(rendered, encoding="utf-8")
    else:
        print(rendered)


if __name__ == "__main__":
    main()
