from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml

from chaldduck_pricing.app.models.config import ServiceConfig
from chaldduck_pricing.engine.catalog.catalog import ProductCatalog
from chaldduck_pricing.engine.pricing.pricing import PricingSettings
from chaldduck_pricing.engine.rules.store import RuleStore

SUPPORTED_SCHEMA_VERSIONS = {1}


def load_service_config(path: str | Path) -> ServiceConfig:
    data: Dict[str, Any]
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    config = ServiceConfig.model_validate(data)
    if config.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"Unsupported schema_version {config.schema_version}")
    return config


def build_catalog(config: ServiceConfig) -> ProductCatalog:
    return ProductCatalog(config.catalog)


def build_settings(config: ServiceConfig) -> PricingSettings:
    return PricingSettings(
        free_shipping_base=config.pricing.free_shipping_base,
        zip_match=config.pricing.zip_match,
    )


def seed_policies(store: RuleStore, config: ServiceConfig) -> None:
    for seed in config.policies.shipping:
        policy = store.create_shipping_policy(seed)
        for rule in seed.rules:
            store.create_shipping_rule(rule.model_copy(update={"policy_id": policy.id}))
    for seed in config.policies.discount:
        policy = store.create_discount_policy(seed)
        for rule in seed.rules:
            store.create_discount_rule(rule.model_copy(update={"policy_id": policy.id}))
