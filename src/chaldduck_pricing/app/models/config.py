from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from chaldduck_pricing.app.models.policy import (
    DiscountRuleCreateRequest,
    PolicyCreateRequest,
    ShippingRuleCreateRequest,
)
from chaldduck_pricing.engine.catalog.catalog import Product
from chaldduck_pricing.engine.pricing.pricing import FreeShippingBase
from chaldduck_pricing.engine.pricing.shipping import ZipMatch


class PricingConfig(BaseModel):
    free_shipping_base: FreeShippingBase = FreeShippingBase.SUBTOTAL
    zip_match: ZipMatch = ZipMatch.PREFIX


class SeedShippingRule(ShippingRuleCreateRequest):
    policy_id: int = 0


class SeedDiscountRule(DiscountRuleCreateRequest):
    policy_id: int = 0


class SeedShippingPolicy(PolicyCreateRequest):
    rules: List[SeedShippingRule] = Field(default_factory=list)


class SeedDiscountPolicy(PolicyCreateRequest):
    rules: List[SeedDiscountRule] = Field(default_factory=list)


class SeedPolicies(BaseModel):
    shipping: List[SeedShippingPolicy] = Field(default_factory=list)
    discount: List[SeedDiscountPolicy] = Field(default_factory=list)


class ServiceConfig(BaseModel):
    schema_version: int = 1
    timezone: str = "Asia/Seoul"
    currency: str = "KRW"
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    catalog: List[Product] = Field(default_factory=list)
    policies: SeedPolicies = Field(default_factory=SeedPolicies)
