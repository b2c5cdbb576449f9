from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, Field, field_validator

from chaldduck_pricing.app.models.common import CamelModel
from chaldduck_pricing.engine.rules.models import (
    ApplyScope,
    DiscountPolicy,
    DiscountRule,
    DiscountRuleType,
    RateDiscount,
    ShippingPolicy,
    ShippingRule,
    ShippingRuleType,
)

# Name used by the order backend for the zip rule type.
LEGACY_SHIPPING_TYPES = {"ZIP_CODE_DISCOUNT": ShippingRuleType.ZIP_PREFIX_FEE.value}


class PolicyCreateRequest(CamelModel):
    name: str
    start_at: datetime = Field(validation_alias=AliasChoices("startAt", "policyStartDate", "start_at"))
    end_at: datetime = Field(validation_alias=AliasChoices("endAt", "policyEndDate", "end_at"))
    active: bool = True


class ActiveToggleRequest(CamelModel):
    active: bool


class ShippingRuleCreateRequest(CamelModel):
    policy_id: int
    type: ShippingRuleType
    label: str
    zip_prefix: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("zipPrefix", "zipCode", "zip_prefix"),
    )
    fee: Optional[int] = None
    free_over_amount: Optional[int] = None
    active: bool = True

    @field_validator("type", mode="before")
    @classmethod
    def legacy_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return LEGACY_SHIPPING_TYPES.get(value, value)
        return value


class DiscountRuleCreateRequest(CamelModel):
    policy_id: int
    type: DiscountRuleType
    target_product_id: Optional[int] = None
    label: str
    apply_scope: ApplyScope = ApplyScope.ALL
    discount_rate: Optional[int] = None
    amount_off: Optional[int] = None
    min_amount: Optional[int] = None
    min_qty: Optional[int] = None
    active: bool = True


class DiscountRuleUpdateRequest(CamelModel):
    label: Optional[str] = None
    type: Optional[DiscountRuleType] = None
    target_product_id: Optional[int] = None
    apply_scope: Optional[ApplyScope] = None
    discount_rate: Optional[int] = None
    amount_off: Optional[int] = None
    min_amount: Optional[int] = None
    min_qty: Optional[int] = None
    active: Optional[bool] = None


class ShippingRuleResponse(CamelModel):
    id: int
    policy_id: int
    type: ShippingRuleType
    label: str
    zip_prefix: Optional[str] = None
    fee: Optional[int] = None
    free_over_amount: Optional[int] = None
    active: bool

    @classmethod
    def from_rule(cls, rule: ShippingRule) -> "ShippingRuleResponse":
        return cls.model_validate(rule.model_dump())


class DiscountRuleResponse(CamelModel):
    id: int
    policy_id: int
    type: DiscountRuleType
    target_product_id: int
    label: str
    apply_scope: ApplyScope
    discount_rate: int = 0
    amount_off: int = 0
    min_amount: Optional[int] = None
    min_qty: Optional[int] = None
    active: bool

    @classmethod
    def from_rule(cls, rule: DiscountRule) -> "DiscountRuleResponse":
        fields = rule.model_dump(exclude={"amount"})
        if isinstance(rule.amount, RateDiscount):
            fields["discount_rate"] = rule.amount.percent
        else:
            fields["amount_off"] = rule.amount.amount
        return cls.model_validate(fields)


class ShippingPolicyResponse(CamelModel):
    id: int
    name: str
    start_at: datetime
    end_at: datetime
    active: bool
    rules: List[ShippingRuleResponse] = Field(default_factory=list)

    @classmethod
    def from_policy(cls, policy: ShippingPolicy) -> "ShippingPolicyResponse":
        return cls(
            id=policy.id,
            name=policy.name,
            start_at=policy.start_at,
            end_at=policy.end_at,
            active=policy.active,
            rules=[ShippingRuleResponse.from_rule(rule) for rule in policy.rules],
        )


class DiscountPolicyResponse(CamelModel):
    id: int
    name: str
    start_at: datetime
    end_at: datetime
    active: bool
    rules: List[DiscountRuleResponse] = Field(default_factory=list)

    @classmethod
    def from_policy(cls, policy: DiscountPolicy) -> "DiscountPolicyResponse":
        return cls(
            id=policy.id,
            name=policy.name,
            start_at=policy.start_at,
            end_at=policy.end_at,
            active=policy.active,
            rules=[DiscountRuleResponse.from_rule(rule) for rule in policy.rules],
        )
