from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class PolicyKind(str, Enum):
    SHIPPING = "shipping"
    DISCOUNT = "discount"


class ShippingRuleType(str, Enum):
    ZIP_PREFIX_FEE = "ZIP_PREFIX_FEE"
    FREE_OVER_AMOUNT = "FREE_OVER_AMOUNT"
    DEFAULT_FEE = "DEFAULT_FEE"


class DiscountRuleType(str, Enum):
    BANK_TRANSFER_FIXED = "BANK_TRANSFER_FIXED"
    BANK_TRANSFER_RATE = "BANK_TRANSFER_RATE"
    QTY_FIXED = "QTY_FIXED"
    QTY_RATE = "QTY_RATE"

    @property
    def is_bank_transfer(self) -> bool:
        return self in (DiscountRuleType.BANK_TRANSFER_FIXED, DiscountRuleType.BANK_TRANSFER_RATE)

    @property
    def is_quantity(self) -> bool:
        return self in (DiscountRuleType.QTY_FIXED, DiscountRuleType.QTY_RATE)

    @property
    def is_rate(self) -> bool:
        return self in (DiscountRuleType.BANK_TRANSFER_RATE, DiscountRuleType.QTY_RATE)


class ApplyScope(str, Enum):
    ALL = "ALL"
    PICKUP = "PICKUP"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"


class FulfillmentType(str, Enum):
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"


class RateDiscount(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["RATE"] = "RATE"
    percent: int

    def amount_for(self, line_total: int) -> int:
        return line_total * self.percent // 100


class FixedDiscount(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["FIXED"] = "FIXED"
    amount: int

    def amount_for(self, line_total: int) -> int:
        return self.amount


DiscountAmount = Annotated[Union[RateDiscount, FixedDiscount], Field(discriminator="kind")]


class ShippingRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    policy_id: int
    type: ShippingRuleType
    label: str
    zip_prefix: Optional[str] = None
    fee: Optional[int] = None
    free_over_amount: Optional[int] = None
    active: bool = True


class DiscountRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    policy_id: int
    type: DiscountRuleType
    target_product_id: int
    label: str
    apply_scope: ApplyScope = ApplyScope.ALL
    amount: DiscountAmount
    min_amount: Optional[int] = None
    min_qty: Optional[int] = None
    active: bool = True


class _WindowedPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    start_at: datetime
    end_at: datetime
    active: bool = True

    def is_active_at(self, at: datetime) -> bool:
        return self.active and self.start_at <= at <= self.end_at


class ShippingPolicy(_WindowedPolicy):
    rules: List[ShippingRule] = Field(default_factory=list)


class DiscountPolicy(_WindowedPolicy):
    rules: List[DiscountRule] = Field(default_factory=list)


Policy = Union[ShippingPolicy, DiscountPolicy]
