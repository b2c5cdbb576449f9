from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator

from chaldduck_pricing.app.models.common import CamelModel
from chaldduck_pricing.engine.catalog.catalog import ItemAvailability
from chaldduck_pricing.engine.rules.models import FulfillmentType, PaymentMethod


class PricingItem(CamelModel):
    product_id: int
    product_name: str
    unit_price: int
    quantity: int

    @field_validator("unit_price", "quantity")
    @classmethod
    def non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value


class PricingRequest(CamelModel):
    payment_method: PaymentMethod
    fulfillment_type: FulfillmentType = FulfillmentType.DELIVERY
    zip_code: Optional[str] = None
    items: List[PricingItem] = Field(default_factory=list)

    @field_validator("zip_code")
    @classmethod
    def strip_zip(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class DiscountLine(CamelModel):
    label: str
    amount: int


class ItemPricingBreakdown(CamelModel):
    product_id: int
    product_name: str
    unit_price: int
    quantity: int
    item_subtotal: int
    discounts: List[DiscountLine] = Field(default_factory=list)
    item_discount_total: int = 0
    item_final: int
    availability: Optional[ItemAvailability] = None


class OrderPricingResponse(CamelModel):
    items: List[ItemPricingBreakdown] = Field(default_factory=list)
    subtotal_amount: int
    discount_amount: int
    delivery_fee: int
    final_amount: int
