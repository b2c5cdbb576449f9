from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
PRODUCT_INACTIVE = "PRODUCT_INACTIVE"
SOLD_OUT = "SOLD_OUT"
INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"


class SoldOutStatus(str, Enum):
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    SOLD_OUT = "SOLD_OUT"


class Product(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_id: int
    name: str
    price: int
    stock_qty: int = 0
    safety_stock: int = 0
    sold_out_status: Optional[SoldOutStatus] = None
    active: bool = True

    @field_validator("stock_qty", "safety_stock")
    @classmethod
    def non_negative_quantity(cls, value: int) -> int:
        if value < 0:
            raise ValueError("quantity must be >= 0")
        return value

    def resolved_status(self) -> SoldOutStatus:
        if self.sold_out_status is not None:
            return self.sold_out_status
        if self.stock_qty <= 0:
            return SoldOutStatus.SOLD_OUT
        if self.stock_qty <= self.safety_stock:
            return SoldOutStatus.LOW_STOCK
        return SoldOutStatus.IN_STOCK


class ItemAvailability(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    stock_qty: int
    safety_stock: int
    sold_out_status: SoldOutStatus
    orderable: bool
    block_reason: Optional[str] = None


class ProductCatalog:
    """Read-only view of product stock, keyed by product id."""

    def __init__(self, products: Iterable[Product] = ()) -> None:
        self._products: Dict[int, Product] = {product.product_id: product for product in products}

    def get(self, product_id: int) -> Optional[Product]:
        return self._products.get(product_id)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products

    def availability(self, product_id: int, quantity: int) -> ItemAvailability:
        product = self._products.get(product_id)
        if product is None:
            return ItemAvailability(
                stock_qty=0,
                safety_stock=0,
                sold_out_status=SoldOutStatus.SOLD_OUT,
                orderable=False,
                block_reason=PRODUCT_NOT_FOUND,
            )
        status = product.resolved_status()
        block_reason: Optional[str] = None
        if not product.active:
            block_reason = PRODUCT_INACTIVE
        elif status == SoldOutStatus.SOLD_OUT:
            block_reason = SOLD_OUT
        elif quantity > product.stock_qty:
            block_reason = INSUFFICIENT_STOCK
        return ItemAvailability(
            stock_qty=product.stock_qty,
            safety_stock=product.safety_stock,
            sold_out_status=status,
            orderable=block_reason is None,
            block_reason=block_reason,
        )
