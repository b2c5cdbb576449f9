from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from chaldduck_pricing.app.models.pricing import (
    DiscountLine,
    ItemPricingBreakdown,
    OrderPricingResponse,
    PricingRequest,
)
from chaldduck_pricing.engine.catalog.catalog import ProductCatalog
from chaldduck_pricing.engine.pricing.discount import LineDraft, index_by_product, resolve_line_discounts
from chaldduck_pricing.engine.pricing.shipping import ZipMatch, resolve_delivery_fee
from chaldduck_pricing.engine.rules.models import DiscountRule, FulfillmentType, ShippingRule
from chaldduck_pricing.engine.rules.store import RuleStore
from chaldduck_pricing.util.logging import get_logger, log_event
from chaldduck_pricing.util.metrics import CloudWatchMetrics


class FreeShippingBase(str, Enum):
    SUBTOTAL = "SUBTOTAL"
    DISCOUNTED = "DISCOUNTED"


@dataclass
class PricingSettings:
    free_shipping_base: FreeShippingBase = FreeShippingBase.SUBTOTAL
    zip_match: ZipMatch = ZipMatch.PREFIX


@dataclass(frozen=True)
class RuleSnapshot:
    shipping_rules: List[ShippingRule] = field(default_factory=list)
    discount_rules: List[DiscountRule] = field(default_factory=list)


def price_order(
    request: PricingRequest,
    snapshot: RuleSnapshot,
    *,
    catalog: ProductCatalog | None = None,
    settings: PricingSettings | None = None,
) -> OrderPricingResponse:
    settings = settings or PricingSettings()
    rules_by_product = index_by_product(snapshot.discount_rules)

    items: List[ItemPricingBreakdown] = []
    for item in request.items:
        line = LineDraft(product_id=item.product_id, unit_price=item.unit_price, quantity=item.quantity)
        known = catalog is None or item.product_id in catalog
        applied = []
        if known:
            applied = resolve_line_discounts(
                line,
                rules_by_product.get(item.product_id, []),
                payment_method=request.payment_method,
                fulfillment_type=request.fulfillment_type,
            )
        discount_total = sum(discount.amount for discount in applied)
        items.append(
            ItemPricingBreakdown(
                product_id=item.product_id,
                product_name=item.product_name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                item_subtotal=line.subtotal,
                discounts=[DiscountLine(label=discount.label, amount=discount.amount) for discount in applied],
                item_discount_total=discount_total,
                item_final=max(0, line.subtotal - discount_total),
                availability=catalog.availability(item.product_id, item.quantity) if catalog is not None else None,
            )
        )

    subtotal_amount = sum(item.item_subtotal for item in items)
    discount_amount = sum(item.item_discount_total for item in items)
    delivery_fee = 0
    if items and request.fulfillment_type != FulfillmentType.PICKUP:
        threshold_base = subtotal_amount
        if settings.free_shipping_base == FreeShippingBase.DISCOUNTED:
            threshold_base = subtotal_amount - discount_amount
        delivery_fee = resolve_delivery_fee(
            zip_code=request.zip_code,
            amount=threshold_base,
            rules=snapshot.shipping_rules,
            zip_match=settings.zip_match,
        )

    return OrderPricingResponse(
        items=items,
        subtotal_amount=subtotal_amount,
        discount_amount=discount_amount,
        delivery_fee=delivery_fee,
        final_amount=max(0, subtotal_amount - discount_amount + delivery_fee),
    )


class PricingEngine:
    def __init__(
        self,
        store: RuleStore,
        *,
        catalog: ProductCatalog | None = None,
        settings: PricingSettings | None = None,
        metrics: CloudWatchMetrics | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.settings = settings or PricingSettings()
        self.metrics = metrics
        self.logger = get_logger(self.__class__.__name__)

    def snapshot(self, at: datetime) -> RuleSnapshot:
        return RuleSnapshot(
            shipping_rules=self.store.list_active_shipping_rules(at),
            discount_rules=self.store.list_active_discount_rules(at),
        )

    def price(self, request: PricingRequest, *, at: Optional[datetime] = None) -> OrderPricingResponse:
        at = at or datetime.now(timezone.utc)
        snapshot = self.snapshot(at)
        result = price_order(request, snapshot, catalog=self.catalog, settings=self.settings)
        log_event(
            self.logger,
            "order_priced",
            evaluated_at=at.isoformat(),
            payment_method=request.payment_method.value,
            fulfillment_type=request.fulfillment_type.value,
            item_count=len(result.items),
            shipping_rule_count=len(snapshot.shipping_rules),
            discount_rule_count=len(snapshot.discount_rules),
            subtotal_amount=result.subtotal_amount,
            discount_amount=result.discount_amount,
            delivery_fee=result.delivery_fee,
            final_amount=result.final_amount,
        )
        if self.metrics:
            self.metrics.record_pricing(
                payment_method=request.payment_method.value,
                fulfillment_type=request.fulfillment_type.value,
                discount_amount=result.discount_amount,
            )
        return result
