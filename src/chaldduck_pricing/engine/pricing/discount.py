from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from chaldduck_pricing.engine.rules.models import (
    ApplyScope,
    DiscountRule,
    FulfillmentType,
    PaymentMethod,
)


@dataclass(frozen=True)
class LineDraft:
    product_id: int
    unit_price: int
    quantity: int

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class AppliedDiscount:
    rule_id: int
    label: str
    amount: int


def index_by_product(rules: Iterable[DiscountRule]) -> Dict[int, List[DiscountRule]]:
    grouped: Dict[int, List[DiscountRule]] = {}
    for rule in rules:
        if rule.active:
            grouped.setdefault(rule.target_product_id, []).append(rule)
    return grouped


def _eligible(rule: DiscountRule, line: LineDraft) -> bool:
    if line.quantity < (rule.min_qty or 0):
        return False
    if rule.min_amount is not None and line.subtotal < rule.min_amount:
        return False
    return True


def _best_eligible(rules: List[DiscountRule], line: LineDraft) -> Optional[DiscountRule]:
    eligible = [rule for rule in rules if _eligible(rule, line)]
    if not eligible:
        return None
    # Quantity tiers: the highest reached minQty wins, then the lowest id.
    return min(eligible, key=lambda rule: (-(rule.min_qty or 0), rule.id))


def select_scoped_rule(
    rules: List[DiscountRule],
    line: LineDraft,
    fulfillment_type: FulfillmentType,
) -> Optional[DiscountRule]:
    """Pick the single rule filling one discount slot.

    The scope is chosen before eligibility: a pickup order uses the
    PICKUP-scoped rules whenever any exist for the slot, even if none of them
    meets its minimums, and only falls back to ALL-scoped rules otherwise.
    Other orders only ever see ALL-scoped rules.
    """
    pickup = [rule for rule in rules if rule.apply_scope == ApplyScope.PICKUP]
    if fulfillment_type == FulfillmentType.PICKUP and pickup:
        return _best_eligible(pickup, line)
    general = [rule for rule in rules if rule.apply_scope == ApplyScope.ALL]
    return _best_eligible(general, line)


def resolve_line_discounts(
    line: LineDraft,
    rules: List[DiscountRule],
    *,
    payment_method: PaymentMethod,
    fulfillment_type: FulfillmentType,
) -> List[AppliedDiscount]:
    candidates = [rule for rule in rules if rule.target_product_id == line.product_id]
    slots: List[Optional[DiscountRule]] = []
    if payment_method == PaymentMethod.BANK_TRANSFER:
        bank_rules = [rule for rule in candidates if rule.type.is_bank_transfer]
        slots.append(select_scoped_rule(bank_rules, line, fulfillment_type))
    quantity_rules = [rule for rule in candidates if rule.type.is_quantity]
    slots.append(select_scoped_rule(quantity_rules, line, fulfillment_type))

    applied: List[AppliedDiscount] = []
    remaining = line.subtotal
    for rule in slots:
        if rule is None or remaining <= 0:
            continue
        amount = min(rule.amount.amount_for(line.subtotal), remaining)
        if amount <= 0:
            continue
        applied.append(AppliedDiscount(rule_id=rule.id, label=rule.label, amount=amount))
        remaining -= amount
    return applied
