from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional

from chaldduck_pricing.engine.rules.models import ShippingRule, ShippingRuleType


class ZipMatch(str, Enum):
    PREFIX = "PREFIX"
    EXACT = "EXACT"


def _zip_matches(rule: ShippingRule, zip_code: str, mode: ZipMatch) -> bool:
    if not rule.zip_prefix:
        return False
    if mode == ZipMatch.EXACT:
        return zip_code == rule.zip_prefix
    return zip_code.startswith(rule.zip_prefix)


def _of_type(rules: List[ShippingRule], rule_type: ShippingRuleType) -> List[ShippingRule]:
    return [rule for rule in rules if rule.type == rule_type]


def resolve_delivery_fee(
    *,
    zip_code: Optional[str],
    amount: int,
    rules: Iterable[ShippingRule],
    zip_match: ZipMatch = ZipMatch.PREFIX,
) -> int:
    """Resolve one delivery fee from the active shipping rules.

    A satisfied FREE_OVER_AMOUNT threshold waives the fee outright. Otherwise
    the most specific matching zip rule applies, then the DEFAULT_FEE rule,
    and with no rule at all the fee is 0. Ties go to the lowest rule id.
    """
    candidates = sorted((rule for rule in rules if rule.active), key=lambda rule: rule.id)

    for rule in _of_type(candidates, ShippingRuleType.FREE_OVER_AMOUNT):
        if rule.free_over_amount is not None and rule.free_over_amount <= amount:
            return 0

    if zip_code:
        matches = [
            rule
            for rule in _of_type(candidates, ShippingRuleType.ZIP_PREFIX_FEE)
            if _zip_matches(rule, zip_code, zip_match)
        ]
        if matches:
            best = max(matches, key=lambda rule: (len(rule.zip_prefix or ""), -rule.id))
            return max(0, best.fee or 0)

    defaults = _of_type(candidates, ShippingRuleType.DEFAULT_FEE)
    if defaults:
        return max(0, defaults[0].fee or 0)
    return 0
