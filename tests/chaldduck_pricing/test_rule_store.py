from datetime import datetime

import pytest

from chaldduck_pricing.app.models.policy import (
    DiscountRuleCreateRequest,
    DiscountRuleUpdateRequest,
    PolicyCreateRequest,
    ShippingRuleCreateRequest,
)
from chaldduck_pricing.engine.rules.models import (
    ApplyScope,
    DiscountRuleType,
    FixedDiscount,
    PolicyKind,
    RateDiscount,
    ShippingRuleType,
)
from chaldduck_pricing.engine.rules.store import MAX_WRITE_ATTEMPTS, RuleStore
from chaldduck_pricing.persistence.memory_policies import InMemoryPolicies
from chaldduck_pricing.util.errors import ConflictError, NotFoundError, ValidationError

MID_YEAR = datetime(2025, 6, 1, 9, 0)


def _discount_rule(policy_id: int, **overrides) -> DiscountRuleCreateRequest:
    fields = {
        "policy_id": policy_id,
        "type": DiscountRuleType.BANK_TRANSFER_FIXED,
        "target_product_id": 1,
        "label": "무통장 할인",
        "amount_off": 1000,
    }
    fields.update(overrides)
    return DiscountRuleCreateRequest(**fields)


def test_create_policy_localizes_naive_window(store, year_window) -> None:
    policy = store.create_shipping_policy(year_window)
    assert policy.id == 1
    assert policy.start_at.utcoffset().total_seconds() == 9 * 3600
    assert store.get_shipping_policy(policy.id).name == "2025 정책"


def test_create_policy_rejects_inverted_window(store) -> None:
    request = PolicyCreateRequest(name="bad", start_at=datetime(2025, 2, 1), end_at=datetime(2025, 1, 1))
    with pytest.raises(ValidationError) as excinfo:
        store.create_discount_policy(request)
    assert excinfo.value.field == "endAt"


@pytest.mark.parametrize(
    "rule_type, fields, missing",
    [
        (ShippingRuleType.ZIP_PREFIX_FEE, {"fee": 2000}, "zipPrefix"),
        (ShippingRuleType.ZIP_PREFIX_FEE, {"zip_prefix": "060"}, "fee"),
        (ShippingRuleType.FREE_OVER_AMOUNT, {}, "freeOverAmount"),
        (ShippingRuleType.DEFAULT_FEE, {}, "fee"),
    ],
)
def test_shipping_rule_requires_type_fields(store, year_window, rule_type, fields, missing) -> None:
    policy = store.create_shipping_policy(year_window)
    request = ShippingRuleCreateRequest(policy_id=policy.id, type=rule_type, label="rule", **fields)
    with pytest.raises(ValidationError) as excinfo:
        store.create_shipping_rule(request)
    assert excinfo.value.field == missing
    assert store.get_shipping_policy(policy.id).rules == []


def test_shipping_rule_rejects_negative_fee(store, year_window) -> None:
    policy = store.create_shipping_policy(year_window)
    request = ShippingRuleCreateRequest(policy_id=policy.id, type=ShippingRuleType.DEFAULT_FEE, label="기본", fee=-1)
    with pytest.raises(ValidationError, match="fee"):
        store.create_shipping_rule(request)


def test_only_one_active_default_fee_per_policy(store, year_window) -> None:
    policy = store.create_shipping_policy(year_window)
    request = ShippingRuleCreateRequest(policy_id=policy.id, type=ShippingRuleType.DEFAULT_FEE, label="기본", fee=3000)
    store.create_shipping_rule(request)
    with pytest.raises(ValidationError):
        store.create_shipping_rule(request)
    inactive = store.create_shipping_rule(request.model_copy(update={"active": False}))
    with pytest.raises(ValidationError):
        store.set_rule_active(PolicyKind.SHIPPING, inactive.id, True)


def test_discount_rule_stores_tagged_amount(store, year_window) -> None:
    policy = store.create_discount_policy(year_window)
    fixed = store.create_discount_rule(_discount_rule(policy.id, discount_rate=0))
    rate = store.create_discount_rule(
        _discount_rule(policy.id, type=DiscountRuleType.QTY_RATE, discount_rate=15, amount_off=0, min_qty=3)
    )
    assert fixed.amount == FixedDiscount(amount=1000)
    assert rate.amount == RateDiscount(percent=15)


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"type": DiscountRuleType.QTY_RATE, "discount_rate": 101}, "discountRate"),
        ({"type": DiscountRuleType.BANK_TRANSFER_RATE, "discount_rate": None}, "discountRate"),
        ({"amount_off": None}, "amountOff"),
        ({"amount_off": -5}, "amountOff"),
        ({"target_product_id": None}, "targetProductId"),
        ({"min_qty": -1}, "minQty"),
        ({"min_amount": -1}, "minAmount"),
    ],
)
def test_discount_rule_validation(store, year_window, overrides, field) -> None:
    policy = store.create_discount_policy(year_window)
    with pytest.raises(ValidationError) as excinfo:
        store.create_discount_rule(_discount_rule(policy.id, **overrides))
    assert excinfo.value.field == field


def test_rule_for_unknown_policy_is_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.create_discount_rule(_discount_rule(404))


def test_delete_missing_ids_raise_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.delete_shipping_policy(1)
    with pytest.raises(NotFoundError):
        store.delete_discount_rule(1)
    with pytest.raises(NotFoundError):
        store.get_discount_policy(1)


def test_delete_policy_cascades_to_rules(store, year_window) -> None:
    policy = store.create_discount_policy(year_window)
    rule = store.create_discount_rule(_discount_rule(policy.id))
    store.delete_discount_policy(policy.id)

    assert store.list_discount_policies() == []
    assert store.list_active_discount_rules(MID_YEAR) == []
    with pytest.raises(NotFoundError):
        store.delete_discount_rule(rule.id)


def test_delete_rule_keeps_siblings(store, year_window) -> None:
    policy = store.create_discount_policy(year_window)
    first = store.create_discount_rule(_discount_rule(policy.id))
    second = store.create_discount_rule(_discount_rule(policy.id, apply_scope=ApplyScope.PICKUP))
    store.delete_discount_rule(first.id)
    assert [rule.id for rule in store.get_discount_policy(policy.id).rules] == [second.id]


def test_active_rules_respect_policy_window_and_flags(store, year_window) -> None:
    live = store.create_discount_policy(year_window)
    expired = store.create_discount_policy(
        PolicyCreateRequest(name="작년", start_at=datetime(2024, 1, 1), end_at=datetime(2024, 12, 31))
    )
    switched_off = store.create_discount_policy(year_window.model_copy(update={"active": False}))
    kept = store.create_discount_rule(_discount_rule(live.id))
    store.create_discount_rule(_discount_rule(live.id, active=False))
    store.create_discount_rule(_discount_rule(expired.id))
    store.create_discount_rule(_discount_rule(switched_off.id))

    active = store.list_active_discount_rules(MID_YEAR)

    assert [rule.id for rule in active] == [kept.id]
    assert [policy.id for policy in store.list_active_discount_policies(MID_YEAR)] == [live.id]


def test_window_bounds_are_inclusive(store, year_window) -> None:
    policy = store.create_shipping_policy(year_window)
    store.create_shipping_rule(
        ShippingRuleCreateRequest(policy_id=policy.id, type=ShippingRuleType.DEFAULT_FEE, label="기본", fee=3000)
    )
    assert len(store.list_active_shipping_rules(datetime(2025, 1, 1))) == 1
    assert len(store.list_active_shipping_rules(datetime(2025, 12, 31, 23, 59, 59))) == 1
    assert store.list_active_shipping_rules(datetime(2026, 1, 1)) == []


def test_toggle_policy_active(store, year_window) -> None:
    policy = store.create_shipping_policy(year_window)
    store.set_policy_active(PolicyKind.SHIPPING, policy.id, False)
    assert store.list_active_shipping_policies(MID_YEAR) == []
    with pytest.raises(NotFoundError):
        store.set_policy_active(PolicyKind.DISCOUNT, policy.id + 100, True)


def test_update_discount_rule_patches_fields(store, year_window) -> None:
    policy = store.create_discount_policy(year_window)
    rule = store.create_discount_rule(_discount_rule(policy.id, min_qty=1))

    updated = store.update_discount_rule(rule.id, DiscountRuleUpdateRequest(amount_off=1500, label="무통장 1500"))

    assert updated.id == rule.id
    assert updated.amount == FixedDiscount(amount=1500)
    assert updated.label == "무통장 1500"
    assert updated.min_qty == 1
    assert store.get_discount_policy(policy.id).rules == [updated]


def test_update_discount_rule_type_change_needs_new_amount(store, year_window) -> None:
    policy = store.create_discount_policy(year_window)
    rule = store.create_discount_rule(_discount_rule(policy.id))

    with pytest.raises(ValidationError, match="discountRate"):
        store.update_discount_rule(rule.id, DiscountRuleUpdateRequest(type=DiscountRuleType.BANK_TRANSFER_RATE))

    updated = store.update_discount_rule(
        rule.id, DiscountRuleUpdateRequest(type=DiscountRuleType.BANK_TRANSFER_RATE, discount_rate=5)
    )
    assert updated.amount == RateDiscount(percent=5)


def test_update_missing_rule_is_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        store.update_discount_rule(9, DiscountRuleUpdateRequest(label="x"))


class _InterleavedPolicies(InMemoryPolicies):
    """Runs a queued competing write just before the next put lands."""

    def __init__(self) -> None:
        super().__init__()
        self.pending = []

    def put(self, record, expected_version=None) -> None:
        if self.pending:
            self.pending.pop(0)()
        super().put(record, expected_version)


def test_concurrent_rule_creates_both_survive(year_window) -> None:
    backend = _InterleavedPolicies()
    first_instance = RuleStore(backend)
    second_instance = RuleStore(backend)
    policy = first_instance.create_discount_policy(year_window)
    backend.pending.append(
        lambda: second_instance.create_discount_rule(_discount_rule(policy.id, label="다른 인스턴스"))
    )

    created = first_instance.create_discount_rule(_discount_rule(policy.id))

    labels = [rule.label for rule in first_instance.get_discount_policy(policy.id).rules]
    assert labels == ["다른 인스턴스", "무통장 할인"]
    assert created.id == 1


def test_write_conflict_gives_up_after_retries(store, year_window, monkeypatch) -> None:
    policy = store.create_discount_policy(year_window)
    rule = store.create_discount_rule(_discount_rule(policy.id))
    attempts = []

    def always_stale(record, expected_version=None):
        attempts.append(expected_version)
        raise ConflictError("discount policy", record.policy_id)

    monkeypatch.setattr(store.backend, "put", always_stale)
    with pytest.raises(ConflictError):
        store.update_discount_rule(rule.id, DiscountRuleUpdateRequest(label="변경"))

    assert len(attempts) == MAX_WRITE_ATTEMPTS
    assert store.get_discount_policy(policy.id).rules == [rule]


def test_rejected_creates_do_not_consume_ids(store, year_window) -> None:
    shipping = store.create_shipping_policy(year_window)
    discount = store.create_discount_policy(year_window)

    with pytest.raises(ValidationError):
        store.create_shipping_rule(
            ShippingRuleCreateRequest(policy_id=shipping.id, type=ShippingRuleType.DEFAULT_FEE, label="기본")
        )
    with pytest.raises(ValidationError):
        store.create_discount_rule(_discount_rule(discount.id, amount_off=None))

    shipping_rule = store.create_shipping_rule(
        ShippingRuleCreateRequest(policy_id=shipping.id, type=ShippingRuleType.DEFAULT_FEE, label="기본", fee=3000)
    )
    discount_rule = store.create_discount_rule(_discount_rule(discount.id))
    assert (shipping_rule.id, discount_rule.id) == (1, 1)


def test_zip_prefix_rejects_non_ascii_digits(store, year_window) -> None:
    policy = store.create_shipping_policy(year_window)
    request = ShippingRuleCreateRequest(
        policy_id=policy.id, type=ShippingRuleType.ZIP_PREFIX_FEE, label="서울", zip_prefix="０６０", fee=2000
    )
    with pytest.raises(ValidationError) as excinfo:
        store.create_shipping_rule(request)
    assert excinfo.value.field == "zipPrefix"


def test_update_discount_rule_can_clear_minimums(store, year_window) -> None:
    policy = store.create_discount_policy(year_window)
    rule = store.create_discount_rule(_discount_rule(policy.id, min_qty=3, min_amount=20000))

    updated = store.update_discount_rule(rule.id, DiscountRuleUpdateRequest(min_qty=None, min_amount=None))

    assert (updated.min_qty, updated.min_amount) == (None, None)
    assert updated.amount == FixedDiscount(amount=1000)


@pytest.mark.parametrize(
    "patch, field",
    [
        (DiscountRuleUpdateRequest(discount_rate=5), "discountRate"),
        (DiscountRuleUpdateRequest(label=None), "label"),
        (DiscountRuleUpdateRequest(type=None), "type"),
    ],
)
def test_update_discount_rule_rejects_unusable_fields(store, year_window, patch, field) -> None:
    policy = store.create_discount_policy(year_window)
    rule = store.create_discount_rule(_discount_rule(policy.id))

    with pytest.raises(ValidationError) as excinfo:
        store.update_discount_rule(rule.id, patch)

    assert excinfo.value.field == field
    assert store.get_discount_policy(policy.id).rules == [rule]


def test_rate_rule_rejects_amount_off(store, year_window) -> None:
    policy = store.create_discount_policy(year_window)
    with pytest.raises(ValidationError) as excinfo:
        store.create_discount_rule(_discount_rule(policy.id, type=DiscountRuleType.QTY_RATE, discount_rate=10))
    assert excinfo.value.field == "amountOff"
