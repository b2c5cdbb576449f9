from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Type, TypeVar
from zoneinfo import ZoneInfo

from pydantic.alias_generators import to_camel

from chaldduck_pricing.app.models.policy import (
    DiscountRuleCreateRequest,
    DiscountRuleUpdateRequest,
    PolicyCreateRequest,
    ShippingRuleCreateRequest,
)
from chaldduck_pricing.engine.rules.models import (
    ApplyScope,
    DiscountAmount,
    DiscountPolicy,
    DiscountRule,
    DiscountRuleType,
    FixedDiscount,
    Policy,
    PolicyKind,
    RateDiscount,
    ShippingPolicy,
    ShippingRule,
    ShippingRuleType,
)
from chaldduck_pricing.persistence.records import PolicyRecord
from chaldduck_pricing.util.errors import ConflictError, NotFoundError, ValidationError
from chaldduck_pricing.util.logging import get_logger, log_event
from chaldduck_pricing.util.metrics import CloudWatchMetrics

DEFAULT_TIMEZONE = "Asia/Seoul"
MAX_WRITE_ATTEMPTS = 3

# Fields a discount rule PATCH may not set to null.
REQUIRED_PATCH_FIELDS = ("type", "label", "target_product_id", "apply_scope", "active")

PolicyT = TypeVar("PolicyT", ShippingPolicy, DiscountPolicy)


class PolicyBackend(Protocol):
    def put(self, record: PolicyRecord, expected_version: Optional[int] = None) -> None: ...

    def get(self, kind: str, policy_id: int) -> Optional[PolicyRecord]: ...

    def delete(self, kind: str, policy_id: int) -> bool: ...

    def list(self, kind: str) -> List[PolicyRecord]: ...

    def next_id(self, sequence: str) -> int: ...


def _require(value: Optional[int], field: str) -> int:
    if value is None:
        raise ValidationError(field, "is required")
    if value < 0:
        raise ValidationError(field, "must be >= 0")
    return value


def _non_negative(value: Optional[int], field: str) -> Optional[int]:
    if value is not None and value < 0:
        raise ValidationError(field, "must be >= 0")
    return value


def _discount_amount(
    rule_type: DiscountRuleType,
    discount_rate: Optional[int],
    amount_off: Optional[int],
) -> DiscountAmount:
    # Responses render the unused amount field as 0, so 0 is accepted back.
    if rule_type.is_rate:
        percent = _require(discount_rate, "discountRate")
        if percent > 100:
            raise ValidationError("discountRate", "must be between 0 and 100")
        if amount_off:
            raise ValidationError("amountOff", f"does not apply to {rule_type.value}")
        return RateDiscount(percent=percent)
    amount = _require(amount_off, "amountOff")
    if discount_rate:
        raise ValidationError("discountRate", f"does not apply to {rule_type.value}")
    return FixedDiscount(amount=amount)


class RuleStore:
    def __init__(
        self,
        backend: PolicyBackend,
        *,
        timezone: tzinfo | str = DEFAULT_TIMEZONE,
        metrics: CloudWatchMetrics | None = None,
    ) -> None:
        self.backend = backend
        self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self.metrics = metrics
        self.logger = get_logger(self.__class__.__name__)

    def localize(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=self.timezone)
        return value

    def _record_change(self, event: str, kind: PolicyKind, action: str, **fields: object) -> None:
        log_event(self.logger, event, kind=kind.value, **fields)
        if self.metrics:
            self.metrics.record_rule_change(kind=kind.value, action=action)

    def _save(self, kind: PolicyKind, policy: Policy, expected_version: Optional[int] = None) -> None:
        record = PolicyRecord(
            kind=kind.value,
            policy_id=policy.id,
            document=policy.model_dump_json(),
            version=(expected_version or 0) + 1,
        )
        self.backend.put(record, expected_version)

    def _load_versioned(self, kind: PolicyKind, policy_id: int, model: Type[PolicyT]) -> Tuple[PolicyT, int]:
        record = self.backend.get(kind.value, policy_id)
        if record is None:
            raise NotFoundError(f"{kind.value} policy", policy_id)
        return model.model_validate_json(record.document), record.version

    def _load(self, kind: PolicyKind, policy_id: int, model: Type[PolicyT]) -> PolicyT:
        return self._load_versioned(kind, policy_id, model)[0]

    def _load_all(self, kind: PolicyKind, model: Type[PolicyT]) -> List[PolicyT]:
        policies = [model.model_validate_json(record.document) for record in self.backend.list(kind.value)]
        return sorted(policies, key=lambda policy: policy.id)

    def _mutate(
        self,
        kind: PolicyKind,
        policy_id: int,
        model: Type[PolicyT],
        change: Callable[[PolicyT], PolicyT],
    ) -> PolicyT:
        """Apply ``change`` to the stored policy with a version-checked write.

        A conflicting write re-reads the policy and reapplies ``change``; after
        ``MAX_WRITE_ATTEMPTS`` conflicts the ``ConflictError`` propagates.
        """
        attempt = 1
        while True:
            policy, version = self._load_versioned(kind, policy_id, model)
            updated = change(policy)
            try:
                self._save(kind, updated, version)
                return updated
            except ConflictError:
                log_event(
                    self.logger,
                    "policy_write_conflict",
                    level=logging.WARNING,
                    kind=kind.value,
                    policy_id=policy_id,
                    attempt=attempt,
                )
                if attempt >= MAX_WRITE_ATTEMPTS:
                    raise
                attempt += 1

    def _find_rule_owner(self, kind: PolicyKind, rule_id: int, model: Type[PolicyT]) -> PolicyT:
        for policy in self._load_all(kind, model):
            if any(rule.id == rule_id for rule in policy.rules):
                return policy
        raise NotFoundError(f"{kind.value} rule", rule_id)

    def _create_policy(self, kind: PolicyKind, request: PolicyCreateRequest, model: Type[PolicyT]) -> PolicyT:
        if not request.name or not request.name.strip():
            raise ValidationError("name", "is required")
        start_at = self.localize(request.start_at)
        end_at = self.localize(request.end_at)
        if start_at > end_at:
            raise ValidationError("endAt", "must not be before startAt")
        policy = model(
            id=self.backend.next_id(f"{kind.value}_policy"),
            name=request.name.strip(),
            start_at=start_at,
            end_at=end_at,
            active=request.active,
        )
        self._save(kind, policy)
        self._record_change("policy_created", kind, "create", policy_id=policy.id, name=policy.name)
        return policy

    def _delete_policy(self, kind: PolicyKind, policy_id: int) -> None:
        if not self.backend.delete(kind.value, policy_id):
            raise NotFoundError(f"{kind.value} policy", policy_id)
        self._record_change("policy_deleted", kind, "delete", policy_id=policy_id)

    def _delete_rule(self, kind: PolicyKind, rule_id: int, model: Type[PolicyT]) -> None:
        owner = self._find_rule_owner(kind, rule_id, model)

        def drop(policy: PolicyT) -> PolicyT:
            index = _rule_index(kind, policy, rule_id)
            return policy.model_copy(update={"rules": [*policy.rules[:index], *policy.rules[index + 1 :]]})

        self._mutate(kind, owner.id, model, drop)
        self._record_change("rule_deleted", kind, "delete", policy_id=owner.id, rule_id=rule_id)

    def set_policy_active(self, kind: PolicyKind, policy_id: int, active: bool) -> Policy:
        model = ShippingPolicy if kind == PolicyKind.SHIPPING else DiscountPolicy
        updated = self._mutate(kind, policy_id, model, lambda policy: policy.model_copy(update={"active": active}))
        self._record_change("policy_toggled", kind, "toggle", policy_id=policy_id, active=active)
        return updated

    def set_rule_active(self, kind: PolicyKind, rule_id: int, active: bool) -> ShippingRule | DiscountRule:
        model = ShippingPolicy if kind == PolicyKind.SHIPPING else DiscountPolicy
        owner = self._find_rule_owner(kind, rule_id, model)

        def toggle(policy):
            index = _rule_index(kind, policy, rule_id)
            rules = list(policy.rules)
            rules[index] = rules[index].model_copy(update={"active": active})
            if kind == PolicyKind.SHIPPING:
                _check_single_default_fee(rules)
            return policy.model_copy(update={"rules": rules})

        updated = self._mutate(kind, owner.id, model, toggle)
        self._record_change("rule_toggled", kind, "toggle", rule_id=rule_id, active=active)
        return updated.rules[_rule_index(kind, updated, rule_id)]

    # Shipping

    def create_shipping_policy(self, request: PolicyCreateRequest) -> ShippingPolicy:
        return self._create_policy(PolicyKind.SHIPPING, request, ShippingPolicy)

    def get_shipping_policy(self, policy_id: int) -> ShippingPolicy:
        return self._load(PolicyKind.SHIPPING, policy_id, ShippingPolicy)

    def list_shipping_policies(self) -> List[ShippingPolicy]:
        return self._load_all(PolicyKind.SHIPPING, ShippingPolicy)

    def list_active_shipping_policies(self, at: datetime) -> List[ShippingPolicy]:
        at = self.localize(at)
        return [policy for policy in self.list_shipping_policies() if policy.is_active_at(at)]

    def list_active_shipping_rules(self, at: datetime) -> List[ShippingRule]:
        return [
            rule
            for policy in self.list_active_shipping_policies(at)
            for rule in policy.rules
            if rule.active
        ]

    def delete_shipping_policy(self, policy_id: int) -> None:
        self._delete_policy(PolicyKind.SHIPPING, policy_id)

    def create_shipping_rule(self, request: ShippingRuleCreateRequest) -> ShippingRule:
        policy = self._load(PolicyKind.SHIPPING, request.policy_id, ShippingPolicy)
        if not request.label or not request.label.strip():
            raise ValidationError("label", "is required")
        zip_prefix: Optional[str] = None
        fee: Optional[int] = None
        free_over_amount: Optional[int] = None
        if request.type == ShippingRuleType.ZIP_PREFIX_FEE:
            zip_prefix = (request.zip_prefix or "").strip()
            if not zip_prefix:
                raise ValidationError("zipPrefix", "is required")
            if not (zip_prefix.isascii() and zip_prefix.isdigit()):
                raise ValidationError("zipPrefix", "must contain digits only")
            fee = _require(request.fee, "fee")
        elif request.type == ShippingRuleType.FREE_OVER_AMOUNT:
            free_over_amount = _require(request.free_over_amount, "freeOverAmount")
        else:
            fee = _require(request.fee, "fee")

        draft = ShippingRule(
            id=0,
            policy_id=policy.id,
            type=request.type,
            label=request.label.strip(),
            zip_prefix=zip_prefix,
            fee=fee,
            free_over_amount=free_over_amount,
            active=request.active,
        )
        _check_single_default_fee([*policy.rules, draft])
        rule = draft.model_copy(update={"id": self.backend.next_id("shipping_rule")})

        def append(current: ShippingPolicy) -> ShippingPolicy:
            rules = [*current.rules, rule]
            _check_single_default_fee(rules)
            return current.model_copy(update={"rules": rules})

        self._mutate(PolicyKind.SHIPPING, policy.id, ShippingPolicy, append)
        self._record_change(
            "rule_created",
            PolicyKind.SHIPPING,
            "create",
            policy_id=policy.id,
            rule_id=rule.id,
            type=rule.type.value,
        )
        return rule

    def delete_shipping_rule(self, rule_id: int) -> None:
        self._delete_rule(PolicyKind.SHIPPING, rule_id, ShippingPolicy)

    # Discount

    def create_discount_policy(self, request: PolicyCreateRequest) -> DiscountPolicy:
        return self._create_policy(PolicyKind.DISCOUNT, request, DiscountPolicy)

    def get_discount_policy(self, policy_id: int) -> DiscountPolicy:
        return self._load(PolicyKind.DISCOUNT, policy_id, DiscountPolicy)

    def list_discount_policies(self) -> List[DiscountPolicy]:
        return self._load_all(PolicyKind.DISCOUNT, DiscountPolicy)

    def list_active_discount_policies(self, at: datetime) -> List[DiscountPolicy]:
        at = self.localize(at)
        return [policy for policy in self.list_discount_policies() if policy.is_active_at(at)]

    def list_active_discount_rules(self, at: datetime) -> List[DiscountRule]:
        return [
            rule
            for policy in self.list_active_discount_policies(at)
            for rule in policy.rules
            if rule.active
        ]

    def delete_discount_policy(self, policy_id: int) -> None:
        self._delete_policy(PolicyKind.DISCOUNT, policy_id)

    def create_discount_rule(self, request: DiscountRuleCreateRequest) -> DiscountRule:
        policy = self._load(PolicyKind.DISCOUNT, request.policy_id, DiscountPolicy)
        draft = _build_discount_rule(
            rule_id=0,
            policy_id=policy.id,
            rule_type=request.type,
            target_product_id=request.target_product_id,
            label=request.label,
            apply_scope=request.apply_scope,
            discount_rate=request.discount_rate,
            amount_off=request.amount_off,
            min_amount=request.min_amount,
            min_qty=request.min_qty,
            active=request.active,
        )
        rule = draft.model_copy(update={"id": self.backend.next_id("discount_rule")})
        self._mutate(
            PolicyKind.DISCOUNT,
            policy.id,
            DiscountPolicy,
            lambda current: current.model_copy(update={"rules": [*current.rules, rule]}),
        )
        self._record_change(
            "rule_created",
            PolicyKind.DISCOUNT,
            "create",
            policy_id=policy.id,
            rule_id=rule.id,
            type=rule.type.value,
            target_product_id=rule.target_product_id,
        )
        return rule

    def update_discount_rule(self, rule_id: int, patch: DiscountRuleUpdateRequest) -> DiscountRule:
        changes = patch.model_dump(exclude_unset=True)
        for name in REQUIRED_PATCH_FIELDS:
            if name in changes and changes[name] is None:
                raise ValidationError(to_camel(name), "must not be null")
        owner = self._find_rule_owner(PolicyKind.DISCOUNT, rule_id, DiscountPolicy)

        def apply(policy: DiscountPolicy) -> DiscountPolicy:
            index = _rule_index(PolicyKind.DISCOUNT, policy, rule_id)
            rules = list(policy.rules)
            rules[index] = _patched_discount_rule(rules[index], changes)
            return policy.model_copy(update={"rules": rules})

        updated = self._mutate(PolicyKind.DISCOUNT, owner.id, DiscountPolicy, apply)
        rule = updated.rules[_rule_index(PolicyKind.DISCOUNT, updated, rule_id)]
        self._record_change(
            "rule_updated",
            PolicyKind.DISCOUNT,
            "update",
            policy_id=owner.id,
            rule_id=rule.id,
            fields=sorted(changes),
        )
        return rule

    def delete_discount_rule(self, rule_id: int) -> None:
        self._delete_rule(PolicyKind.DISCOUNT, rule_id, DiscountPolicy)


def _rule_index(kind: PolicyKind, policy: Policy, rule_id: int) -> int:
    for index, rule in enumerate(policy.rules):
        if rule.id == rule_id:
            return index
    raise NotFoundError(f"{kind.value} rule", rule_id)


def _check_single_default_fee(rules: List[ShippingRule]) -> None:
    defaults = [rule for rule in rules if rule.type == ShippingRuleType.DEFAULT_FEE and rule.active]
    if len(defaults) > 1:
        raise ValidationError("type", "only one active DEFAULT_FEE rule is allowed per policy")


def _patched_discount_rule(current: DiscountRule, changes: Dict[str, Any]) -> DiscountRule:
    rule_type = changes.get("type", current.type)
    discount_rate = changes.get("discount_rate")
    amount_off = changes.get("amount_off")
    if rule_type.is_rate and discount_rate is None and isinstance(current.amount, RateDiscount):
        discount_rate = current.amount.percent
    if not rule_type.is_rate and amount_off is None and isinstance(current.amount, FixedDiscount):
        amount_off = current.amount.amount
    return _build_discount_rule(
        rule_id=current.id,
        policy_id=current.policy_id,
        rule_type=rule_type,
        target_product_id=changes.get("target_product_id", current.target_product_id),
        label=changes.get("label", current.label),
        apply_scope=changes.get("apply_scope", current.apply_scope),
        discount_rate=discount_rate,
        amount_off=amount_off,
        min_amount=changes.get("min_amount", current.min_amount),
        min_qty=changes.get("min_qty", current.min_qty),
        active=changes.get("active", current.active),
    )


def _build_discount_rule(
    *,
    rule_id: int,
    policy_id: int,
    rule_type: DiscountRuleType,
    target_product_id: Optional[int],
    label: Optional[str],
    apply_scope: ApplyScope,
    discount_rate: Optional[int],
    amount_off: Optional[int],
    min_amount: Optional[int],
    min_qty: Optional[int],
    active: bool,
) -> DiscountRule:
    if target_product_id is None:
        raise ValidationError("targetProductId", "is required")
    if not label or not label.strip():
        raise ValidationError("label", "is required")
    return DiscountRule(
        id=rule_id,
        policy_id=policy_id,
        type=rule_type,
        target_product_id=target_product_id,
        label=label.strip(),
        apply_scope=apply_scope,
        amount=_discount_amount(rule_type, discount_rate, amount_off),
        min_amount=_non_negative(min_amount, "minAmount"),
        min_qty=_non_negative(min_qty, "minQty"),
        active=active,
    )
