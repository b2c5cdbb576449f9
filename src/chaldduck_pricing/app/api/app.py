from __future__ import annotations

import os
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from chaldduck_pricing.app.auth.api_key import AdminKeyAuth
from chaldduck_pricing.app.config.loader import (
    build_catalog,
    build_settings,
    load_service_config,
    seed_policies,
)
from chaldduck_pricing.app.models.common import JsonBody
from chaldduck_pricing.app.models.config import ServiceConfig
from chaldduck_pricing.app.models.policy import (
    ActiveToggleRequest,
    DiscountPolicyResponse,
    DiscountRuleCreateRequest,
    DiscountRuleResponse,
    DiscountRuleUpdateRequest,
    PolicyCreateRequest,
    ShippingPolicyResponse,
    ShippingRuleCreateRequest,
    ShippingRuleResponse,
)
from chaldduck_pricing.app.models.pricing import OrderPricingResponse, PricingRequest
from chaldduck_pricing.engine.pricing.pricing import PricingEngine
from chaldduck_pricing.engine.rules.models import PolicyKind
from chaldduck_pricing.engine.rules.store import RuleStore
from chaldduck_pricing.persistence.dynamo_policies import DynamoPolicies
from chaldduck_pricing.persistence.memory_policies import InMemoryPolicies
from chaldduck_pricing.util.errors import ConflictError, NotFoundError, ValidationError
from chaldduck_pricing.util.metrics import CloudWatchMetrics


def _error_body(status_code: int, message: str) -> JSONResponse:
    body = JsonBody[None](status=status_code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _shipping_router(store: RuleStore) -> APIRouter:
    router = APIRouter(prefix="/api/v1/admin/policies/shipping")

    @router.get("")
    async def list_shipping_policies() -> JsonBody[List[ShippingPolicyResponse]]:
        policies = store.list_shipping_policies()
        return JsonBody(data=[ShippingPolicyResponse.from_policy(policy) for policy in policies])

    @router.get("/active")
    async def list_active_shipping_policies(
        at: Optional[datetime] = None,
    ) -> JsonBody[List[ShippingPolicyResponse]]:
        policies = store.list_active_shipping_policies(at or datetime.now(store.timezone))
        return JsonBody(data=[ShippingPolicyResponse.from_policy(policy) for policy in policies])

    @router.post("")
    async def create_shipping_policy(request: PolicyCreateRequest) -> JsonBody[ShippingPolicyResponse]:
        policy = store.create_shipping_policy(request)
        return JsonBody(data=ShippingPolicyResponse.from_policy(policy))

    @router.post("/rules")
    async def create_shipping_rule(request: ShippingRuleCreateRequest) -> JsonBody[ShippingRuleResponse]:
        rule = store.create_shipping_rule(request)
        return JsonBody(data=ShippingRuleResponse.from_rule(rule))

    @router.patch("/rules/{rule_id}/active")
    async def toggle_shipping_rule(rule_id: int, request: ActiveToggleRequest) -> JsonBody[ShippingRuleResponse]:
        rule = store.set_rule_active(PolicyKind.SHIPPING, rule_id, request.active)
        return JsonBody(data=ShippingRuleResponse.from_rule(rule))

    @router.delete("/rules/{rule_id}")
    async def delete_shipping_rule(rule_id: int) -> JsonBody[None]:
        store.delete_shipping_rule(rule_id)
        return JsonBody()

    @router.get("/{policy_id}")
    async def get_shipping_policy(policy_id: int) -> JsonBody[ShippingPolicyResponse]:
        return JsonBody(data=ShippingPolicyResponse.from_policy(store.get_shipping_policy(policy_id)))

    @router.patch("/{policy_id}/active")
    async def toggle_shipping_policy(
        policy_id: int, request: ActiveToggleRequest
    ) -> JsonBody[ShippingPolicyResponse]:
        policy = store.set_policy_active(PolicyKind.SHIPPING, policy_id, request.active)
        return JsonBody(data=ShippingPolicyResponse.from_policy(policy))

    @router.delete("/{policy_id}")
    async def delete_shipping_policy(policy_id: int) -> JsonBody[None]:
        store.delete_shipping_policy(policy_id)
        return JsonBody()

    return router


def _discount_router(store: RuleStore) -> APIRouter:
    router = APIRouter(prefix="/api/v1/admin/policies/discount")

    @router.get("")
    async def list_discount_policies() -> JsonBody[List[DiscountPolicyResponse]]:
        policies = store.list_discount_policies()
        return JsonBody(data=[DiscountPolicyResponse.from_policy(policy) for policy in policies])

    @router.get("/active")
    async def list_active_discount_policies(
        at: Optional[datetime] = None,
    ) -> JsonBody[List[DiscountPolicyResponse]]:
        policies = store.list_active_discount_policies(at or datetime.now(store.timezone))
        return JsonBody(data=[DiscountPolicyResponse.from_policy(policy) for policy in policies])

    @router.post("")
    async def create_discount_policy(request: PolicyCreateRequest) -> JsonBody[DiscountPolicyResponse]:
        policy = store.create_discount_policy(request)
        return JsonBody(data=DiscountPolicyResponse.from_policy(policy))

    @router.post("/rules")
    async def create_discount_rule(request: DiscountRuleCreateRequest) -> JsonBody[DiscountRuleResponse]:
        rule = store.create_discount_rule(request)
        return JsonBody(data=DiscountRuleResponse.from_rule(rule))

    @router.patch("/rules/{rule_id}")
    async def update_discount_rule(
        rule_id: int, request: DiscountRuleUpdateRequest
    ) -> JsonBody[DiscountRuleResponse]:
        rule = store.update_discount_rule(rule_id, request)
        return JsonBody(data=DiscountRuleResponse.from_rule(rule))

    @router.patch("/rules/{rule_id}/active")
    async def toggle_discount_rule(rule_id: int, request: ActiveToggleRequest) -> JsonBody[DiscountRuleResponse]:
        rule = store.set_rule_active(PolicyKind.DISCOUNT, rule_id, request.active)
        return JsonBody(data=DiscountRuleResponse.from_rule(rule))

    @router.delete("/rules/{rule_id}")
    async def delete_discount_rule(rule_id: int) -> JsonBody[None]:
        store.delete_discount_rule(rule_id)
        return JsonBody()

    @router.get("/{policy_id}")
    async def get_discount_policy(policy_id: int) -> JsonBody[DiscountPolicyResponse]:
        return JsonBody(data=DiscountPolicyResponse.from_policy(store.get_discount_policy(policy_id)))

    @router.patch("/{policy_id}/active")
    async def toggle_discount_policy(
        policy_id: int, request: ActiveToggleRequest
    ) -> JsonBody[DiscountPolicyResponse]:
        policy = store.set_policy_active(PolicyKind.DISCOUNT, policy_id, request.active)
        return JsonBody(data=DiscountPolicyResponse.from_policy(policy))

    @router.delete("/{policy_id}")
    async def delete_discount_policy(policy_id: int) -> JsonBody[None]:
        store.delete_discount_policy(policy_id)
        return JsonBody()

    return router


def create_app(
    store: RuleStore,
    engine: PricingEngine,
    *,
    auth: AdminKeyAuth | None = None,
) -> FastAPI:
    auth = auth or AdminKeyAuth(set())
    app = FastAPI(title="Chaldduck Pricing")

    @app.exception_handler(ValidationError)
    async def validation_error(_: Request, exc: ValidationError) -> JSONResponse:
        return _error_body(400, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return _error_body(404, str(exc))

    @app.exception_handler(ConflictError)
    async def conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return _error_body(409, str(exc))

    @app.get("/v1/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/v1/orders/pricing")
    async def price_order(request: PricingRequest, at: Optional[datetime] = None) -> JsonBody[OrderPricingResponse]:
        return JsonBody(data=engine.price(request, at=at))

    app.include_router(_shipping_router(store), dependencies=[Depends(auth)])
    app.include_router(_discount_router(store), dependencies=[Depends(auth)])
    return app


def create_app_from_env() -> FastAPI:
    config_path = os.getenv("PRICING_CONFIG_PATH")
    config = load_service_config(config_path) if config_path else ServiceConfig()
    policies_table = os.getenv("POLICIES_TABLE")
    backend = DynamoPolicies(policies_table) if policies_table else InMemoryPolicies()
    metrics = CloudWatchMetrics.from_env()

    store = RuleStore(backend, timezone=config.timezone, metrics=metrics)
    if not policies_table:
        seed_policies(store, config)
    engine = PricingEngine(
        store,
        catalog=build_catalog(config) if config.catalog else None,
        settings=build_settings(config),
        metrics=metrics,
    )
    return create_app(store, engine, auth=AdminKeyAuth.from_env())
