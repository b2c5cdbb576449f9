from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from chaldduck_pricing.util.logging import get_logger, log_event


@dataclass(frozen=True)
class MetricDimension:
    name: str
    value: str


@dataclass
class MetricDatum:
    name: str
    value: float
    unit: str = "Count"
    dimensions: List[MetricDimension] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"MetricName": self.name, "Value": self.value, "Unit": self.unit}
        if self.dimensions:
            payload["Dimensions"] = [{"Name": dim.name, "Value": dim.value} for dim in self.dimensions]
        return payload


class CloudWatchMetrics:
    """Publishes pricing and policy-admin counters. A no-op unless enabled."""

    def __init__(self, *, namespace: str, enabled: bool) -> None:
        self.namespace = namespace
        self.enabled = enabled
        self.client = boto3.client("cloudwatch") if enabled else None
        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def from_env(cls) -> "CloudWatchMetrics":
        enabled = os.getenv("CLOUDWATCH_METRICS_ENABLED", "false").lower() == "true"
        namespace = os.getenv("CLOUDWATCH_METRICS_NAMESPACE", "ChaldduckPricing")
        return cls(namespace=namespace, enabled=enabled)

    def _publish(self, data: List[MetricDatum]) -> None:
        if not self.enabled or not self.client or not data:
            return
        try:
            self.client.put_metric_data(
                Namespace=self.namespace,
                MetricData=[datum.to_payload() for datum in data],
            )
        except (BotoCoreError, ClientError) as exc:
            log_event(
                self.logger,
                "cloudwatch_metric_failed",
                level=logging.WARNING,
                error=str(exc),
                metrics=[datum.name for datum in data],
            )

    def record_pricing(self, *, payment_method: str, fulfillment_type: str, discount_amount: int) -> None:
        dimensions = [
            MetricDimension(name="payment_method", value=payment_method),
            MetricDimension(name="fulfillment_type", value=fulfillment_type),
        ]
        self._publish(
            [
                MetricDatum(name="PricingRequests", value=1.0, dimensions=dimensions),
                MetricDatum(
                    name="PricingDiscountAmount",
                    value=float(discount_amount),
                    unit="None",
                    dimensions=dimensions,
                ),
            ]
        )

    def record_rule_change(self, *, kind: str, action: str) -> None:
        self._publish(
            [
                MetricDatum(
                    name="RuleChange",
                    value=1.0,
                    dimensions=[
                        MetricDimension(name="kind", value=kind),
                        MetricDimension(name="action", value=action),
                    ],
                )
            ]
        )
