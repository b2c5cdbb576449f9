from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from chaldduck_pricing.persistence.records import PolicyRecord
from chaldduck_pricing.util.errors import ConflictError

SEQUENCE_PREFIX = "sequence#"


class DynamoPolicies:
    """Policies stored one item per policy, keyed by (kind, policy_id)."""

    def __init__(self, table_name: str) -> None:
        self.table = boto3.resource("dynamodb").Table(table_name)

    def put(self, record: PolicyRecord, expected_version: Optional[int] = None) -> None:
        if expected_version is None:
            condition = Attr("policy_id").not_exists()
        elif expected_version == 0:
            condition = Attr("version").not_exists()
        else:
            condition = Attr("version").eq(expected_version)
        try:
            self.table.put_item(Item=asdict(record), ConditionExpression=condition)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise ConflictError(f"{record.kind} policy", record.policy_id) from exc
            raise

    def get(self, kind: str, policy_id: int) -> Optional[PolicyRecord]:
        response = self.table.get_item(Key={"kind": kind, "policy_id": policy_id})
        item = response.get("Item")
        if not item:
            return None
        return _to_record(item)

    def delete(self, kind: str, policy_id: int) -> bool:
        response = self.table.delete_item(
            Key={"kind": kind, "policy_id": policy_id},
            ReturnValues="ALL_OLD",
        )
        return bool(response.get("Attributes"))

    def list(self, kind: str) -> List[PolicyRecord]:
        items: List[Dict[str, Any]] = []
        query: Dict[str, Any] = {"KeyConditionExpression": Key("kind").eq(kind)}
        while True:
            response = self.table.query(**query)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                break
            query["ExclusiveStartKey"] = last_key
        return [_to_record(item) for item in items]

    def next_id(self, sequence: str) -> int:
        response = self.table.update_item(
            Key={"kind": f"{SEQUENCE_PREFIX}{sequence}", "policy_id": 0},
            UpdateExpression="ADD #value :one",
            ExpressionAttributeNames={"#value": "value"},
            ExpressionAttributeValues={":one": 1},
            ReturnValues="UPDATED_NEW",
        )
        return int(response["Attributes"]["value"])


def _to_record(item: Dict[str, Any]) -> PolicyRecord:
    return PolicyRecord(
        kind=item["kind"],
        policy_id=int(item["policy_id"]),
        document=item["document"],
        version=int(item.get("version", 0)),
    )
