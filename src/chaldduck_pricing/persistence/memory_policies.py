from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from chaldduck_pricing.persistence.records import PolicyRecord
from chaldduck_pricing.util.errors import ConflictError


class InMemoryPolicies:
    def __init__(self) -> None:
        self._data: Dict[Tuple[str, int], PolicyRecord] = {}
        self._counters: Dict[str, int] = {}

    def put(self, record: PolicyRecord, expected_version: Optional[int] = None) -> None:
        key = (record.kind, record.policy_id)
        current = self._data.get(key)
        current_version = current.version if current else None
        if current_version != expected_version:
            raise ConflictError(f"{record.kind} policy", record.policy_id)
        self._data[key] = record

    def get(self, kind: str, policy_id: int) -> Optional[PolicyRecord]:
        return self._data.get((kind, policy_id))

    def delete(self, kind: str, policy_id: int) -> bool:
        return self._data.pop((kind, policy_id), None) is not None

    def list(self, kind: str) -> List[PolicyRecord]:
        records = [record for (record_kind, _), record in self._data.items() if record_kind == kind]
        return sorted(records, key=lambda record: record.policy_id)

    def next_id(self, sequence: str) -> int:
        value = self._counters.get(sequence, 0) + 1
        self._counters[sequence] = value
        return value
