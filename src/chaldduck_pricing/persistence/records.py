from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PolicyRecord:
    kind: str
    policy_id: int
    document: str
    version: int = 1
