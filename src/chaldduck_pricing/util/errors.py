from __future__ import annotations


class ValidationError(ValueError):
    """Raised when a policy or rule definition is malformed."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


class NotFoundError(LookupError):
    """Raised when a policy or rule id does not exist."""

    def __init__(self, kind: str, identifier: int) -> None:
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ConflictError(RuntimeError):
    """Raised when a policy changed between read and conditional write."""

    def __init__(self, kind: str, identifier: int) -> None:
        super().__init__(f"{kind} {identifier} was modified concurrently")
        self.kind = kind
        self.identifier = identifier
