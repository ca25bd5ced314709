from __future__ import annotations

from typing import Any


class CoreError(Exception):
    """Base class for domain failures raised by the service layer.

    ``code`` is the stable machine identifier surfaced in the error envelope;
    ``details`` carries structured context (current state, ids) for callers.
    """

    code = "core_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class StoreUnavailable(CoreError):
    code = "store_unavailable"

    def __init__(self, operation: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Durable store unavailable during {operation}", details=details)
        self.operation = operation


class SequenceOverflow(CoreError):
    code = "sequence_overflow"

    def __init__(self, prefix: str, value: int, width: int) -> None:
        super().__init__(
            f"Sequence value {value} does not fit in {width} digits for prefix {prefix}",
            details={"prefix": prefix, "value": value, "width": width},
        )
        self.prefix = prefix
        self.value = value
        self.width = width


class NotFound(CoreError):
    code = "not_found"

    def __init__(self, entity: str, identifier: Any) -> None:
        super().__init__(f"{entity} {identifier} not found", details={"entity": entity, "id": str(identifier)})
        self.entity = entity
        self.identifier = identifier


class InvalidTransition(CoreError):
    code = "invalid_transition"

    def __init__(
        self,
        entity: str,
        current: str,
        attempted: str,
        *,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = {"entity": entity, "current": current, "attempted": attempted}
        merged.update(details or {})
        super().__init__(message or f"{entity} cannot move from {current} to {attempted}", details=merged)
        self.entity = entity
        self.current = current
        self.attempted = attempted


class AlreadyReviewed(CoreError):
    code = "already_reviewed"

    def __init__(self, entity: str, current: str, *, details: dict[str, Any] | None = None) -> None:
        merged = {"entity": entity, "current": current}
        merged.update(details or {})
        super().__init__(f"{entity} has already been reviewed (status {current})", details=merged)
        self.entity = entity
        self.current = current


class InvalidLoanState(CoreError):
    code = "invalid_loan_state"

    def __init__(self, current: str, operation: str) -> None:
        super().__init__(
            f"Loan in status {current} does not accept {operation}",
            details={"current": current, "operation": operation},
        )
        self.current = current
        self.operation = operation


class OverPayment(CoreError):
    code = "over_payment"

    def __init__(self, remaining, attempted) -> None:
        super().__init__(
            f"Payment of {attempted} exceeds remaining balance {remaining}",
            details={"remaining": str(remaining), "attempted": str(attempted)},
        )
        self.remaining = remaining
        self.attempted = attempted


class InvalidAmount(CoreError):
    code = "invalid_amount"

    def __init__(self, amount) -> None:
        super().__init__(f"Amount must be greater than zero (got {amount})", details={"amount": str(amount)})
        self.amount = amount


class ConcurrentModification(CoreError):
    code = "concurrent_update"

    def __init__(self, entity: str, identifier: Any, attempts: int) -> None:
        super().__init__(
            f"{entity} {identifier} was updated concurrently; gave up after {attempts} attempts",
            details={"entity": entity, "id": str(identifier), "attempts": attempts},
        )
        self.entity = entity
        self.identifier = identifier
        self.attempts = attempts


class DuplicateRecord(CoreError):
    code = "duplicate_record"

    def __init__(self, entity: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"{entity} conflicts with an existing record", details={"entity": entity, **(details or {})})
        self.entity = entity
