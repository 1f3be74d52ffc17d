# app/core/exceptions.py
"""
Typed errors raised by the loan workflow core.

Every class carries a machine-readable ``code`` and structured attributes so
the HTTP layer can render a distinguishable message without parsing strings.

    LoanWorkflowError
    +-- ValidationError        malformed input (empty line items, inverted dates)
    +-- Unauthorized           actor lacks the role/department for the action
    +-- RequestNotFound
    +-- InvalidState           transition not allowed from the current status
    +-- InsufficientStock      a decrement would drive available_quantity below zero
    +-- InconsistentState      paired status + stock update could not be applied or reversed
    +-- GatewayError           persistence / identity backend failed
        +-- ConcurrentModification

Validation and state errors are always raised before the first write.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple


class LoanWorkflowError(Exception):
    """Base exception for the loan workflow core."""

    code: str = "LOAN_WORKFLOW_ERROR"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "detail": str(self)}


class ValidationError(LoanWorkflowError):
    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class Unauthorized(LoanWorkflowError):
    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: Optional[str], action: str, request_id: Optional[str] = None):
        self.actor_id = actor_id
        self.action = action
        self.request_id = request_id
        target = f" on request {request_id}" if request_id else ""
        super().__init__(f"User {actor_id} is not allowed to {action}{target}")


class RequestNotFound(LoanWorkflowError):
    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Borrow request not found: {request_id}")


class InvalidState(LoanWorkflowError):
    code: str = "INVALID_STATE"

    def __init__(self, request_id: str, status: Optional[str], action: str, message: Optional[str] = None):
        self.request_id = request_id
        self.status = status
        self.action = action
        super().__init__(message or f"Cannot {action} request {request_id} in status '{status}'")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"status": self.status, "action": self.action})
        return data


class InsufficientStock(LoanWorkflowError):
    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, request_id: str, shortages: Iterable[Any]):
        self.request_id = request_id
        self.shortages = list(shortages)
        names = ", ".join(f"{s.item_name} ({s.available}/{s.requested})" for s in self.shortages)
        super().__init__(f"Not enough stock to start loan {request_id}: {names}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["shortages"] = [
            {"item_id": s.item_id, "item_name": s.item_name, "requested": s.requested, "available": s.available}
            for s in self.shortages
        ]
        return data


class InconsistentState(LoanWorkflowError):
    """Paired update left persisted data out of line. Always logged at CRITICAL."""

    code: str = "INCONSISTENT_STATE"

    def __init__(self, request_id: str, message: str, failures: Iterable[Tuple[str, str]] = ()):
        self.request_id = request_id
        self.failures: List[Tuple[str, str]] = list(failures)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["request_id"] = self.request_id
        data["failures"] = [{"item_id": item_id, "error": err} for item_id, err in self.failures]
        return data


class GatewayError(LoanWorkflowError):
    code: str = "GATEWAY_ERROR"

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class ConcurrentModification(GatewayError):
    """A compare-and-set write matched no document."""

    code: str = "CONCURRENT_MODIFICATION"
