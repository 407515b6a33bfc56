from __future__ import annotations

from typing import Any


class GraphError(Exception):
    """Base for every error the engine surfaces to callers.

    ``kind`` is the stable identifier callers switch on; ``message`` is safe to
    show to a user. Store and driver internals never appear in either.
    """

    kind: str = "graph_error"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = str(message)
        self.detail: dict[str, Any] = dict(detail or {})

    def to_payload(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.kind, "detail": self.message}
        if self.retryable:
            out["retryable"] = True
        return out


class NotFoundError(GraphError):
    kind = "not_found"
    status_code = 404


class ForbiddenError(GraphError):
    kind = "forbidden"
    status_code = 403


class SelfReferenceError(GraphError):
    kind = "self_reference"
    status_code = 400


class InvalidInputError(GraphError):
    kind = "invalid_input"
    status_code = 400


class AlreadyExistsError(GraphError):
    kind = "already_exists"
    status_code = 409


class ConflictError(GraphError):
    kind = "conflict"
    status_code = 409
    retryable = True


class TransactionTimeoutError(ConflictError):
    kind = "transaction_timeout"


class IntegrityViolation(GraphError):
    kind = "integrity_violation"
    status_code = 500
