"""Error taxonomy shared by the registry and the ledgers.

Every failure a caller can trigger is one of these classes, so the request
layer can map each one to a stable response category via ``status_code``.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class BookNetworkError(Exception):
    """Base class for all per-request failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BookNetworkError):
    """Malformed or missing input."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.errors: List[str] = list(errors) if errors else [message]


class NotFound(BookNetworkError):
    status_code = 404

    def __init__(self, entity_kind: str, entity_id: object) -> None:
        super().__init__(f"{entity_kind} not found with ID: {entity_id}")
        self.entity_kind = entity_kind
        self.entity_id = entity_id


class OperationNotPermitted(BookNetworkError):
    """Authorization or lending state-machine precondition violated."""

    status_code = 403


class Conflict(BookNetworkError):
    # Reserved for duplicate-registration style failures.
    status_code = 409
