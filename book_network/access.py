"""Ownership and eligibility rules used by the registry and both ledgers.

The predicates are pure; the ``require_*`` helpers turn a failed predicate
into an ``OperationNotPermitted`` carrying the caller-facing reason.
"""

from __future__ import annotations

from typing import Optional

from book_network.exceptions import OperationNotPermitted


def is_owner(entity_owner_id: Optional[int], caller_id: Optional[int]) -> bool:
    if entity_owner_id is None or caller_id is None:
        return False
    return int(entity_owner_id) == int(caller_id)


def is_actionable(archived: bool, shareable: bool) -> bool:
    """A book can be borrowed, returned or reviewed only when it is shared and not archived."""
    return (not archived) and bool(shareable)


def require_owner(entity_owner_id: Optional[int], caller_id: int, reason: str) -> None:
    if not is_owner(entity_owner_id, caller_id):
        raise OperationNotPermitted(reason)


def require_not_owner(entity_owner_id: Optional[int], caller_id: int, reason: str) -> None:
    if is_owner(entity_owner_id, caller_id):
        raise OperationNotPermitted(reason)


def require_actionable(archived: bool, shareable: bool, reason: str) -> None:
    if not is_actionable(archived, shareable):
        raise OperationNotPermitted(reason)
