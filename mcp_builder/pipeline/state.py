"""Lifecycle transitions of a generated server."""

from __future__ import annotations

from ..errors import InvalidTransitionError
from ..models import ServerStatus

S = ServerStatus

TRANSITIONS: dict[ServerStatus, frozenset[ServerStatus]] = {
    S.ANALYZING: frozenset({S.GENERATING, S.FAILED}),
    S.GENERATING: frozenset({S.DRAFT, S.FAILED}),
    # draft -> failed is a security rejection; draft -> analyzing a regeneration
    S.DRAFT: frozenset({S.DEPLOYING, S.ANALYZING, S.FAILED}),
    S.DEPLOYING: frozenset({S.DEPLOYED, S.FAILED}),
    # -> draft restores an archived version
    S.DEPLOYED: frozenset({S.ANALYZING, S.DRAFT}),
    S.FAILED: frozenset({S.ANALYZING, S.DRAFT}),
}


def can_transition(current: ServerStatus, target: ServerStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: ServerStatus, target: ServerStatus) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move server from '{current.value}' to '{target.value}'"
        )
