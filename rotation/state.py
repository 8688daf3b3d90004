"""Rotation state machine.

STABLE -> SHADOW_CREATED -> DATA_COPIED -> ORIGINAL_RENAMED_TO_TRANSITIONAL
       -> ORIGINAL_RENAMED_TO_BACKUP -> SHADOW_RENAMED_TO_ORIGINAL -> STABLE

Every intermediate state only exists inside the rotation transaction.
rollback() returns to STABLE from anywhere and remembers where it failed.
"""

from __future__ import annotations

import logging
from enum import Enum

from errors import IllegalStateTransition

logger = logging.getLogger(__name__)


class RotationState(Enum):
    STABLE = "STABLE"
    SHADOW_CREATED = "SHADOW_CREATED"
    DATA_COPIED = "DATA_COPIED"
    ORIGINAL_RENAMED_TO_TRANSITIONAL = "ORIGINAL_RENAMED_TO_TRANSITIONAL"
    ORIGINAL_RENAMED_TO_BACKUP = "ORIGINAL_RENAMED_TO_BACKUP"
    SHADOW_RENAMED_TO_ORIGINAL = "SHADOW_RENAMED_TO_ORIGINAL"


_TRANSITIONS: dict[RotationState, RotationState] = {
    RotationState.STABLE: RotationState.SHADOW_CREATED,
    RotationState.SHADOW_CREATED: RotationState.DATA_COPIED,
    RotationState.DATA_COPIED: RotationState.ORIGINAL_RENAMED_TO_TRANSITIONAL,
    RotationState.ORIGINAL_RENAMED_TO_TRANSITIONAL: RotationState.ORIGINAL_RENAMED_TO_BACKUP,
    RotationState.ORIGINAL_RENAMED_TO_BACKUP: RotationState.SHADOW_RENAMED_TO_ORIGINAL,
    RotationState.SHADOW_RENAMED_TO_ORIGINAL: RotationState.STABLE,
}


class RotationStateMachine:
    def __init__(self, table: str) -> None:
        self.table = table
        self.state = RotationState.STABLE
        self.history: list[RotationState] = [RotationState.STABLE]
        self.failed_at: RotationState | None = None

    def advance(self, target: RotationState) -> None:
        """Move to the next state; anything but the single successor is illegal."""
        expected = _TRANSITIONS[self.state]
        if target is not expected:
            raise IllegalStateTransition(self.state, target)
        logger.debug("Rotation %s: %s -> %s", self.table, self.state.value, target.value)
        self.state = target
        self.history.append(target)

    def rollback(self) -> None:
        self.failed_at = self.state
        if self.state is not RotationState.STABLE:
            logger.info(
                "Rotation %s: rolled back from %s to STABLE",
                self.table, self.state.value,
            )
        self.state = RotationState.STABLE
        self.history.append(RotationState.STABLE)

    @property
    def completed(self) -> bool:
        """True only after the full cycle ran (back to STABLE via promotion)."""
        return (
            self.failed_at is None
            and len(self.history) > 1
            and self.history[-2] is RotationState.SHADOW_RENAMED_TO_ORIGINAL
            and self.state is RotationState.STABLE
        )
