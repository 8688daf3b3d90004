from __future__ import annotations

import pytest

from errors import IllegalStateTransition
from rotation.state import RotationState, RotationStateMachine

_CYCLE = [
    RotationState.SHADOW_CREATED,
    RotationState.DATA_COPIED,
    RotationState.ORIGINAL_RENAMED_TO_TRANSITIONAL,
    RotationState.ORIGINAL_RENAMED_TO_BACKUP,
    RotationState.SHADOW_RENAMED_TO_ORIGINAL,
    RotationState.STABLE,
]


def test_full_cycle_completes():
    machine = RotationStateMachine("[dbo].[T]")
    for state in _CYCLE:
        machine.advance(state)
    assert machine.state is RotationState.STABLE
    assert machine.completed
    assert machine.failed_at is None


def test_skipping_a_step_is_illegal():
    machine = RotationStateMachine("[dbo].[T]")
    machine.advance(RotationState.SHADOW_CREATED)
    with pytest.raises(IllegalStateTransition) as exc_info:
        machine.advance(RotationState.ORIGINAL_RENAMED_TO_BACKUP)
    assert exc_info.value.current is RotationState.SHADOW_CREATED
    assert machine.state is RotationState.SHADOW_CREATED


def test_cannot_promote_from_stable():
    machine = RotationStateMachine("[dbo].[T]")
    with pytest.raises(IllegalStateTransition):
        machine.advance(RotationState.SHADOW_RENAMED_TO_ORIGINAL)


@pytest.mark.parametrize("steps", range(1, 6))
def test_rollback_returns_to_stable_from_any_state(steps):
    machine = RotationStateMachine("[dbo].[T]")
    for state in _CYCLE[:steps]:
        machine.advance(state)
    reached = machine.state

    machine.rollback()

    assert machine.state is RotationState.STABLE
    assert machine.failed_at is reached
    assert not machine.completed


def test_new_cycle_allowed_after_rollback():
    machine = RotationStateMachine("[dbo].[T]")
    machine.advance(RotationState.SHADOW_CREATED)
    machine.rollback()
    machine.advance(RotationState.SHADOW_CREATED)
    assert machine.state is RotationState.SHADOW_CREATED
