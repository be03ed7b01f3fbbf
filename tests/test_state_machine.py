from __future__ import annotations

import pytest

from dag.state_machine import InvalidTransitionError, NodeStateMachine
from schema import NodeStatus


def test_happy_path():
    sm = NodeStateMachine(["a"])
    sm.transition("a", NodeStatus.RUNNING)
    sm.transition("a", NodeStatus.SUCCESS)
    assert sm.status_of("a") == NodeStatus.SUCCESS
    assert sm.terminal_count() == 1


def test_cascaded_failure_skips_running():
    sm = NodeStateMachine(["a"])
    assert sm.transition("a", NodeStatus.FAILED) == NodeStatus.PENDING


@pytest.mark.parametrize("first, second", [
    (NodeStatus.RUNNING, NodeStatus.PENDING),
    (NodeStatus.FAILED, NodeStatus.RUNNING),
    (NodeStatus.FAILED, NodeStatus.FAILED),
])
def test_illegal_transitions(first, second):
    sm = NodeStateMachine(["a"])
    sm.transition("a", first)
    with pytest.raises(InvalidTransitionError, match="cannot transition"):
        sm.transition("a", second)


def test_pending_cannot_jump_to_success():
    sm = NodeStateMachine(["a"])
    assert not sm.can_transition("a", NodeStatus.SUCCESS)


def test_callback_receives_transitions_and_errors_are_contained():
    seen = []

    def on_transition(node_id, old, new):
        seen.append((node_id, old, new))
        raise RuntimeError("ui exploded")

    sm = NodeStateMachine(["a"], on_transition=on_transition)
    sm.transition("a", NodeStatus.RUNNING)

    assert seen == [("a", NodeStatus.PENDING, NodeStatus.RUNNING)]
    assert sm.status_of("a") == NodeStatus.RUNNING
