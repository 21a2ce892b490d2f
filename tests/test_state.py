import pytest

from genqueue.errors import InvalidTransition
from genqueue.state import JobStatus, can_transition, is_terminal, predecessors


def test_terminal_states():
    assert is_terminal("success")
    assert is_terminal(JobStatus.FAILED)
    assert not is_terminal("queued")
    assert not is_terminal("processing")


@pytest.mark.parametrize("current,target,allowed", [
    ("queued", "processing", True),
    ("queued", "failed", True),
    ("queued", "success", False),
    ("processing", "success", True),
    ("processing", "failed", True),
    ("processing", "queued", False),
    ("success", "failed", False),
    ("failed", "success", False),
    ("success", "processing", False),
])
def test_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_nothing_enters_queued():
    with pytest.raises(InvalidTransition):
        predecessors(JobStatus.QUEUED)
