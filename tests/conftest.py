import pytest

from pydux import get_action_type


def _counter(state=None, action=None):
    if state is None:
        state = {"min": 0}
    action_type = get_action_type(action)
    if action_type == "UP":
        return {**state, "min": state["min"] + 1}
    if action_type == "DOWN":
        return {**state, "min": state["min"] - 1}
    return state


@pytest.fixture
def counter():
    return _counter


@pytest.fixture
def calls():
    """Collects ordered markers from listeners and middleware."""
    return []
