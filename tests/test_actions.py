import logging

import pytest
from immutables import Map
from pydantic import BaseModel

from pydux import (
    Action, ActionTypes, ConfigurationError, ErrorHandler, InvalidActionError, PyduxError,
    ReentrancyError, create_action, get_action_type, handle_error, is_plain_action,
)
from pydux.actions import ensure_plain_action
from pydux.immutable_utils import to_dict, to_immutable


class Loaded(BaseModel):
    type: str = "LOADED"
    items: list = []


class TestAction:
    def test_is_immutable(self):
        action = Action("UP", 1)

        with pytest.raises(AttributeError):
            action.type = "DOWN"

    def test_equality_by_type_and_payload(self):
        assert Action("UP", 1) == Action("UP", 1)
        assert Action("UP", 1) != Action("UP", 2)

    def test_create_action_payload_forms(self):
        plain = create_action("PLAIN")
        single = create_action("SINGLE")
        prepared = create_action("PREPARED", lambda a, b: a + b)

        assert plain() == Action("PLAIN")
        assert single(3).payload == 3
        assert prepared(2, 3).payload == 5
        assert single(a=1).payload == Map(a=1)
        assert plain.type == "PLAIN"

    def test_init_type_is_private(self):
        assert ActionTypes.INIT.startswith("@@pydux/INIT.")
        assert ActionTypes.probe_unknown_action() != ActionTypes.probe_unknown_action()


class TestValidation:
    @pytest.mark.parametrize("action", [
        {"type": "UP"},
        Map(type="UP"),
        Action("UP"),
        Loaded(),
        {"type": 0},
    ])
    def test_structured_records_are_plain_actions(self, action):
        assert is_plain_action(action)
        assert ensure_plain_action(action) is action

    @pytest.mark.parametrize("value", [None, 5, "UP", ["UP"], {}, {"type": None}, Action(None)])
    def test_other_values_are_rejected(self, value):
        assert not is_plain_action(value)
        with pytest.raises(InvalidActionError):
            ensure_plain_action(value)

    def test_get_action_type(self):
        assert get_action_type({"type": "A"}) == "A"
        assert get_action_type(Loaded()) == "LOADED"
        assert get_action_type(42) is None


class TestImmutableUtils:
    def test_round_trip_nested_structures(self):
        frozen = to_immutable({"a": [1, {"b": 2}], "c": {3}})

        assert isinstance(frozen, Map)
        assert frozen["a"] == (1, Map(b=2))
        assert to_dict(frozen) == {"a": [1, {"b": 2}], "c": {3}}

    def test_to_dict_handles_actions_and_models(self):
        assert to_dict(Action("UP", Map(n=1))) == {"type": "UP", "payload": {"n": 1}}
        assert to_dict(Loaded(items=[1])) == {"type": "LOADED", "items": [1]}


class TestErrors:
    def test_details_are_part_of_the_message(self):
        err = ReentrancyError("nested dispatch", operation="dispatch")

        assert err.operation == "dispatch"
        assert "operation='dispatch'" in str(err)
        assert err.to_dict()["error_type"] == "ReentrancyError"
        assert isinstance(err, PyduxError)

    def test_error_handler_fans_out_and_survives_bad_handlers(self, caplog):
        handler = ErrorHandler(log_to_console=False)
        received = []

        def broken(error):
            raise RuntimeError("handler failed")

        handler.register_handler(broken)
        handler.register_handler(received.append)

        with caplog.at_level(logging.ERROR, logger="pydux"):
            handler.handle(ValueError("plain error"))

        assert len(received) == 1
        assert isinstance(received[0], PyduxError)
        assert "handler failed" in caplog.text

    def test_handle_error_reraises(self):
        @handle_error
        def configure():
            raise ConfigurationError("bad wiring", component="test")

        with pytest.raises(ConfigurationError):
            configure()

    def test_close_detaches_log_handlers(self):
        pydux_logger = logging.getLogger("pydux")
        before = list(pydux_logger.handlers)

        first = ErrorHandler(log_to_console=True)
        second = ErrorHandler(log_to_console=True)
        assert len(pydux_logger.handlers) == len(before) + 2

        first.close()
        second.close()
        first.close()
        assert pydux_logger.handlers == before

    def test_file_output_is_closed_on_exit(self, tmp_path):
        pydux_logger = logging.getLogger("pydux")
        before = list(pydux_logger.handlers)
        log_file = tmp_path / "errors.log"

        with ErrorHandler(log_to_console=False, log_to_file=True, log_file=str(log_file)) as handler:
            handler.handle(ValueError("disk full"))

        assert "disk full" in log_file.read_text(encoding="utf-8")
        assert pydux_logger.handlers == before
