import asyncio
import logging

import pytest

from pydux import (
    AwaitableMiddleware, BaseMiddleware, ConfigurationError, ErrorHandler, ErrorMiddleware,
    InvalidActionError, LoggerMiddleware, MiddlewareError, PerformanceMonitorMiddleware, ReducerError,
    ThunkMiddleware, apply_middleware, combine_reducers, create_store, get_action_type,
)
from pydux.middleware import global_error


def tracing(name, calls):
    def middleware(store_api):
        def wrap(next_dispatch):
            def dispatch(action):
                calls.append(f"{name} before")
                result = next_dispatch(action)
                calls.append(f"{name} after")
                return result
            return dispatch
        return wrap
    return middleware


def test_middlewares_run_outer_to_inner(counter, calls):
    store = create_store(counter, enhancer=apply_middleware(tracing("m1", calls), tracing("m2", calls)))
    store.subscribe(lambda: calls.append("listener"))

    store.dispatch({"type": "UP"})

    assert calls == ["m1 before", "m2 before", "listener", "m2 after", "m1 after"]
    assert store.get_state()["min"] == 1


def test_store_api_dispatch_reenters_the_full_chain(counter, calls):
    def pinger(store_api):
        def wrap(next_dispatch):
            def dispatch(action):
                result = next_dispatch(action)
                if get_action_type(action) == "PING":
                    store_api.dispatch({"type": "UP"})
                return result
            return dispatch
        return wrap

    def recorder(store_api):
        def wrap(next_dispatch):
            def dispatch(action):
                calls.append(get_action_type(action))
                return next_dispatch(action)
            return dispatch
        return wrap

    store = create_store(counter, enhancer=apply_middleware(pinger, recorder))
    store.dispatch({"type": "PING"})

    assert calls == ["PING", "UP"]
    assert store.get_state()["min"] == 1


def test_middleware_can_swallow_actions(counter, calls):
    def swallow(store_api):
        return lambda next_dispatch: lambda action: None

    store = create_store(counter, enhancer=apply_middleware(swallow))
    store.subscribe(lambda: calls.append("listener"))

    assert store.dispatch({"type": "UP"}) is None
    assert store.get_state()["min"] == 0
    assert calls == []


def test_middleware_can_substitute_actions(counter):
    def invert(store_api):
        def wrap(next_dispatch):
            def dispatch(action):
                if get_action_type(action) == "UP":
                    return next_dispatch({"type": "DOWN"})
                return next_dispatch(action)
            return dispatch
        return wrap

    store = create_store(counter, enhancer=apply_middleware(invert))
    store.dispatch({"type": "UP"})

    assert store.get_state()["min"] == -1


def test_dispatch_while_constructing_is_rejected(counter):
    def eager(store_api):
        store_api.dispatch({"type": "UP"})
        return lambda next_dispatch: next_dispatch

    with pytest.raises(ConfigurationError):
        create_store(counter, enhancer=apply_middleware(eager))


def test_store_api_exposes_state(counter):
    seen = []

    def peek(store_api):
        def wrap(next_dispatch):
            def dispatch(action):
                seen.append(store_api.get_state()["min"])
                result = next_dispatch(action)
                seen.append(store_api.state["min"])
                return result
            return dispatch
        return wrap

    store = create_store(counter, enhancer=apply_middleware(peek))
    store.dispatch({"type": "UP"})

    assert seen == [0, 1]


def test_bare_store_still_rejects_non_records(counter):
    store = create_store(counter, enhancer=apply_middleware(tracing("m1", [])))

    with pytest.raises(InvalidActionError):
        store.dispatch(lambda dispatch, get_state: None)


def test_invalid_middleware_object_is_rejected(counter):
    with pytest.raises(MiddlewareError):
        create_store(counter, enhancer=apply_middleware(object()))


class TestThunkMiddleware:
    def test_thunk_receives_dispatch_and_get_state(self, counter):
        store = create_store(counter, enhancer=apply_middleware(ThunkMiddleware))

        def up_twice(dispatch, get_state):
            dispatch({"type": "UP"})
            dispatch({"type": "UP"})
            return get_state()["min"]

        assert store.dispatch(up_twice) == 2
        assert store.get_state()["min"] == 2

    def test_nested_thunks(self, counter):
        store = create_store(counter, enhancer=apply_middleware(ThunkMiddleware()))

        def inner(dispatch, get_state):
            dispatch({"type": "UP"})

        def outer(dispatch, get_state):
            dispatch(inner)
            dispatch(inner)

        store.dispatch(outer)
        assert store.get_state()["min"] == 2

    def test_extra_argument(self, counter):
        store = create_store(counter, enhancer=apply_middleware(ThunkMiddleware(extra_argument="api")))
        seen = []

        store.dispatch(lambda dispatch, get_state, extra: seen.append(extra))

        assert seen == ["api"]

    def test_plain_actions_pass_through(self, counter):
        store = create_store(counter, enhancer=apply_middleware(ThunkMiddleware))
        action = {"type": "UP"}

        assert store.dispatch(action) is action
        assert store.get_state()["min"] == 1


class TestAwaitableMiddleware:
    def test_settled_action_is_dispatched(self, counter):
        store = create_store(counter, enhancer=apply_middleware(AwaitableMiddleware))

        async def load():
            await asyncio.sleep(0)
            return {"type": "UP"}

        async def main():
            task = store.dispatch(load())
            await task
            await asyncio.sleep(0)

        asyncio.run(main())
        assert store.get_state()["min"] == 1

    def test_failed_awaitable_leaves_state(self, counter):
        store = create_store(counter, enhancer=apply_middleware(AwaitableMiddleware))

        async def fail():
            raise RuntimeError("network down")

        async def main():
            task = store.dispatch(fail())
            with pytest.raises(RuntimeError):
                await task
            await asyncio.sleep(0)

        asyncio.run(main())
        assert store.get_state()["min"] == 0


class TestHookMiddleware:
    def test_hooks_see_states_around_dispatch(self, counter):
        class Recorder(BaseMiddleware):
            def __init__(self):
                self.events = []

            def on_next(self, action, prev_state):
                self.events.append(("next", prev_state["min"]))

            def on_complete(self, next_state, action):
                self.events.append(("complete", next_state["min"]))

        recorder = Recorder()
        store = create_store(counter, enhancer=apply_middleware(recorder))
        store.dispatch({"type": "UP"})

        assert recorder.events == [("next", 0), ("complete", 1)]

    def test_on_error_is_called_and_error_propagates(self, counter):
        class Recorder(BaseMiddleware):
            def __init__(self):
                self.errors = []

            def on_error(self, error, action):
                self.errors.append(type(error))

        def reducer(state=None, action=None):
            if get_action_type(action) == "BOOM":
                raise ValueError("boom")
            return counter(state, action)

        recorder = Recorder()
        store = create_store(reducer, enhancer=apply_middleware(recorder))

        with pytest.raises(ValueError):
            store.dispatch({"type": "BOOM"})
        assert recorder.errors == [ValueError]

    def test_hook_only_objects_are_wrapped(self, counter):
        class Hooks:
            def __init__(self):
                self.types = []

            def on_next(self, action, prev_state):
                self.types.append(get_action_type(action))

            def on_complete(self, next_state, action):
                self.types.append(next_state["min"])

            def on_error(self, error, action):
                pass

        hooks = Hooks()
        store = create_store(counter, enhancer=apply_middleware(hooks))
        store.dispatch({"type": "UP"})

        assert hooks.types == ["UP", 1]


def test_logger_middleware_logs_actions(counter, caplog):
    store = create_store(counter, enhancer=apply_middleware(LoggerMiddleware))

    with caplog.at_level(logging.INFO, logger="pydux.action"):
        store.dispatch({"type": "UP"})

    assert "dispatching 'UP'" in caplog.text
    assert "state after 'UP'" in caplog.text


def test_logger_middleware_predicate(counter, caplog):
    logger_mw = LoggerMiddleware(predicate=lambda get_state, action: get_action_type(action) != "DOWN")
    store = create_store(counter, enhancer=apply_middleware(logger_mw))

    with caplog.at_level(logging.INFO, logger="pydux.action"):
        store.dispatch({"type": "DOWN"})

    assert caplog.text == ""
    assert store.get_state()["min"] == -1


def test_performance_monitor_collects_metrics(counter):
    monitor = PerformanceMonitorMiddleware(threshold_ms=1000)
    store = create_store(counter, enhancer=apply_middleware(monitor))

    store.dispatch({"type": "UP"})
    store.dispatch({"type": "UP"})
    store.dispatch({"type": "DOWN"})

    metrics = monitor.get_metrics()
    assert metrics["UP"]["count"] == 2
    assert metrics["DOWN"]["count"] == 1
    assert metrics["UP"]["min"] <= metrics["UP"]["max"]


class TestAwaitableFailures:
    def test_unawaited_failure_is_logged(self, counter, caplog):
        store = create_store(counter, enhancer=apply_middleware(AwaitableMiddleware))

        async def fail():
            raise RuntimeError("network down")

        async def main():
            store.dispatch(fail())
            for _ in range(3):
                await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR, logger="pydux"):
            asyncio.run(main())

        assert "network down" in caplog.text
        assert store.get_state()["min"] == 0

    def test_rejected_settled_result_is_logged(self, counter, caplog):
        store = create_store(counter, enhancer=apply_middleware(AwaitableMiddleware))

        async def load():
            # 沒有 ThunkMiddleware，函數結果會被裸 store 拒絕
            return lambda dispatch, get_state: None

        async def main():
            await store.dispatch(load())
            for _ in range(3):
                await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR, logger="pydux"):
            asyncio.run(main())

        assert "dispatching the settled result" in caplog.text
        assert "InvalidActionError" in caplog.text
        assert store.get_state()["min"] == 0


class TestErrorMiddleware:
    def failing_reducer(self, counter):
        def reducer(state=None, action=None):
            if get_action_type(action) == "BOOM":
                raise ValueError("boom")
            return counter(state, action)
        return reducer

    def test_dispatch_errors_reach_the_error_handler(self, counter):
        handler = ErrorHandler(log_to_console=False)
        received = []
        handler.register_handler(received.append)
        store = create_store(self.failing_reducer(counter), enhancer=apply_middleware(ErrorMiddleware(handler)))

        with pytest.raises(ValueError):
            store.dispatch({"type": "BOOM"})

        assert len(received) == 1
        assert received[0].message == "boom"
        assert received[0].details == {"original_type": "ValueError", "action_type": "BOOM"}

    def test_pydux_errors_are_passed_through(self):
        def forgetful(state=None, action=None):
            if get_action_type(action) == "FORGET":
                return None
            return 0 if state is None else state

        handler = ErrorHandler(log_to_console=False)
        received = []
        handler.register_handler(received.append)
        store = create_store(
            combine_reducers({"forgetful": forgetful}),
            enhancer=apply_middleware(ErrorMiddleware(handler)),
        )

        with pytest.raises(ReducerError):
            store.dispatch({"type": "FORGET"})

        assert isinstance(received[0], ReducerError)
        assert received[0].action_type == "FORGET"

    def test_uses_global_handler_by_default(self, counter, caplog):
        store = create_store(self.failing_reducer(counter), enhancer=apply_middleware(ErrorMiddleware))

        with caplog.at_level(logging.ERROR, logger="pydux"):
            with pytest.raises(ValueError):
                store.dispatch({"type": "BOOM"})

        assert "PyduxError: boom" in caplog.text

    def test_can_dispatch_an_error_action(self, counter):
        def reducer(state=None, action=None):
            if get_action_type(action) == global_error.type:
                return {**state, "last_error": action.payload["error"]}
            return self.failing_reducer(counter)(state, action)

        handler = ErrorHandler(log_to_console=False)
        store = create_store(
            reducer,
            enhancer=apply_middleware(ErrorMiddleware(handler, dispatch_error_action=True)),
        )

        with pytest.raises(ValueError):
            store.dispatch({"type": "BOOM"})

        assert store.get_state()["last_error"] == "boom"
        assert store.get_state()["min"] == 0
