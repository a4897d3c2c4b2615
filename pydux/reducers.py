"""
PyDux Reducer 組合模組。

提供以 action 類型為鍵的 reducer 建構工具、將多個切片 reducer 合併為
根 reducer 的 combine_reducers，以及可在執行期增減切片的 ReducerManager。
"""
import logging
from typing import Any, Dict, Mapping, Optional

from immutables import Map

from .actions import ActionTypes, get_action_type, Action
from .errors import ConfigurationError, ReducerError, handle_error
from .immutable_utils import to_immutable
from .types import HandlerMap, Reducer, S

logger = logging.getLogger(__name__)


def create_reducer(initial_state: S, *handlers) -> Reducer[S]:
    """
    創建一個 reducer 函式，用於處理狀態變更。

    字典或 Pydantic 模型形式的初始狀態會被轉為不可變的 Map。

    Args:
        initial_state: 初始狀態。
        *handlers: 一系列 (action_type, handler_fn) 元組或使用 on 函式創建的處理器。

    Returns:
        一個 reducer 函式，根據 action 的類型執行對應的處理邏輯。
    """
    initial_state = to_immutable(initial_state)
    action_handlers: HandlerMap = {}  # 儲存 action 類型與處理函式的對應關係

    for handler in handlers:
        if isinstance(handler, tuple) and len(handler) == 2:
            # 如果 handler 是元組，則解構為 action 類型與處理函式
            action_type, handler_fn = handler
            action_handlers[action_type] = handler_fn
        else:
            # 如果 handler 是字典，則直接更新到 action_handlers
            action_handlers.update(handler)

    def reducer(state: Optional[S] = None, action: Any = None) -> S:
        """
        Reducer 函式，根據 action 處理狀態變更。

        Args:
            state: 當前狀態，None 表示尚未初始化。
            action: 要處理的 action。

        Returns:
            新的狀態，如果沒有對應的處理器則返回原狀態。
        """
        if state is None:
            state = initial_state
        handler = action_handlers.get(get_action_type(action))
        if handler:
            return handler(state, action)
        return state

    # 設置 reducer 的初始狀態和處理器映射
    reducer.initial_state = initial_state
    reducer.handlers = action_handlers

    return reducer


def on(action_creator_or_type, handler):
    """
    創建一個 action 類型與處理函式的映射。

    Args:
        action_creator_or_type: Action 創建器函式或 Action 類型標籤。
        handler: 處理該 Action 的函式，接收 (state, action) 並返回新狀態。

    Returns:
        一個包含 {action_type: handler} 的字典。
    """
    if callable(action_creator_or_type) and hasattr(action_creator_or_type, 'type'):
        action_type = action_creator_or_type.type
    else:
        action_type = action_creator_or_type

    return {action_type: handler}


def _reducer_name(reducer: Any) -> str:
    return getattr(reducer, "__qualname__", None) or repr(reducer)


def _assert_reducer_shape(reducers: Mapping[str, Reducer]) -> None:
    # 用初始化 action 與隨機未知 action 探測每個切片 reducer
    for key, reducer in reducers.items():
        initial = reducer(None, Action(ActionTypes.INIT))
        if initial is None:
            raise ConfigurationError(
                f"The slice reducer for key '{key}' returned None during initialization. "
                "If the state passed to the reducer is None, you must explicitly return "
                "the initial state.",
                component="combine_reducers",
                config_key=key,
            )
        probe = Action(ActionTypes.probe_unknown_action())
        if reducer(None, probe) is None:
            raise ConfigurationError(
                f"The slice reducer for key '{key}' returned None when probed with a random type. "
                f"Don't try to handle '{ActionTypes.INIT}' or other private actions; return the "
                "current state for any unknown action.",
                component="combine_reducers",
                config_key=key,
            )


@handle_error
def combine_reducers(reducers: Mapping[str, Reducer]) -> Reducer[Map]:
    """
    將多個切片 reducer 合併為一個根 reducer。

    組合後的狀態是一個 Map，鍵集合與 ``reducers`` 相同。若所有切片 reducer
    都返回與輸入相同（同一引用）的值，則返回原本的組合狀態，
    讓下游可以用 ``is`` 判斷「沒有變化」。

    Args:
        reducers: 切片鍵名到 reducer 的映射。

    Returns:
        根 reducer。

    Raises:
        ConfigurationError: 某個切片 reducer 在探測時返回 None。
    """
    final_reducers: Dict[str, Reducer] = {}
    for key, reducer in reducers.items():
        if not callable(reducer):
            logger.warning("No reducer provided for key %r, dropping it", key)
            continue
        final_reducers[key] = reducer

    _assert_reducer_shape(final_reducers)
    final_keys = tuple(final_reducers)
    warned_keys = set()

    def combination(state: Optional[Mapping[str, Any]] = None, action: Any = None) -> Mapping[str, Any]:
        if state is None:
            state = Map()

        unexpected = [k for k in state.keys() if k not in final_reducers and k not in warned_keys]
        if unexpected:
            warned_keys.update(unexpected)
            logger.warning(
                "Unexpected keys %s found in state; expected one of %s. They will be ignored.",
                unexpected, list(final_keys),
            )

        has_changed = False
        next_state = {}
        for key in final_keys:
            reducer = final_reducers[key]
            prev_slice = state.get(key)
            next_slice = reducer(prev_slice, action)
            if next_slice is None:
                action_type = get_action_type(action)
                raise ReducerError(
                    f"When called with an action of type {action_type!r}, the slice reducer "
                    f"for key '{key}' returned None. To ignore an action, you must explicitly "
                    "return the previous state.",
                    reducer_name=_reducer_name(reducer),
                    action_type=action_type,
                )
            next_state[key] = next_slice
            has_changed = has_changed or next_slice is not prev_slice

        has_changed = has_changed or len(final_keys) != len(state)
        return Map(next_state) if has_changed else state

    combination.reducers = dict(final_reducers)
    return combination


class ReducerManager:
    """
    管理應用中的所有切片 reducers，支援執行期動態增減。

    綁定到 store 後，每次增減都會透過 ``replace_reducer`` 換上新的根 reducer。

    Attributes:
        _feature_reducers: 儲存每個功能模組的 reducer。
        _combined: 目前的組合 reducer。
    """
    def __init__(self, reducers: Optional[Mapping[str, Reducer]] = None):
        self._feature_reducers: Dict[str, Reducer] = dict(reducers or {})
        self._combined = combine_reducers(self._feature_reducers)
        self._store = None
        self._keys_to_remove = set()

    def bind(self, store) -> "ReducerManager":
        """
        綁定 store，之後的增減會自動替換其根 reducer。

        Args:
            store: 由 create_store 建立的 store
        """
        self._store = store
        return self

    def reduce(self, state: Optional[Mapping[str, Any]] = None, action: Any = None) -> Mapping[str, Any]:
        """
        使用所有註冊的 reducers 處理 action 並返回新狀態。

        已移除切片的殘留鍵會在下一次 reduce 時清掉。
        """
        if state is not None and self._keys_to_remove:
            remaining = state
            for key in self._keys_to_remove:
                if key in remaining:
                    remaining = remaining.delete(key) if isinstance(remaining, Map) else \
                        {k: v for k, v in remaining.items() if k != key}
            self._keys_to_remove.clear()
            state = remaining
        return self._combined(state, action)

    def get_reducers(self) -> Dict[str, Reducer]:
        return self._feature_reducers.copy()

    def add_reducer(self, feature_key: str, reducer: Reducer) -> None:
        """
        添加一個 reducer 到指定的功能模組。

        鍵已存在時保留原本的 reducer 並記錄警告；要替換請先 remove_reducer。

        Args:
            feature_key: 功能模組的鍵。
            reducer: 要添加的 reducer 函式。
        """
        if feature_key in self._feature_reducers:
            logger.warning("Reducer for key %r is already registered, keeping the existing one", feature_key)
            return
        self._feature_reducers[feature_key] = reducer
        self._keys_to_remove.discard(feature_key)
        self._rebuild()

    def remove_reducer(self, feature_key: str) -> None:
        """
        移除指定功能模組的 reducer。

        Args:
            feature_key: 要移除的功能模組鍵。
        """
        if feature_key not in self._feature_reducers:
            return
        del self._feature_reducers[feature_key]
        self._keys_to_remove.add(feature_key)
        self._rebuild()

    def _rebuild(self) -> None:
        self._combined = combine_reducers(self._feature_reducers)
        if self._store is not None:
            self._store.replace_reducer(self.reduce)
