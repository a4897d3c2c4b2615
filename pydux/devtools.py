"""
PyDux 的 devtools enhancer。

``instrument()`` 把 store 包在一個「提升後」的 store 外層：所有分發的 action
與計算出的狀態都記錄在 DevToolsState 歷史中，可以跳轉、略過、提交或回滾，
實現時間旅行偵錯。

重播只重新呼叫 reducer，不會重新經過 middleware，也就不會重複觸發副作用。
所有歷史操作都經由同一個底層 store 分發，因此單一寫入者與同步通知的保證不變。

與原始 store 的差異：
- ``should_catch_errors=True`` 時，reducer 拋出的異常會被記錄在該筆歷史上並寫入日誌，
  狀態維持在前一筆，不會傳回 dispatch 的呼叫者。
- ``replace_reducer`` 會以新 reducer 重算整段歷史，並因此通知訂閱者。
"""
import logging
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .actions import Action, ActionTypes, ensure_plain_action
from .errors import ConfigurationError
from .immutable_utils import to_dict
from .store import ObservableStoreMixin
from .types import Listener, Reducer, StoreCreator, StoreEnhancer, Unsubscribe

logger = logging.getLogger(__name__)


class ActionTypesDevTools:
    PERFORM_ACTION = "@@pydux/devtools/PERFORM_ACTION"
    RESET = "@@pydux/devtools/RESET"
    ROLLBACK = "@@pydux/devtools/ROLLBACK"
    COMMIT = "@@pydux/devtools/COMMIT"
    SWEEP = "@@pydux/devtools/SWEEP"
    TOGGLE_ACTION = "@@pydux/devtools/TOGGLE_ACTION"
    JUMP_TO_STATE = "@@pydux/devtools/JUMP_TO_STATE"
    JUMP_TO_ACTION = "@@pydux/devtools/JUMP_TO_ACTION"
    UPDATE_REDUCER = "@@pydux/devtools/UPDATE_REDUCER"


INTERRUPTED = "Interrupted by an error up the chain"


class DevToolsOptions(BaseModel):
    """devtools enhancer 的設定。"""
    model_config = ConfigDict(frozen=True)

    max_age: Optional[int] = Field(default=None, ge=2)
    should_catch_errors: bool = True
    name: str = "pydux"


class ComputedState(BaseModel):
    """歷史中的一筆計算結果。"""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    state: Any = None
    error: Optional[str] = None


class DevToolsState(BaseModel):
    """提升後的狀態：使用者狀態的完整歷史。"""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    actions_by_id: Dict[int, Any]
    next_action_id: int
    staged_action_ids: Tuple[int, ...]
    skipped_action_ids: FrozenSet[int]
    committed_state: Any = None
    current_state_index: int
    computed_states: Tuple[ComputedState, ...]


def _compute_next_entry(reducer: Reducer, action: Any, state: Any, should_catch_errors: bool) -> ComputedState:
    if not should_catch_errors:
        return ComputedState(state=reducer(state, action))
    try:
        next_state = reducer(state, action)
    except Exception as err:
        logger.exception("reducer failed on %r", action)
        return ComputedState(state=state, error=repr(err))
    return ComputedState(state=next_state)


def _recompute_states(
    computed_states: Tuple[ComputedState, ...],
    min_invalidated_index: int,
    reducer: Reducer,
    committed_state: Any,
    actions_by_id: Dict[int, Any],
    staged_action_ids: Tuple[int, ...],
    skipped_action_ids: FrozenSet[int],
    should_catch_errors: bool,
) -> Tuple[ComputedState, ...]:
    # 從最早失效的位置開始重算，之前的結果直接沿用
    if min_invalidated_index >= len(computed_states) and len(computed_states) == len(staged_action_ids):
        return computed_states

    next_computed: List[ComputedState] = list(computed_states[:min_invalidated_index])
    for i in range(min_invalidated_index, len(staged_action_ids)):
        action_id = staged_action_ids[i]
        action = actions_by_id[action_id]
        previous_entry = next_computed[i - 1] if i > 0 else None
        previous_state = previous_entry.state if previous_entry is not None else committed_state

        if action_id in skipped_action_ids:
            entry = previous_entry or ComputedState(state=committed_state)
        elif previous_entry is not None and previous_entry.error:
            entry = ComputedState(state=previous_state, error=INTERRUPTED)
        else:
            entry = _compute_next_entry(reducer, action, previous_state, should_catch_errors)
        next_computed.append(entry)

    return tuple(next_computed)


class _LiftedReducer:
    """
    將使用者 reducer 提升為操作 DevToolsState 的 reducer。
    """

    def __init__(self, reducer: Reducer, initial_committed_state: Any, options: DevToolsOptions):
        self.reducer = reducer
        self.initial_committed_state = initial_committed_state
        self.options = options

    def initial_lifted_state(self) -> DevToolsState:
        return DevToolsState(
            actions_by_id={0: Action(ActionTypes.INIT)},
            next_action_id=1,
            staged_action_ids=(0,),
            skipped_action_ids=frozenset(),
            committed_state=self.initial_committed_state,
            current_state_index=0,
            computed_states=(),
        )

    def __call__(self, lifted_state: Optional[DevToolsState], lifted_action: Any) -> DevToolsState:
        if lifted_state is None:
            lifted_state = self.initial_lifted_state()

        actions_by_id = dict(lifted_state.actions_by_id)
        next_action_id = lifted_state.next_action_id
        staged = lifted_state.staged_action_ids
        skipped = lifted_state.skipped_action_ids
        committed_state = lifted_state.committed_state
        current = lifted_state.current_state_index
        computed = lifted_state.computed_states
        # 預設不重算任何已計算的狀態
        min_invalidated = len(computed)

        def commit_excess(n: int) -> None:
            nonlocal staged, skipped, committed_state, computed, current, min_invalidated
            excess = staged[1:n + 1]
            for action_id in excess:
                del actions_by_id[action_id]
            skipped = skipped - frozenset(excess)
            staged = (0,) + staged[n + 1:]
            committed_state = computed[n].state
            computed = computed[n:]
            current = current - n if current > n else 0
            min_invalidated = max(min_invalidated - n, 0)

        action_type = lifted_action.type
        payload = lifted_action.payload if isinstance(lifted_action, Action) else None

        if action_type == ActionTypesDevTools.PERFORM_ACTION:
            max_age = self.options.max_age
            if max_age is not None and len(staged) >= max_age:
                commit_excess(len(staged) - max_age + 1)
            # 只有在檢視最新狀態時才跟著前進
            if current == len(staged) - 1:
                current += 1
            action_id = next_action_id
            next_action_id += 1
            actions_by_id[action_id] = payload
            staged = staged + (action_id,)
            min_invalidated = len(staged) - 1
        elif action_type in (ActionTypesDevTools.RESET, ActionTypesDevTools.COMMIT, ActionTypesDevTools.ROLLBACK):
            if action_type == ActionTypesDevTools.RESET:
                committed_state = self.initial_committed_state
            elif action_type == ActionTypesDevTools.COMMIT:
                committed_state = computed[current].state
            actions_by_id = {0: Action(ActionTypes.INIT)}
            next_action_id = 1
            staged = (0,)
            skipped = frozenset()
            current = 0
            computed = ()
            min_invalidated = 0
        elif action_type == ActionTypesDevTools.TOGGLE_ACTION:
            if payload not in staged:
                return lifted_state
            skipped = skipped - {payload} if payload in skipped else skipped | {payload}
            min_invalidated = staged.index(payload)
        elif action_type == ActionTypesDevTools.SWEEP:
            staged = tuple(i for i in staged if i not in skipped)
            skipped = frozenset()
            current = min(current, len(staged) - 1)
            min_invalidated = 0
        elif action_type == ActionTypesDevTools.JUMP_TO_STATE:
            if not 0 <= payload < len(staged):
                return lifted_state
            current = payload
        elif action_type == ActionTypesDevTools.JUMP_TO_ACTION:
            if payload not in staged:
                return lifted_state
            current = staged.index(payload)
        elif action_type == ActionTypesDevTools.UPDATE_REDUCER:
            min_invalidated = 0

        computed = _recompute_states(
            computed,
            min_invalidated,
            self.reducer,
            committed_state,
            actions_by_id,
            staged,
            skipped,
            self.options.should_catch_errors,
        )

        return DevToolsState(
            actions_by_id=actions_by_id,
            next_action_id=next_action_id,
            staged_action_ids=staged,
            skipped_action_ids=skipped,
            committed_state=committed_state,
            current_state_index=current,
            computed_states=computed,
        )


class DevTools:
    """
    時間旅行控制器，掛在 instrumented store 的 ``devtools`` 屬性上。
    """

    def __init__(self, lifted_store: Any, options: DevToolsOptions):
        self._lifted_store = lifted_store
        self.options = options

    @property
    def lifted_state(self) -> DevToolsState:
        return self._lifted_store.get_state()

    def _perform(self, action_type: str, payload: Any = None) -> None:
        self._lifted_store.dispatch(Action(action_type, payload))

    def jump_to_state(self, index: int) -> None:
        """將檢視的狀態切換到歷史中的第 index 筆。"""
        self._perform(ActionTypesDevTools.JUMP_TO_STATE, index)

    def jump_to_action(self, action_id: int) -> None:
        """將檢視的狀態切換到指定 action 之後的狀態。"""
        self._perform(ActionTypesDevTools.JUMP_TO_ACTION, action_id)

    def toggle_action(self, action_id: int) -> None:
        """略過或恢復一筆 action，並重算其後的所有狀態。"""
        self._perform(ActionTypesDevTools.TOGGLE_ACTION, action_id)

    def reset(self) -> None:
        """清除歷史並回到建立 store 時的狀態。"""
        self._perform(ActionTypesDevTools.RESET)

    def commit(self) -> None:
        """將目前檢視的狀態設為新的起點，清除歷史。"""
        self._perform(ActionTypesDevTools.COMMIT)

    def rollback(self) -> None:
        """丟棄上次提交之後的所有 action。"""
        self._perform(ActionTypesDevTools.ROLLBACK)

    def sweep(self) -> None:
        """永久移除所有被略過的 action。"""
        self._perform(ActionTypesDevTools.SWEEP)

    def history(self) -> List[Tuple[Any, Any, Optional[str]]]:
        """
        返回歷史列表。

        Returns:
            每項為 (action, state, error)
        """
        lifted = self.lifted_state
        return [
            (lifted.actions_by_id[action_id], entry.state, entry.error)
            for action_id, entry in zip(lifted.staged_action_ids, lifted.computed_states)
        ]

    def export(self) -> Dict[str, Any]:
        """
        將歷史匯出為可 JSON 序列化的字典，供外部工具使用。
        """
        lifted = self.lifted_state
        data = to_dict(lifted.model_dump())
        data["actions_by_id"] = {str(k): v for k, v in data["actions_by_id"].items()}
        data["skipped_action_ids"] = sorted(lifted.skipped_action_ids)
        data["name"] = self.options.name
        return data


class InstrumentedStore(ObservableStoreMixin):
    """
    帶有歷史記錄的 store，對外提供與 Store 相同的介面。
    """

    def __init__(self, create_store: StoreCreator, reducer: Reducer, preloaded_state: Any, options: DevToolsOptions):
        if not callable(reducer):
            raise ConfigurationError(
                f"Expected the root reducer to be a function, got {type(reducer).__name__}.",
                component="devtools",
                config_key="reducer",
            )
        self._lifted_reducer = _LiftedReducer(reducer, preloaded_state, options)
        self._lifted_store = create_store(self._lifted_reducer)
        self.devtools = DevTools(self._lifted_store, options)

    def get_state(self) -> Any:
        lifted = self._lifted_store.get_state()
        return lifted.computed_states[lifted.current_state_index].state

    def dispatch(self, action: Any) -> Any:
        ensure_plain_action(action)
        self._lifted_store.dispatch(Action(ActionTypesDevTools.PERFORM_ACTION, action))
        return action

    def subscribe(self, listener: Listener) -> Unsubscribe:
        return self._lifted_store.subscribe(listener)

    def replace_reducer(self, next_reducer: Reducer) -> None:
        if not callable(next_reducer):
            raise ConfigurationError(
                f"Expected the next reducer to be a function, got {type(next_reducer).__name__}.",
                component="devtools",
                config_key="reducer",
            )
        self._lifted_reducer.reducer = next_reducer
        self._lifted_store.dispatch(Action(ActionTypesDevTools.UPDATE_REDUCER))

    def teardown(self) -> None:
        self._lifted_store.teardown()


def instrument(options: Optional[DevToolsOptions] = None, **overrides: Any) -> StoreEnhancer:
    """
    建立 devtools enhancer。

    Args:
        options: DevToolsOptions 設定
        **overrides: 直接以關鍵字覆寫設定欄位，例如 ``max_age=20``

    Returns:
        store enhancer

    Raises:
        ConfigurationError: 設定值不合法
    """
    try:
        base = options.model_dump() if options is not None else {}
        options = DevToolsOptions(**{**base, **overrides})
    except ValidationError as err:
        raise ConfigurationError(
            f"Invalid devtools options: {err}",
            component="devtools",
        ) from err

    def enhancer(create_store: StoreCreator) -> StoreCreator:
        def create(reducer: Reducer, preloaded_state: Any = None) -> InstrumentedStore:
            return InstrumentedStore(create_store, reducer, preloaded_state, options)
        return create
    return enhancer
