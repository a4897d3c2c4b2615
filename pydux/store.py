"""
PyDux Store 模組。

Store 持有唯一的權威狀態，負責分發 action、呼叫根 reducer、
以及依註冊順序同步通知所有訂閱者。
"""
import itertools
import logging
from typing import Any, Dict, Generic, Optional

import reactivex
from reactivex import Observable, operators as ops
from reactivex.disposable import Disposable

from .actions import Action, ActionTypes, ensure_plain_action, get_action_type
from .errors import ConfigurationError, ReentrancyError
from .types import Listener, Reducer, S, StateSelector, StoreEnhancer, Unsubscribe

logger = logging.getLogger(__name__)


class ObservableStoreMixin:
    """
    為任何提供 get_state/subscribe/teardown 的 store 加上 reactivex 觀察能力。
    """

    @property
    def state(self) -> Any:
        """獲取當前狀態的快照。"""
        return self.get_state()

    def observable(self) -> Observable:
        """
        將 store 暴露為 reactivex Observable。

        訂閱時立即發出當前狀態，之後每次 dispatch 完成都發出最新狀態；
        dispose 時自動取消訂閱。
        """
        def subscribe(observer, scheduler=None):
            def observe_state() -> None:
                observer.on_next(self.get_state())

            observe_state()
            return Disposable(self.subscribe(observe_state))

        return reactivex.create(subscribe)

    def select(self, selector: Optional[StateSelector[Any, Any]] = None) -> Observable:
        """
        選擇狀態的一部分進行觀察。

        Args:
            selector: 一個函數，接收整個狀態並返回希望觀察的部分。

        Returns:
            一個可觀察對象，只有當選定的部分變化時才發出。
        """
        source = self.observable()
        if selector is not None:
            source = source.pipe(ops.map(selector))
        return source.pipe(ops.distinct_until_changed())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.teardown()


class Store(ObservableStoreMixin, Generic[S]):
    """
    狀態容器，管理應用狀態並通知訂閱者狀態變更。

    單一寫入者：同一時間只允許一個 dispatch 在進行，reducer 或 listener
    內部同步呼叫 dispatch 會得到 ReentrancyError。

    在 reducer 內呼叫 ``get_state()`` 是允許的，但返回的是本次 dispatch
    開始前的狀態。
    """

    def __init__(self, reducer: Reducer[S], preloaded_state: Optional[S] = None):
        """
        初始化 Store 實例。一般應透過 create_store 建立。

        Args:
            reducer: 根 reducer
            preloaded_state: 預載的初始狀態，None 表示交給 reducer 決定
        """
        if not callable(reducer):
            raise ConfigurationError(
                f"Expected the root reducer to be a function, got {type(reducer).__name__}.",
                component="store",
                config_key="reducer",
            )
        self._reducer = reducer
        self._state = preloaded_state
        # 以註冊序號為鍵，保留插入順序且允許同一個 listener 重複註冊
        self._listeners: Dict[int, Listener] = {}
        self._listener_ids = itertools.count()
        self._is_dispatching = False
        self._is_reducing = False

        # 發送初始化 action，讓 reducer 填入預設狀態
        self.dispatch(Action(ActionTypes.INIT))

    def get_state(self) -> S:
        """
        獲取當前狀態的引用。

        Returns:
            當前狀態。
        """
        return self._state

    def dispatch(self, action: Any) -> Any:
        """
        分發一個動作，觸發狀態更新。

        驗證 action、執行 reducer、原子地安裝新狀態，
        然後在返回前依註冊順序同步通知所有 listener。

        Args:
            action: 要分發的結構化記錄。

        Returns:
            傳入的 action。

        Raises:
            InvalidActionError: action 不是帶有 type 的結構化記錄。
            ReentrancyError: 已有 dispatch 在進行中。
        """
        ensure_plain_action(action)
        if self._is_dispatching:
            raise ReentrancyError(
                "Reducers and listeners may not dispatch actions while a dispatch is in progress.",
                operation="dispatch",
                action_type=get_action_type(action),
            )

        self._is_dispatching = True
        try:
            self._is_reducing = True
            try:
                next_state = self._reducer(self._state, action)
            finally:
                self._is_reducing = False
            self._state = next_state
            logger.debug("dispatched %r", get_action_type(action))

            # 通知開始時的快照；過程中被取消訂閱且尚未輪到的 listener 會被跳過
            snapshot = list(self._listeners.items())
            for listener_id, listener in snapshot:
                if listener_id in self._listeners:
                    listener()
        finally:
            self._is_dispatching = False

        return action

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """
        註冊一個狀態變更的 listener。

        在通知過程中新增的 listener 要到下一次 dispatch 才會被呼叫。

        Args:
            listener: 無參數的回呼。

        Returns:
            取消此次註冊的函數，重複呼叫不會出錯。
        """
        if not callable(listener):
            raise ConfigurationError(
                f"Expected the listener to be a function, got {type(listener).__name__}.",
                component="store",
                config_key="listener",
            )
        if self._is_reducing:
            raise ReentrancyError(
                "You may not call store.subscribe() while the reducer is executing.",
                operation="subscribe",
            )

        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = listener
        logger.debug("listener %d subscribed", listener_id)

        def unsubscribe() -> None:
            if listener_id not in self._listeners:
                return
            if self._is_reducing:
                raise ReentrancyError(
                    "You may not unsubscribe from a store listener while the reducer is executing.",
                    operation="unsubscribe",
                )
            del self._listeners[listener_id]
            logger.debug("listener %d unsubscribed", listener_id)

        return unsubscribe

    def replace_reducer(self, next_reducer: Reducer[S]) -> None:
        """
        替換根 reducer，供熱重載或動態載入切片使用。

        下一次 dispatch 起生效，本身不會觸發通知。

        Args:
            next_reducer: 新的根 reducer
        """
        if not callable(next_reducer):
            raise ConfigurationError(
                f"Expected the next reducer to be a function, got {type(next_reducer).__name__}.",
                component="store",
                config_key="reducer",
            )
        self._reducer = next_reducer

    def teardown(self) -> None:
        """清除所有 listener，用於優雅地結束 store 的生命週期。"""
        self._listeners.clear()


def create_store(
    reducer: Reducer[S],
    preloaded_state: Optional[S] = None,
    enhancer: Optional[StoreEnhancer] = None,
) -> Store[S]:
    """
    創建一個新的 Store 實例。

    若提供 enhancer，建構完全交由 ``enhancer(create_store)(reducer, preloaded_state)``，
    enhancer 可以替換為另一種 store 實作。

    Args:
        reducer: 根 reducer。
        preloaded_state: 預載狀態；若為可呼叫對象且未提供 enhancer，視為 enhancer。
        enhancer: store enhancer，例如 apply_middleware(...) 或 instrument()。

    Returns:
        Store: 新創建的 Store 實例。

    Raises:
        ConfigurationError: reducer 或 enhancer 不是可呼叫對象，或同時傳入多個 enhancer。
    """
    if not callable(reducer):
        raise ConfigurationError(
            f"Expected the root reducer to be a function, got {type(reducer).__name__}.",
            component="create_store",
            config_key="reducer",
        )

    if callable(preloaded_state) and callable(enhancer):
        raise ConfigurationError(
            "It looks like you are passing several store enhancers to create_store(). "
            "Compose them together into a single function instead.",
            component="create_store",
            config_key="enhancer",
        )

    if callable(preloaded_state) and enhancer is None:
        enhancer = preloaded_state
        preloaded_state = None

    if enhancer is not None:
        if not callable(enhancer):
            raise ConfigurationError(
                f"Expected the enhancer to be a function, got {type(enhancer).__name__}.",
                component="create_store",
                config_key="enhancer",
            )
        return enhancer(create_store)(reducer, preloaded_state)

    return Store(reducer, preloaded_state)
