"""
PyDux 共用型別定義。

集中宣告 reducer、listener、dispatch、middleware 與 enhancer 的函數簽名，
以及 Store 與 MiddlewareAPI 的結構化協定。
"""

from typing import Any, Callable, Dict, Optional, TypeVar

from typing_extensions import Protocol, TypedDict

S = TypeVar("S")  # 狀態類型
T = TypeVar("T")  # 選擇結果類型
P = TypeVar("P")  # 負載類型

Reducer = Callable[[Optional[S], Any], S]
Listener = Callable[[], None]
Unsubscribe = Callable[[], None]
DispatchFunction = Callable[[Any], Any]
NextDispatch = DispatchFunction
GetState = Callable[[], Any]
StateSelector = Callable[[S], T]
ThunkFunction = Callable[..., Any]
ActionHandler = Callable[[S, Any], S]
HandlerMap = Dict[Any, ActionHandler]


class Store(Protocol):
    """任何 enhancer 回傳的 store 都必須滿足的最小介面。"""

    def get_state(self) -> Any: ...

    def dispatch(self, action: Any) -> Any: ...

    def subscribe(self, listener: Listener) -> Unsubscribe: ...

    def replace_reducer(self, reducer: Reducer) -> None: ...


class StoreAPI(Protocol):
    """傳給 middleware 的受限 store 介面。"""

    def get_state(self) -> Any: ...

    def dispatch(self, action: Any) -> Any: ...


MiddlewareFunction = Callable[[NextDispatch], DispatchFunction]
MiddlewareFactory = Callable[[StoreAPI], MiddlewareFunction]
StoreCreator = Callable[..., Store]
StoreEnhancer = Callable[[StoreCreator], StoreCreator]


class Middleware(Protocol):
    """物件型 middleware 的鉤子協定。"""

    def on_next(self, action: Any, prev_state: Any) -> None: ...

    def on_complete(self, next_state: Any, action: Any) -> None: ...

    def on_error(self, error: Exception, action: Any) -> None: ...


class ActionContext(TypedDict, total=False):
    action: Any
    prev_state: Any
    next_state: Any
    result: Any
    error: Optional[Exception]
