"""
PyDux 的中介軟體定義模組。

此模組提供 apply_middleware 以及各種中介軟體，用於在動作分發過程中插入
自定義邏輯，實現日誌記錄、thunk、非同步 action 與性能監控等功能。

每個中介軟體的形狀為 ``store_api -> next -> action -> result``；
類別會先以無參數實例化，只實作鉤子的物件會被包裝成相同形狀的階段。
"""

import asyncio
import contextlib
import inspect
import logging
import time
from typing import Any, Callable, Dict, Generator, List, Optional, Union, cast

from .actions import create_action, get_action_type, is_plain_action
from .compose import compose
from .errors import ConfigurationError, ErrorHandler, MiddlewareError, PyduxError, global_error_handler
from .types import (
    ActionContext, DispatchFunction, GetState, MiddlewareFactory, MiddlewareFunction, NextDispatch,
    StoreCreator, StoreEnhancer, ThunkFunction, Middleware as MiddlewareProtocol
)

logger = logging.getLogger(__name__)


class MiddlewareAPI:
    """
    傳給中介軟體的受限 store 介面。

    ``dispatch`` 永遠指向最外層的 dispatch 鏈，讓中介軟體可以重新走完整條鏈。
    """

    def __init__(self, get_state: GetState, dispatch: DispatchFunction) -> None:
        self._get_state = get_state
        self._dispatch = dispatch

    def get_state(self) -> Any:
        return self._get_state()

    @property
    def state(self) -> Any:
        return self._get_state()

    def dispatch(self, action: Any) -> Any:
        return self._dispatch(action)


# ---- Base Middleware ----
class BaseMiddleware:
    """
    基礎中介類，定義所有中介可能實現的鉤子。

    中介軟體可以介入動作分發的流程，在動作到達 Reducer 前、
    動作處理完成後或出現錯誤時執行自定義邏輯。
    子類若需要改寫 action 或攔截分發，可覆蓋 ``__call__``。
    """

    def __call__(self, store: MiddlewareAPI) -> MiddlewareFunction:
        """
        配置中介軟體，使 action_context 包圍下一層 dispatch。

        Args:
            store: MiddlewareAPI 實例

        Returns:
            配置函數，接收 next_dispatch 並返回新的 dispatch 函數
        """
        def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
            def dispatch(action: Any) -> Any:
                with self.action_context(action, store.get_state()) as context:
                    context['result'] = next_dispatch(action)
                    context['next_state'] = store.get_state()
                    return context['result']
            return dispatch
        return middleware

    def on_next(self, action: Any, prev_state: Any) -> None:
        """
        在 action 發送給 reducer 之前調用。

        Args:
            action: 正在 dispatch 的 Action
            prev_state: dispatch 之前的 store 狀態
        """
        pass

    def on_complete(self, next_state: Any, action: Any) -> None:
        """
        在 reducer 處理完 action 之後調用。

        Args:
            next_state: dispatch 之後的最新 store 狀態
            action: 剛剛 dispatch 的 Action
        """
        pass

    def on_error(self, error: Exception, action: Any) -> None:
        """
        如果 dispatch 過程中拋出異常，則調用此鉤子。

        Args:
            error: 拋出的異常
            action: 導致異常的 Action
        """
        pass

    def teardown(self) -> None:
        """
        當 Store 清理資源時調用，用於清理中間件持有的資源。
        """
        pass

    @contextlib.contextmanager
    def action_context(self, action: Any, prev_state: Any) -> Generator[ActionContext, None, None]:
        """
        提供一個上下文管理器來處理 action 分發的生命週期。

        子類可以覆蓋此方法，但應負責呼叫適當的 hook 方法，
        或使用 super().action_context() 來確保 hook 被呼叫。

        Args:
            action: 要分發的 Action
            prev_state: 分發前的狀態

        Yields:
            包含上下文數據的字典，可用於在上下文內部與外部之間傳遞數據
        """
        context: ActionContext = {
            'action': action,
            'prev_state': prev_state,
            'next_state': None,
            'result': None,
            'error': None,
        }

        self.on_next(action, prev_state)
        try:
            yield context
            self.on_complete(context['next_state'], action)
        except Exception as err:
            context['error'] = err
            self.on_error(err, action)
            raise


def _wrap_obj_middleware(mw: MiddlewareProtocol, store: MiddlewareAPI) -> MiddlewareFunction:
    """
    包裹只實作鉤子的物件型中介軟體。

    Args:
        mw: 中介軟體物件，需實現 on_next、on_complete 和 on_error 方法。
        store: MiddlewareAPI 實例

    Returns:
        配置函數，接收 next_dispatch 並返回新的 dispatch 函數
    """
    def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
        def dispatch(action: Any) -> Any:
            mw.on_next(action, store.get_state())
            try:
                result = next_dispatch(action)
            except Exception as err:
                mw.on_error(err, action)
                raise
            mw.on_complete(store.get_state(), action)
            return result
        return dispatch
    return middleware


def _as_stage(mw: Union[MiddlewareFactory, MiddlewareProtocol, type], store: MiddlewareAPI) -> MiddlewareFunction:
    # 將各種形式的中介軟體統一成 next -> dispatch 的階段
    if inspect.isclass(mw):
        mw = mw()
    if callable(mw):
        stage = mw(store)
    elif all(hasattr(mw, hook) for hook in ("on_next", "on_complete", "on_error")):
        stage = _wrap_obj_middleware(mw, store)
    else:
        raise MiddlewareError(
            "Middleware must be callable as store_api -> next -> action, "
            "or implement on_next/on_complete/on_error.",
            middleware_name=type(mw).__name__,
        )
    if not callable(stage):
        raise MiddlewareError(
            "Middleware must return a function that accepts the next dispatch.",
            middleware_name=getattr(mw, "__name__", type(mw).__name__),
        )
    return stage


def apply_middleware(*middlewares: Any) -> StoreEnhancer:
    """
    建立一個將中介軟體套用到 dispatch 上的 store enhancer。

    中介軟體依傳入順序由外而內執行，最內層是原始的 store.dispatch。

    Args:
        *middlewares: 中介軟體函數、類別或實例

    Returns:
        store enhancer
    """
    def enhancer(create_store: StoreCreator) -> StoreCreator:
        def create(reducer: Any, preloaded_state: Any = None) -> Any:
            store = create_store(reducer, preloaded_state)
            raw_dispatch = store.dispatch

            def dispatch_while_constructing(action: Any) -> Any:
                raise ConfigurationError(
                    "Dispatching while constructing your middleware is not allowed. "
                    "Other middleware would not be applied to this dispatch.",
                    component="apply_middleware",
                )

            dispatch: DispatchFunction = dispatch_while_constructing
            store_api = MiddlewareAPI(store.get_state, lambda action: dispatch(action))
            stages = [_as_stage(mw, store_api) for mw in middlewares]
            dispatch = compose(*stages)(raw_dispatch)

            # 以包裹後的 dispatch 覆蓋 store 實例上的 dispatch
            store.dispatch = dispatch
            return store
        return create
    return enhancer


# ---- LoggerMiddleware ----
class LoggerMiddleware(BaseMiddleware):
    """
    日誌中介，記錄每個 action 發送前和發送後的 state。

    使用場景:
    - 偵錯時需要觀察每次 state 的變化。
    - 確保 action 的執行順序正確。
    """
    def __init__(self, level: int = logging.INFO, predicate: Optional[Callable[[Any, Any], bool]] = None,
                 logger_name: str = "pydux.action"):
        """
        初始化 LoggerMiddleware。

        Args:
            level: 日誌級別
            predicate: 可選的過濾函數 (get_state, action) -> bool，返回 False 時不記錄
            logger_name: 使用的 logger 名稱
        """
        self.level = level
        self.predicate = predicate
        self._logger = logging.getLogger(logger_name)

    def __call__(self, store: MiddlewareAPI) -> MiddlewareFunction:
        base = super().__call__(store)

        def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
            logged = base(next_dispatch)

            def dispatch(action: Any) -> Any:
                if self.predicate is not None and not self.predicate(store.get_state, action):
                    return next_dispatch(action)
                return logged(action)
            return dispatch
        return middleware

    def on_next(self, action: Any, prev_state: Any) -> None:
        self._logger.log(self.level, "dispatching %r", get_action_type(action))
        self._logger.log(self.level, "state before %r: %r", get_action_type(action), prev_state)

    def on_complete(self, next_state: Any, action: Any) -> None:
        self._logger.log(self.level, "state after %r: %r", get_action_type(action), next_state)

    def on_error(self, error: Exception, action: Any) -> None:
        self._logger.error("error in %r: %s", get_action_type(action), error)


# ---- ThunkMiddleware ----
class ThunkMiddleware(BaseMiddleware):
    """
    支援 dispatch 函數 (thunk)，可以在 thunk 內執行非同步邏輯或多次 dispatch。

    範例:
        ```python
        def fetch_user(user_id):
            def thunk(dispatch, get_state):
                dispatch(request_user(user_id))
                try:
                    user = api.fetch_user(user_id)
                    dispatch(request_user_success(user))
                except ApiError as e:
                    dispatch(request_user_failure(str(e)))
            return thunk

        store.dispatch(fetch_user("user123"))
        ```
    """
    def __init__(self, extra_argument: Any = None):
        """
        Args:
            extra_argument: 若提供，會作為第三個參數傳給 thunk
        """
        self.extra_argument = extra_argument

    def __call__(self, store: MiddlewareAPI) -> MiddlewareFunction:
        def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
            def dispatch(action: Any) -> Any:
                if callable(action) and not is_plain_action(action):
                    thunk = cast(ThunkFunction, action)
                    if self.extra_argument is not None:
                        return thunk(store.dispatch, store.get_state, self.extra_argument)
                    return thunk(store.dispatch, store.get_state)
                return next_dispatch(action)
            return dispatch
        return middleware


# ---- AwaitableMiddleware ----
class AwaitableMiddleware(BaseMiddleware):
    """
    支援 dispatch coroutine/awaitable，完成後自動 dispatch 返回的 Action。

    需要在執行中的事件迴圈內分發；返回值為排程後的 Task，
    呼叫者可以 await 它取得結果或錯誤。

    範例:
        ```python
        async def fetch_data():
            await asyncio.sleep(1)
            return data_loaded({"result": "success"})

        task = store.dispatch(fetch_data())
        ```
    """
    def __call__(self, store: MiddlewareAPI) -> MiddlewareFunction:
        def middleware(next_dispatch: NextDispatch) -> DispatchFunction:
            def dispatch(action: Any) -> Any:
                if asyncio.iscoroutine(action) or asyncio.isfuture(action):
                    task = asyncio.ensure_future(action)
                    task.add_done_callback(lambda fut: self._settle(store, fut))
                    return task
                return next_dispatch(action)
            return dispatch
        return middleware

    def _settle(self, store: MiddlewareAPI, fut: "asyncio.Future[Any]") -> None:
        if fut.cancelled():
            return
        error = fut.exception()
        if error is not None:
            # 讀取 exception() 後 asyncio 不再回報，這裡必須自行記錄
            logger.error("awaitable failed: %s", error, exc_info=error)
            return
        result = fut.result()
        if is_plain_action(result) or callable(result):
            try:
                store.dispatch(result)
            except Exception:
                logger.exception("dispatching the settled result %r failed", result)
        elif result is not None:
            logger.debug("awaitable settled with non-action %r, not dispatching", result)


# ---- ErrorMiddleware ----
global_error = create_action("[Error] GlobalError", lambda info: info)


class ErrorMiddleware(BaseMiddleware):
    """
    將 dispatch 過程中的異常交給集中式錯誤處理器，然後照常往外拋出。

    reducer 異常、切片返回 None 的 ReducerError，以及內層 middleware 的失敗
    都會經過這裡。應放在 middleware 列表的最前面，才能看到整條鏈的錯誤。

    使用場景:
    - 當需要統一記錄或上報所有分發錯誤時。
    """
    def __init__(self, error_handler: Optional[ErrorHandler] = None, dispatch_error_action: bool = False):
        """
        Args:
            error_handler: 使用的 ErrorHandler，預設為 global_error_handler
            dispatch_error_action: 是否額外分發一個 ``[Error] GlobalError`` action
        """
        self.error_handler = error_handler
        self.dispatch_error_action = dispatch_error_action
        self._store: Optional[MiddlewareAPI] = None

    def __call__(self, store: MiddlewareAPI) -> MiddlewareFunction:
        self._store = store
        return super().__call__(store)

    def on_error(self, error: Exception, action: Any) -> None:
        action_type = get_action_type(action)
        if not isinstance(error, PyduxError):
            error = PyduxError(str(error), {
                "original_type": error.__class__.__name__,
                "action_type": action_type,
            })
        (self.error_handler or global_error_handler).handle(error)

        if self.dispatch_error_action and self._store is not None:
            self._store.dispatch(global_error({
                "error": error.message,
                "action": action_type,
                "timestamp": time.time(),
            }))


# ---- PerformanceMonitorMiddleware ----
class PerformanceMonitorMiddleware(BaseMiddleware):
    """
    性能監控中間件，記錄 action 處理時間。
    """

    def __init__(self, threshold_ms: float = 100, log_all: bool = False):
        """
        初始化 PerformanceMonitorMiddleware。

        Args:
            threshold_ms: 性能警告閾值，單位為毫秒，預設為 100 毫秒
            log_all: 是否記錄所有 action 的性能指標，預設為 False (只記錄超過閾值的)
        """
        self.threshold_ms = threshold_ms
        self.log_all = log_all
        self.metrics: Dict[Any, List[float]] = {}

    @contextlib.contextmanager
    def action_context(self, action: Any, prev_state: Any) -> Generator[ActionContext, None, None]:
        start_time = time.perf_counter()
        with super().action_context(action, prev_state) as context:
            try:
                yield context
            finally:
                elapsed_ms = (time.perf_counter() - start_time) * 1000
                self._record(get_action_type(action), elapsed_ms)

    def _record(self, action_type: Any, elapsed_ms: float) -> None:
        self.metrics.setdefault(action_type, []).append(elapsed_ms)
        if self.log_all or elapsed_ms > self.threshold_ms:
            logger.info("action %r took %.2fms", action_type, elapsed_ms)
            if elapsed_ms > self.threshold_ms:
                logger.warning("action %r exceeded threshold (%sms)", action_type, self.threshold_ms)

    def get_metrics(self) -> Dict[Any, Dict[str, float]]:
        """
        獲取性能指標統計信息。
        """
        result = {}
        for action_type, times in self.metrics.items():
            if not times:
                continue
            result[action_type] = {
                'avg': sum(times) / len(times),
                'max': max(times),
                'min': min(times),
                'count': len(times),
            }
        return result
