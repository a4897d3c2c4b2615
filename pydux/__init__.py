"""
PyDux：可預測的單一狀態容器。

一個 store 持有唯一的權威狀態，由純函數 reducer 根據 action 計算新狀態，
並在 dispatch 返回前依註冊順序同步通知訂閱者。middleware 與 enhancer
可以擴充分發流程而不破壞這些保證。
"""
import logging

from .errors import (
    PyduxError, ConfigurationError, InvalidActionError, ReentrancyError,
    ReducerError, MiddlewareError, ErrorHandler, global_error_handler, handle_error
)
from .actions import Action, ActionTypes, create_action, get_action_type, is_plain_action
from .compose import compose
from .reducers import create_reducer, on, combine_reducers, ReducerManager
from .store import Store, create_store
from .middleware import (
    MiddlewareAPI, BaseMiddleware, LoggerMiddleware, ThunkMiddleware,
    AwaitableMiddleware, ErrorMiddleware, PerformanceMonitorMiddleware, apply_middleware
)
from .devtools import DevTools, DevToolsOptions, DevToolsState, InstrumentedStore, instrument
from .immutable_utils import to_immutable, to_dict

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

# 匯出所有公開 API
__all__ = [
    # Errors
    "PyduxError", "ConfigurationError", "InvalidActionError", "ReentrancyError",
    "ReducerError", "MiddlewareError", "ErrorHandler", "global_error_handler", "handle_error",

    # Actions
    "Action", "ActionTypes", "create_action", "get_action_type", "is_plain_action",

    # Composition
    "compose",

    # Reducers
    "create_reducer", "on", "combine_reducers", "ReducerManager",

    # Store
    "Store", "create_store",

    # Middleware
    "MiddlewareAPI", "BaseMiddleware", "LoggerMiddleware", "ThunkMiddleware",
    "AwaitableMiddleware", "ErrorMiddleware", "PerformanceMonitorMiddleware", "apply_middleware",

    # DevTools
    "DevTools", "DevToolsOptions", "DevToolsState", "InstrumentedStore", "instrument",

    # Immutable Utils
    "to_immutable", "to_dict",
]
