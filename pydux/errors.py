"""
PyDux 錯誤處理模組。

定義所有 PyDux 異常的層級結構，以及集中式的錯誤處理器。
所有驗證錯誤都在呼叫端同步拋出，核心不做任何自動重試。
"""

import functools
import logging
import traceback as tb
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PyduxError(Exception):
    """所有 PyDux 異常的基礎類。"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}
        # 在建構時保留呼叫堆疊，方便錯誤報告
        self.traceback = "".join(tb.format_stack()[:-1])

    def to_dict(self) -> Dict[str, Any]:
        """
        將錯誤轉換為可序列化的字典。

        Returns:
            包含錯誤類型、訊息與細節的字典。
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": dict(self.details),
            "traceback": self.traceback,
        }

    def __str__(self) -> str:
        if not self.details:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({details})"


class ConfigurationError(PyduxError):
    """Reducer、enhancer 或 middleware 的組裝錯誤，於建構或組合時發現。"""

    def __init__(self, message: str, component: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        details = {"component": component}
        if config_key is not None:
            details["config_key"] = config_key
        details.update(kwargs)
        super().__init__(message, details)
        self.component = component
        self.config_key = config_key


class InvalidActionError(PyduxError):
    """分發的值不是帶有 type 的結構化記錄。"""

    def __init__(self, message: str, action: Any = None, **kwargs: Any) -> None:
        details = {"action": action}
        details.update(kwargs)
        super().__init__(message, details)
        self.action = action


class ReentrancyError(PyduxError):
    """在同一個 store 的 dispatch 進行中再次呼叫 dispatch 或 subscribe。"""

    def __init__(self, message: str, operation: str, **kwargs: Any) -> None:
        details = {"operation": operation}
        details.update(kwargs)
        super().__init__(message, details)
        self.operation = operation


class ReducerError(PyduxError):
    """與 Reducer 相關的錯誤。"""

    def __init__(self, message: str, reducer_name: str, action_type: Any, state: Any = None, **kwargs: Any) -> None:
        details = {"reducer_name": reducer_name, "action_type": action_type}
        if state is not None:
            details["state"] = state
        details.update(kwargs)
        super().__init__(message, details)
        self.reducer_name = reducer_name
        self.action_type = action_type


class MiddlewareError(PyduxError):
    """與 Middleware 相關的錯誤。"""

    def __init__(self, message: str, middleware_name: str, action_type: Any = None, **kwargs: Any) -> None:
        details = {"middleware_name": middleware_name}
        if action_type is not None:
            details["action_type"] = action_type
        details.update(kwargs)
        super().__init__(message, details)
        self.middleware_name = middleware_name


class ErrorHandler:
    """
    集中式錯誤處理器，用於捕獲、日誌記錄和錯誤報告。

    錯誤一律經由 ``pydux`` logger 記錄，再轉交給已註冊的回呼。
    回呼本身拋出的異常只會被記錄，不會往外傳遞。
    """

    def __init__(self, log_to_console: bool = True, log_to_file: bool = False, log_file: Optional[str] = None) -> None:
        self.log_to_console = log_to_console
        self.log_to_file = log_to_file
        self.log_file = log_file
        self.handlers: List[Callable[[PyduxError], None]] = []
        self._logger = logging.getLogger("pydux")
        # 此實例掛到 pydux logger 上的輸出，由 close() 移除
        self._log_handlers: List[logging.Handler] = []
        self._configure_logger()

    def _configure_logger(self) -> None:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        if self.log_to_console:
            self._attach(logging.StreamHandler(), formatter)
        if self.log_to_file:
            self._attach(logging.FileHandler(self.log_file or "pydux_errors.log", encoding="utf-8"), formatter)

    def _attach(self, handler: logging.Handler, formatter: logging.Formatter) -> None:
        handler.setFormatter(formatter)
        handler.setLevel(logging.ERROR)
        self._logger.addHandler(handler)
        self._log_handlers.append(handler)

    def close(self) -> None:
        """移除並關閉此處理器加到 ``pydux`` logger 上的所有輸出。"""
        for handler in self._log_handlers:
            self._logger.removeHandler(handler)
            handler.close()
        self._log_handlers.clear()

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def register_handler(self, handler: Callable[[PyduxError], None]) -> None:
        """
        註冊一個錯誤回呼。

        Args:
            handler: 接收 PyduxError 的函數
        """
        self.handlers.append(handler)

    def handle(self, error: Union[PyduxError, Exception]) -> None:
        """
        處理一個錯誤：記錄日誌並通知所有回呼。

        Args:
            error: 要處理的異常，非 PyduxError 會被包裝成 PyduxError
        """
        if not isinstance(error, PyduxError):
            error = PyduxError(str(error), {"original_type": error.__class__.__name__})
        self._logger.error("%s: %s", error.__class__.__name__, error)
        for handler in list(self.handlers):
            try:
                handler(error)
            except Exception:
                self._logger.exception("error handler %r failed", handler)


# 單例錯誤處理器，預設不掛任何輸出，由應用自行決定
global_error_handler = ErrorHandler(log_to_console=False)


def handle_error(func: Callable[..., T]) -> Callable[..., T]:
    """
    裝飾器：將 PyduxError 交給全域錯誤處理器後重新拋出。
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return func(*args, **kwargs)
        except PyduxError as err:
            global_error_handler.handle(err)
            raise
    return wrapper
