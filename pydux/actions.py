"""
PyDux 的 Action 定義模組。

此模組提供 Action 類別、創建 Action 的工具，以及 dispatch 邊界上
判斷「結構化記錄」的驗證函數。Actions 是描述狀態變更意圖的不可變對象。
"""
import random
import string
from typing import Any, Callable, Dict, Generic, Mapping, Optional, Union

from immutables import Map as ImmutableMap
from pydantic import BaseModel

from .errors import InvalidActionError
from .types import P


class Action(Generic[P]):
    """
    表示一個有類型和可選負載的動作。

    泛型參數:
        P: 負載的類型

    屬性:
        type: 動作的類型標籤，任何非 None 的可比較值
        payload: 動作的負載數據（可選）
    """
    __slots__ = ('type', 'payload')

    def __init__(self, type: Any, payload: Optional[P] = None):
        super().__setattr__('type', type)
        super().__setattr__('payload', payload)

    def __setattr__(self, name, value):
        if name not in self.__slots__:
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")
        if hasattr(self, name):
            raise AttributeError(f"Cannot modify immutable instance attribute '{name}'")
        super().__setattr__(name, value)

    def __eq__(self, other):
        if not isinstance(other, Action):
            return False
        return self.type == other.type and self.payload == other.payload

    def __hash__(self):
        return hash((self.type, repr(self.payload)))

    def __repr__(self):
        return f"Action(type={self.type!r}, payload={self.payload!r})"


def _random_suffix() -> str:
    return ".".join(
        "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        for _ in range(2)
    )


class ActionTypes:
    """
    PyDux 保留的私有 action 類型。

    帶有隨機後綴，應用的 reducer 不應直接處理這些類型，
    只需在未知類型時返回當前狀態（或初始狀態）即可。
    """
    INIT = f"@@pydux/INIT.{_random_suffix()}"

    @staticmethod
    def probe_unknown_action() -> str:
        return f"@@pydux/PROBE_UNKNOWN_ACTION.{_random_suffix()}"


def get_action_type(action: Any) -> Any:
    """
    取出結構化記錄的 type 欄位，不存在時返回 None。

    Args:
        action: Action、Mapping 或 pydantic 模型

    Returns:
        type 標籤或 None
    """
    if isinstance(action, Mapping):
        return action.get("type")
    if isinstance(action, (Action, BaseModel)):
        return getattr(action, "type", None)
    return None


def is_plain_action(action: Any) -> bool:
    """判斷一個值是否為可以直接交給 reducer 的 action。"""
    if not isinstance(action, (Action, Mapping, BaseModel)):
        return False
    return get_action_type(action) is not None


def ensure_plain_action(action: Any) -> Any:
    """
    在 dispatch 邊界驗證 action。

    Args:
        action: 要分發的值

    Returns:
        原本的 action

    Raises:
        InvalidActionError: 不是結構化記錄，或缺少 type
    """
    if not isinstance(action, (Action, Mapping, BaseModel)):
        kind = type(action).__name__
        raise InvalidActionError(
            f"Actions must be structured records with a 'type', got {kind}. "
            "Use a middleware to dispatch other values.",
            action=action,
        )
    if get_action_type(action) is None:
        raise InvalidActionError(
            "Actions may not have an undefined 'type' field.",
            action=action,
        )
    return action


def _process_payload(payload: Any) -> Any:
    """
    處理 payload，將字典轉換為不可變結構。

    Args:
        payload: 原始 payload

    Returns:
        處理後的 payload
    """
    if isinstance(payload, dict):
        return ImmutableMap(payload)
    return payload


def create_action(action_type: Any, prepare_fn: Optional[Callable[..., Any]] = None) -> Callable[..., Action[Any]]:
    """
    創建一個 Action 生成器函數。

    Args:
        action_type: Action 的類型標識符
        prepare_fn: 可選的預處理函數，用於在創建 Action 前處理輸入參數

    Returns:
        一個可調用的函數，用於生成指定類型的 Action

    範例:
        >>> increment = create_action("[Counter] Increment")
        >>> increment()  # 返回 Action(type="[Counter] Increment", payload=None)
        >>>
        >>> add = create_action("[Counter] Add", lambda amount: amount)
        >>> add(5)  # 返回 Action(type="[Counter] Add", payload=5)
    """
    def action_creator(*args: Any, **kwargs: Any) -> Action[Any]:
        if prepare_fn:
            return Action(action_type, _process_payload(prepare_fn(*args, **kwargs)))
        if len(args) == 1 and not kwargs:
            return Action(action_type, _process_payload(args[0]))
        if args or kwargs:
            payload: Dict[Union[int, str], Any] = dict(zip(range(len(args)), args))
            payload.update(kwargs)
            return Action(action_type, _process_payload(payload))
        # 無參數，無負載
        return Action(action_type)

    # 添加 type 屬性以便於識別
    action_creator.type = action_type  # type: ignore

    return action_creator
