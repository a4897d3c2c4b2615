# pydux/immutable_utils.py
from typing import Any

from immutables import Map
from pydantic import BaseModel

from .actions import Action


def to_immutable(obj: Any) -> Any:
    """將任何對象轉換為不可變形式 (包括 Pydantic 模型)"""
    if isinstance(obj, BaseModel):
        # Pydantic 模型轉為 Map
        return Map({k: to_immutable(v) for k, v in obj.model_dump().items()})
    elif isinstance(obj, dict):
        # 字典轉為 Map
        return Map({k: to_immutable(v) for k, v in obj.items()})
    elif isinstance(obj, list):
        # 列表轉為元組
        return tuple(to_immutable(i) for i in obj)
    elif isinstance(obj, set):
        # 集合轉為凍結集合
        return frozenset(to_immutable(i) for i in obj)
    # 其他類型直接返回
    return obj


def to_dict(obj: Any) -> Any:
    """將 Map、Action、Pydantic 模型及其巢狀結構轉換為普通 Python 結構"""
    if isinstance(obj, Map):
        return {k: to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, dict):
        return {k: to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, Action):
        return {"type": to_dict(obj.type), "payload": to_dict(obj.payload)}
    elif isinstance(obj, BaseModel):
        return to_dict(obj.model_dump())
    elif isinstance(obj, (tuple, list)):
        return [to_dict(i) for i in obj]
    elif isinstance(obj, frozenset):
        return {to_dict(i) for i in obj}
    return obj
