import functools
from typing import Any, Callable


def compose(*funcs: Callable[..., Any]) -> Callable[..., Any]:
    """
    由右至左組合單參數函數。

    ``compose(f, g, h)(x)`` 等同於 ``f(g(h(x)))``；最右側的函數可以接收多個參數。
    用來串接多個 store enhancer，或把 middleware 階段包裹在 dispatch 外層。

    Args:
        *funcs: 要組合的函數

    Returns:
        組合後的函數；沒有參數時返回恆等函數。
    """
    if not funcs:
        return lambda arg: arg
    if len(funcs) == 1:
        return funcs[0]

    def pair(outer: Callable[..., Any], inner: Callable[..., Any]) -> Callable[..., Any]:
        return lambda *args, **kwargs: outer(inner(*args, **kwargs))

    return functools.reduce(pair, funcs)
