"""
使用 PyDux 的計數器示例：combine_reducers、middleware 與 devtools 時間旅行。
"""
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from reactivex import operators as ops

from pydux import (
    LoggerMiddleware, ThunkMiddleware, apply_middleware, combine_reducers, compose,
    create_action, create_reducer, create_store, instrument, on, to_dict,
)

# ============== 定義 Actions ==============
increment = create_action("[Counter] Increment")
decrement = create_action("[Counter] Decrement")
increment_by = create_action("[Counter] IncrementBy", lambda amount: amount)
add_todo = create_action("[Todos] Add", lambda text: text)

# ============== 定義 Reducers ==============
counter_reducer = create_reducer(
    {"count": 0},
    on(increment, lambda state, action: state.set("count", state["count"] + 1)),
    on(decrement, lambda state, action: state.set("count", state["count"] - 1)),
    on(increment_by, lambda state, action: state.set("count", state["count"] + action.payload)),
)

todos_reducer = create_reducer(
    (),
    on(add_todo, lambda state, action: state + (action.payload,)),
)

root_reducer = combine_reducers({"counter": counter_reducer, "todos": todos_reducer})


def increment_twice_if_odd(dispatch, get_state):
    """thunk：讀取狀態後決定要分發哪些 action"""
    if get_state()["counter"]["count"] % 2:
        dispatch(increment())
        dispatch(increment())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    store = create_store(
        root_reducer,
        enhancer=compose(apply_middleware(ThunkMiddleware, LoggerMiddleware), instrument(max_age=50)),
    )

    # 只在計數改變時輸出
    store.select(lambda state: state["counter"]["count"]).pipe(
        ops.pairwise(),
    ).subscribe(on_next=lambda pair: print(f"計數變化: {pair[0]} -> {pair[1]}"))

    print("\n==== 基本操作 ====")
    store.dispatch(increment())
    store.dispatch(increment_by(5))
    store.dispatch(add_todo("寫測試"))
    store.dispatch(increment_twice_if_odd)
    store.dispatch(decrement())

    print("\n==== 時間旅行 ====")
    store.devtools.jump_to_state(2)
    print("第 2 筆狀態:", to_dict(store.get_state()))
    store.devtools.jump_to_state(len(store.devtools.history()) - 1)

    print("\n==== 最終狀態 ====")
    print(to_dict(store.state))
