from .lifecycle import (
    AsyncFlushStrategy,
    KeepaliveFlushStrategy,
    LifecycleSignal,
    LifecycleSignals,
    TeardownStrategy,
    select_teardown_strategy,
)

__all__ = [
    "AsyncFlushStrategy",
    "KeepaliveFlushStrategy",
    "LifecycleSignal",
    "LifecycleSignals",
    "TeardownStrategy",
    "select_teardown_strategy",
]
