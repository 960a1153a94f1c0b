"""后台任务调度。

提交的任务在线程池中执行，提交方不等待结果；任务抛出的异常
在 done 回调中记录日志。wait_idle 主要给测试与优雅退出使用。
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Set

from chat_core.config.settings import settings
from chat_core.infrastructure.logging.logger import log_event


class BackgroundScheduler:
    def __init__(self, max_workers: Optional[int] = None, thread_name_prefix: str = "chat-reply"):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.pipeline_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any, label: str = "task", **kwargs: Any) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda f: self._on_done(f, label))
        return future

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """等待当前所有任务结束，超时返回 False。"""

        with self._lock:
            snapshot = set(self._pending)
        if not snapshot:
            return True
        _, not_done = wait(snapshot, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _on_done(self, future: Future, label: str) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            log_event(
                logging.ERROR,
                "Background task crashed",
                {"task": label},
                error=str(exc),
                error_type=type(exc).__name__,
            )
