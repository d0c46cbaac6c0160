"""
定时器工具

- DelayedTask: 可取消的一次性延迟任务（导出完成后延迟清理切片）
- Debouncer: 防抖，高频触发在静默期后合并为一次回调（尺寸变化后重新测量）
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class DelayedTask:
    """可取消的延迟任务（delay 为0时同步执行）"""

    def __init__(self, delay: float, fn: Callable[[], None], name: str = "delayed-task"):
        self.delay = delay
        self.fn = fn
        self.name = name
        self._timer: threading.Timer | None = None

    def start(self) -> None:
        if self.delay <= 0:
            self._run()
            return
        self._timer = threading.Timer(self.delay, self._run)
        self._timer.name = self.name
        self._timer.daemon = True
        self._timer.start()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def join(self, timeout: float | None = None) -> None:
        """等待定时器线程结束"""
        if self._timer is not None:
            self._timer.join(timeout)

    @property
    def pending(self) -> bool:
        return self._timer is not None and self._timer.is_alive()

    def _run(self) -> None:
        try:
            self.fn()
        except Exception as e:
            # 后台任务没有调用方可以接收异常
            logger.warning(f"{self.name} 执行失败: {e}")


class Debouncer:
    """
    防抖器

    供嵌入导出功能的宿主程序使用：把窗口/画布尺寸变化事件接到
    trigger()，回调中重新调用 check_slice_required 或 get_dom_size。
    导出流水线本身不依赖它。
    """

    def __init__(self, callback: Callable[[], None], delay: float = 0.3):
        self.callback = callback
        self.delay = delay
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def trigger(self) -> None:
        """重新计时；静默 delay 秒后执行一次回调"""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self.callback()
