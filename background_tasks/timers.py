"""
可取消的周期定时器

每个定时器持有一个 asyncio.Task：立即执行一次回调，
之后每次回调结束再等待 interval 秒，两次回调不会重叠
"""

import asyncio
from typing import Optional, Callable, Awaitable

from loguru import logger


class RepeatingTimer:
    """周期定时器"""

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable[None]]):
        """
        Args:
            name: 定时器名称（用于日志和 asyncio.Task 命名）
            interval: 两次回调之间的间隔（秒）
            callback: 异步回调
        """
        self.name = name
        self.interval = interval
        self._callback = callback
        self._handle: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        return (
            not self._cancelled
            and self._handle is not None
            and not self._handle.done()
        )

    def start(self):
        """启动定时器（需要在事件循环中调用）"""
        if self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.create_task(self._run(), name=f"timer:{self.name}")

    def cancel(self):
        """
        停止定时器

        在回调内部调用时不会打断当前回调，当前回调结束后循环退出
        """
        if self._cancelled:
            return
        self._cancelled = True

        handle = self._handle
        if handle is None or handle.done():
            return
        if handle is _current_task():
            return
        handle.cancel()

    async def _run(self):
        while not self._cancelled:
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Timer {self.name} callback failed")

            if self._cancelled:
                break
            await asyncio.sleep(self.interval)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
