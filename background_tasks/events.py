"""
任务通知总线

两种订阅方式同时生效：
- 直接订阅：按任务ID注册回调，每个任务最多一个订阅者
- 广播监听：接收所有任务的全部事件（如任务计数角标）
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Callable, Dict, Any, List, Iterable, Tuple, FrozenSet

from loguru import logger

from .models import Task, TaskStatus


class TaskEvent(str, Enum):
    """广播事件"""
    PROGRESS = 'background-task-progress'
    COMPLETE = 'background-task-complete'
    FAILED = 'background-task-failed'


TaskCallback = Callable[[Task], Any]
Listener = Callable[[TaskEvent, Dict[str, Any]], Any]


@dataclass
class TaskCallbacks:
    """单个任务的回调"""
    on_progress: Optional[TaskCallback] = None
    on_complete: Optional[TaskCallback] = None
    on_error: Optional[TaskCallback] = None

    def for_event(self, event: TaskEvent) -> Optional[TaskCallback]:
        if event is TaskEvent.PROGRESS:
            return self.on_progress
        if event is TaskEvent.COMPLETE:
            return self.on_complete
        return self.on_error


class NotificationBus:
    """任务通知总线"""

    def __init__(self):
        self._subscribers: Dict[str, TaskCallbacks] = {}
        self._listeners: List[Tuple[Listener, Optional[FrozenSet[TaskEvent]]]] = []

    # ========== 直接订阅 ==========

    def subscribe(self, task_id: str, callbacks: TaskCallbacks):
        """注册任务回调，覆盖该任务已有的订阅"""
        self._subscribers[task_id] = callbacks

    def unsubscribe(self, task_id: str):
        self._subscribers.pop(task_id, None)

    def has_subscriber(self, task_id: str) -> bool:
        return task_id in self._subscribers

    def replay(self, task_id: str, task: Optional[Task]):
        """任务已结束时立即回调订阅者"""
        callbacks = self._subscribers.get(task_id)
        if callbacks is None or task is None:
            return

        if task.status == TaskStatus.COMPLETED:
            self._invoke(callbacks.on_complete, task, f"on_complete replay for {task_id}")
        elif task.status == TaskStatus.FAILED:
            self._invoke(callbacks.on_error, task, f"on_error replay for {task_id}")

    # ========== 广播 ==========

    def add_listener(self, listener: Listener, events: Iterable[TaskEvent] = None) -> Callable[[], None]:
        """
        添加广播监听器

        Args:
            listener: 回调 listener(event, {"taskId": ..., "task": ...})
            events: 只监听指定事件，为 None 则监听全部

        Returns:
            移除该监听器的函数
        """
        entry = (listener, frozenset(events) if events is not None else None)
        self._listeners.append(entry)

        def remove():
            if entry in self._listeners:
                self._listeners.remove(entry)

        return remove

    def publish(self, event: TaskEvent, task: Task):
        """先回调直接订阅者，再广播给所有监听器"""
        callbacks = self._subscribers.get(task.task_id)
        if callbacks is not None:
            self._invoke(callbacks.for_event(event), task, f"{event.value} callback for {task.task_id}")

        detail = {'taskId': task.task_id, 'task': task}
        for listener, events in list(self._listeners):
            if events is not None and event not in events:
                continue
            try:
                listener(event, detail)
            except Exception:
                logger.exception(f"Listener failed on {event.value} for {task.task_id}")

    def clear(self):
        self._subscribers.clear()
        self._listeners.clear()

    @staticmethod
    def _invoke(callback: Optional[TaskCallback], task: Task, label: str):
        if callback is None:
            return
        try:
            callback(task)
        except Exception:
            logger.exception(f"Task callback failed: {label}")
