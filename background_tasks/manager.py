"""
后台任务管理器

- 注册表：任务ID -> Task，所有查询的唯一数据来源
- 状态机：每个未结束的任务一个独立定时器，轮询远端状态并推进任务状态
- 每次修改任务后立即写入完整快照（write-through）
- 页面重载（进程重启）后从快照恢复任务，并为未结束的任务重新开始轮询
"""

import asyncio
from typing import Optional, List, Dict, Any

from loguru import logger

from services.task_status import TaskStatusClient, select_status_fetcher
from .config import Settings
from .events import NotificationBus, TaskCallbacks, TaskEvent, TaskCallback, Listener
from .models import Task, TaskStatus, TaskType, now_ms
from .reconciler import GroupReconciler, GROUP_RESULT_KEY
from .status import Completed, Failed, decode_status, is_not_found_error
from .storage import SnapshotStore, MemoryStore
from .timers import RepeatingTimer

TASK_GONE_MESSAGE = 'Task no longer exists or has expired, please regenerate'


class BackgroundTaskManager:
    """后台任务管理器，每个应用会话创建一个实例并注入给调用方"""

    def __init__(
        self,
        client: Any,
        store: Any = None,
        settings: Settings = None,
        bus: NotificationBus = None
    ):
        """
        初始化任务管理器

        Args:
            client: 状态查询客户端（get_image_task_status / get_video_task_status /
                get_video_hd_task_status）
            store: 快照存储（load / save），为 None 则只保存在内存中
            settings: 设置，为 None 使用默认值
            bus: 通知总线，为 None 则新建
        """
        self.settings = settings or Settings()
        self.store = store if store is not None else MemoryStore()
        self.bus = bus or NotificationBus()
        self._client = client
        self._reconciler = GroupReconciler(client.get_image_task_status)

        self._tasks: Dict[str, Task] = {}
        self._timers: Dict[str, RepeatingTimer] = {}
        self._error_counts: Dict[str, int] = {}

    @classmethod
    def from_settings(cls, settings: Settings, transport=None) -> 'BackgroundTaskManager':
        """根据设置创建 HTTP 客户端和快照存储"""
        if not settings.api_base:
            logger.warning("apiBase is not configured, status queries will use relative URLs")
        client = TaskStatusClient(
            settings.api_base,
            token=settings.token,
            tenant_id=settings.tenant_id,
            tenant_key=settings.tenant_key,
            timeout=settings.request_timeout,
            transport=transport,
        )
        store = SnapshotStore(settings.db_path) if settings.db_path else MemoryStore()
        return cls(client, store, settings=settings)

    # ========== 初始化与恢复 ==========

    def init(self) -> int:
        """
        从快照恢复任务并继续轮询（需要在事件循环中调用）

        Returns:
            恢复的任务数量
        """
        logger.info("BackgroundTaskManager initializing")
        restored = self.load_from_storage()
        self.resume_pending_tasks()
        return restored

    def load_from_storage(self) -> int:
        """
        读取快照，丢弃超过最大存活时间的任务

        Returns:
            恢复的任务数量
        """
        try:
            saved = self.store.load(self.settings.storage_key)
        except Exception:
            logger.exception("Failed to load tasks from storage")
            return 0

        if not saved:
            return 0
        if not isinstance(saved, list):
            logger.warning(f"Ignoring task snapshot of type {type(saved).__name__}")
            return 0

        now = now_ms()
        max_age = self.settings.max_task_age_ms
        restored = 0
        expired = 0

        for entry in saved:
            try:
                task = Task.from_dict(entry)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Dropping malformed task snapshot entry: {e}")
                continue

            if task.age_ms(now) >= max_age:
                expired += 1
                continue

            self._tasks[task.task_id] = task
            restored += 1

        logger.info(f"Restored {restored} tasks from storage ({expired} expired)")
        return restored

    def save_to_storage(self) -> bool:
        """写入完整快照，失败只记录日志，不影响内存中的状态"""
        snapshot = [task.to_dict() for task in self._tasks.values()]
        try:
            self.store.save(self.settings.storage_key, snapshot)
        except Exception as e:
            logger.error(f"Failed to save tasks to storage: {e}")
            return False
        return True

    def resume_pending_tasks(self) -> int:
        """
        为所有未结束的任务重新开始轮询（需要在事件循环中调用）

        Returns:
            新启动轮询的任务数量，已在轮询的任务不计入
        """
        resumed = 0
        for task_id, task in list(self._tasks.items()):
            if task.status in (TaskStatus.PENDING, TaskStatus.PROCESSING):
                if self.start_polling(task_id):
                    logger.info(f"Resuming polling for task: {task_id}")
                    resumed += 1
        return resumed

    # ========== 注册 ==========

    def register_task(
        self,
        task_id: str,
        type: str,
        node_id: str = None,
        tab_id: str = None,
        metadata: Dict[str, Any] = None
    ) -> Task:
        """
        注册新任务并开始轮询，同一ID重复注册会覆盖旧任务

        需要在运行中的事件循环内调用，否则不做任何修改直接抛出 RuntimeError

        Args:
            task_id: 远端分配的任务ID
            type: 任务类型 (image / video / video-hd)
            node_id: 关联的节点ID
            tab_id: 关联的标签ID
            metadata: 其他元数据

        Returns:
            新建的任务

        Raises:
            ValueError: 任务ID为空或任务类型未知
            RuntimeError: 没有运行中的事件循环
        """
        if not task_id:
            raise ValueError("task_id is required")
        task_type = TaskType.parse(type)
        # 轮询定时器依赖事件循环，先检查再修改注册表
        asyncio.get_running_loop()

        task = Task(
            task_id=str(task_id),
            type=task_type,
            node_id=node_id,
            tab_id=tab_id,
            metadata=dict(metadata or {}),
        )

        self._tasks[task.task_id] = task
        self._error_counts.pop(task.task_id, None)
        self.save_to_storage()

        logger.info(f"Registered task: {task.task_id}, type={task.type.value}, node={node_id}")

        self.start_polling(task.task_id)
        return task

    # ========== 轮询 ==========

    def is_polling(self, task_id: str) -> bool:
        timer = self._timers.get(task_id)
        return timer is not None and timer.active

    def start_polling(self, task_id: str) -> bool:
        """开始轮询，已在轮询则不重复开始"""
        if self.is_polling(task_id):
            return False

        timer = RepeatingTimer(
            task_id,
            self.settings.poll_interval,
            lambda: self._poll_once(task_id),
        )
        self._timers[task_id] = timer
        timer.start()
        return True

    def stop_polling(self, task_id: str):
        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()

    def stop_all_polling(self):
        """停止所有轮询"""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    async def _poll_once(self, task_id: str):
        """执行一次状态查询并推进状态机"""
        task = self._tasks.get(task_id)
        if task is None or task.status.is_terminal:
            self.stop_polling(task_id)
            return

        fetch = select_status_fetcher(self._client, task.type)
        try:
            raw = await fetch(task_id)
            update = decode_status(raw)
        except Exception as e:
            self._handle_query_error(task_id, e)
            return

        # 查询期间任务可能已被移除或覆盖
        task = self._tasks.get(task_id)
        if task is None or task.status.is_terminal:
            self.stop_polling(task_id)
            return

        self._error_counts.pop(task_id, None)
        logger.debug(f"Task {task_id} status: {type(update).__name__}")

        if isinstance(update, Completed):
            await self._complete(task, update)
        elif isinstance(update, Failed):
            self._fail(task, update.reason)
        else:
            self._mark_processing(task, update.progress)

    async def _complete(self, task: Task, update: Completed):
        task_id = task.task_id
        self.stop_polling(task_id)

        group_urls = await self._reconciler.reconcile(task, update.payload)

        if self._tasks.get(task_id) is not task:
            logger.warning(f"Task {task_id} was replaced during group reconcile, dropping result")
            return

        result = dict(update.payload)
        if group_urls is not None:
            result[GROUP_RESULT_KEY] = group_urls

        task.status = TaskStatus.COMPLETED
        task.result = result
        if update.progress is not None:
            task.progress = update.progress
        task.touch()
        self.save_to_storage()

        logger.info(f"Task completed: {task_id}, output={update.output_url}")
        self.bus.publish(TaskEvent.COMPLETE, task)

    def _fail(self, task: Task, reason: str):
        task_id = task.task_id
        self.stop_polling(task_id)
        self._error_counts.pop(task_id, None)

        task.status = TaskStatus.FAILED
        task.error = reason
        task.touch()
        self.save_to_storage()

        logger.info(f"Task failed: {task_id}, error={reason}")
        self.bus.publish(TaskEvent.FAILED, task)

    def _mark_processing(self, task: Task, progress: Optional[float]):
        task.status = TaskStatus.PROCESSING
        if progress is not None:
            task.progress = progress
        task.touch()
        self.save_to_storage()

        self.bus.publish(TaskEvent.PROGRESS, task)

    def _handle_query_error(self, task_id: str, error: Exception):
        task = self._tasks.get(task_id)
        if task is None or task.status.is_terminal:
            self.stop_polling(task_id)
            return

        if is_not_found_error(error):
            logger.warning(f"Task {task_id} no longer exists remotely, stop polling")
            self._fail(task, TASK_GONE_MESSAGE)
            return

        count = self._error_counts.get(task_id, 0) + 1
        self._error_counts[task_id] = count

        limit = self.settings.max_consecutive_errors
        if limit and count >= limit:
            logger.error(f"Polling task {task_id} failed {count} times in a row, giving up: {error}")
            self._fail(task, f"Task status unavailable after {count} attempts")
            return

        logger.warning(f"Polling task {task_id} failed (attempt {count}), will retry: {error}")

    # ========== 订阅 ==========

    def subscribe_task(
        self,
        task_id: str,
        callbacks: TaskCallbacks = None,
        *,
        on_progress: TaskCallback = None,
        on_complete: TaskCallback = None,
        on_error: TaskCallback = None
    ):
        """
        注册任务回调（覆盖已有订阅）

        任务已结束时立即同步回调 on_complete / on_error
        """
        if callbacks is None:
            callbacks = TaskCallbacks(
                on_progress=on_progress,
                on_complete=on_complete,
                on_error=on_error,
            )
        self.bus.subscribe(task_id, callbacks)
        self.bus.replay(task_id, self._tasks.get(task_id))

    def unsubscribe_task(self, task_id: str):
        self.bus.unsubscribe(task_id)

    def add_listener(self, listener: Listener, events=None):
        """添加广播监听器，返回移除函数"""
        return self.bus.add_listener(listener, events)

    # ========== 查询 ==========

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def get_tasks_by_node_id(self, node_id: str) -> List[Task]:
        return [task for task in self._tasks.values() if task.node_id == node_id]

    def get_tasks_by_tab_id(self, tab_id: str) -> List[Task]:
        return [task for task in self._tasks.values() if task.tab_id == tab_id]

    def get_pending_tasks(self) -> List[Task]:
        return [task for task in self._tasks.values() if not task.status.is_terminal]

    def get_task_stats(self) -> Dict[str, int]:
        """
        获取任务统计

        Returns:
            {"pending": 1, "processing": 2, "completed": 3, "failed": 0, "total": 6}
        """
        stats = {status.value: 0 for status in TaskStatus}
        for task in self._tasks.values():
            stats[task.status.value] += 1
        stats['total'] = len(self._tasks)
        return stats

    # ========== 清理 ==========

    def remove_completed_task(self, task_id: str) -> bool:
        """
        移除已结束的任务，未结束的任务不处理

        Returns:
            是否移除
        """
        task = self._tasks.get(task_id)
        if task is None or not task.status.is_terminal:
            return False

        del self._tasks[task_id]
        self.bus.unsubscribe(task_id)
        self.save_to_storage()
        logger.debug(f"Removed task: {task_id}")
        return True

    def clear_completed_tasks(self) -> int:
        """
        移除所有已结束的任务

        Returns:
            移除的任务数量
        """
        finished = [task_id for task_id, task in self._tasks.items() if task.status.is_terminal]
        for task_id in finished:
            del self._tasks[task_id]
            self.bus.unsubscribe(task_id)

        self.save_to_storage()
        if finished:
            logger.info(f"Cleared {len(finished)} finished tasks")
        return len(finished)

    def cleanup(self):
        """停止所有轮询、清空所有订阅，并写入最后一次快照"""
        self.stop_all_polling()
        self.bus.clear()
        self._error_counts.clear()
        self.save_to_storage()
        logger.info("BackgroundTaskManager cleaned up")
