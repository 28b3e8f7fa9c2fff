"""
后台任务管理模块

- 数据层 (models.py / storage.py): Task 与快照存储
- 状态层 (status.py / reconciler.py): 远端状态解析与组图合并
- 业务层 (manager.py): BackgroundTaskManager
- 通知层 (events.py): NotificationBus
"""

from .config import Settings, SettingsError, load_settings
from .events import NotificationBus, TaskCallbacks, TaskEvent
from .manager import BackgroundTaskManager
from .models import Task, TaskStatus, TaskType

__all__ = [
    'BackgroundTaskManager', 'NotificationBus', 'TaskCallbacks', 'TaskEvent',
    'Task', 'TaskStatus', 'TaskType', 'Settings', 'SettingsError', 'load_settings',
]
