"""
后台任务数据模型

任务只存在于内存注册表中，通过快照持久化（见 storage.py）
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any

# 快照存储键
STORAGE_KEY = 'canvas_background_tasks'
# 轮询间隔（秒）
POLL_INTERVAL = 3.0
# 任务最大存活时间：24小时（毫秒）
MAX_TASK_AGE_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """当前时间戳（毫秒）"""
    return int(time.time() * 1000)


class TaskStatus(str, Enum):
    """任务状态"""
    PENDING = 'pending'          # 已注册，尚未收到状态
    PROCESSING = 'processing'    # 远端执行中
    COMPLETED = 'completed'      # 执行成功
    FAILED = 'failed'            # 执行失败

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskType(str, Enum):
    """任务类型，决定使用哪个状态查询接口"""
    IMAGE = 'image'
    VIDEO = 'video'
    VIDEO_HD = 'video-hd'

    @classmethod
    def parse(cls, value: Any) -> 'TaskType':
        if isinstance(value, cls):
            return value
        if value == 'video-hd-upscale':
            return cls.VIDEO_HD
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown task type: {value}") from None


@dataclass
class Task:
    """后台任务

    task_id 由远端服务在提交时分配；node_id / tab_id 仅用于查询关联，
    不做任何校验
    """

    task_id: str
    type: TaskType
    node_id: Optional[str] = None
    tab_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    progress: Optional[float] = 0
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def touch(self):
        self.updated_at = now_ms()

    def age_ms(self, now: Optional[int] = None) -> int:
        return (now if now is not None else now_ms()) - self.created_at

    def to_dict(self) -> dict:
        """转换为快照字典（字段名与存储格式一致）"""
        return {
            'taskId': self.task_id,
            'type': self.type.value,
            'nodeId': self.node_id,
            'tabId': self.tab_id,
            'status': self.status.value,
            'progress': self.progress,
            'result': self.result,
            'error': self.error,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'metadata': self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Task':
        """从快照字典恢复任务

        Raises:
            KeyError / ValueError / TypeError: 快照条目格式不正确
        """
        created_at = int(data['createdAt'])
        return cls(
            task_id=str(data['taskId']),
            type=TaskType.parse(data['type']),
            node_id=data.get('nodeId'),
            tab_id=data.get('tabId'),
            status=TaskStatus(data.get('status') or TaskStatus.PENDING.value),
            progress=data.get('progress'),
            result=data.get('result'),
            error=data.get('error'),
            created_at=created_at,
            updated_at=int(data.get('updatedAt') or created_at),
            metadata=data.get('metadata') or {},
        )
