"""
任务快照存储

使用 peewee + SQLite 的键值表保存整个任务列表的 JSON 快照，
每次写入覆盖同一个键
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional, Any, Dict

from loguru import logger
from peewee import Model, CharField, TextField, DateTimeField, SqliteDatabase


class StorageEntry(Model):
    """键值存储条目"""

    key = CharField(primary_key=True, max_length=128)
    value = TextField()
    updated_at = DateTimeField(default=datetime.now)

    class Meta:
        table_name = 'storage_entry'


class SnapshotStore:
    """SQLite 快照存储"""

    def __init__(self, db_path: str):
        """
        Args:
            db_path: 数据库文件路径
        """
        self.db_path = db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = SqliteDatabase(
            self.db_path,
            pragmas={
                'journal_mode': 'wal',
                'synchronous': 1,
                'busy_timeout': 30000,  # 30秒等待锁
            }
        )
        with self._db.bind_ctx([StorageEntry]):
            self._db.create_tables([StorageEntry], safe=True)

        logger.info(f"SnapshotStore initialized with database: {self.db_path}")

    def load(self, key: str) -> Optional[Any]:
        """
        读取快照

        Returns:
            解析后的 JSON 值，不存在或无法解析时返回 None
        """
        with self._db.bind_ctx([StorageEntry]):
            entry = StorageEntry.get_or_none(StorageEntry.key == key)
        if entry is None:
            return None

        try:
            return json.loads(entry.value)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt snapshot under key {key}: {e}")
            return None

    def save(self, key: str, value: Any):
        """写入快照（覆盖），失败时抛出异常由调用方处理"""
        data = json.dumps(value, ensure_ascii=False)
        with self._db.bind_ctx([StorageEntry]):
            (
                StorageEntry
                .insert(key=key, value=data, updated_at=datetime.now())
                .on_conflict_replace()
                .execute()
            )

    def delete(self, key: str) -> bool:
        with self._db.bind_ctx([StorageEntry]):
            deleted = StorageEntry.delete().where(StorageEntry.key == key).execute()
        return deleted > 0

    def close(self):
        """关闭数据库连接"""
        if not self._db.is_closed():
            self._db.close()
            logger.info("SnapshotStore closed")


class MemoryStore:
    """内存快照存储，未配置数据库路径时使用（仅当前会话有效）"""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def load(self, key: str) -> Optional[Any]:
        data = self._data.get(key)
        return json.loads(data) if data is not None else None

    def save(self, key: str, value: Any):
        self._data[key] = json.dumps(value, ensure_ascii=False)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def close(self):
        pass
