"""
后台任务配置

从设置文件（JSON）的 backgroundTasks 段读取，环境变量可覆盖部分字段
"""

import json
import os
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import STORAGE_KEY, POLL_INTERVAL

ENV_OVERRIDES = {
    'BG_TASKS_API_BASE': 'apiBase',
    'BG_TASKS_TOKEN': 'token',
    'BG_TASKS_DB': 'dbPath',
}


class SettingsError(ValueError):
    """配置无效"""


class Settings(BaseModel):
    """后台任务设置"""

    model_config = ConfigDict(populate_by_name=True)

    api_base: str = Field(default='', alias='apiBase')
    token: Optional[str] = None
    tenant_id: Optional[str] = Field(default=None, alias='tenantId')
    tenant_key: Optional[str] = Field(default=None, alias='tenantKey')
    poll_interval: float = Field(default=POLL_INTERVAL, alias='pollInterval', gt=0)
    max_task_age_hours: float = Field(default=24, alias='maxTaskAgeHours', gt=0)
    storage_key: str = Field(default=STORAGE_KEY, alias='storageKey', min_length=1)
    db_path: Optional[str] = Field(default=None, alias='dbPath')
    request_timeout: float = Field(default=30.0, alias='requestTimeout', gt=0)
    # 连续查询出错的上限，None 表示不限（一直重试）
    max_consecutive_errors: Optional[int] = Field(default=None, alias='maxConsecutiveErrors', ge=1)

    @property
    def max_task_age_ms(self) -> int:
        return int(self.max_task_age_hours * 60 * 60 * 1000)


def load_settings(settings_file: str = None, section: str = 'backgroundTasks') -> Settings:
    """
    加载设置

    Args:
        settings_file: 设置文件路径，不存在时使用默认值
        section: 设置文件中的配置段

    Returns:
        Settings

    Raises:
        SettingsError: 设置文件无法解析或字段不合法
    """
    data = {}
    if settings_file and Path(settings_file).exists():
        try:
            with open(settings_file, 'r', encoding='utf-8') as f:
                settings = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Failed to read settings file {settings_file}: {e}") from e
        data = dict(settings.get(section) or {})
        logger.debug(f"Loaded settings from {settings_file} [{section}]")
    elif settings_file:
        logger.warning(f"Settings file not found: {settings_file}, using defaults")

    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            data[key] = value

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise SettingsError(f"Invalid background task settings: {e}") from e
