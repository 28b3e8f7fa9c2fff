"""
远端状态响应解析

远端返回的状态格式不统一（大小写不一致、多个字段都可能表示输出已就绪），
在进入状态机之前先归一化为 Pending / Processing / Completed / Failed 之一
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, field_validator

COMPLETED_STATUSES = {'completed', 'success'}
FAILED_STATUSES = {'failed', 'error', 'failure', 'timeout'}
WAITING_STATUSES = {'', 'pending', 'queued', 'submitted'}
OUTPUT_FIELDS = ('url', 'video_url', 'outputUrl')

DEFAULT_FAILURE_REASON = 'Task execution failed'


def as_url(value: Any) -> Optional[str]:
    """取出 URL 字符串，列表取第一个字符串元素，其他类型视为无输出"""
    if isinstance(value, list):
        value = next((item for item in value if isinstance(item, str) and item.strip()), None)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def find_output_url(raw: Dict[str, Any]) -> Optional[str]:
    """按 url / video_url / outputUrl 顺序查找输出 URL"""
    for name in OUTPUT_FIELDS:
        url = as_url(raw.get(name))
        if url:
            return url
    return None


class StatusPayload(BaseModel):
    """状态查询接口的响应体

    字段校验尽量宽松：格式不对的字段按缺失处理，不让整个响应作废
    """

    model_config = ConfigDict(extra='allow')

    status: str = ''
    progress: Optional[float] = None
    url: Optional[str] = None
    video_url: Optional[str] = None
    outputUrl: Optional[str] = None
    error: Optional[str] = None
    fail_reason: Optional[str] = None
    # 空对象有时以 [] 或字符串返回，由 group_task_ids 判断
    usage: Any = None

    @field_validator('status', mode='before')
    @classmethod
    def _coerce_status(cls, value):
        return '' if value is None else str(value)

    @field_validator('progress', mode='before')
    @classmethod
    def _coerce_progress(cls, value):
        # 部分接口返回 "45%" 这样的字符串
        if isinstance(value, str):
            value = value.strip().rstrip('%')
            try:
                return float(value)
            except ValueError:
                return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    @field_validator('url', 'video_url', 'outputUrl', mode='before')
    @classmethod
    def _coerce_url(cls, value):
        return as_url(value)

    @field_validator('error', 'fail_reason', mode='before')
    @classmethod
    def _coerce_reason(cls, value):
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, dict):
            return value.get('message') or str(value)
        return str(value)

    @property
    def output_url(self) -> Optional[str]:
        return self.url or self.video_url or self.outputUrl or None


@dataclass(frozen=True)
class Pending:
    progress: Optional[float] = None


@dataclass(frozen=True)
class Processing:
    progress: Optional[float] = None


@dataclass(frozen=True)
class Completed:
    output_url: Optional[str]
    progress: Optional[float] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Failed:
    reason: str


StatusUpdate = Union[Pending, Processing, Completed, Failed]


def decode_status(raw: Dict[str, Any]) -> StatusUpdate:
    """
    归一化状态响应

    输出 URL 存在即视为完成，优先于状态字符串，也不受其他字段格式影响

    Args:
        raw: 状态查询接口返回的原始字典

    Returns:
        Pending / Processing / Completed / Failed

    Raises:
        ValueError: 响应不是 JSON 对象（由状态机按查询错误处理，下次重试）
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Unexpected status payload of type {type(raw).__name__}")

    output_url = find_output_url(raw)
    payload = StatusPayload.model_validate(raw)
    status = payload.status.strip().lower()

    if output_url or status in COMPLETED_STATUSES:
        return Completed(
            output_url=output_url,
            progress=payload.progress,
            payload=dict(raw),
        )

    if status in FAILED_STATUSES:
        return Failed(reason=payload.error or payload.fail_reason or DEFAULT_FAILURE_REASON)

    if status in WAITING_STATUSES:
        return Pending(progress=payload.progress)

    return Processing(progress=payload.progress)


def group_task_ids(raw: Dict[str, Any]) -> List[str]:
    """提取组图子任务ID列表（usage.group_task_ids），无效时返回空列表"""
    usage = (raw or {}).get('usage')
    if not isinstance(usage, dict):
        return []

    ids = usage.get('group_task_ids')
    if ids is None:
        return []
    if not isinstance(ids, list):
        logger.warning(f"Ignoring group_task_ids that is not a list: {type(ids).__name__}")
        return []
    return [str(i) for i in ids if i]


def is_not_found_error(exc: BaseException) -> bool:
    """远端是否已不存在该任务"""
    message = str(exc)
    return 'not found' in message.lower() or '任务不存在' in message
