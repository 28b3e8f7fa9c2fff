"""
Task status client for image, video and video-hd generation jobs
"""
from typing import Optional, Dict, Any, Callable, Awaitable

import httpx
from loguru import logger

DEFAULT_ERROR_MESSAGE = "Failed to query task status"


class TaskStatusError(Exception):
    """Status endpoint answered with a non-2xx response"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TaskStatusClient:
    """Client for the remote job-status endpoints"""

    IMAGE_PATH = "/api/images/task/{task_id}"
    VIDEO_PATH = "/api/video/tasks/{task_id}"
    VIDEO_HD_PATH = "/api/video/hd/tasks/{task_id}"

    def __init__(
        self,
        api_base: str,
        token: Optional[str] = None,
        tenant_id: Optional[str] = None,
        tenant_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.token = token
        self.tenant_id = tenant_id
        self.tenant_key = tenant_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.tenant_id and self.tenant_key:
            headers["X-Tenant-ID"] = self.tenant_id
            headers["X-Tenant-Key"] = self.tenant_key
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def get_image_task_status(self, task_id: str) -> Dict[str, Any]:
        return await self._get(self.IMAGE_PATH.format(task_id=task_id))

    async def get_video_task_status(self, task_id: str) -> Dict[str, Any]:
        return await self._get(self.VIDEO_PATH.format(task_id=task_id))

    async def get_video_hd_task_status(self, task_id: str) -> Dict[str, Any]:
        return await self._get(self.VIDEO_HD_PATH.format(task_id=task_id))

    def for_type(self, task_type: str) -> Callable[[str], Awaitable[Dict[str, Any]]]:
        """Pick the status endpoint matching a task type"""
        return select_status_fetcher(self, task_type)

    async def _get(self, path: str) -> Dict[str, Any]:
        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(url, headers=self._headers())

        if response.is_success:
            return response.json()

        message = _error_message(response)
        logger.debug(f"Status query failed: GET {path} -> {response.status_code} {message}")
        raise TaskStatusError(message, response.status_code)


def select_status_fetcher(client: Any, task_type: str) -> Callable[[str], Awaitable[Dict[str, Any]]]:
    """
    Map a task type to one of the three status query variants

    Anything that is not a video task is polled as an image task.
    """
    task_type = getattr(task_type, "value", task_type)
    if task_type in ("video-hd", "video-hd-upscale"):
        return client.get_video_hd_task_status
    if task_type == "video":
        return client.get_video_task_status
    return client.get_image_task_status


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, str) and message:
            return message

    if response.status_code == 404:
        return "task not found"
    return DEFAULT_ERROR_MESSAGE
