"""
组图结果合并

一次图片生成请求可能在服务端拆分为多个子任务，主任务完成时
逐个查询子任务并把已有的图片 URL 合并到主任务结果中
"""

from typing import Optional, List, Dict, Any, Callable, Awaitable

from loguru import logger

from .models import Task, TaskType
from .status import group_task_ids, as_url

GROUP_RESULT_KEY = '_groupImageUrls'

StatusFetcher = Callable[[str], Awaitable[Dict[str, Any]]]


class GroupReconciler:
    """组图子任务合并器"""

    def __init__(self, fetch_status: StatusFetcher):
        """
        Args:
            fetch_status: 图片任务状态查询函数
        """
        self._fetch_status = fetch_status

    async def reconcile(self, task: Task, payload: Dict[str, Any]) -> Optional[List[Dict[str, str]]]:
        """
        主任务完成时调用

        Args:
            task: 主任务
            payload: 主任务的完成响应

        Returns:
            [{taskId, url}, ...]，不需要合并时返回 None
        """
        ids = group_task_ids(payload)
        if not ids:
            logger.debug(f"Group reconcile skipped for {task.task_id}: no group_task_ids")
            return None
        if task.type != TaskType.IMAGE:
            logger.debug(f"Group reconcile skipped for {task.task_id}: type is {task.type.value}")
            return None

        logger.info(f"Group task detected: {task.task_id}, {len(ids)} sibling(s)")
        urls = await self.collect(ids)
        logger.info(f"Group reconcile finished: {task.task_id}, resolved {len(urls)}/{len(ids)}")
        return urls

    async def collect(self, sibling_ids: List[str]) -> List[Dict[str, str]]:
        """每个子任务只查询一次，失败或尚无 URL 的子任务直接跳过"""
        results = []
        for index, sibling_id in enumerate(sibling_ids, start=1):
            try:
                response = await self._fetch_status(sibling_id)
            except Exception as e:
                logger.warning(f"Group sibling {index}/{len(sibling_ids)} lookup failed: {sibling_id}, error={e}")
                continue

            if not isinstance(response, dict):
                response = {}
            url = as_url(response.get('url'))
            if not url:
                logger.warning(
                    f"Group sibling has no url yet: {sibling_id}, status={response.get('status')}"
                )
                continue

            results.append({'taskId': sibling_id, 'url': url})

        return results
