"""
后台任务监视器入口

在无界面环境中跟踪远端生成任务直到全部结束，快照与页面使用同一个存储

使用方法:
    uv run python -m background_tasks.runner --settings settings.json --track image:xxx --track video:yyy
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from loguru import logger

from .config import load_settings, SettingsError
from .events import TaskEvent
from .manager import BackgroundTaskManager
from .models import TaskStatus


def setup_logging(level: str = "INFO", log_dir: str = None):
    """配置日志"""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level
    )
    if log_dir:
        logger.add(
            Path(log_dir) / "background_tasks_{time:YYYY-MM-DD}.log",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="00:00",
            retention="7 days",
            level="DEBUG",
        )


def parse_track(value: str) -> tuple:
    """解析 TYPE:ID 格式的任务引用"""
    if ':' not in value:
        raise argparse.ArgumentTypeError(f"Expected TYPE:ID, got {value!r}")
    task_type, task_id = value.split(':', 1)
    if not task_type or not task_id:
        raise argparse.ArgumentTypeError(f"Expected TYPE:ID, got {value!r}")
    return task_type, task_id


def log_event(event: TaskEvent, detail: dict):
    task = detail['task']
    if event is TaskEvent.PROGRESS:
        logger.info(f"[{task.task_id}] {task.status.value} progress={task.progress}")
    elif event is TaskEvent.COMPLETE:
        result = task.result or {}
        output = result.get('url') or result.get('video_url') or result.get('outputUrl')
        logger.info(f"[{task.task_id}] completed: {output}")
        for item in result.get('_groupImageUrls') or []:
            logger.info(f"[{task.task_id}]   group image {item['taskId']}: {item['url']}")
    else:
        logger.error(f"[{task.task_id}] failed: {task.error}")


def failed_tracked(manager: BackgroundTaskManager, tracks: list) -> list:
    """本次跟踪的任务中失败的任务ID，快照中恢复的其他任务不计入"""
    failed = []
    for _, task_id in tracks:
        task = manager.get_task(task_id)
        if task is not None and task.status == TaskStatus.FAILED:
            failed.append(task_id)
    return failed


async def run(manager: BackgroundTaskManager, tracks: list, node_id: str = None, tab_id: str = None,
              check_interval: float = 1.0):
    """恢复快照、注册任务，等待所有任务结束"""
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            handled.append(sig)
        except (NotImplementedError, RuntimeError):
            # Windows 不支持 add_signal_handler
            pass

    manager.add_listener(log_event)

    try:
        manager.init()
        for task_type, task_id in tracks:
            manager.register_task(task_id, task_type, node_id=node_id, tab_id=tab_id)

        while not stop_event.is_set() and manager.get_pending_tasks():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=check_interval)
            except asyncio.TimeoutError:
                pass
    finally:
        manager.cleanup()
        for sig in handled:
            loop.remove_signal_handler(sig)

    stats = manager.get_task_stats()
    logger.info(f"Task stats: {stats}")
    return stats


def main():
    parser = argparse.ArgumentParser(description='Background Task Watcher')
    parser.add_argument('--settings', help='Settings file path (JSON)')
    parser.add_argument('--track', action='append', default=[], type=parse_track,
                        help='Task to track, format TYPE:ID (repeatable)')
    parser.add_argument('--node', help='Node ID to associate with tracked tasks')
    parser.add_argument('--tab', help='Tab ID to associate with tracked tasks')
    parser.add_argument('--log-level', default='INFO', help='Log level')
    parser.add_argument('--log-dir', help='Directory for rotating log files')

    args = parser.parse_args()

    setup_logging(args.log_level, args.log_dir)

    try:
        settings = load_settings(args.settings)
    except SettingsError as e:
        logger.error(str(e))
        sys.exit(2)

    manager = BackgroundTaskManager.from_settings(settings)

    try:
        asyncio.run(run(manager, args.track, node_id=args.node, tab_id=args.tab))
    except ValueError as e:
        logger.error(str(e))
        sys.exit(2)
    finally:
        manager.store.close()

    failed = failed_tracked(manager, args.track)
    if failed:
        logger.error(f"{len(failed)} tracked task(s) failed: {', '.join(failed)}")
    sys.exit(1 if failed else 0)


if __name__ == '__main__':
    main()
