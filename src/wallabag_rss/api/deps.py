"""路由依赖."""

from fastapi import Request

from wallabag_rss.core.store import Store
from wallabag_rss.scheduler.worker import Worker


def get_store(request: Request) -> Store:
    """获取应用级存储实例."""
    return request.app.state.store


def get_worker(request: Request) -> Worker:
    """获取应用级 Worker 实例."""
    return request.app.state.worker
