"""设置 API."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from wallabag_rss.api.deps import get_store, get_worker
from wallabag_rss.api.feeds import default_interval_or_fallback
from wallabag_rss.core.store import Store
from wallabag_rss.models.feed import TimeUnit, to_minutes
from wallabag_rss.scheduler.worker import Worker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsResponse(BaseModel):
    """设置响应."""

    default_poll_interval_minutes: int
    default_poll_interval_display: str
    wallabag_authenticated: bool
    worker_running: bool
    queue_size: int
    queue_capacity: int


class PollIntervalUpdateRequest(BaseModel):
    """默认拉取间隔更新请求."""

    value: int = Field(..., ge=1)
    unit: Literal["minutes", "hours", "days"] = TimeUnit.HOURS


def format_interval(minutes: int) -> str:
    """拉取间隔的可读形式."""
    if minutes == 1440:
        return "1 day"
    if minutes == 60:
        return "1 hour"
    if minutes % 1440 == 0:
        return f"{minutes // 1440} days"
    if minutes % 60 == 0:
        return f"{minutes // 60} hours"
    return f"{minutes} minutes"


@router.get("")
async def get_current_settings(
    store: Store = Depends(get_store),
    worker: Worker = Depends(get_worker),
) -> SettingsResponse:
    """获取当前设置."""
    minutes = await default_interval_or_fallback(store)
    size, capacity = worker.queue_stats()
    return SettingsResponse(
        default_poll_interval_minutes=minutes,
        default_poll_interval_display=format_interval(minutes),
        wallabag_authenticated=worker.wallabag.token_valid,
        worker_running=worker.is_running,
        queue_size=size,
        queue_capacity=capacity,
    )


@router.put("/poll-interval")
async def update_default_poll_interval(
    body: PollIntervalUpdateRequest,
    store: Store = Depends(get_store),
) -> dict:
    """更新全局默认拉取间隔（新间隔在 Worker 重启后用于定时扫描）."""
    minutes = to_minutes(body.value, body.unit)
    await store.update_default_poll_interval(minutes)
    logger.info(
        f"默认拉取间隔已更新: {body.value} {body.unit} ({minutes} 分钟)"
    )
    return {
        "default_poll_interval_minutes": minutes,
        "default_poll_interval_display": format_interval(minutes),
    }
