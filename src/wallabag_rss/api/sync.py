"""手动同步 API."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from wallabag_rss.api.deps import get_worker
from wallabag_rss.scheduler.worker import Worker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("")
async def trigger_sync(worker: Worker = Depends(get_worker)) -> dict:
    """所有订阅源加入优先队列."""
    logger.info("手动触发同步")
    try:
        await worker.queue_all_feeds_for_immediate()
    except Exception as e:
        logger.exception(f"加入同步队列失败: {e}")
        raise HTTPException(status_code=500, detail="同步启动失败") from e

    size, capacity = worker.queue_stats()
    return {"success": True, "queue_size": size, "queue_capacity": capacity}
