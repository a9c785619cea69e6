"""Feed 订阅源 API."""

import logging
from datetime import UTC, date, datetime, time
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from wallabag_rss.api.deps import get_store, get_worker
from wallabag_rss.core.store import DuplicateFeedError, FeedNotFoundError, Store
from wallabag_rss.models.feed import Feed, SyncMode, TimeUnit
from wallabag_rss.scheduler.worker import FALLBACK_INTERVAL_MINUTES, Worker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feeds", tags=["feeds"])


class FeedInput(BaseModel):
    """新增/修改订阅源请求."""

    name: str
    url: str
    poll_interval: int = 0
    poll_interval_unit: Literal["minutes", "hours", "days"] | None = None
    sync_mode: Literal["none", "all", "count", "date_from"] | None = None
    sync_count: int | None = None
    sync_date_from: date | None = None

    def to_feed(self) -> Feed:
        """转换为 Feed，只保留与同步策略匹配的参数."""
        sync_mode = self.sync_mode or SyncMode.NONE

        sync_count = None
        if sync_mode == SyncMode.COUNT and self.sync_count and self.sync_count > 0:
            sync_count = self.sync_count

        sync_date_from = None
        if sync_mode == SyncMode.DATE_FROM and self.sync_date_from:
            sync_date_from = datetime.combine(self.sync_date_from, time.min, UTC)

        feed = Feed(
            name=self.name,
            url=self.url,
            sync_mode=sync_mode,
            sync_count=sync_count,
            sync_date_from=sync_date_from,
            initial_sync_done=False,
        )
        feed.set_poll_interval(
            self.poll_interval, self.poll_interval_unit or TimeUnit.DAYS
        )
        return feed


def feed_to_dict(feed: Feed) -> dict[str, Any]:
    """Feed 序列化."""
    return {
        "id": feed.id,
        "name": feed.name,
        "url": feed.url,
        "poll_interval": feed.poll_interval,
        "poll_interval_unit": feed.poll_interval_unit,
        "poll_interval_minutes": feed.poll_interval_minutes,
        "last_fetched": feed.last_fetched.isoformat() if feed.last_fetched else None,
        "sync_mode": feed.sync_mode,
        "sync_count": feed.sync_count,
        "sync_date_from": (
            feed.sync_date_from.date().isoformat() if feed.sync_date_from else None
        ),
        "initial_sync_done": feed.initial_sync_done,
    }


async def default_interval_or_fallback(store: Store) -> int:
    """获取默认拉取间隔，失败时使用兜底值."""
    try:
        return await store.get_default_poll_interval()
    except Exception as e:
        logger.warning(
            f"获取默认拉取间隔失败，使用 {FALLBACK_INTERVAL_MINUTES} 分钟: {e}"
        )
        return FALLBACK_INTERVAL_MINUTES


@router.get("")
async def list_feeds(store: Store = Depends(get_store)) -> dict:
    """获取订阅列表."""
    feeds = await store.get_feeds()
    return {
        "total": len(feeds),
        "default_poll_interval_minutes": await default_interval_or_fallback(store),
        "items": [feed_to_dict(feed) for feed in feeds],
    }


@router.post("", status_code=201)
async def create_feed(
    body: FeedInput,
    store: Store = Depends(get_store),
    worker: Worker = Depends(get_worker),
) -> dict:
    """新增订阅源，并立即加入优先队列."""
    feed = body.to_feed()
    try:
        feed_id = await store.insert_feed(feed)
    except DuplicateFeedError as e:
        raise HTTPException(status_code=409, detail="订阅源已存在") from e

    logger.info(
        f"订阅源已添加: id={feed_id}, name={feed.name}, url={feed.url}, "
        f"sync_mode={feed.sync_mode}"
    )
    worker.queue_feed_for_immediate(feed_id)

    return feed_to_dict(feed)


@router.get("/{feed_id}")
async def get_feed(feed_id: int, store: Store = Depends(get_store)) -> dict:
    """获取 Feed 详情."""
    try:
        feed = await store.get_feed_by_id(feed_id)
    except FeedNotFoundError as e:
        raise HTTPException(status_code=404, detail="Feed 不存在") from e
    return feed_to_dict(feed)


@router.put("/{feed_id}")
async def update_feed(
    feed_id: int,
    body: FeedInput,
    store: Store = Depends(get_store),
    worker: Worker = Depends(get_worker),
) -> dict:
    """修改订阅源；地址或同步策略变化时重新同步."""
    try:
        existing = await store.get_feed_by_id(feed_id)
    except FeedNotFoundError as e:
        raise HTTPException(status_code=404, detail="Feed 不存在") from e

    feed = body.to_feed()
    feed.id = feed_id
    feed.last_fetched = existing.last_fetched
    feed.initial_sync_done = existing.initial_sync_done

    try:
        await store.update_feed(feed)
    except DuplicateFeedError as e:
        raise HTTPException(status_code=409, detail="订阅源已存在") from e

    logger.info(f"订阅源已更新: id={feed_id}, name={feed.name}, url={feed.url}")

    sync_settings_changed = (
        existing.url != feed.url
        or existing.sync_mode != feed.sync_mode
        or existing.sync_count != feed.sync_count
        or existing.sync_date_from != feed.sync_date_from
    )
    if sync_settings_changed:
        worker.queue_feed_for_immediate(feed_id)
        logger.info(f"订阅源 {feed_id} 配置变化，已加入优先队列")

    return feed_to_dict(feed)


@router.delete("/{feed_id}")
async def delete_feed(feed_id: int, store: Store = Depends(get_store)) -> dict:
    """删除订阅源及其文章记录."""
    await store.delete_feed(feed_id)
    logger.info(f"订阅源已删除: id={feed_id}")
    return {"id": feed_id, "deleted": True}
