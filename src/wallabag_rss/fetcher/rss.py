"""RSS/Atom 拉取与解析."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import feedparser
import httpx

from wallabag_rss.models.feed import SyncMode
from wallabag_rss.utils.timeutil import from_struct_time, utcnow

logger = logging.getLogger(__name__)

USER_AGENT = "wallabag-rss/0.1"


@dataclass
class FeedArticle:
    """从订阅源解析出的文章."""

    title: str
    url: str
    published_at: datetime | None = None


class FeedFetchError(Exception):
    """订阅源拉取或解析失败."""


_EARLIEST = datetime.min.replace(tzinfo=UTC)


def _sort_key_ascending(article: FeedArticle) -> tuple[bool, datetime]:
    # 没有日期的文章视为最新
    return (article.published_at is None, article.published_at or _EARLIEST)


def sort_oldest_first(articles: list[FeedArticle]) -> list[FeedArticle]:
    """按发布时间升序，无日期的排在最后."""
    return sorted(articles, key=_sort_key_ascending)


def sort_newest_first(articles: list[FeedArticle]) -> list[FeedArticle]:
    """按发布时间降序，无日期的排在最前."""
    return sorted(articles, key=_sort_key_ascending, reverse=True)


def _entry_date(entry: Any) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    return from_struct_time(parsed) if parsed else None


class FeedFetcher:
    """拉取订阅源并转换为文章列表."""

    def __init__(
        self,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def fetch(self, url: str) -> list[FeedArticle]:
        """拉取并解析订阅源，返回全部有效文章（保持原始顺序）."""
        logger.debug(f"拉取订阅源: {url}")
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"拉取订阅源失败 {url}: {e}"
            raise FeedFetchError(msg) from e

        # feedparser 是同步库，放到线程池里解析
        loop = asyncio.get_running_loop()
        parsed = await loop.run_in_executor(None, feedparser.parse, response.content)
        if not parsed.version:
            reason = parsed.get("bozo_exception") or "无法识别的格式"
            msg = f"解析订阅源失败 {url}: {reason}"
            raise FeedFetchError(msg)

        feed_date = _entry_date(parsed.feed)
        articles: list[FeedArticle] = []

        for entry in parsed.entries:
            title = (entry.get("title") or "").strip()
            link = (entry.get("link") or "").strip()
            if not title or not link:
                logger.warning(
                    f"跳过缺少标题或链接的条目: feed={url}, "
                    f"title={title!r}, link={link!r}"
                )
                continue

            # 条目日期 -> 订阅源日期 -> 当前时间
            published_at = _entry_date(entry) or feed_date or utcnow()
            articles.append(FeedArticle(title=title, url=link, published_at=published_at))

        logger.info(f"订阅源解析完成: {url}, 文章数={len(articles)}")
        return articles

    async def fetch_with_sync_options(
        self,
        url: str,
        sync_mode: str | None,
        sync_count: int | None = None,
        sync_date_from: datetime | None = None,
    ) -> list[FeedArticle]:
        """首次同步：拉取后按同步策略过滤，结果按时间升序."""
        articles = await self.fetch(url)
        return apply_sync_mode(url, articles, sync_mode, sync_count, sync_date_from)


def apply_sync_mode(
    url: str,
    articles: list[FeedArticle],
    sync_mode: str | None,
    sync_count: int | None = None,
    sync_date_from: datetime | None = None,
) -> list[FeedArticle]:
    """按同步策略过滤文章."""
    if sync_mode == SyncMode.NONE:
        logger.debug(f"同步策略 none，不处理历史文章: {url}")
        return []

    if sync_mode == SyncMode.ALL:
        return sort_oldest_first(articles)

    if sync_mode == SyncMode.COUNT:
        if sync_count is None or sync_count <= 0:
            logger.warning(f"同步策略 count 但篇数无效: {url}, sync_count={sync_count}")
            return []
        recent = sort_newest_first(articles)[:sync_count]
        logger.debug(f"同步策略 count: {url}, 返回 {len(recent)}/{len(articles)} 篇")
        return sort_oldest_first(recent)

    if sync_mode == SyncMode.DATE_FROM:
        if sync_date_from is None:
            logger.warning(f"同步策略 date_from 但未设置日期: {url}")
            return []
        selected = [
            a
            for a in articles
            if a.published_at is not None and a.published_at >= sync_date_from
        ]
        logger.debug(
            f"同步策略 date_from: {url}, 起始={sync_date_from:%Y-%m-%d}, "
            f"返回 {len(selected)}/{len(articles)} 篇"
        )
        return sort_oldest_first(selected)

    logger.warning(f"未知同步策略，按 none 处理: {url}, sync_mode={sync_mode!r}")
    return []
