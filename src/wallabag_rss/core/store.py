"""持久化存储：订阅源、已推送文章和全局配置."""

import logging
from abc import ABC, abstractmethod

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from wallabag_rss.models.article import Article
from wallabag_rss.models.feed import Feed, SyncMode, TimeUnit
from wallabag_rss.models.settings import DEFAULT_POLL_INTERVAL_KEY, SettingItem
from wallabag_rss.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """存储层错误."""


class FeedNotFoundError(StoreError):
    """订阅源不存在."""


class DuplicateFeedError(StoreError):
    """订阅源 URL 重复."""


class DuplicateArticleError(StoreError):
    """文章 URL 重复."""


class SettingNotFoundError(StoreError):
    """配置项不存在."""


class Store(ABC):
    """存储接口."""

    @abstractmethod
    async def get_feeds(self) -> list[Feed]: ...

    @abstractmethod
    async def get_feed_by_id(self, feed_id: int) -> Feed: ...

    @abstractmethod
    async def insert_feed(self, feed: Feed) -> int: ...

    @abstractmethod
    async def update_feed(self, feed: Feed) -> None: ...

    @abstractmethod
    async def delete_feed(self, feed_id: int) -> None: ...

    @abstractmethod
    async def get_articles(self) -> list[Article]: ...

    @abstractmethod
    async def save_article(
        self, feed_id: int, article: Article, wallabag_entry_id: int
    ) -> None: ...

    @abstractmethod
    async def is_article_already_processed(self, url: str) -> bool: ...

    @abstractmethod
    async def get_default_poll_interval(self) -> int: ...

    @abstractmethod
    async def update_default_poll_interval(self, minutes: int) -> None: ...

    @abstractmethod
    async def update_feed_last_fetched(self, feed_id: int) -> None: ...

    @abstractmethod
    async def mark_feed_initial_sync_completed(self, feed_id: int) -> None: ...


def _normalize_feed(feed: Feed) -> Feed:
    """空字段填默认值，并重新计算分钟数."""
    if feed.poll_interval is None:
        feed.poll_interval = 1
    if feed.poll_interval_unit is None:
        feed.poll_interval_unit = TimeUnit.DAYS
    if feed.sync_mode is None:
        feed.sync_mode = SyncMode.NONE
    if feed.initial_sync_done is None:
        feed.initial_sync_done = False
    feed.poll_interval_minutes = feed.get_poll_interval_minutes()
    return feed


class SQLStore(Store):
    """基于 SQLModel 的存储实现.

    每个操作使用独立会话，并发安全由连接池保证。
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_feeds(self) -> list[Feed]:
        """获取所有订阅源."""
        async with self._session_factory() as session:
            result = await session.execute(select(Feed).order_by(Feed.id))
            feeds = list(result.scalars().all())
        return [_normalize_feed(feed) for feed in feeds]

    async def get_feed_by_id(self, feed_id: int) -> Feed:
        """按 ID 获取订阅源."""
        async with self._session_factory() as session:
            feed = await session.get(Feed, feed_id)
        if feed is None:
            msg = f"订阅源 {feed_id} 不存在"
            raise FeedNotFoundError(msg)
        return _normalize_feed(feed)

    async def insert_feed(self, feed: Feed) -> int:
        """新增订阅源，返回 ID."""
        feed.poll_interval_minutes = feed.get_poll_interval_minutes()
        async with self._session_factory() as session:
            session.add(feed)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                msg = f"订阅源已存在: {feed.url}"
                raise DuplicateFeedError(msg) from e
            await session.refresh(feed)
        if feed.id is None:
            msg = f"新增订阅源未返回 ID: {feed.url}"
            raise StoreError(msg)
        return feed.id

    async def update_feed(self, feed: Feed) -> None:
        """更新订阅源（ID 不存在时不做任何事）."""
        feed.poll_interval_minutes = feed.get_poll_interval_minutes()
        stmt = (
            update(Feed)
            .where(Feed.id == feed.id)
            .values(
                name=feed.name,
                url=feed.url,
                poll_interval_minutes=feed.poll_interval_minutes,
                poll_interval=feed.poll_interval,
                poll_interval_unit=feed.poll_interval_unit,
                sync_mode=feed.sync_mode,
                sync_count=feed.sync_count,
                sync_date_from=feed.sync_date_from,
                initial_sync_done=feed.initial_sync_done,
            )
        )
        async with self._session_factory() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                msg = f"订阅源已存在: {feed.url}"
                raise DuplicateFeedError(msg) from e

    async def delete_feed(self, feed_id: int) -> None:
        """删除订阅源及其文章."""
        async with self._session_factory() as session:
            await session.execute(delete(Article).where(Article.feed_id == feed_id))
            await session.execute(delete(Feed).where(Feed.id == feed_id))
            await session.commit()

    async def get_articles(self) -> list[Article]:
        """获取已推送文章，最新的在前."""
        stmt = select(Article).order_by(
            Article.created_at.desc(),  # type: ignore[attr-defined]
            Article.id.desc(),  # type: ignore[union-attr]
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def save_article(
        self, feed_id: int, article: Article, wallabag_entry_id: int
    ) -> None:
        """记录已推送的文章."""
        row = Article(
            feed_id=feed_id,
            title=article.title,
            url=article.url,
            published_at=article.published_at,
            wallabag_entry_id=wallabag_entry_id,
            created_at=utcnow(),
        )
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if await self.is_article_already_processed(article.url):
                    msg = f"文章已存在: {article.url}"
                    raise DuplicateArticleError(msg) from e
                # 外键失败：订阅源已被删除
                msg = f"文章入库失败: {article.url}: {e.orig}"
                raise StoreError(msg) from e

    async def is_article_already_processed(self, url: str) -> bool:
        """文章 URL 是否已入库."""
        stmt = select(func.count()).select_from(Article).where(Article.url == url)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return (result.scalar() or 0) > 0

    async def get_default_poll_interval(self) -> int:
        """获取全局默认拉取间隔（分钟）."""
        async with self._session_factory() as session:
            item = await session.get(SettingItem, DEFAULT_POLL_INTERVAL_KEY)
        if item is None:
            msg = "未设置默认拉取间隔"
            raise SettingNotFoundError(msg)
        return int(item.value)

    async def update_default_poll_interval(self, minutes: int) -> None:
        """更新全局默认拉取间隔（不存在则新增）."""
        async with self._session_factory() as session:
            await session.merge(
                SettingItem(
                    key=DEFAULT_POLL_INTERVAL_KEY,
                    value=str(minutes),
                    updated_at=utcnow(),
                )
            )
            await session.commit()

    async def update_feed_last_fetched(self, feed_id: int) -> None:
        """将上次拉取时间设为当前时间."""
        stmt = update(Feed).where(Feed.id == feed_id).values(last_fetched=utcnow())
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def mark_feed_initial_sync_completed(self, feed_id: int) -> None:
        """标记首次同步完成."""
        stmt = update(Feed).where(Feed.id == feed_id).values(initial_sync_done=True)
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
