"""测试订阅源轮询 Worker."""

import asyncio
import contextlib
import itertools
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallabag_rss.core.store import SettingNotFoundError, SQLStore, StoreError
from wallabag_rss.core.wallabag import WallabagEntry, WallabagError
from wallabag_rss.fetcher.rss import FeedArticle, FeedFetcher, FeedFetchError
from wallabag_rss.models.feed import Feed, SyncMode, TimeUnit
from wallabag_rss.scheduler.worker import FALLBACK_INTERVAL_MINUTES, Worker
from wallabag_rss.utils.timeutil import utcnow


def _wallabag() -> AsyncMock:
    """每次推送返回递增条目 ID 的 Wallabag 客户端."""
    ids = itertools.count(1)
    client = AsyncMock()

    async def add_entry(url: str) -> WallabagEntry:
        return WallabagEntry(id=next(ids), url=url, title="")

    client.add_entry.side_effect = add_entry
    return client


def _fetcher(articles: list[FeedArticle]) -> AsyncMock:
    fetcher = AsyncMock()
    fetcher.fetch.return_value = articles
    fetcher.fetch_with_sync_options.return_value = articles
    return fetcher


async def _set_last_fetched(
    session_factory: async_sessionmaker[AsyncSession],
    feed_id: int,
    value: datetime,
) -> None:
    async with session_factory() as session:
        await session.execute(
            update(Feed).where(Feed.id == feed_id).values(last_fetched=value)
        )
        await session.commit()


async def _cancel(task: asyncio.Task[None]) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@pytest.fixture
def worker(store: SQLStore, sample_articles: list[FeedArticle]) -> Worker:
    """使用真实存储、模拟拉取和推送的 Worker."""
    return Worker(store, _fetcher(sample_articles), _wallabag())


class TestProcessFeeds:
    """测试定时全量扫描."""

    async def test_first_cycle_delivers_all_and_marks_synced(
        self, worker: Worker, store: SQLStore, sample_feed: Feed
    ) -> None:
        """首次同步推送全部文章，之后标记完成并更新拉取时间."""
        assert sample_feed.id is not None

        await worker.process_feeds()

        worker.fetcher.fetch_with_sync_options.assert_awaited_once_with(
            sample_feed.url, SyncMode.ALL, None, None
        )
        worker.fetcher.fetch.assert_not_awaited()
        submitted = [c.args[0] for c in worker.wallabag.add_entry.await_args_list]
        assert submitted == ["https://example.com/first", "https://example.com/second"]

        articles = await store.get_articles()
        assert {a.url for a in articles} == set(submitted)
        assert all(a.feed_id == sample_feed.id for a in articles)

        feed = await store.get_feed_by_id(sample_feed.id)
        assert feed.initial_sync_done is True
        assert feed.last_fetched is not None

    async def test_feed_not_due_is_skipped(
        self,
        worker: Worker,
        store: SQLStore,
        session_factory: async_sessionmaker[AsyncSession],
        make_feed: Callable[..., Feed],
    ) -> None:
        """未到拉取间隔的订阅源不拉取."""
        feed_id = await store.insert_feed(
            make_feed(poll_interval=60, poll_interval_unit=TimeUnit.MINUTES)
        )
        await _set_last_fetched(
            session_factory, feed_id, utcnow() - timedelta(minutes=10)
        )

        await worker.process_feeds()

        worker.fetcher.fetch.assert_not_awaited()
        worker.fetcher.fetch_with_sync_options.assert_not_awaited()

    async def test_due_feed_uses_regular_fetch(
        self,
        worker: Worker,
        store: SQLStore,
        session_factory: async_sessionmaker[AsyncSession],
        make_feed: Callable[..., Feed],
    ) -> None:
        """已完成首次同步且到期的订阅源使用普通拉取."""
        feed_id = await store.insert_feed(
            make_feed(
                poll_interval=60,
                poll_interval_unit=TimeUnit.MINUTES,
                initial_sync_done=True,
            )
        )
        await _set_last_fetched(
            session_factory, feed_id, utcnow() - timedelta(minutes=61)
        )

        await worker.process_feeds()

        worker.fetcher.fetch.assert_awaited_once()
        worker.fetcher.fetch_with_sync_options.assert_not_awaited()
        assert worker.wallabag.add_entry.await_count == 2

    async def test_processed_article_not_delivered(
        self, worker: Worker, store: SQLStore, sample_feed: Feed
    ) -> None:
        """已入库的文章不再推送."""
        assert sample_feed.id is not None
        await worker.process_feed_by_id(sample_feed.id)
        worker.wallabag.add_entry.reset_mock()

        assert await store.is_article_already_processed("https://example.com/first")
        await worker.process_feed_by_id(sample_feed.id)

        worker.wallabag.add_entry.assert_not_awaited()
        assert len(await store.get_articles()) == 2

    async def test_zero_interval_uses_default(
        self,
        worker: Worker,
        store: SQLStore,
        session_factory: async_sessionmaker[AsyncSession],
        make_feed: Callable[..., Feed],
    ) -> None:
        """订阅源间隔为 0 时使用全局默认间隔."""
        feed_id = await store.insert_feed(make_feed(poll_interval=0))
        await _set_last_fetched(
            session_factory, feed_id, utcnow() - timedelta(minutes=10)
        )

        # 默认一天，未到期
        await worker.process_feeds()
        worker.fetcher.fetch_with_sync_options.assert_not_awaited()

        await store.update_default_poll_interval(5)
        await worker.process_feeds()
        worker.fetcher.fetch_with_sync_options.assert_awaited_once()

    async def test_store_error_aborts_sweep(
        self, sample_articles: list[FeedArticle]
    ) -> None:
        """读取订阅源失败时本轮扫描直接结束."""
        store = AsyncMock()
        store.get_feeds.side_effect = StoreError("database is locked")
        worker = Worker(store, _fetcher(sample_articles), _wallabag())

        await worker.process_feeds()

        worker.fetcher.fetch.assert_not_awaited()
        worker.fetcher.fetch_with_sync_options.assert_not_awaited()

    async def test_stop_before_sweep_fetches_nothing(
        self, worker: Worker, sample_feed: Feed
    ) -> None:
        """Worker 停止后扫描不处理任何订阅源."""
        worker._stopping = True

        await worker.process_feeds()

        worker.fetcher.fetch_with_sync_options.assert_not_awaited()


class TestFailures:
    """测试错误处理."""

    async def test_fetch_error_changes_nothing(
        self, worker: Worker, store: SQLStore, sample_feed: Feed
    ) -> None:
        """拉取失败时不更新拉取时间和首次同步标记."""
        assert sample_feed.id is not None
        worker.fetcher.fetch_with_sync_options.side_effect = FeedFetchError("boom")

        await worker.process_feeds()

        worker.wallabag.add_entry.assert_not_awaited()
        feed = await store.get_feed_by_id(sample_feed.id)
        assert feed.last_fetched is None
        assert feed.initial_sync_done is False

    async def test_delivery_failure_retried_next_cycle(
        self, worker: Worker, store: SQLStore, sample_feed: Feed
    ) -> None:
        """推送失败的文章不入库，下次处理时重试."""
        assert sample_feed.id is not None
        deliver = worker.wallabag.add_entry.side_effect

        async def flaky(url: str) -> WallabagEntry:
            if url.endswith("/first"):
                raise WallabagError("添加条目失败，状态码 500")
            return await deliver(url)

        worker.wallabag.add_entry.side_effect = flaky
        await worker.process_feed_by_id(sample_feed.id)

        assert [a.url for a in await store.get_articles()] == [
            "https://example.com/second"
        ]
        feed = await store.get_feed_by_id(sample_feed.id)
        assert feed.initial_sync_done is True

        worker.wallabag.add_entry.side_effect = deliver
        await worker.process_feed_by_id(sample_feed.id)

        assert await store.is_article_already_processed("https://example.com/first")

    async def test_save_failure_does_not_stop_feed(
        self, worker: Worker, store: SQLStore, sample_feed: Feed
    ) -> None:
        """入库失败只影响当前文章."""
        assert sample_feed.id is not None

        with patch.object(
            store, "save_article", AsyncMock(side_effect=[StoreError("disk full"), None])
        ) as save:
            await worker.process_feed_by_id(sample_feed.id)

        assert save.await_count == 2
        assert worker.wallabag.add_entry.await_count == 2
        feed = await store.get_feed_by_id(sample_feed.id)
        assert feed.initial_sync_done is True

    async def test_default_interval_fallback(self) -> None:
        """读取默认间隔失败时使用 60 分钟."""
        store = AsyncMock()
        store.get_default_poll_interval.side_effect = SettingNotFoundError("missing")
        worker = Worker(store, AsyncMock(), AsyncMock())

        assert await worker._get_default_interval() == FALLBACK_INTERVAL_MINUTES

    async def test_stop_mid_feed_skips_finalize(
        self, worker: Worker, store: SQLStore, sample_feed: Feed
    ) -> None:
        """处理文章时停止，不更新订阅源状态."""
        assert sample_feed.id is not None
        deliver = worker.wallabag.add_entry.side_effect

        async def deliver_then_stop(url: str) -> WallabagEntry:
            worker._stopping = True
            return await deliver(url)

        worker.wallabag.add_entry.side_effect = deliver_then_stop
        await worker.process_feed_by_id(sample_feed.id)

        assert worker.wallabag.add_entry.await_count == 1
        feed = await store.get_feed_by_id(sample_feed.id)
        assert feed.initial_sync_done is False
        assert feed.last_fetched is None


class TestSyncModeNone:
    """首次同步策略为 none 时，使用真实的拉取器."""

    async def test_first_cycle_delivers_nothing(
        self,
        store: SQLStore,
        make_feed: Callable[..., Feed],
        rss_feed: bytes,
    ) -> None:
        """none 策略首次同步不推送，但标记完成."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=rss_feed)

        fetcher = FeedFetcher(
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        wallabag = _wallabag()
        worker = Worker(store, fetcher, wallabag)
        feed_id = await store.insert_feed(make_feed(sync_mode=SyncMode.NONE))

        await worker.process_feeds()
        await fetcher.close()

        wallabag.add_entry.assert_not_awaited()
        feed = await store.get_feed_by_id(feed_id)
        assert feed.initial_sync_done is True
        assert feed.last_fetched is not None


class TestPriorityQueue:
    """测试优先队列."""

    async def test_priority_ignores_interval(
        self,
        worker: Worker,
        store: SQLStore,
        session_factory: async_sessionmaker[AsyncSession],
        make_feed: Callable[..., Feed],
    ) -> None:
        """立即处理不检查拉取间隔."""
        feed_id = await store.insert_feed(make_feed())
        await _set_last_fetched(session_factory, feed_id, utcnow())

        await worker.process_feed_by_id(feed_id)

        worker.fetcher.fetch_with_sync_options.assert_awaited_once()

    def test_full_queue_drops(self, store: SQLStore) -> None:
        """队列已满时不阻塞，也不增长."""
        worker = Worker(store, AsyncMock(), AsyncMock(), queue_size=100)

        assert all(worker.queue_feed_for_immediate(i) for i in range(100))
        assert worker.queue_feed_for_immediate(101) is False
        assert worker.queue_stats() == (100, 100)

    async def test_queue_all_stops_when_full(
        self, store: SQLStore, make_feed: Callable[..., Feed]
    ) -> None:
        """手动同步入队到队列满为止."""
        for i in range(3):
            await store.insert_feed(make_feed(url=f"https://example.com/{i}.xml"))
        worker = Worker(store, AsyncMock(), AsyncMock(), queue_size=2)

        await worker.queue_all_feeds_for_immediate()

        assert worker.queue_stats() == (2, 2)

    async def test_consumer_processes_queued_feed(
        self, worker: Worker, store: SQLStore, sample_feed: Feed
    ) -> None:
        """消费任务处理入队的订阅源，未知 ID 不影响后续处理."""
        assert sample_feed.id is not None
        consumer = asyncio.create_task(worker._process_priority_queue())
        try:
            worker.queue_feed_for_immediate(999)
            worker.queue_feed_for_immediate(sample_feed.id)
            await asyncio.wait_for(worker._priority_queue.join(), timeout=5)
        finally:
            await _cancel(consumer)

        assert worker.wallabag.add_entry.await_count == 2
        feed = await store.get_feed_by_id(sample_feed.id)
        assert feed.initial_sync_done is True

    async def test_consumer_times_out_slow_feed(
        self,
        store: SQLStore,
        sample_feed: Feed,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """单个订阅源处理超时后继续消费."""
        assert sample_feed.id is not None

        async def slow(*args: object) -> list[FeedArticle]:
            await asyncio.sleep(10)
            return []

        fetcher = AsyncMock()
        fetcher.fetch_with_sync_options.side_effect = slow
        worker = Worker(store, fetcher, _wallabag(), priority_timeout=0.05)

        consumer = asyncio.create_task(worker._process_priority_queue())
        try:
            with caplog.at_level(logging.ERROR):
                worker.queue_feed_for_immediate(sample_feed.id)
                await asyncio.wait_for(worker._priority_queue.join(), timeout=5)
        finally:
            await _cancel(consumer)

        assert "超时" in caplog.text
        feed = await store.get_feed_by_id(sample_feed.id)
        assert feed.last_fetched is None


class TestLifecycle:
    """测试启动和停止."""

    async def test_start_and_stop(self, store: SQLStore) -> None:
        """启动注册定时任务，停止后不再运行."""
        worker = Worker(store, _fetcher([]), _wallabag())

        await worker.start()
        try:
            assert worker.is_running
            assert worker._scheduler is not None
            job = worker._scheduler.get_job("process_feeds")
            assert job is not None
            assert job.trigger.interval == timedelta(minutes=1440)
        finally:
            await worker.stop()

        assert not worker.is_running
        assert worker._consumer is None

    async def test_custom_logger(self, store: SQLStore) -> None:
        """使用注入的 logger."""
        logger = MagicMock(spec=logging.Logger)
        worker = Worker(store, AsyncMock(), AsyncMock(), logger=logger)

        worker.queue_feed_for_immediate(1)

        logger.info.assert_called_once()
