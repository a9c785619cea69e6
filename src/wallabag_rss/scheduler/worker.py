"""订阅源轮询 Worker.

两个驱动共用同一套单订阅源处理流程：
- 定时全量扫描：启动时立即执行一次，之后按全局默认间隔执行，逐个检查订阅源是否到期；
- 优先队列：新增/修改订阅源或手动同步时入队，由独立的消费任务立即处理，不检查间隔。
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from wallabag_rss.core.store import Store
from wallabag_rss.core.wallabag import WallabagClient
from wallabag_rss.fetcher.rss import FeedArticle, FeedFetcher, FeedFetchError
from wallabag_rss.models.article import Article
from wallabag_rss.models.feed import Feed
from wallabag_rss.utils.timeutil import utcnow

FALLBACK_INTERVAL_MINUTES = 60
DEFAULT_QUEUE_SIZE = 100
DEFAULT_PRIORITY_TIMEOUT = 600.0


@dataclass
class ProcessingStats:
    """单个订阅源的处理统计."""

    processed: int = 0  # 已处理过，跳过
    new: int = 0  # 新推送
    errors: int = 0
    aborted: bool = False  # Worker 停止导致中断


class Worker:
    """拉取订阅源并把新文章推送到 Wallabag."""

    def __init__(
        self,
        store: Store,
        fetcher: FeedFetcher,
        wallabag_client: WallabagClient,
        *,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        priority_timeout: float = DEFAULT_PRIORITY_TIMEOUT,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.wallabag = wallabag_client
        self.priority_timeout = priority_timeout
        self.logger = logger or logging.getLogger(__name__)
        self._priority_queue: asyncio.Queue[int] = asyncio.Queue(maxsize=queue_size)
        self._scheduler: AsyncIOScheduler | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._stopping = False

    @property
    def is_running(self) -> bool:
        """Worker 是否在运行."""
        return self._scheduler is not None and not self._stopping

    async def start(self) -> None:
        """启动定时扫描和优先队列消费."""
        self._stopping = False
        interval = await self._get_default_interval()

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.process_feeds,
            "interval",
            minutes=interval,
            id="process_feeds",
            name="订阅源定时扫描",
            coalesce=True,
            replace_existing=True,
        )
        # 启动时立即执行一次
        self._scheduler.add_job(
            self.process_feeds,
            "date",
            id="process_feeds_initial",
            name="订阅源初始扫描",
        )
        self._scheduler.start()

        self._consumer = asyncio.create_task(self._process_priority_queue())
        self.logger.info(f"Worker 已启动，扫描间隔: {interval} 分钟")

    async def stop(self) -> None:
        """停止 Worker.

        优先队列不关闭，停止后入队的请求不会再被处理。
        """
        self.logger.info("Worker 正在停止...")
        self._stopping = True

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        if self._consumer:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None

        self.logger.info("Worker 已停止")

    # ------------------------------------------------------------------
    # 优先队列
    # ------------------------------------------------------------------

    def queue_feed_for_immediate(self, feed_id: int) -> bool:
        """订阅源加入优先队列；队列已满时丢弃，等待下次定时扫描."""
        try:
            self._priority_queue.put_nowait(feed_id)
        except asyncio.QueueFull:
            self.logger.warning(
                f"优先队列已满，订阅源 {feed_id} 将在下次定时扫描时处理 "
                f"(容量={self._priority_queue.maxsize})"
            )
            return False
        self.logger.info(f"订阅源 {feed_id} 已加入优先队列")
        return True

    async def queue_all_feeds_for_immediate(self) -> None:
        """所有订阅源加入优先队列（手动同步），队列满后停止入队."""
        feeds = await self.store.get_feeds()

        queued = 0
        for feed in feeds:
            try:
                self._priority_queue.put_nowait(feed.id)
            except asyncio.QueueFull:
                self.logger.warning(
                    f"优先队列已满，剩余订阅源将按计划同步: "
                    f"已入队={queued}, 总数={len(feeds)}"
                )
                break
            queued += 1

        self.logger.info(f"订阅源已加入优先队列: 已入队={queued}, 总数={len(feeds)}")

    def queue_stats(self) -> tuple[int, int]:
        """优先队列当前长度和容量."""
        return self._priority_queue.qsize(), self._priority_queue.maxsize

    async def _process_priority_queue(self) -> None:
        """消费优先队列，每个订阅源限时处理."""
        while True:
            feed_id = await self._priority_queue.get()
            try:
                self.logger.info(f"处理优先队列中的订阅源 {feed_id}")
                await asyncio.wait_for(
                    self.process_feed_by_id(feed_id),
                    timeout=self.priority_timeout,
                )
            except TimeoutError:
                self.logger.error(
                    f"订阅源 {feed_id} 处理超时 ({self.priority_timeout} 秒)"
                )
            except Exception as e:
                self.logger.exception(f"处理优先订阅源 {feed_id} 失败: {e}")
            finally:
                self._priority_queue.task_done()

    # ------------------------------------------------------------------
    # 扫描
    # ------------------------------------------------------------------

    async def process_feeds(self) -> None:
        """全量扫描：只处理到期的订阅源."""
        self.logger.info("开始扫描订阅源")
        try:
            feeds = await self.store.get_feeds()
        except Exception as e:
            self.logger.exception(f"获取订阅源失败: {e}")
            return

        self.logger.info(f"待检查订阅源: {len(feeds)} 个")
        for feed in feeds:
            if self._should_stop():
                return
            await self._process_feed(feed, check_interval=True)

        self.logger.info("订阅源扫描完成")

    async def process_feed_by_id(self, feed_id: int) -> None:
        """立即处理单个订阅源，不检查拉取间隔."""
        feed = await self.store.get_feed_by_id(feed_id)
        self.logger.info(f"立即处理订阅源 {feed.id} ({feed.name}): {feed.url}")
        await self._process_feed(feed, check_interval=False)

    def _should_stop(self) -> bool:
        if self._stopping:
            self.logger.info("Worker 已停止，中断订阅源处理")
        return self._stopping

    async def _process_feed(self, feed: Feed, *, check_interval: bool) -> None:
        """单个订阅源：间隔检查 -> 拉取 -> 逐篇推送 -> 更新状态."""
        if check_interval:
            interval = await self._get_effective_interval(feed)
            if self._should_skip(feed, interval):
                return

        articles = await self._fetch_articles(feed)
        if articles is None:
            return

        stats = await self._process_articles(feed, articles)
        if stats.aborted:
            return

        await self._finalize(feed, articles, stats)

    async def _get_default_interval(self) -> int:
        try:
            return await self.store.get_default_poll_interval()
        except Exception as e:
            self.logger.warning(
                f"获取默认拉取间隔失败，使用 {FALLBACK_INTERVAL_MINUTES} 分钟: {e}"
            )
            return FALLBACK_INTERVAL_MINUTES

    async def _get_effective_interval(self, feed: Feed) -> int:
        """订阅源自己的间隔，未设置时使用全局默认值."""
        if feed.poll_interval_minutes and feed.poll_interval_minutes > 0:
            return feed.poll_interval_minutes
        return await self._get_default_interval()

    def _should_skip(self, feed: Feed, interval: int) -> bool:
        if feed.last_fetched is None:
            return False

        elapsed = utcnow() - feed.last_fetched
        period = timedelta(minutes=interval)
        if elapsed < period:
            remaining = period - elapsed
            self.logger.debug(
                f"跳过订阅源 {feed.id} ({feed.name})，"
                f"{int(remaining.total_seconds())} 秒后到期 (间隔={interval} 分钟)"
            )
            return True
        return False

    async def _fetch_articles(self, feed: Feed) -> list[FeedArticle] | None:
        """首次同步按同步策略拉取，之后拉取全部；失败返回 None."""
        self.logger.info(
            f"拉取订阅源 {feed.id} ({feed.name}): {feed.url}, "
            f"sync_mode={feed.sync_mode}, initial_sync_done={feed.initial_sync_done}"
        )
        try:
            if not feed.initial_sync_done:
                articles = await self.fetcher.fetch_with_sync_options(
                    feed.url, feed.sync_mode, feed.sync_count, feed.sync_date_from
                )
                self.logger.info(
                    f"订阅源 {feed.id} 首次同步拉取完成: {len(articles)} 篇 "
                    f"(sync_mode={feed.sync_mode})"
                )
            else:
                articles = await self.fetcher.fetch(feed.url)
                self.logger.debug(f"订阅源 {feed.id} 拉取完成: {len(articles)} 篇")
        except FeedFetchError as e:
            self.logger.error(f"订阅源 {feed.id} 拉取失败: {e}")
            return None
        except Exception as e:
            self.logger.exception(f"订阅源 {feed.id} 拉取异常: {e}")
            return None

        return articles

    async def _process_articles(
        self, feed: Feed, articles: list[FeedArticle]
    ) -> ProcessingStats:
        stats = ProcessingStats()
        for article in articles:
            if self._should_stop():
                stats.aborted = True
                return stats
            await self._process_article(feed, article, stats)
        return stats

    async def _process_article(
        self, feed: Feed, article: FeedArticle, stats: ProcessingStats
    ) -> None:
        """单篇文章：去重 -> 推送 -> 入库，错误只影响本篇."""
        try:
            processed = await self.store.is_article_already_processed(article.url)
        except Exception as e:
            self.logger.exception(f"检查文章是否已处理失败: {article.url}: {e}")
            stats.errors += 1
            return

        if processed:
            self.logger.debug(f"文章已处理，跳过: {article.url}")
            stats.processed += 1
            return

        self.logger.info(f"推送新文章: {article.title} ({article.url})")
        try:
            entry = await self.wallabag.add_entry(article.url)
        except Exception as e:
            self.logger.error(f"推送到 Wallabag 失败: {article.url}: {e}")
            stats.errors += 1
            return

        try:
            await self.store.save_article(
                feed.id,
                Article(
                    title=article.title,
                    url=article.url,
                    published_at=article.published_at,
                ),
                entry.id,
            )
        except Exception as e:
            # 已推送但未入库，下次扫描可能重复推送
            self.logger.exception(
                f"文章入库失败: {article.url} (wallabag_entry_id={entry.id}): {e}"
            )
            stats.errors += 1
            return

        self.logger.info(f"文章已推送到 Wallabag: {article.url} (entry_id={entry.id})")
        stats.new += 1

    async def _finalize(
        self, feed: Feed, articles: list[FeedArticle], stats: ProcessingStats
    ) -> None:
        """记录统计并更新拉取时间、首次同步标记."""
        self.logger.info(
            f"订阅源 {feed.id} ({feed.name}) 处理完成: 总数={len(articles)}, "
            f"新推送={stats.new}, 已处理={stats.processed}, 失败={stats.errors}"
        )

        try:
            await self.store.update_feed_last_fetched(feed.id)
        except Exception as e:
            self.logger.exception(f"更新订阅源 {feed.id} 拉取时间失败: {e}")

        if not feed.initial_sync_done:
            try:
                await self.store.mark_feed_initial_sync_completed(feed.id)
            except Exception as e:
                self.logger.exception(f"标记订阅源 {feed.id} 首次同步完成失败: {e}")
            else:
                self.logger.info(f"订阅源 {feed.id} 首次同步已完成")
