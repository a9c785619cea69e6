"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallabag_rss.core.store import SQLStore
from wallabag_rss.fetcher.rss import FeedArticle
from wallabag_rss.main import app
from wallabag_rss.models.database import init_db
from wallabag_rss.models.feed import Feed, SyncMode, TimeUnit
from wallabag_rss.scheduler.worker import Worker

RSS_FEED = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0">
  <channel>
    <title>Example</title>
    <link>https://example.com</link>
    <description>Example feed</description>
    <item>
      <title>Second</title>
      <link>https://example.com/second</link>
      <pubDate>Tue, 02 Jan 2024 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>First</title>
      <link>https://example.com/first</link>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """创建测试用的临时数据库."""
    engine, factory = await init_db(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    yield factory
    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> SQLStore:
    """创建测试用的存储."""
    return SQLStore(session_factory)


def _make_feed(
    url: str = "https://example.com/feed.xml",
    name: str = "Test Feed",
    **kwargs: object,
) -> Feed:
    """构造 Feed（默认每天拉取、首次同步全部）."""
    interval = kwargs.pop("poll_interval", 1)
    unit = kwargs.pop("poll_interval_unit", TimeUnit.DAYS)
    kwargs.setdefault("sync_mode", SyncMode.ALL)
    feed = Feed(url=url, name=name, **kwargs)
    feed.set_poll_interval(interval, unit)  # type: ignore[arg-type]
    return feed


@pytest_asyncio.fixture
async def sample_feed(store: SQLStore) -> Feed:
    """创建测试用的 Feed."""
    feed_id = await store.insert_feed(_make_feed())
    return await store.get_feed_by_id(feed_id)


@pytest.fixture
def sample_articles() -> list[FeedArticle]:
    """按时间升序的两篇文章."""
    return [
        FeedArticle(
            title="First",
            url="https://example.com/first",
            published_at=datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
        ),
        FeedArticle(
            title="Second",
            url="https://example.com/second",
            published_at=datetime(2024, 1, 2, 10, 0, tzinfo=UTC),
        ),
    ]


@pytest.fixture
def api_worker(store: SQLStore) -> Worker:
    """API 测试用的 Worker（不启动，只观察队列）."""
    wallabag = MagicMock()
    wallabag.token_valid = False
    return Worker(store, AsyncMock(), wallabag)


@pytest_asyncio.fixture
async def client(
    store: SQLStore, api_worker: Worker
) -> AsyncGenerator[AsyncClient, None]:
    """创建测试用的 HTTP 客户端."""
    app.state.store = store
    app.state.worker = api_worker
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_feed() -> Callable[..., Feed]:
    """Feed 构造函数."""
    return _make_feed


@pytest.fixture
def rss_feed() -> bytes:
    """两篇文章的 RSS 2.0 文档（新的在前）."""
    return RSS_FEED
