"""文章 API."""

from fastapi import APIRouter, Depends

from wallabag_rss.api.deps import get_store
from wallabag_rss.core.store import Store

router = APIRouter(prefix="/api/articles", tags=["articles"])


@router.get("")
async def list_articles(store: Store = Depends(get_store)) -> dict:
    """已推送到 Wallabag 的文章，最新的在前."""
    articles = await store.get_articles()
    return {
        "total": len(articles),
        "items": [
            {
                "id": a.id,
                "feed_id": a.feed_id,
                "title": a.title,
                "url": a.url,
                "wallabag_entry_id": a.wallabag_entry_id,
                "published_at": a.published_at.isoformat() if a.published_at else None,
                "created_at": a.created_at.isoformat(),
            }
            for a in articles
        ],
    }
