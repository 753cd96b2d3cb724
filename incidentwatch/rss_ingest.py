# incidentwatch/rss_ingest.py
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import feedparser

import config
from incidentwatch.schema import FetchResult, SourceItem

log = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


def _parse_ts(entry) -> Optional[datetime]:
    if getattr(entry, "published_parsed", None):
        return datetime(*entry.published_parsed[:6], tzinfo=timezone.utc)
    if getattr(entry, "updated_parsed", None):
        return datetime(*entry.updated_parsed[:6], tzinfo=timezone.utc)
    return None


def _clean(html: str) -> str:
    text = _TAG_RE.sub(" ", html or "")
    return re.sub(r"[ \t]+", " ", text).strip()


def fetch_rss(source: Dict[str, str], limit: int = 35, parse: Callable = feedparser.parse):
    """
    Fetch one feed and normalize entries to a common schema.
    Expected source keys:
      - name
      - url
      - domain
    Returns (rows, error). A feed error is returned, not raised.
    """
    url = source["url"]
    name = source.get("name", "RSS")

    feed = parse(url)
    status = feed.get("status")
    if status and int(status) >= 400:
        return [], f"{name}: HTTP {status}"

    entries = list(feed.get("entries") or [])
    if feed.get("bozo") and not entries:
        return [], f"{name}: {feed.get('bozo_exception') or 'unparseable feed'}"

    rows: List[Dict[str, Any]] = []
    for e in entries[:limit]:
        title = _clean(getattr(e, "title", "") or "")
        summary = _clean(getattr(e, "summary", "") or "")
        link = getattr(e, "link", "") or ""
        rows.append(
            {
                "ts": _parse_ts(e),
                "entry_id": str(getattr(e, "id", "") or link or title),
                "title": title,
                "summary": summary,
                "source_url": str(link),
                "source_name": str(name),
                "domain": str(source.get("domain", "all")),
            }
        )
    return rows, None


class RssConnector:
    """
    Feed poller. Cursor: {feed url: ISO timestamp of the newest dated entry seen}.
    Feeds have no server-side acknowledgement, so acknowledge() is a no-op and the
    job persists the cursor itself.
    """

    source_type = "rss"

    def __init__(
        self,
        sources: Optional[List[Dict[str, str]]] = None,
        limit_per_feed: int = config.RSS_LIMIT_PER_FEED,
        parse: Callable = feedparser.parse,
    ):
        self.sources = list(config.RSS_SOURCES if sources is None else sources)
        self.limit_per_feed = limit_per_feed
        self.parse = parse

    def fetch(self, cursor: Optional[Dict[str, str]] = None) -> FetchResult:
        cursor = dict(cursor or {})
        next_cursor = dict(cursor)
        items: List[SourceItem] = []
        errors: List[str] = []

        for src in self.sources:
            url = src["url"]
            try:
                rows, err = fetch_rss(src, limit=self.limit_per_feed, parse=self.parse)
            except Exception as e:  # one bad feed must not stop the cycle
                log.warning("[RSS] %s failed: %s", url, e)
                errors.append(f"{src.get('name', url)}: {e}")
                continue
            if err:
                log.warning("[RSS] %s", err)
                errors.append(err)
                continue

            seen = cursor.get(url)
            newest = seen
            for r in rows:
                text = "\n".join(p for p in (r["title"], r["summary"]) if p)
                if len(text) < config.MIN_TEXT_LENGTH:
                    continue
                ts = r["ts"]
                iso = ts.isoformat() if ts else None
                if iso and seen and iso <= seen:
                    continue
                if iso and (newest is None or iso > newest):
                    newest = iso

                items.append(
                    SourceItem(
                        source_type=self.source_type,
                        source_label=r["source_name"],
                        source_url=r["source_url"] or None,
                        item_id=f"{url}|{r['entry_id']}",
                        text=text,
                        published_at=ts,
                        raw_payload={
                            "title": r["title"],
                            "summary": r["summary"],
                            "text": text,
                            "feed": url,
                            "domain": r["domain"],
                            "published_at": iso,
                        },
                    )
                )
            if newest:
                next_cursor[url] = newest

        log.info("[RSS] feeds=%d items=%d errors=%d", len(self.sources), len(items), len(errors))
        return FetchResult(items=items, next_cursor=next_cursor, errors=errors)

    def acknowledge(self, cursor: Any) -> None:
        return None
