# incidentwatch/ingest.py
from __future__ import annotations

import argparse
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Protocol, Set, Tuple

import duckdb

import config
from incidentwatch import db
from incidentwatch.classify import classify
from incidentwatch.errors import (
    AuthorizationError,
    DuplicateContentError,
    PayloadError,
    PersistenceError,
    ProviderError,
)
from incidentwatch.normalize import extract_text, make_title, normalize
from incidentwatch.rss_ingest import RssConnector
from incidentwatch.schema import FetchResult, IngestSummary, RawEvent, SourceItem, SourceSummary
from incidentwatch.telegram_ingest import TelegramConnector

log = logging.getLogger(__name__)


class Connector(Protocol):
    source_type: str

    def fetch(self, cursor: Any = None) -> FetchResult: ...

    def acknowledge(self, cursor: Any) -> None: ...


def _safe_str(x) -> str:
    return "" if x is None else str(x)


def stable_key(item: SourceItem) -> str:
    # immutable facts only: source identity, native id, fixed-length excerpt
    excerpt = _safe_str(item.text)[: config.STABLE_KEY_EXCERPT]
    return "|".join([item.source_type, item.item_id, excerpt])


def content_hash(key: str) -> str:
    return hashlib.sha256(_safe_str(key).encode("utf-8", errors="ignore")).hexdigest()


def require_role(role: Optional[str]) -> None:
    if role not in config.ADMIN_ROLES:
        raise AuthorizationError(f"role {role!r} may not run batch jobs")


# ----------------------------
# Staging + normalization
# ----------------------------
def stage_item(con: duckdb.DuckDBPyConnection, item: SourceItem) -> Tuple[str, Optional[RawEvent]]:
    """
    Dedup gate + insert with status "raw".
    Returns ("skipped", None) when the content hash is already staged.
    """
    h = content_hash(stable_key(item))
    if db.find_raw_event_by_hash(con, h):
        return "skipped", None

    payload = dict(item.raw_payload)
    payload.setdefault("text", item.text)
    if item.published_at and not payload.get("published_at"):
        payload["published_at"] = item.published_at.isoformat()

    raw = RawEvent(
        source_type=item.source_type,
        source_label=item.source_label,
        source_url=item.source_url,
        raw_payload=payload,
        content_hash=h,
        status="raw",
        ingested_at=db.utcnow(),
    )
    try:
        raw.id = db.insert_raw_event(con, raw)
    except DuplicateContentError:
        # another run staged the same hash between our check and insert
        return "skipped", None
    return "raw", raw


def normalize_staged(con: duckdb.DuckDBPyConnection, raw: RawEvent, known_titles: Set[str]) -> str:
    """
    raw -> normalized | rejected | duplicate.
    A failed incident insert raises PersistenceError and leaves the raw event in "raw".
    """
    try:
        text = extract_text(raw.raw_payload)
        if not text:
            raise PayloadError("empty text")
        title_key = make_title(text).lower()
        classification = classify(text)
        incident = normalize(raw, classification)
    except PayloadError as e:
        log.info("[INGEST] rejected %s: %s", raw.id, e)
        db.mark_raw_event(con, raw.id, "rejected")
        return "rejected"

    if title_key in known_titles:
        db.mark_raw_event(con, raw.id, "duplicate")
        return "duplicate"

    with db.transaction(con):
        incident_id = db.insert_incident(con, incident)
        db.mark_raw_event(con, raw.id, "normalized", incident_id=incident_id)
    known_titles.add(title_key)
    return "normalized"


def _count(summary: SourceSummary, outcome: str) -> None:
    if outcome == "normalized":
        summary.normalized += 1
    elif outcome == "rejected":
        summary.rejected += 1
    elif outcome in ("duplicate", "skipped"):
        summary.duplicates_skipped += 1


def ingest_source(
    con: duckdb.DuckDBPyConnection,
    connector: Connector,
    now: Optional[datetime] = None,
) -> SourceSummary:
    """One poll cycle for one source. Never raises for provider or per-item failures."""
    st = connector.source_type
    summary = SourceSummary(source_type=st)
    now = now or db.utcnow()

    cursor = db.get_cursor(con, st)
    try:
        result = connector.fetch(cursor)
    except ProviderError as e:
        log.warning("[INGEST] %s fetch failed: %s", st, e)
        summary.errors.append(f"{st}: {e}")
        return summary

    summary.errors.extend(result.errors)
    summary.fetched = len(result.items)
    titles = db.recent_titles(con, now - timedelta(days=config.DUPLICATE_TITLE_WINDOW_DAYS))

    staging_failed = False
    for item in result.items:
        try:
            outcome, raw = stage_item(con, item)
        except PersistenceError as e:
            staging_failed = True
            summary.failed += 1
            summary.errors.append(f"{st}: staging failed for {item.item_id}: {e}")
            continue

        if raw is None:
            _count(summary, outcome)
            continue

        summary.staged += 1
        try:
            outcome = normalize_staged(con, raw, titles)
        except PersistenceError as e:
            summary.failed += 1
            summary.errors.append(f"{st}: insert error for {item.item_id}: {e}")
            continue
        _count(summary, outcome)

    # acknowledge only once everything fetched is durably staged
    if staging_failed:
        summary.errors.append(f"{st}: cursor not advanced, unstaged items will be redelivered")
    elif result.next_cursor is not None and result.next_cursor != cursor:
        try:
            connector.acknowledge(result.next_cursor)
            db.set_cursor(con, st, result.next_cursor)
            summary.cursor_advanced = True
        except (ProviderError, PersistenceError) as e:
            summary.errors.append(f"{st}: cursor not advanced: {e}")

    log.info(
        "[INGEST] %s fetched=%d staged=%d normalized=%d dup=%d rejected=%d failed=%d",
        st, summary.fetched, summary.staged, summary.normalized,
        summary.duplicates_skipped, summary.rejected, summary.failed,
    )
    return summary


def normalize_pending(con: duckdb.DuckDBPyConnection, limit: int = 100) -> SourceSummary:
    """Retry raw events left in status "raw" by a failed incident insert."""
    summary = SourceSummary(source_type="pending")
    titles = db.recent_titles(con, db.utcnow() - timedelta(days=config.DUPLICATE_TITLE_WINDOW_DAYS))

    for row in db.records(db.query_raw_events(con, status="raw", limit=limit)):
        raw = RawEvent(**row)
        summary.fetched += 1
        try:
            outcome = normalize_staged(con, raw, titles)
        except PersistenceError as e:
            summary.failed += 1
            summary.errors.append(f"pending: insert error for {raw.id}: {e}")
            continue
        _count(summary, outcome)
    return summary


def run_ingestion(
    con: duckdb.DuckDBPyConnection,
    connectors: Iterable[Connector],
    role: Optional[str] = "service",
) -> IngestSummary:
    require_role(role)
    out = IngestSummary()
    for connector in connectors:
        out.add(ingest_source(con, connector))
    log.info(
        "[INGEST] sources=%d normalized=%d dup=%d failed=%d errors=%d",
        out.sources_processed, out.normalized, out.duplicates_skipped, out.failed, len(out.errors),
    )
    return out


def build_connectors() -> List[Connector]:
    """Configured sources. Raises ConfigError on missing credentials."""
    connectors: List[Connector] = []
    if config.RSS_SOURCES:
        connectors.append(RssConnector(config.RSS_SOURCES))
    if config.TELEGRAM_CHANNELS:
        connectors.append(TelegramConnector(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_CHANNELS))
    return connectors


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run one ingestion cycle over configured sources.")
    parser.add_argument("--db", default=None, help="DuckDB path (default: INCIDENTWATCH_DB)")
    parser.add_argument("--retry-pending", action="store_true", help="also renormalize events stuck in 'raw'")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    connectors = build_connectors()
    con = db.connect(args.db)
    try:
        summary = run_ingestion(con, connectors)
        if args.retry_pending:
            summary.add(normalize_pending(con))
    finally:
        con.close()
    print(summary.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
