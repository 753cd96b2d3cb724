# incidentwatch/telegram_ingest.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

import config
from incidentwatch.errors import ConfigError, ProviderError
from incidentwatch.schema import FetchResult, SourceItem

log = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramConnector:
    """
    Public channels read through the Bot API (the bot must be a channel member).

    getUpdates returns channel posts for every channel the bot is in; the update offset
    is the cursor. Passing offset=N to getUpdates confirms every update below N, so
    acknowledge() is the call that consumes updates on the provider side.
    """

    source_type = "telegram"

    def __init__(
        self,
        token: Optional[str] = None,
        channels: Optional[List[str]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = config.HTTP_TIMEOUT_SEC,
        base_url: str = TELEGRAM_API,
    ):
        self.token = token if token is not None else config.TELEGRAM_BOT_TOKEN
        if not self.token:
            raise ConfigError("TELEGRAM_BOT_TOKEN not configured")
        self.channels = [c.lstrip("@") for c in (config.TELEGRAM_CHANNELS if channels is None else channels)]
        self.session = session or requests.Session()
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    def _call(self, method: str, params: Dict[str, Any], source: Optional[str] = None) -> Any:
        url = f"{self.base_url}/bot{self.token}/{method}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"{method} request failed: {e}", source=source) from e

        try:
            data = resp.json()
        except ValueError:
            raise ProviderError(f"{method} returned HTTP {resp.status_code}", source=source, status=resp.status_code)

        if not data.get("ok"):
            raise ProviderError(
                data.get("description") or "not found",
                source=source,
                status=data.get("error_code") or resp.status_code,
            )
        return data.get("result")

    def _resolve_channels(self, errors: List[str]) -> Dict[int, str]:
        chats: Dict[int, str] = {}
        for username in self.channels:
            try:
                chat = self._call("getChat", {"chat_id": f"@{username}"}, source=f"Channel @{username}")
            except ProviderError as e:
                log.warning("[TELEGRAM] %s", e)
                errors.append(str(e))
                continue
            chats[chat["id"]] = username
        return chats

    def _unresolved_offset(self, updates: List[Dict[str, Any]], chats: Dict[int, str]) -> Optional[int]:
        """
        Lowest update_id of a post that may belong to a configured channel getChat failed
        for. Acknowledging past it would drop the post for good; the dedup gate absorbs the
        redelivered posts of the channels that did resolve.
        """
        unresolved = {c.lower() for c in self.channels} - {u.lower() for u in chats.values()}
        if not unresolved:
            return None
        held: List[int] = []
        for u in updates:
            chat = (u.get("channel_post") or {}).get("chat") or {}
            if not chat or chat.get("id") in chats:
                continue
            # posts without a username cannot be ruled out
            if (chat.get("username") or "").lower() in unresolved | {""}:
                held.append(u["update_id"])
        return min(held) if held else None

    def fetch(self, cursor: Optional[int] = None) -> FetchResult:
        errors: List[str] = []
        chats = self._resolve_channels(errors)
        if not chats:
            return FetchResult(items=[], next_cursor=cursor, errors=errors)

        params: Dict[str, Any] = {"limit": 100, "allowed_updates": json.dumps(["channel_post"])}
        if cursor is not None:
            params["offset"] = cursor
        try:
            updates = self._call("getUpdates", params, source="Updates fetch failed") or []
        except ProviderError as e:
            log.warning("[TELEGRAM] %s", e)
            errors.append(str(e))
            return FetchResult(items=[], next_cursor=cursor, errors=errors)

        next_cursor = cursor
        if updates:
            next_cursor = max(u["update_id"] for u in updates) + 1
            held = self._unresolved_offset(updates, chats)
            if held is not None and held < next_cursor:
                log.warning("[TELEGRAM] holding offset at %d for unresolved channels", held)
                next_cursor = held

        items: List[SourceItem] = []
        for u in updates:
            post = u.get("channel_post")
            if not post:
                continue
            chat_id = post.get("chat", {}).get("id")
            if chat_id not in chats:
                continue

            text = post.get("text") or post.get("caption") or ""
            if len(text) < config.MIN_TEXT_LENGTH:
                continue

            username = chats[chat_id]
            message_id = post["message_id"]
            posted = datetime.fromtimestamp(post["date"], tz=timezone.utc) if post.get("date") else None
            items.append(
                SourceItem(
                    source_type=self.source_type,
                    source_label=f"@{username}",
                    source_url=f"https://t.me/{username}/{message_id}",
                    item_id=f"tg-{chat_id}-{message_id}",
                    text=text,
                    published_at=posted,
                    raw_payload={
                        "text": text,
                        "channel": username,
                        "chat_id": chat_id,
                        "message_id": message_id,
                        "update_id": u["update_id"],
                        "published_at": posted.isoformat() if posted else None,
                    },
                )
            )

        log.info("[TELEGRAM] channels=%d updates=%d posts=%d", len(chats), len(updates), len(items))
        return FetchResult(items=items, next_cursor=next_cursor, errors=errors)

    def acknowledge(self, cursor: Optional[int]) -> None:
        if cursor is None:
            return
        self._call("getUpdates", {"offset": cursor, "limit": 1}, source="Acknowledge failed")
