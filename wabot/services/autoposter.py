"""
wabot/services/autoposter.py
Polls configured X accounts and reposts new posts (with media) into chats
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import aiohttp

from ..database.models import AutoPostAccount
from ..database.models.autoposter import DEFAULT_INTERVAL_MINUTES, DEFAULT_TEMPLATE
from ..errors import ExternalFetchFailure, InvalidInput, NotFound
from ..utils.timeutil import Clock, format_local, utcnow
from .messenger import Messenger

if TYPE_CHECKING:
    from ..database.database_service import DatabaseService

logger = logging.getLogger(__name__)

ACCOUNTS_COLLECTION = "x_auto_accounts"
TEMPLATE_VARIABLES = ("text", "author", "created_at", "likes", "retweets", "reply_count", "url", "id", "hashtags")

_HASHTAG = re.compile(r"#\w+")


class XClient:
    """
    Minimal X API v2 client: user lookup, recent posts with media expansions,
    and media download.
    """

    BASE_URL = "https://api.twitter.com/2"

    def __init__(self, base_url: Optional[str] = None, *, timeout: float = 15):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _get_json(self, path: str, bearer: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {bearer}"}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url, params=params, headers=headers) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise ExternalFetchFailure(f"X API {resp.status}: {body[:200]}", status=resp.status)
                    return await resp.json()
        except aiohttp.ClientError as e:
            raise ExternalFetchFailure(f"X API request failed: {e}") from e

    async def user_id(self, username: str, bearer: str) -> Optional[str]:
        data = await self._get_json(f"/users/by/username/{username}", bearer)
        return (data.get("data") or {}).get("id")

    async def recent_tweets(self, user_id: str, bearer: str, since_id: Optional[str] = None) -> Dict[str, Any]:
        params = {
            "max_results": 5,
            "expansions": "attachments.media_keys,author_id",
            "media.fields": "url,preview_image_url,type,alt_text",
            "tweet.fields": "created_at,author_id,attachments,public_metrics",
        }
        if since_id:
            params["since_id"] = since_id
        return await self._get_json(f"/users/{user_id}/tweets", bearer, params)

    async def download(self, url: str) -> Tuple[bytes, str]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise ExternalFetchFailure(f"Media download failed ({resp.status})", status=resp.status)
                    return await resp.read(), resp.headers.get("Content-Type", "application/octet-stream")
        except aiohttp.ClientError as e:
            raise ExternalFetchFailure(f"Media download failed: {e}") from e


def extract_hashtags(text: str) -> List[str]:
    return _HASHTAG.findall(text or "")


def _format_created_at(value: Optional[str], timezone: str) -> str:
    if not value:
        return "Unknown"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return format_local(parsed, timezone, "%d/%m/%Y %H:%M")


def render_template(template: str, tweet: Dict[str, Any], author: str, timezone: str = "UTC") -> str:
    """Substitute {variable} placeholders; unknown placeholders are left as written."""
    metrics = tweet.get("public_metrics") or {}
    text = tweet.get("text") or ""
    values = {
        "text": text,
        "author": author or "X user",
        "created_at": _format_created_at(tweet.get("created_at"), timezone),
        "likes": f"{int(metrics.get('like_count') or 0):,}",
        "retweets": f"{int(metrics.get('retweet_count') or 0):,}",
        "reply_count": f"{int(metrics.get('reply_count') or 0):,}",
        "url": f"https://x.com/{author}/status/{tweet.get('id')}",
        "id": str(tweet.get("id")),
        "hashtags": ", ".join(extract_hashtags(text)) or "(none)",
    }
    result = template
    for key, value in values.items():
        result = result.replace("{" + key + "}", value)
    return result


def _media_kind(media_type: str, content_type: str) -> str:
    if media_type == "photo" or content_type.startswith("image/"):
        return "image"
    if media_type in ("video", "animated_gif") or content_type.startswith("video/"):
        return "video"
    return "document"


def normalize_username(username: str) -> str:
    return (username or "").strip().lstrip("@")


class AutoPoster:
    def __init__(
        self,
        store: "DatabaseService",
        messenger: Messenger,
        *,
        client=None,
        default_bearer: str = "",
        default_interval: int = DEFAULT_INTERVAL_MINUTES,
        timezone: str = "UTC",
        clock: Clock = utcnow,
    ):
        self.store = store
        self.messenger = messenger
        self.client = client or XClient()
        self.default_bearer = default_bearer
        self.default_interval = default_interval
        self.timezone = timezone
        self.clock = clock
        self.stats = {"polls": 0, "posted": 0, "errors": 0, "media_failures": 0}

    async def _coll(self):
        return await self.store.get_collection(ACCOUNTS_COLLECTION)

    # ---------- account management ----------

    async def accounts(self) -> List[AutoPostAccount]:
        coll = await self._coll()
        return [AutoPostAccount.from_doc(d) for d in await coll.find({}, sort=[("username", 1)])]

    async def get(self, username: str) -> Optional[AutoPostAccount]:
        coll = await self._coll()
        doc = await coll.find_one({"username": normalize_username(username)})
        return AutoPostAccount.from_doc(doc) if doc else None

    async def add(
        self,
        username: str,
        target_chat_id: str,
        *,
        interval_minutes: Optional[int] = None,
        template: Optional[str] = None,
        bearer_token: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AutoPostAccount:
        username = normalize_username(username)
        if not username or not target_chat_id:
            raise InvalidInput("username and targetChatId required")
        interval = int(interval_minutes or self.default_interval)
        if interval <= 0:
            raise InvalidInput("⚠️ Interval must be a positive number of minutes")
        account = AutoPostAccount(
            username=username,
            targetChatId=target_chat_id,
            intervalMinutes=interval,
            template=template or DEFAULT_TEMPLATE,
            bearerToken=bearer_token or None,
            userId=user_id,
            webhookSecret=webhook_secret,
            createdAt=self.clock(),
        )
        coll = await self._coll()
        existing = await coll.find_one({"username": username})
        if existing:
            # Keep the cursor of an account that is re-added.
            account.lastPostedId = existing.get("lastPostedId")
            account.userId = account.userId or existing.get("userId")
            account.createdAt = existing.get("createdAt") or account.createdAt
        await coll.replace_one({"username": username}, account.to_doc(), upsert=True)
        logger.info(f"AutoPoster account @{username} -> {target_chat_id} every {interval}m")
        return account

    async def remove(self, username: str) -> bool:
        coll = await self._coll()
        return bool(await coll.delete_one({"username": normalize_username(username)}))

    async def update_config(self, username: str, **changes) -> AutoPostAccount:
        """Apply a partial update; raises NotFound for an unknown account."""
        allowed = {"intervalMinutes", "template", "enabled", "webhookSecret", "targetChatId", "bearerToken"}
        updates = {k: v for k, v in changes.items() if k in allowed and v is not None}
        if "intervalMinutes" in updates:
            updates["intervalMinutes"] = int(updates["intervalMinutes"])
            if updates["intervalMinutes"] <= 0:
                raise InvalidInput("⚠️ Interval must be a positive number of minutes")
        if "template" in updates and not str(updates["template"]).strip():
            raise InvalidInput("Template cannot be empty.")
        username = normalize_username(username)
        coll = await self._coll()
        result = await coll.update_one({"username": username}, {"$set": updates})
        if not result.matched_count:
            raise NotFound(f"❌ Account @{username} not found.")
        return await self.get(username)

    async def set_enabled(self, username: str, enabled: bool) -> AutoPostAccount:
        return await self.update_config(username, enabled=enabled)

    # ---------- polling ----------

    def _bearer(self, account: AutoPostAccount) -> str:
        return account.bearerToken or self.default_bearer

    def is_due(self, account: AutoPostAccount, now: datetime) -> bool:
        if account.lastRunAt is None:
            return True
        return now - account.lastRunAt >= timedelta(minutes=account.intervalMinutes or self.default_interval)

    async def poll(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """One pass over all accounts. A failing account never stops the others."""
        now = now or self.clock()
        self.stats["polls"] += 1
        report: Dict[str, Any] = {}
        for account in await self.accounts():
            if not account.enabled:
                report[account.username] = "disabled"
                continue
            if not self.is_due(account, now):
                report[account.username] = "not_due"
                continue
            try:
                report[account.username] = await self.process_account(account, now)
            except ExternalFetchFailure as e:
                self.stats["errors"] += 1
                logger.warning(f"AutoPoster @{account.username}: {e}")
                report[account.username] = "error"
            except Exception:
                self.stats["errors"] += 1
                logger.exception(f"AutoPoster failed processing @{account.username}")
                report[account.username] = "error"
        return report

    async def process_account(self, account: AutoPostAccount, now: datetime) -> int:
        """Fetch and post everything newer than the account cursor. Returns the number posted."""
        if not account.targetChatId:
            logger.warning(f"AutoPoster @{account.username}: no target chat")
            return 0
        bearer = self._bearer(account)
        if not bearer:
            logger.warning(f"AutoPoster @{account.username}: no bearer token")
            return 0

        coll = await self._coll()
        if not account.userId:
            account.userId = await self.client.user_id(account.username, bearer)
            if not account.userId:
                raise ExternalFetchFailure(f"Unable to resolve @{account.username} to a user id")
            await coll.update_one({"username": account.username}, {"$set": {"userId": account.userId}})
            logger.debug(f"AutoPoster resolved @{account.username} to {account.userId}")

        response = await self.client.recent_tweets(account.userId, bearer, account.lastPostedId)
        media_by_key = {m["media_key"]: m for m in (response.get("includes") or {}).get("media") or [] if m.get("media_key")}
        tweets = sorted(response.get("data") or [], key=lambda t: int(t["id"]))

        posted = 0
        for tweet in tweets:
            caption = render_template(account.template, tweet, account.username, self.timezone)
            media = await self._download_media(tweet, media_by_key)
            await self._post(account.targetChatId, caption, media)
            account.lastPostedId = str(tweet["id"])
            await coll.update_one(
                {"username": account.username},
                {"$set": {"lastPostedId": account.lastPostedId, "lastRunAt": now}},
            )
            posted += 1
            self.stats["posted"] += 1
            logger.info(f"AutoPoster posted {tweet['id']} from @{account.username}")

        account.lastRunAt = now
        await coll.update_one({"username": account.username}, {"$set": {"lastRunAt": now}})
        return posted

    async def _download_media(self, tweet: Dict[str, Any], media_by_key: Dict[str, Dict]) -> List[Tuple[str, bytes, str]]:
        items = []
        for key in (tweet.get("attachments") or {}).get("media_keys") or []:
            meta = media_by_key.get(key)
            if not meta:
                continue
            url = meta.get("url") or meta.get("preview_image_url")
            if not url:
                continue
            try:
                data, content_type = await self.client.download(url)
            except ExternalFetchFailure as e:
                self.stats["media_failures"] += 1
                logger.warning(f"AutoPoster skipped media {key}: {e}")
                continue
            items.append((_media_kind(meta.get("type", ""), content_type), data, content_type))
        return items

    async def _post(self, chat_id: str, caption: str, media: List[Tuple[str, bytes, str]]) -> None:
        if not media:
            await self.messenger.send_text(chat_id, caption)
            return
        for index, (kind, data, mimetype) in enumerate(media):
            await self.messenger.send_media(
                chat_id,
                kind,
                data,
                caption=caption if index == 0 else None,
                mimetype=mimetype if kind == "document" else None,
            )

    async def test_account(self, username: str) -> Dict[str, Any]:
        """Resolve the account and fetch its latest posts without posting or moving the cursor."""
        account = await self.get(username)
        if account is None:
            raise NotFound(f"❌ Account @{normalize_username(username)} not found.")
        bearer = self._bearer(account)
        if not bearer:
            raise InvalidInput(f"❌ No bearer token for @{account.username}")
        user_id = account.userId or await self.client.user_id(account.username, bearer)
        if not user_id:
            raise NotFound(f"❌ Could not find user ID for @{account.username}")
        response = await self.client.recent_tweets(user_id, bearer)
        tweets = response.get("data") or []
        return {
            "username": account.username,
            "userId": user_id,
            "tweets": len(tweets),
            "latest": render_template(account.template, tweets[0], account.username, self.timezone) if tweets else None,
            "intervalMinutes": account.intervalMinutes,
            "targetChatId": account.targetChatId,
        }
