"""Discord provider: REST over httpx, live events over the gateway websocket."""

from __future__ import annotations

import asyncio
import json
import platform
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

import aiohttp
import httpx
import structlog

from tuicord.config import TuicordConfig
from tuicord.errors import (
    FORBIDDEN,
    NOT_FOUND,
    RATE_LIMITED,
    UNAUTHORIZED,
    UNAVAILABLE,
    ProviderConnectionError,
    ProviderError,
)
from tuicord.models import (
    Attachment,
    ConversationKind,
    ConversationRef,
    Flavor,
    ProviderEvent,
    ProviderMessage,
    User,
)
from tuicord.providers.base import MessagingProvider
from tuicord.sanitize import MappingResolver

logger = structlog.get_logger()

# Channel types
GUILD_TEXT = 0
DM = 1
GROUP_DM = 3
GUILD_CATEGORY = 4
GUILD_ANNOUNCEMENT = 5

# Gateway opcodes
OP_DISPATCH = 0
OP_HEARTBEAT = 1
OP_IDENTIFY = 2
OP_RECONNECT = 7
OP_INVALID_SESSION = 9
OP_HELLO = 10
OP_HEARTBEAT_ACK = 11

_NOT_FOUND_CODES = {10003, 10004, 10008}
_RATE_LIMIT_MAX_WAIT_S = 10.0

SYSTEM_TEXTS = {
    1: "Added a recipient.",
    2: "Removed a recipient.",
    3: "Started a call.",
    4: "Changed the channel name.",
    5: "Changed the channel icon.",
    6: "Pinned a message.",
    7: "Joined the server.",
    8: "Boosted the server.",
    9: "Boosted the server to Level 1.",
    10: "Boosted the server to Level 2.",
    11: "Boosted the server to Level 3.",
    12: "Followed a channel.",
    18: "Created a thread.",
    21: "Started a thread.",
    23: "Used a context menu command.",
    24: "Auto Moderation action.",
}

_EVENT_KINDS = {
    "MESSAGE_CREATE": "created",
    "MESSAGE_UPDATE": "updated",
    "MESSAGE_DELETE": "deleted",
}


def author_display(user: dict[str, Any] | None) -> str:
    """``Global Name (username)`` when the two differ, else the username."""
    if not isinstance(user, dict):
        return "Unknown"
    username = user.get("username") or ""
    global_name = user.get("global_name") or user.get("display_name")
    if global_name and global_name != username:
        return f"{global_name} ({username})" if username else str(global_name)
    return str(username) or "Unknown"


def parse_timestamp(value: Any) -> int | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        return None


def _embed_text(embeds: Any) -> list[str]:
    if not isinstance(embeds, list) or not embeds or not isinstance(embeds[0], dict):
        return []
    embed = embeds[0]
    parts: list[str] = []
    if embed.get("title"):
        parts.append(str(embed["title"]))
    if embed.get("description"):
        parts.append(str(embed["description"]))
    for item in embed.get("fields") or []:
        if not isinstance(item, dict):
            continue
        if item.get("name"):
            parts.append(f"{item['name']}:")
        if item.get("value"):
            parts.append(str(item["value"]))
    return parts


def message_from_discord(data: dict[str, Any], channel_id: str | None = None) -> ProviderMessage:
    """Normalize a Discord message object. Tolerates partial update payloads."""
    author = data.get("author") if isinstance(data.get("author"), dict) else None

    attachments = [
        Attachment(url=str(item["url"]), filename=item.get("filename"))
        for item in data.get("attachments") or []
        if isinstance(item, dict) and item.get("url")
    ]

    sticker_name = None
    stickers = data.get("sticker_items") or data.get("stickers") or []
    if isinstance(stickers, list) and stickers and isinstance(stickers[0], dict):
        sticker = stickers[0]
        sticker_name = sticker.get("name") or "Unknown Sticker"
        if sticker.get("format_type") == 1 and sticker.get("id"):
            attachments.insert(
                0,
                Attachment(
                    url=f"https://media.discordapp.net/stickers/{sticker['id']}.png",
                    filename=f"Sticker_{sticker_name}.png",
                ),
            )

    content: str | None = data.get("content") if "content" in data else None
    embed_parts = _embed_text(data.get("embeds"))
    if embed_parts:
        content = "\n".join([part for part in [content or ""] if part] + embed_parts)

    message_type = data.get("type")
    system_text = SYSTEM_TEXTS.get(message_type) if isinstance(message_type, int) else None

    reference = data.get("message_reference") if isinstance(data.get("message_reference"), dict) else {}
    nonce = data.get("nonce")

    return ProviderMessage(
        id=str(data["id"]) if data.get("id") is not None else None,
        conversation_id=str(data.get("channel_id") or channel_id or ""),
        author_id=str(author["id"]) if author and author.get("id") is not None else None,
        author_name=author_display(author) if author else None,
        content=content,
        timestamp_ms=parse_timestamp(data.get("timestamp")),
        attachments=attachments,
        reply_to_id=str(reference["message_id"]) if reference.get("message_id") else None,
        nonce=str(nonce) if nonce is not None else None,
        sticker_name=sticker_name,
        system_text=system_text,
    )


def _snowflake(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _recipient_name(recipient: dict[str, Any]) -> str:
    return str(recipient.get("global_name") or recipient.get("username") or "Unknown")


def conversation_from_channel(data: dict[str, Any], guild_name: str | None = None) -> ConversationRef | None:
    """Decide the conversation kind of a Discord channel object, once."""
    channel_type = data.get("type")
    channel_id = data.get("id")
    if channel_id is None:
        return None
    recipients = [item for item in data.get("recipients") or [] if isinstance(item, dict)]

    if channel_type == GROUP_DM or (channel_type is None and len(recipients) > 1):
        name = data.get("name")
        if not name and recipients:
            name = ", ".join(r.get("username") or "?" for r in recipients[:3])
            if len(recipients) > 3:
                name += "..."
        return ConversationRef(
            id=str(channel_id),
            name=name or "Group DM",
            kind=ConversationKind.GROUP,
            position=-_snowflake(data.get("last_message_id")),
        )
    if channel_type == DM:
        name = _recipient_name(recipients[0]) if recipients else "Unknown"
        return ConversationRef(
            id=str(channel_id),
            name=name,
            kind=ConversationKind.DIRECT,
            position=-_snowflake(data.get("last_message_id")),
        )
    if channel_type == GUILD_CATEGORY:
        return ConversationRef(
            id=str(channel_id),
            name=data.get("name") or "Unnamed Category",
            kind=ConversationKind.CATEGORY,
            position=_snowflake(data.get("position")),
        )
    if channel_type in (GUILD_TEXT, GUILD_ANNOUNCEMENT):
        name = data.get("name") or "Unnamed"
        if guild_name:
            name = f"{guild_name} > {name}"
        parent = data.get("parent_id")
        return ConversationRef(
            id=str(channel_id),
            name=name,
            kind=ConversationKind.GUILD_CHANNEL,
            parent_id=str(parent) if parent else None,
            position=_snowflake(data.get("position")),
        )
    return None


def order_guild_channels(refs: list[ConversationRef]) -> list[ConversationRef]:
    """Categories by position, each followed by its channels; loose channels last."""
    categories = sorted((r for r in refs if r.kind is ConversationKind.CATEGORY), key=lambda r: r.position)
    channels = sorted((r for r in refs if r.kind is ConversationKind.GUILD_CHANNEL), key=lambda r: r.position)
    category_ids = {c.id for c in categories}

    ordered: list[ConversationRef] = []
    for category in categories:
        ordered.append(category)
        ordered.extend(c for c in channels if c.parent_id == category.id)
    ordered.extend(c for c in channels if c.parent_id not in category_ids)
    return ordered


class DiscordDirectory(MappingResolver):
    """Names learned from REST responses and gateway payloads."""

    def remember_user(self, user: Any) -> None:
        if isinstance(user, dict) and user.get("id") is not None:
            self.users[str(user["id"])] = _recipient_name(user)

    def remember_message(self, data: dict[str, Any]) -> None:
        self.remember_user(data.get("author"))
        for user in data.get("mentions") or []:
            self.remember_user(user)

    def remember_channel(self, data: dict[str, Any]) -> None:
        if data.get("id") is not None and data.get("name"):
            self.channels[str(data["id"])] = str(data["name"])

    def remember_role(self, data: dict[str, Any]) -> None:
        if data.get("id") is not None and data.get("name"):
            self.roles[str(data["id"])] = str(data["name"])


class DiscordProvider(MessagingProvider):
    def __init__(self, *, config: TuicordConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self.directory = DiscordDirectory()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.api_base,
            headers={
                "Authorization": config.token,
                "User-Agent": "tuicord (https://github.com/tuicord/tuicord, 0.1)",
            },
            timeout=httpx.Timeout(config.request_timeout_s),
        )
        self._user: User | None = None
        self._events: asyncio.Queue[ProviderEvent | None] = asyncio.Queue()
        self._gateway_task: asyncio.Task[None] | None = None
        self._closed = False
        self._failure: ProviderError | None = None
        self._seq: int | None = None

    @property
    def name(self) -> str:
        return "discord"

    @property
    def user(self) -> User | None:
        return self._user

    @property
    def resolver(self) -> DiscordDirectory:
        return self.directory

    # -- REST ----------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        for attempt in range(2):
            try:
                resp = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as exc:
                raise ProviderError(f"Network error: {exc}", code=UNAVAILABLE) from exc

            if resp.status_code == 429 and attempt == 0:
                retry_after = float(_safe_json(resp).get("retry_after") or 1.0)
                logger.warning("provider.discord.rate_limited", path=path, retry_after=retry_after)
                await asyncio.sleep(min(retry_after, _RATE_LIMIT_MAX_WAIT_S))
                continue
            if resp.status_code >= 400:
                raise _error_from_response(resp)
            if resp.status_code == 204 or not resp.content:
                return None
            return resp.json()
        raise ProviderError("Rate limited", code=RATE_LIMITED, status=429)

    async def connect(self) -> User:
        try:
            data = await self._request("GET", "/users/@me")
        except ProviderError as exc:
            raise ProviderConnectionError(f"Login failed: {exc}", code=exc.code, status=exc.status) from exc
        if not isinstance(data, dict) or data.get("id") is None:
            raise ProviderConnectionError("Login failed: unexpected /users/@me response")
        self._user = User(
            id=str(data["id"]),
            username=str(data.get("username") or "me"),
            global_name=data.get("global_name"),
        )
        self.directory.remember_user(data)
        logger.info("provider.discord.connected", user_id=self._user.id)
        return self._user

    async def close(self) -> None:
        self._closed = True
        if self._gateway_task and not self._gateway_task.done():
            self._gateway_task.cancel()
            try:
                await self._gateway_task
            except asyncio.CancelledError:
                pass
        self._events.put_nowait(None)
        if self._owns_client:
            await self._client.aclose()

    async def _private_channels(self) -> list[ConversationRef]:
        data = await self._request("GET", "/users/@me/channels") or []
        refs = []
        for item in data:
            if not isinstance(item, dict):
                continue
            for recipient in item.get("recipients") or []:
                self.directory.remember_user(recipient)
            ref = conversation_from_channel(item)
            if ref is not None and ref.kind in (ConversationKind.DIRECT, ConversationKind.GROUP):
                refs.append(ref)
        return sorted(refs, key=lambda r: r.position)

    async def _guilds(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/users/@me/guilds") or []
        return [item for item in data if isinstance(item, dict) and item.get("id") is not None]

    async def _guild_channel_objects(self, guild_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/guilds/{guild_id}/channels") or []
        items = [item for item in data if isinstance(item, dict)]
        for item in items:
            self.directory.remember_channel(item)
        return items

    async def list_conversations(self, flavor: Flavor) -> list[ConversationRef]:
        if flavor == "server":
            guilds = await self._guilds()
            refs = [
                ConversationRef(id=str(g["id"]), name=g.get("name") or "Unknown Server", kind=ConversationKind.GUILD)
                for g in guilds
            ]
            return sorted(refs, key=lambda r: r.name.lower())

        refs = await self._private_channels()
        if flavor == "chat":
            for guild in await self._guilds():
                try:
                    channels = await self._guild_channel_objects(str(guild["id"]))
                except ProviderError as exc:
                    logger.warning("provider.discord.guild_channels_failed", guild_id=guild["id"], error=str(exc))
                    continue
                guild_refs = [conversation_from_channel(item, guild.get("name")) for item in channels]
                refs.extend(
                    ref
                    for ref in order_guild_channels([r for r in guild_refs if r is not None])
                    if ref.kind is ConversationKind.GUILD_CHANNEL
                )
        return refs

    async def list_channels(self, guild_id: str) -> list[ConversationRef]:
        channels = await self._guild_channel_objects(guild_id)
        try:
            roles = await self._request("GET", f"/guilds/{guild_id}/roles") or []
        except ProviderError as exc:
            logger.info("provider.discord.roles_unavailable", guild_id=guild_id, error=str(exc))
            roles = []
        for role in roles:
            if isinstance(role, dict):
                self.directory.remember_role(role)
        refs = [conversation_from_channel(item) for item in channels]
        return order_guild_channels([r for r in refs if r is not None])

    async def fetch_history(self, conversation_id: str, limit: int) -> list[ProviderMessage]:
        data = await self._request(
            "GET",
            f"/channels/{conversation_id}/messages",
            params={"limit": max(1, min(int(limit), 100))},
        ) or []
        messages = []
        for item in reversed(data):
            if isinstance(item, dict):
                self.directory.remember_message(item)
                messages.append(message_from_discord(item, conversation_id))
        return messages

    async def send(
        self,
        conversation_id: str,
        text: str,
        *,
        reply_to_id: str | None = None,
        nonce: str | None = None,
    ) -> ProviderMessage:
        payload: dict[str, Any] = {"content": text}
        if nonce:
            payload["nonce"] = nonce
        if reply_to_id:
            payload["message_reference"] = {"message_id": reply_to_id, "fail_if_not_exists": False}
        data = await self._request("POST", f"/channels/{conversation_id}/messages", json=payload)
        return message_from_discord(data or {}, conversation_id)

    async def upload(
        self,
        conversation_id: str,
        path: Path,
        *,
        nonce: str | None = None,
    ) -> ProviderMessage:
        content = await asyncio.to_thread(path.read_bytes)
        payload_json: dict[str, Any] = {"attachments": [{"id": 0, "filename": path.name}]}
        if nonce:
            payload_json["nonce"] = nonce
        data = await self._request(
            "POST",
            f"/channels/{conversation_id}/messages",
            data={"payload_json": json.dumps(payload_json)},
            files={"files[0]": (path.name, content)},
        )
        return message_from_discord(data or {}, conversation_id)

    async def edit(self, conversation_id: str, message_id: str, text: str) -> ProviderMessage:
        data = await self._request(
            "PATCH",
            f"/channels/{conversation_id}/messages/{message_id}",
            json={"content": text},
        )
        return message_from_discord(data or {"id": message_id, "content": text}, conversation_id)

    async def delete(self, conversation_id: str, message_id: str) -> None:
        await self._request("DELETE", f"/channels/{conversation_id}/messages/{message_id}")

    async def react(self, conversation_id: str, message_id: str, emoji: str) -> None:
        await self._request(
            "PUT",
            f"/channels/{conversation_id}/messages/{message_id}/reactions/{quote(emoji, safe=':')}/@me",
        )

    async def pin(self, conversation_id: str, message_id: str) -> None:
        await self._request("PUT", f"/channels/{conversation_id}/pins/{message_id}")

    # -- gateway -------------------------------------------------------

    async def events(self) -> AsyncIterator[ProviderEvent]:
        if self._gateway_task is None:
            self._gateway_task = asyncio.create_task(self._gateway_loop(), name="discord-gateway")
        while True:
            event = await self._events.get()
            if event is None:
                if self._failure is not None:
                    raise self._failure
                return
            yield event

    async def _gateway_loop(self) -> None:
        backoff = 1.0
        while not self._closed:
            try:
                await self._run_gateway()
                backoff = 1.0
            except asyncio.CancelledError:
                raise
            except ProviderConnectionError as exc:
                logger.error("provider.discord.gateway_rejected", error=str(exc))
                self._failure = exc
                self._closed = True
                break
            except Exception as exc:
                logger.warning("provider.discord.gateway_error", error=str(exc), retry_in=backoff)
            if self._closed:
                break
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, 60.0)
        self._events.put_nowait(None)

    async def _run_gateway(self) -> None:
        heartbeat: asyncio.Task[None] | None = None
        async with aiohttp.ClientSession() as http:
            async with http.ws_connect(self.config.gateway_url, max_msg_size=0) as ws:
                try:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            try:
                                payload = json.loads(msg.data)
                            except json.JSONDecodeError:
                                continue
                            op = payload.get("op")
                            if op == OP_HELLO:
                                interval = float(payload["d"]["heartbeat_interval"]) / 1000
                                heartbeat = asyncio.create_task(
                                    self._heartbeat(ws, interval), name="discord-heartbeat"
                                )
                                await ws.send_json(self._identify_payload())
                            elif op == OP_HEARTBEAT:
                                await ws.send_json({"op": OP_HEARTBEAT, "d": self._seq})
                            elif op == OP_DISPATCH:
                                if payload.get("s") is not None:
                                    self._seq = payload["s"]
                                self._on_dispatch(payload.get("t"), payload.get("d") or {})
                            elif op == OP_RECONNECT:
                                logger.info("provider.discord.reconnect_requested")
                                return
                            elif op == OP_INVALID_SESSION:
                                raise ProviderError("Gateway session invalidated", code=UNAUTHORIZED)
                        elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                            break
                finally:
                    if heartbeat is not None:
                        heartbeat.cancel()
                if ws.close_code == 4004:
                    raise ProviderConnectionError("Gateway rejected the token", code=UNAUTHORIZED)

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await ws.send_json({"op": OP_HEARTBEAT, "d": self._seq})

    def _identify_payload(self) -> dict[str, Any]:
        return {
            "op": OP_IDENTIFY,
            "d": {
                "token": self.config.token,
                "properties": {
                    "os": platform.system() or "Linux",
                    "browser": "Discord Client",
                    "device": "",
                },
                "compress": False,
            },
        }

    def _on_dispatch(self, event_type: str | None, data: dict[str, Any]) -> None:
        if event_type == "READY":
            for channel in data.get("private_channels") or []:
                if isinstance(channel, dict):
                    for recipient in channel.get("recipients") or []:
                        self.directory.remember_user(recipient)
            logger.info("provider.discord.ready")
            return

        kind = _EVENT_KINDS.get(event_type or "")
        if kind is None or not isinstance(data, dict):
            return
        if kind != "deleted":
            self.directory.remember_message(data)
        message = message_from_discord(data)
        self._events.put_nowait(ProviderEvent(kind=kind, conversation_id=message.conversation_id, message=message))


def _safe_json(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_from_response(resp: httpx.Response) -> ProviderError:
    body = _safe_json(resp)
    message = str(body.get("message") or resp.text[:200] or f"HTTP {resp.status_code}")
    discord_code = body.get("code")
    if resp.status_code == 404 or discord_code in _NOT_FOUND_CODES:
        code = NOT_FOUND
    elif resp.status_code == 401:
        code = UNAUTHORIZED
    elif resp.status_code == 403:
        code = FORBIDDEN
    elif resp.status_code == 429:
        code = RATE_LIMITED
    else:
        code = None
    logger.debug("provider.discord.http_error", status=resp.status_code, discord_code=discord_code)
    return ProviderError(message, code=code, status=resp.status_code)
