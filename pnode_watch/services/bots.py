from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from pnode_watch.clock import Now, utcnow
from pnode_watch.config import Settings
from pnode_watch.errors import PNodeWatchError, UpstreamError
from pnode_watch.logger import get_logger
from pnode_watch.services.network import calculate_network_stats
from pnode_watch.services.nodes import NodeStore
from pnode_watch.services.scoring import get_top_contributors
from pnode_watch.transport import FetchJson, http_json

_logger = get_logger("services.bots")

_TELEGRAM_COMMAND = re.compile(r"^/(\w+)(?:@\w+)?\s*(.*)?$", re.DOTALL)

TOP_DEFAULT = 5
TOP_MAX = 20

DISCORD_PING = 1
DISCORD_APPLICATION_COMMAND = 2
DISCORD_PONG = 1
DISCORD_CHANNEL_MESSAGE = 4

HELP_TEXT = (
    "*pNode Watch bot*\n\n"
    "/stats - network overview\n"
    "/price - current token price\n"
    "/node <id> - status of one node (id or prefix)\n"
    "/top [n] - top contributors (default 5, max 20)\n"
    "/help - this message"
)


@dataclass(frozen=True)
class BotReply:
    text: str
    markdown: bool = True


def parse_command(text: str) -> Tuple[str, str]:
    match = _TELEGRAM_COMMAND.match(text.strip())
    if match is None:
        return "", ""
    return match.group(1).lower(), (match.group(2) or "").strip()


def parse_top_count(value: Any) -> int:
    try:
        count = int(str(value).strip())
    except (TypeError, ValueError):
        return TOP_DEFAULT
    if count <= 0:
        return TOP_DEFAULT
    return min(count, TOP_MAX)


def _format_bytes(value: float) -> str:
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    size = float(value)
    for unit in units:
        if size < 1024 or unit == units[-1]:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} PB"


class BotCommands:
    """Chat command handlers shared by the Telegram and Discord endpoints."""

    def __init__(
        self,
        node_store: NodeStore,
        *,
        price_feed_url: str = "",
        public_base_url: str = "",
        fetch_json: FetchJson = http_json,
        now: Now = utcnow,
    ) -> None:
        self._store = node_store
        self._price_feed_url = price_feed_url
        self._base_url = public_base_url.rstrip("/")
        self._fetch_json = fetch_json
        self._now = now

    @classmethod
    def from_settings(cls, settings: Settings, node_store: NodeStore) -> "BotCommands":
        return cls(
            node_store,
            price_feed_url=settings.price_feed_url,
            public_base_url=settings.public_base_url,
        )

    async def dispatch(self, command: str, args: str = "") -> Optional[BotReply]:
        """Return the reply for ``command`` or None when it is not a known command."""
        try:
            if command in {"help", "start"}:
                return BotReply(HELP_TEXT)
            if command == "stats":
                return await self.stats()
            if command == "price":
                return await self.price()
            if command == "node":
                return await self.node(args)
            if command == "top":
                return await self.top(parse_top_count(args) if args else TOP_DEFAULT)
        except PNodeWatchError as exc:
            _logger.warning("bots.command_failed", "Bot command failed", command=command, error=str(exc))
            return BotReply("Could not reach the network right now. Please try again later.", markdown=False)
        return None

    async def stats(self) -> BotReply:
        collection = await self._store.get_collection()
        stats = calculate_network_stats(collection.nodes, now=self._now())
        lines = [
            "*Network stats*",
            f"Nodes: {stats.total_nodes} ({stats.online_nodes} online, "
            f"{stats.degraded_nodes} degraded, {stats.offline_nodes} offline)",
            f"Health: {stats.health_score}/100 ({stats.health_label})",
            f"Avg uptime: {stats.avg_uptime:.1f}%",
            f"Storage: {_format_bytes(stats.used_storage)} / {_format_bytes(stats.total_storage)}",
            f"Total credits: {stats.total_credits:,.0f}",
        ]
        if collection.stale:
            lines.append("_Data may be stale._")
        return BotReply("\n".join(lines))

    async def price(self) -> BotReply:
        if not self._price_feed_url:
            return BotReply("Price feed is not configured.", markdown=False)
        try:
            payload = await asyncio.to_thread(self._fetch_json, self._price_feed_url, timeout_seconds=5.0)
        except UpstreamError as exc:
            _logger.warning("bots.price_failed", "Price feed request failed", error=str(exc))
            return BotReply("Price is unavailable right now.", markdown=False)
        price = payload.get("price") if isinstance(payload, dict) else None
        if not isinstance(price, (int, float)) or isinstance(price, bool):
            return BotReply("Price is unavailable right now.", markdown=False)
        return BotReply(f"*Price:* ${price:,.4f}")

    async def node(self, query: str) -> BotReply:
        if not query.strip():
            return BotReply("Usage: /node <node id or prefix>", markdown=False)
        node = await self._store.find_node(query)
        if node is None:
            return BotReply(f"Node {query.strip()[:16]} not found.", markdown=False)
        lines = [
            f"*Node {node.short_id}*",
            f"Status: {node.status}",
            f"Uptime: {node.uptime:.1f}% ({node.uptime_badge})",
            f"Health score: {node.health_score}/100",
            f"Credits: {node.credits:,.0f}",
            f"Version: {node.version} ({node.version_status})",
            f"Storage: {_format_bytes(node.storage.used)} / {_format_bytes(node.storage.total)}",
        ]
        if self._base_url:
            lines.append(f"{self._base_url}/nodes/{node.id}")
        return BotReply("\n".join(lines))

    async def top(self, count: int = TOP_DEFAULT) -> BotReply:
        collection = await self._store.get_collection()
        leaders = get_top_contributors(collection.nodes, count=max(1, min(count, TOP_MAX)))
        if not leaders:
            return BotReply("No nodes available.", markdown=False)
        lines = [f"*Top {len(leaders)} contributors*"]
        for rank, (node, contribution) in enumerate(leaders, start=1):
            lines.append(f"{rank}. {node.short_id} - {contribution.total:.1f} ({contribution.tier})")
        return BotReply("\n".join(lines))


class TelegramClient:
    def __init__(self, token: str, *, api_url: str = "https://api.telegram.org", fetch_json: FetchJson = http_json) -> None:
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._fetch_json = fetch_json

    @classmethod
    def from_settings(cls, settings: Settings) -> "TelegramClient":
        return cls(settings.telegram_bot_token, api_url=settings.telegram_api_url)

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    async def send_message(self, chat_id: int, reply: BotReply) -> None:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": reply.text,
            "disable_web_page_preview": True,
        }
        if reply.markdown:
            payload["parse_mode"] = "Markdown"
        await asyncio.to_thread(
            self._fetch_json,
            f"{self._api_url}/bot{self._token}/sendMessage",
            method="POST",
            payload=payload,
        )


async def handle_telegram_update(update: Mapping[str, Any], commands: BotCommands, client: TelegramClient) -> bool:
    """Answer one Telegram update. Returns True when a reply was sent."""
    message = update.get("message") if isinstance(update, Mapping) else None
    if not isinstance(message, Mapping):
        return False
    text = message.get("text")
    chat = message.get("chat")
    chat_id = chat.get("id") if isinstance(chat, Mapping) else None
    if not isinstance(text, str) or chat_id is None:
        return False

    command, args = parse_command(text)
    reply = await commands.dispatch(command, args)
    if reply is None:
        return False
    await client.send_message(chat_id, reply)
    _logger.info("bots.telegram_reply", "Answered Telegram command", command=command)
    return True


def verify_discord_signature(public_key_hex: str, signature_hex: str, timestamp: str, body: bytes) -> bool:
    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
        public_key.verify(bytes.fromhex(signature_hex), timestamp.encode("utf-8") + body)
    except (InvalidSignature, ValueError):
        return False
    return True


def _option(interaction: Mapping[str, Any], name: str) -> Any:
    data = interaction.get("data") or {}
    for option in data.get("options") or []:
        if isinstance(option, Mapping) and option.get("name") == name:
            return option.get("value")
    return None


async def handle_discord_interaction(interaction: Mapping[str, Any], commands: BotCommands) -> Dict[str, Any]:
    interaction_type = interaction.get("type")
    if interaction_type != DISCORD_APPLICATION_COMMAND:
        return {"type": DISCORD_PONG}

    data = interaction.get("data") or {}
    name = str(data.get("name") or "").lower()
    if name == "node":
        args = str(_option(interaction, "id") or "")
    elif name == "top":
        args = str(_option(interaction, "count") or TOP_DEFAULT)
    else:
        args = ""

    reply = await commands.dispatch(name, args)
    if reply is None:
        reply = BotReply("Unknown command", markdown=False)
    _logger.info("bots.discord_reply", "Answered Discord command", command=name)
    return {"type": DISCORD_CHANNEL_MESSAGE, "data": {"content": reply.text, "flags": 0}}
