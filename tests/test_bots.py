from __future__ import annotations

from typing import Any, Dict, List

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from pnode_watch.cache import TTLCache
from pnode_watch.services.bots import (
    HELP_TEXT,
    BotCommands,
    TelegramClient,
    handle_discord_interaction,
    handle_telegram_update,
    parse_command,
    parse_top_count,
    verify_discord_signature,
)
from pnode_watch.services.credits import CreditsService
from pnode_watch.services.nodes import NodeStore
from pnode_watch.services.normalizer import StatusPolicy
from pnode_watch.services.poller import PodPoller
from tests.helpers import NOW, raw_pod, rpc_fetcher


def _store(pods: List[Dict[str, Any]], **fetch_kwargs: Any) -> NodeStore:
    return NodeStore(
        PodPoller(["seed-1"], fetch_json=rpc_fetcher(pods, **fetch_kwargs)),
        CreditsService("", TTLCache(60)),
        TTLCache(30),
        policy=StatusPolicy(),
        now=lambda: NOW,
    )


@pytest.fixture
def commands() -> BotCommands:
    pods = [raw_pod("alphaalpha-1111"), raw_pod("bravobravo-2222", uptime=3600)]
    return BotCommands(_store(pods), public_base_url="https://watch.test/", now=lambda: NOW)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("/stats", ("stats", "")),
        ("/node@PNodeWatchBot abc123", ("node", "abc123")),
        ("/TOP 10", ("top", "10")),
        ("hello there", ("", "")),
    ],
)
def test_parse_command(text: str, expected: tuple) -> None:
    assert parse_command(text) == expected


def test_parse_top_count_bounds() -> None:
    assert parse_top_count("3") == 3
    assert parse_top_count("500") == 20
    assert parse_top_count("0") == 5
    assert parse_top_count("many") == 5


def test_discord_signature_round_trip() -> None:
    private_key = Ed25519PrivateKey.generate()
    public_hex = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
    body = b'{"type":1}'
    signature = private_key.sign(b"1700000000" + body).hex()

    assert verify_discord_signature(public_hex, signature, "1700000000", body)
    assert not verify_discord_signature(public_hex, signature, "1700000001", body)
    assert not verify_discord_signature(public_hex, "not-hex", "1700000000", body)


async def test_dispatch_known_and_unknown_commands(commands: BotCommands) -> None:
    help_reply = await commands.dispatch("help")
    node_reply = await commands.dispatch("node", "alphaalpha")
    missing = await commands.dispatch("node", "zzz")
    top_reply = await commands.dispatch("top", "1")

    assert help_reply is not None and help_reply.text == HELP_TEXT
    assert node_reply is not None
    assert "Status: online" in node_reply.text
    assert node_reply.text.endswith("https://watch.test/nodes/alphaalpha-1111")
    assert missing is not None and "not found" in missing.text
    assert top_reply is not None and top_reply.text.startswith("*Top 1 contributors*")
    assert await commands.dispatch("frobnicate") is None


async def test_stats_reports_unreachable_network_gracefully() -> None:
    commands = BotCommands(_store([], failing={"seed-1"}), now=lambda: NOW)

    reply = await commands.dispatch("stats")

    assert reply is not None
    assert not reply.markdown
    assert "try again" in reply.text


async def test_price_without_feed() -> None:
    commands = BotCommands(_store([]), now=lambda: NOW)

    reply = await commands.price()

    assert reply.text == "Price feed is not configured."


async def test_telegram_update_sends_reply(commands: BotCommands) -> None:
    sent: List[Dict[str, Any]] = []

    def fake_fetch(url: str, **kwargs: Any) -> Any:
        sent.append({"url": url, **kwargs})
        return {"ok": True}

    client = TelegramClient("123:abc", fetch_json=fake_fetch)
    update = {"message": {"text": "/stats", "chat": {"id": 42}}}

    assert await handle_telegram_update(update, commands, client)
    assert await handle_telegram_update({"message": {"text": "just chatting", "chat": {"id": 42}}}, commands, client) is False
    assert len(sent) == 1
    assert sent[0]["url"] == "https://api.telegram.org/bot123:abc/sendMessage"
    assert sent[0]["payload"]["chat_id"] == 42
    assert sent[0]["payload"]["parse_mode"] == "Markdown"
    assert sent[0]["payload"]["text"].startswith("*Network stats*")


async def test_discord_interactions(commands: BotCommands) -> None:
    ping = await handle_discord_interaction({"type": 1}, commands)
    node = await handle_discord_interaction(
        {"type": 2, "data": {"name": "node", "options": [{"name": "id", "value": "bravobravo"}]}},
        commands,
    )
    unknown = await handle_discord_interaction({"type": 2, "data": {"name": "dance"}}, commands)

    assert ping == {"type": 1}
    assert node["type"] == 4
    assert node["data"]["content"].startswith("*Node bravobra*")
    assert unknown["data"] == {"content": "Unknown command", "flags": 0}
