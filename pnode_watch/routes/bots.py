from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from pnode_watch.config import Settings, get_settings
from pnode_watch.dependencies import get_bot_commands, get_telegram_client
from pnode_watch.errors import PNodeWatchError
from pnode_watch.logger import get_logger
from pnode_watch.services.bots import (
    BotCommands,
    TelegramClient,
    handle_discord_interaction,
    handle_telegram_update,
    verify_discord_signature,
)

router = APIRouter(prefix="/api", tags=["bots"])
_logger = get_logger("api.bots")


@router.get("/telegram/webhook")
async def telegram_status() -> Dict[str, str]:
    return {"status": "Telegram webhook active"}


@router.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    commands: BotCommands = Depends(get_bot_commands),
    client: TelegramClient = Depends(get_telegram_client),
) -> Dict[str, bool]:
    if not client.enabled:
        _logger.warning("telegram.disabled", "Telegram update received but TELEGRAM_BOT_TOKEN is not set")
        return {"ok": False}
    try:
        update = await request.json()
    except ValueError:
        return {"ok": True}
    try:
        await handle_telegram_update(update, commands, client)
    except PNodeWatchError as exc:
        _logger.error("telegram.reply_failed", "Could not answer Telegram update", error=str(exc))
        return {"ok": False}
    return {"ok": True}


@router.post("/discord/interactions")
async def discord_interactions(
    request: Request,
    commands: BotCommands = Depends(get_bot_commands),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    body = await request.body()
    if settings.discord_public_key:
        signature = request.headers.get("x-signature-ed25519", "")
        timestamp = request.headers.get("x-signature-timestamp", "")
        if not signature or not timestamp or not verify_discord_signature(
            settings.discord_public_key, signature, timestamp, body
        ):
            raise HTTPException(status_code=401, detail="Invalid signature")
    elif settings.is_production:
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        interaction = json.loads(body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Malformed interaction payload") from exc
    if not isinstance(interaction, dict):
        raise HTTPException(status_code=400, detail="Malformed interaction payload")
    return await handle_discord_interaction(interaction, commands)
