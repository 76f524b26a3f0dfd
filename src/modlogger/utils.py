from __future__ import annotations

import logging
from typing import Any

import discord
from discord.ext import commands

from .constants import COLORS, MAX_EMBED_DESCRIPTION, MAX_EMBED_TITLE, MAX_FIELD_VALUE

log = logging.getLogger("modlogger.utils")


def format_duration(ms: int) -> str:
    """``5025000`` -> ``"1h 23m 45s"``."""
    total = max(0, int(ms)) // 1000
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h}h {m}m {s}s"


def truncate(text: str, limit: int = MAX_FIELD_VALUE) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def safe_embed(title: str, description: str = "", color: int = COLORS["default"]) -> discord.Embed:
    """Create an embed with safe length limits."""
    return discord.Embed(
        title=truncate(title, MAX_EMBED_TITLE),
        description=truncate(description, MAX_EMBED_DESCRIPTION),
        color=color,
    )


def error_embed(message: str) -> discord.Embed:
    return safe_embed("Error", message, COLORS["error"])


def success_embed(message: str) -> discord.Embed:
    return safe_embed("Success", message, COLORS["success"])


def info_embed(message: str) -> discord.Embed:
    return safe_embed("Information", message, COLORS["info"])


async def safe_response(
    target: discord.Interaction | commands.Context,
    content: str | None = None,
    embed: discord.Embed | None = None,
    ephemeral: bool = False,
    **kwargs: Any,
) -> bool:
    """Reply to an interaction or context, swallowing delivery failures."""
    try:
        if isinstance(target, discord.Interaction):
            if target.response.is_done():
                await target.followup.send(content=content, embed=embed, ephemeral=ephemeral, **kwargs)
            else:
                await target.response.send_message(content=content, embed=embed, ephemeral=ephemeral, **kwargs)
        else:
            await target.reply(content=content, embed=embed, ephemeral=ephemeral, **kwargs)
        return True
    except discord.HTTPException as e:
        log.error("Failed to send response: %s", e)
        return False
