from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from .constants import ERROR_MESSAGES
from .errors import ModLoggerError
from .utils import error_embed, safe_response

log = logging.getLogger("modlogger.error_handlers")

_WRAPPERS = (commands.HybridCommandError, commands.CommandInvokeError, app_commands.CommandInvokeError)


def unwrap(error: BaseException) -> BaseException:
    """Peel hybrid/invoke wrappers off to get at the exception the command raised."""
    while isinstance(error, _WRAPPERS) and getattr(error, "original", None) is not None:
        error = error.original
    return error


class ErrorHandler(commands.Cog):
    """Centralized error handling for prefix and hybrid commands."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError) -> None:
        err = unwrap(error)

        if isinstance(err, commands.CommandNotFound):
            return

        if isinstance(err, ModLoggerError) and err.user_message:
            await safe_response(ctx, embed=error_embed(err.user_message), ephemeral=True)
            return

        if isinstance(err, (commands.MissingPermissions, app_commands.MissingPermissions)):
            await safe_response(ctx, embed=error_embed(ERROR_MESSAGES["missing_permissions"]), ephemeral=True)
            return

        if isinstance(err, commands.NotOwner):
            await safe_response(ctx, embed=error_embed(ERROR_MESSAGES["owner_only"]), ephemeral=True)
            return

        if isinstance(err, commands.NoPrivateMessage):
            await safe_response(ctx, embed=error_embed("This command only works inside a server."), ephemeral=True)
            return

        if isinstance(err, (commands.MissingRequiredArgument, commands.BadArgument)):
            await safe_response(ctx, embed=error_embed(f"Invalid usage: {err}"), ephemeral=True)
            return

        log.error("Unexpected error in command %s", ctx.command, exc_info=err)
        await safe_response(ctx, embed=error_embed(ERROR_MESSAGES["unexpected"]), ephemeral=True)


async def setup_error_handlers(bot: commands.Bot) -> None:
    await bot.add_cog(ErrorHandler(bot))
