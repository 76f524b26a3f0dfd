from __future__ import annotations

import asyncio
import logging
import os
import signal

from aiohttp import web
from dotenv import load_dotenv

from .bot import ModLoggerBot
from .config import load_settings
from .logging_setup import setup_logging

log = logging.getLogger("modlogger.web")

SERVICE_NAME = "modlogger"
DEFAULT_PORT = 3000


def build_health_app() -> web.Application:
    app = web.Application()

    async def health(_: web.Request) -> web.Response:
        return web.json_response({"ok": True, "service": SERVICE_NAME})

    app.router.add_get("/", health)
    app.router.add_get("/healthz", health)
    return app


async def _start_web_server() -> web.AppRunner:
    runner = web.AppRunner(build_health_app())
    await runner.setup()

    port = int(os.getenv("PORT", str(DEFAULT_PORT)))
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()

    log.info("Health server listening on 0.0.0.0:%s", port)
    return runner


async def main_async() -> None:
    load_dotenv()
    settings = load_settings()
    setup_logging(settings.log_level)

    runner = await _start_web_server()

    bot = ModLoggerBot(settings)

    # Hosting platforms send SIGTERM on redeploy.
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows
            pass

    try:
        async with bot:
            bot_task = asyncio.create_task(bot.start(settings.token), name="modlogger-bot")
            stop_task = asyncio.create_task(stop_event.wait(), name="modlogger-stop")
            done, pending = await asyncio.wait({bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

            if stop_event.is_set():
                log.info("Shutdown signal received; closing bot...")
                await bot.close()

            for t in pending:
                t.cancel()
            # A bad token or a gateway failure ends bot_task first; surface it.
            if bot_task in done and not bot_task.cancelled():
                exc = bot_task.exception()
                if exc is not None:
                    raise exc
    finally:
        await runner.cleanup()


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
