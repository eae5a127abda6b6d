"""Main entry point for abilitybot.

Initializes logging in two phases (defaults then config-driven),
validates the configuration, creates the AbilityBot, and runs the
async event loop with graceful shutdown on SIGTERM/SIGINT.

Key functions:
    main: Async entry point.
    run: Synchronous wrapper that calls asyncio.run(main()).
"""

import asyncio
import signal
import sys

import structlog

from . import __version__
from .exceptions import ConfigurationError
from .logging_config import setup_logging


async def main():
    """Main async entry point."""
    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("abilitybot")

    logger.info("abilitybot_starting", version=__version__)

    # Import here to ensure logging is configured first
    from .bot import AbilityBot
    from .config import get_config

    config = get_config()
    try:
        config.validate()
    except ConfigurationError as e:
        logger.error("config_invalid", error=str(e), setting=e.setting_name)
        sys.exit(1)

    # Phase 2: reconfigure with real config, cache_logger_on_first_use=True
    setup_logging(config)

    bot = AbilityBot(config=config)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: handle_shutdown(signal.SIGINT),
                )

    try:
        bot_task = asyncio.create_task(bot.run())
        stop_task = asyncio.create_task(shutdown_event.wait())
        await asyncio.wait(
            {bot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )

        bot_task.cancel()
        stop_task.cancel()
        try:
            await bot_task
        except asyncio.CancelledError:
            pass

    except Exception as e:
        logger.error("bot_error", error=str(e))
        raise
    finally:
        await bot.stop()
        logger.info("abilitybot_stopped")


def run():
    """Synchronous entry point for the ``abilitybot`` console script."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
