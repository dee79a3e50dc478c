#!/usr/bin/env python3
import asyncio
import logging
import signal

from noncequeue.configuration import Configuration
from noncequeue.core import Main_Core
from noncequeue.logger import configure_logging

logger = logging.getLogger(__name__)


async def main() -> None:
    """Main entry point with graceful shutdown handling."""
    configure_logging()
    logger.info("Starting nonce queue...")

    core = Main_Core(Configuration())

    def shutdown_handler():
        logger.info("Shutdown signal received")
        core.request_stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_handler)

    try:
        await core.initialize()
        await core.run()
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        raise
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await core.stop()
        logger.info("Nonce queue shutdown complete")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
