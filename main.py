"""
Chatbot client — entry point.

Run with:
    python main.py
"""

import asyncio
import logging
import sys

# Require Python 3.10+ for the union-type hints used throughout the package.
if sys.version_info < (3, 10):
    sys.exit(
        "Python 3.10 or later is required.\n"
        f"You are running Python {sys.version_info.major}.{sys.version_info.minor}."
    )

from chat_client.config import ClientConfig  # noqa: E402
from chat_client.console import run_console  # noqa: E402
from chat_client.errors import ConfigError  # noqa: E402


def main() -> None:
    try:
        config = ClientConfig.load()
        config.validate()
    except ConfigError as exc:
        sys.exit(str(exc))

    # Set CHATBOT_LOG_LEVEL=DEBUG to see every request and state change.
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    asyncio.run(run_console(config))


if __name__ == "__main__":
    main()
