"""Entry point for flockbot: python -m flockbot [--config PATH] [--once]."""

from __future__ import annotations

import argparse
import importlib
import logging
import signal
import sys

from flockbot.bot import Bot
from flockbot.config import BotConfig, load_config
from flockbot.errors import FlockbotError, ValidationError
from flockbot.scheduler import BotScheduler
from flockbot.utils.logging_config import setup_logging

logger = logging.getLogger("flockbot")


def load_bot_class(spec: str) -> type[Bot]:
    """Import ``package.module:ClassName`` and check it is a Bot subclass."""
    module_name, sep, class_name = spec.partition(":")
    if not sep or not module_name or not class_name:
        raise ValidationError(f"bot {spec!r} must look like 'package.module:ClassName'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValidationError(f"cannot import {module_name}: {e}") from e
    bot_class = getattr(module, class_name, None)
    if not isinstance(bot_class, type) or not issubclass(bot_class, Bot):
        raise ValidationError(f"{spec} is not a flockbot Bot subclass")
    return bot_class


def build_bot(config: BotConfig) -> Bot:
    if not config.bot:
        raise ValidationError("no bot class configured ([general] bot = 'module:Class')")
    return load_bot_class(config.bot).from_config(config)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="flockbot")
    parser.add_argument("--config", default=None, help="path to config.toml")
    parser.add_argument(
        "--once", action="store_true", help="run a single cycle and exit (for cron)"
    )
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ValidationError as e:
        print(f"flockbot: {e}", file=sys.stderr)
        return 2
    setup_logging(config.log_level)

    try:
        bot = build_bot(config)
    except FlockbotError as e:
        logger.error("Could not start bot: %s", e)
        return 2

    if args.once:
        try:
            bot.dispatch_cycle()
        except FlockbotError as e:
            logger.error("problems with %r: %s", bot, e, exc_info=True)
            return 1
        finally:
            bot.close()
        return 0

    scheduler = BotScheduler(bot, config.tick_minutes)

    def shutdown(signum: int, frame: object) -> None:
        scheduler.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    scheduler.start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
