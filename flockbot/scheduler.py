"""In-process scheduler: runs dispatch cycles on a fixed tick."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from flockbot.bot import Bot
from flockbot.errors import CallbackError, CycleError

logger = logging.getLogger(__name__)

JOB_ID = "dispatch_cycle"


class BotScheduler:
    """Calls ``bot.dispatch_cycle()`` every ``tick_minutes``.

    The tick only bounds how often watchers are asked; each watcher still
    fetches at its own registered interval. Errors from a cycle are logged
    and the next tick tries again.
    """

    def __init__(self, bot: Bot, tick_minutes: int) -> None:
        self.bot = bot
        self.tick_minutes = tick_minutes
        self.scheduler = BlockingScheduler()

    def run_cycle(self) -> bool:
        """Run one cycle with full error isolation. Returns True on success."""
        try:
            self.bot.dispatch_cycle()
        except CycleError as e:
            for key, error in e.errors.items():
                logger.warning("%s will be retried next tick: %s", key, error)
            return False
        except CallbackError as e:
            logger.error("%s aborted the cycle: %s", e.callback_name, e.__cause__, exc_info=True)
            return False
        except Exception as e:
            logger.error("Cycle failed: %s", e, exc_info=True)
            return False
        return True

    def start(self) -> None:
        """Schedule the cycle job and start the blocking scheduler."""
        self.scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(minutes=self.tick_minutes),
            id=JOB_ID,
            name=f"Check {self.bot!r}",
            next_run_time=datetime.now(timezone.utc),
            misfire_grace_time=300,
            coalesce=True,
            max_instances=1,
        )
        logger.info(
            "flockbot started: %d watcher(s), tick every %d minute(s). Press Ctrl+C to stop.",
            len(self.bot.registrations),
            self.tick_minutes,
        )
        self.scheduler.start()

    def shutdown(self) -> None:
        """Gracefully shut down the scheduler and the bot."""
        logger.info("Shutting down flockbot...")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.bot.close()
