from unittest.mock import MagicMock

from flockbot.bot import Bot
from flockbot.errors import CallbackError, CycleError, TransportError
from flockbot.scheduler import JOB_ID, BotScheduler
from flockbot.watchers.base import WatcherKey


def make_scheduler(side_effect=None) -> BotScheduler:
    bot = MagicMock(spec=Bot)
    bot.dispatch_cycle.side_effect = side_effect
    bot.registrations = {}
    return BotScheduler(bot, tick_minutes=5)


def test_run_cycle_success() -> None:
    scheduler = make_scheduler()
    assert scheduler.run_cycle() is True
    scheduler.bot.dispatch_cycle.assert_called_once_with()


def test_run_cycle_logs_watcher_failures(caplog) -> None:
    key = WatcherKey("amy", "inbound")
    scheduler = make_scheduler(CycleError({key: TransportError("timeout")}))

    assert scheduler.run_cycle() is False
    assert "amy_inbound will be retried next tick: timeout" in caplog.text


def test_run_cycle_survives_callback_and_unexpected_errors(caplog) -> None:
    error = CallbackError(WatcherKey("amy", "user_timeline"), "on_status", {"id": 1})
    error.__cause__ = RuntimeError("boom")
    scheduler = make_scheduler([error, KeyError("odd")])

    assert scheduler.run_cycle() is False
    assert scheduler.run_cycle() is False
    assert "on_status aborted the cycle: boom" in caplog.text
    assert "Cycle failed" in caplog.text


def test_start_registers_single_coalescing_job() -> None:
    scheduler = make_scheduler()
    scheduler.scheduler = MagicMock()

    scheduler.start()

    kwargs = scheduler.scheduler.add_job.call_args.kwargs
    assert kwargs["id"] == JOB_ID
    assert kwargs["max_instances"] == 1
    assert kwargs["coalesce"] is True
    scheduler.scheduler.start.assert_called_once_with()


def test_shutdown_closes_bot() -> None:
    scheduler = make_scheduler()
    scheduler.shutdown()
    scheduler.bot.close.assert_called_once_with()
