"""
Unit tests for rate-limited dispatch

Tests:
- One result per recipient, in order
- Failures are recorded and do not stop the loop
- Pacing between sends (never before the first), shared across threads
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import FakeEmailSender, SleepRecorder, TimestampingSender, min_gap

from neighborly.contracts.models import DispatchStatus, Recipient, RenderedMessage
from neighborly.digest.dispatcher import Dispatcher
from neighborly.observability.structured import EventType


@pytest.fixture
def message() -> RenderedMessage:
    return RenderedMessage(subject="Your Maple Heights weekly summary", html="<p>hi</p>", text="hi")


def make_recipients(count: int) -> list[Recipient]:
    return [Recipient(email=f"n{i}@example.com", name=f"N{i}") for i in range(count)]


def test_sends_to_every_recipient_in_order(message, run_log):
    sender = FakeEmailSender()
    sleeper = SleepRecorder()
    recipients = make_recipients(4)

    summary = Dispatcher(sender, sleep_fn=sleeper).dispatch(message, recipients, run_log)

    assert summary.sent == 4
    assert summary.failed == 0
    assert [r.recipient for r in summary.results] == [r.email for r in recipients]
    assert [r.message_id for r in summary.results] == ["msg_0", "msg_1", "msg_2", "msg_3"]
    assert [email for email, _ in sender.sent] == [r.email for r in recipients]


def test_pacing_between_sends(message, run_log):
    """N sends pause N-1 times for 1/rate + margin"""
    sleeper = SleepRecorder()
    dispatcher = Dispatcher(
        FakeEmailSender(),
        rate_limit_per_second=2.0,
        safety_margin_seconds=0.1,
        sleep_fn=sleeper,
        clock_fn=sleeper.clock,
    )
    dispatcher.dispatch(message, make_recipients(5), run_log)

    assert len(sleeper.calls) == 4
    assert all(seconds == pytest.approx(0.6) for seconds in sleeper.calls)
    assert sum(sleeper.calls) == pytest.approx(4 * 0.6)


def test_single_recipient_never_sleeps(message, run_log):
    sleeper = SleepRecorder()
    Dispatcher(FakeEmailSender(), sleep_fn=sleeper, clock_fn=sleeper.clock).dispatch(
        message, make_recipients(1), run_log
    )
    assert sleeper.calls == []


def test_failed_send_is_recorded_and_loop_continues(message, run_log):
    """A provider error for one recipient does not stop the others"""
    sender = FakeEmailSender(fail_on={1})
    summary = Dispatcher(sender, sleep_fn=SleepRecorder()).dispatch(
        message, make_recipients(3), run_log
    )

    assert summary.sent == 2
    assert summary.failed == 1
    failed = summary.results[1]
    assert failed.status == DispatchStatus.FAILED
    assert "provider refused n1@example.com" in failed.reason
    assert sender.attempts == 3

    (error,) = run_log.events_of(EventType.SEND_ERROR)
    assert error["recipient"] == "n1@example.com"


def test_missing_confirmation_id_counts_as_failure(message, run_log):
    sender = FakeEmailSender(missing_id_on={0})
    summary = Dispatcher(sender, sleep_fn=SleepRecorder()).dispatch(
        message, make_recipients(2), run_log
    )
    assert summary.results[0].status == DispatchStatus.FAILED
    assert summary.results[0].reason == "no confirmation id"
    assert summary.sent == 1


def test_no_recipients(message, run_log):
    summary = Dispatcher(FakeEmailSender(), sleep_fn=SleepRecorder()).dispatch(
        message, [], run_log
    )
    assert summary.sent == 0
    assert summary.failed == 0
    assert summary.results == []


def test_rate_must_be_positive():
    with pytest.raises(ValueError):
        Dispatcher(FakeEmailSender(), rate_limit_per_second=0)


def test_second_dispatch_waits_for_previous_send(message, run_log):
    """Pacing is measured from the last send of any dispatch on the same instance"""
    sleeper = SleepRecorder()
    dispatcher = Dispatcher(FakeEmailSender(), sleep_fn=sleeper, clock_fn=sleeper.clock)

    dispatcher.dispatch(message, make_recipients(1), run_log)
    sleeper.now += 0.2
    dispatcher.dispatch(message, make_recipients(1), run_log)

    assert sleeper.calls == [pytest.approx(0.4)]


def test_no_wait_once_interval_has_passed(message, run_log):
    sleeper = SleepRecorder()
    dispatcher = Dispatcher(FakeEmailSender(), sleep_fn=sleeper, clock_fn=sleeper.clock)

    dispatcher.dispatch(message, make_recipients(1), run_log)
    sleeper.now += 3600
    dispatcher.dispatch(message, make_recipients(1), run_log)

    assert sleeper.calls == []


def test_concurrent_dispatches_share_one_rate_ceiling(message, run_log):
    """Four threads dispatching at once still respect a single send interval"""
    sender = TimestampingSender()
    dispatcher = Dispatcher(sender, rate_limit_per_second=50.0, safety_margin_seconds=0.0)

    with ThreadPoolExecutor(max_workers=4) as pool:
        summaries = list(
            pool.map(lambda _: dispatcher.dispatch(message, make_recipients(3), run_log), range(4))
        )

    assert sum(s.sent for s in summaries) == 12
    assert not sender.overlapped
    assert min_gap(sender.started) >= dispatcher.interval - 0.002
