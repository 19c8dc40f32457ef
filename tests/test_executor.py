"""Tests for the bounded-retry test point executor."""

from __future__ import annotations

from collections import Counter

import pytest

from skillgate.checks import CheckOutcome
from skillgate.events import LogWriteError, TestStatus
from skillgate.executor import EXHAUSTED_MESSAGE, TestPoint, TestPointExecutor
from skillgate.relay import read_records


def _statuses(tmp_path):
    records = read_records(tmp_path / "logs" / "relay.jsonl")
    return [(r.test_status.value, r.attempt) for r in records]


def _failing_then_passing(failures: int):
    calls = {"n": 0}

    def action():
        calls["n"] += 1
        if calls["n"] <= failures:
            return CheckOutcome(False, f"attempt {calls['n']} failed")
        return CheckOutcome(True, "ok")

    return action


def test_always_failing_point_is_skipped_after_max_attempts(tmp_path, events, no_sleep):
    executor = TestPointExecutor(events, backoff_seconds=0.2, sleep=no_sleep.append)

    result = executor.run(
        "API-USER-001-list", "backend", lambda: CheckOutcome(False, "503"), 3
    )

    assert result.passed is False
    assert result.skipped is True
    assert result.attempts == 3
    assert result.message == EXHAUSTED_MESSAGE
    assert _statuses(tmp_path) == [
        ("START", 1),
        ("FAIL", 1),
        ("RETRY", 2),
        ("FAIL", 2),
        ("RETRY", 3),
        ("FAIL", 3),
        ("SKIP", 3),
    ]
    # no backoff after the final attempt
    assert no_sleep == [0.2, 0.2]


def test_point_passing_on_third_attempt(tmp_path, events, no_sleep):
    executor = TestPointExecutor(events, sleep=no_sleep.append)

    result = executor.run("API-AUTH-002-login-valid", "backend", _failing_then_passing(2), 5)

    assert result.passed is True
    assert result.skipped is False
    assert result.attempts == 3
    assert result.message == "ok"
    assert _statuses(tmp_path) == [
        ("START", 1),
        ("FAIL", 1),
        ("RETRY", 2),
        ("FAIL", 2),
        ("RETRY", 3),
        ("PASS", 3),
    ]


@pytest.mark.parametrize("failures,max_attempts", [(0, 1), (0, 5), (4, 5), (5, 5), (9, 3)])
def test_event_counts_respect_attempt_bound(tmp_path, events, no_sleep, failures, max_attempts):
    executor = TestPointExecutor(events, sleep=no_sleep.append)
    executor.run("TP", "suite", _failing_then_passing(failures), max_attempts)

    counts = Counter(status for status, _ in _statuses(tmp_path))
    assert counts["START"] == 1
    assert counts["RETRY"] <= max_attempts - 1
    assert counts["PASS"] + counts["SKIP"] == 1
    assert counts["FAIL"] + counts["PASS"] <= max_attempts


def test_exceptions_become_failed_attempts(tmp_path, events, no_sleep):
    def explode():
        raise ConnectionError("connection refused")

    executor = TestPointExecutor(events, sleep=no_sleep.append)
    result = executor.run("TP", "suite", explode, 2)

    assert result.skipped is True
    records = read_records(tmp_path / "logs" / "relay.jsonl")
    fails = [r for r in records if r.test_status is TestStatus.FAIL]
    assert [r.message for r in fails] == ["connection refused"] * 2


def test_non_outcome_return_counts_as_failure(events, no_sleep):
    executor = TestPointExecutor(events, sleep=no_sleep.append)
    result = executor.run("TP", "suite", lambda: True, 1)
    assert result.passed is False


def test_default_max_attempts_is_used(tmp_path, events, no_sleep):
    executor = TestPointExecutor(events, default_max_attempts=4, sleep=no_sleep.append)
    result = executor.run("TP", "suite", lambda: CheckOutcome(False))
    assert result.attempts == 4


def test_invalid_max_attempts(events):
    executor = TestPointExecutor(events)
    with pytest.raises(ValueError):
        executor.run("TP", "suite", lambda: CheckOutcome(True), 0)


def test_records_carry_correlation_fields(tmp_path, events, no_sleep):
    executor = TestPointExecutor(events, sleep=no_sleep.append)
    point = TestPoint(
        id="TP-9",
        suite="frontend",
        action=lambda: CheckOutcome(True, "fine"),
        max_attempts=2,
        group="pages",
    )
    result = executor.run_point(point)

    assert result.suite == "frontend"
    assert result.group == "pages"
    for record in read_records(tmp_path / "logs" / "relay.jsonl"):
        assert record.suite == "frontend"
        assert record.test_point == "TP-9"
        assert record.max_attempts == 2
        assert record.skill == "crud-webapp"


def test_logger_failure_propagates(mocker, events):
    mocker.patch.object(events, "write", side_effect=LogWriteError("disk full"))
    executor = TestPointExecutor(events)
    with pytest.raises(LogWriteError):
        executor.run("TP", "suite", lambda: CheckOutcome(True), 1)
