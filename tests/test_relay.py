from __future__ import annotations

from skillgate.events import LogLevel, LogRecord, TestStatus
from skillgate.relay import filter_records, read_records, validate_boundaries


def _marker(bid: str, status: TestStatus, suite: str = "backend", **kw) -> LogRecord:
    return LogRecord(
        timestamp="t",
        level=LogLevel.INFO,
        message=f"{bid} {status.value}",
        skill="crud-webapp",
        suite=suite,
        test_point=bid,
        test_status=status,
        **kw,
    )


def test_read_skips_malformed_lines(tmp_path, events):
    events.info("one", test_point="TP-1")
    with open(events.relay_file, "a", encoding="utf-8") as f:
        f.write("{not json\n\n")
    events.info("two", test_point="TP-2")

    records = read_records(events.relay_file)
    assert [r.message for r in records] == ["one", "two"]


def test_filter_by_correlation_fields(events):
    events.info("a", suite="backend", test_point="TP-1", test_status=TestStatus.START)
    events.error("b", suite="backend", test_point="TP-1", test_status=TestStatus.FAIL)
    events.info("c", suite="frontend", test_point="TP-2", test_status=TestStatus.START)
    records = read_records(events.relay_file)

    assert [r.message for r in filter_records(records, test_point="TP-1")] == ["a", "b"]
    assert [r.message for r in filter_records(records, test_status="FAIL")] == ["b"]
    assert [r.message for r in filter_records(records, test_status=TestStatus.START)] == [
        "a",
        "c",
    ]
    assert [r.message for r in filter_records(records, suite="frontend", test_point=None)] == [
        "c"
    ]
    assert filter_records(records, skill="other") == []


def test_interleaved_suites_validate_independently():
    records = [
        _marker("SUITE-BACKEND", TestStatus.START),
        _marker("SUITE-FRONTEND", TestStatus.START, suite="frontend"),
        _marker("GROUP-AUTH", TestStatus.START),
        _marker("GROUP-AUTH", TestStatus.START, suite="frontend"),
        _marker("GROUP-AUTH", TestStatus.END, suite="frontend"),
        _marker("GROUP-AUTH", TestStatus.END),
        _marker("SUITE-FRONTEND", TestStatus.END, suite="frontend"),
        _marker("SUITE-BACKEND", TestStatus.END),
    ]
    assert validate_boundaries(records) == []


def test_boundary_problems_are_reported():
    records = [
        _marker("GROUP-ORPHAN", TestStatus.END),
        _marker("SUITE-BACKEND", TestStatus.START),
        _marker("GROUP-AUTH", TestStatus.START),
        _marker("SUITE-BACKEND", TestStatus.END),
        _marker("GROUP-AUTH", TestStatus.END),
        _marker("GROUP-USERS", TestStatus.START),
    ]
    assert validate_boundaries(records) == [
        "backend: GROUP-ORPHAN END without START",
        "backend: GROUP-AUTH still open at suite END",
        "backend: GROUP-AUTH END after its suite ended",
        "backend: GROUP-USERS START without END",
    ]


def test_test_point_events_are_not_boundaries():
    records = [
        _marker("API-AUTH-002-login", TestStatus.START),
        _marker("API-AUTH-002-login", TestStatus.PASS),
    ]
    assert validate_boundaries(records) == []
