"""Read back the JSON-lines relay.

Several runs may append to the same relay, so file order says nothing about
causality across processes. Consumers select records by correlation fields
instead.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from skillgate.boundary import BoundaryScope
from skillgate.events import LogRecord, TestStatus

logger = logging.getLogger(__name__)


def read_records(path: Path) -> list[LogRecord]:
    """Parse every well-formed line of the relay; malformed lines are skipped."""
    records: list[LogRecord] = []
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(LogRecord.from_dict(json.loads(line)))
            except (ValueError, TypeError) as e:
                logger.warning(f"{path}:{lineno}: skipping malformed record: {e}")
    return records


def filter_records(records: Iterable[LogRecord], **fields: Any) -> list[LogRecord]:
    """Keep records whose correlation fields equal every given value."""
    wanted = {k: v for k, v in fields.items() if v is not None}
    selected = []
    for record in records:
        if all(_field_value(record, k) == _plain(v) for k, v in wanted.items()):
            selected.append(record)
    return selected


def _field_value(record: LogRecord, name: str) -> Any:
    return _plain(getattr(record, name))


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, TestStatus) else value


def _scope_of(test_point: str | None) -> BoundaryScope | None:
    if not test_point:
        return None
    for scope in BoundaryScope:
        if test_point.startswith(f"{scope.value}-"):
            return scope
    return None


def validate_boundaries(records: Iterable[LogRecord]) -> list[str]:
    """Check that boundary markers pair up and nest, per suite.

    Records are grouped by (skill, change_id, suite), so interleaved runs of
    different suites do not disturb each other. Returns a list of problems;
    an empty list means every START has exactly one END after it and no
    group ends after its suite ended.
    """
    issues: list[str] = []
    # (skill, change_id, suite) -> {boundary id: open count}
    open_counts: dict[tuple, dict[str, int]] = {}
    closed_suites: set[tuple] = set()

    for record in records:
        scope = _scope_of(record.test_point)
        if scope is None or record.test_status not in (TestStatus.START, TestStatus.END):
            continue
        key = (record.skill, record.change_id, record.suite)
        counts = open_counts.setdefault(key, {})
        bid = record.test_point

        if record.test_status is TestStatus.START:
            if scope is BoundaryScope.SUITE:
                closed_suites.discard(key)
            counts[bid] = counts.get(bid, 0) + 1
            continue

        if counts.get(bid, 0) == 0:
            issues.append(f"{record.suite}: {bid} END without START")
            continue
        if scope is BoundaryScope.GROUP and key in closed_suites:
            issues.append(f"{record.suite}: {bid} END after its suite ended")
        counts[bid] -= 1
        if scope is BoundaryScope.SUITE:
            still_open = sorted(
                other
                for other, n in counts.items()
                if n > 0 and other.startswith(f"{BoundaryScope.GROUP.value}-")
            )
            for other in still_open:
                issues.append(f"{record.suite}: {other} still open at suite END")
            closed_suites.add(key)

    for (_, _, suite), counts in open_counts.items():
        for bid, n in sorted(counts.items()):
            if n > 0:
                issues.append(f"{suite}: {bid} START without END")
    return issues
