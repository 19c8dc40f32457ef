"""Dual-sink structured event logger.

Every event is one :class:`LogRecord`. Depending on the configured transport
mode it is appended as a ``key=value`` text line to the shared log file, as a
compact JSON object to the JSON-lines relay file, or both. Several processes
may append to the same files at once, so each write opens, appends and closes
the file and retries a bounded number of times on ``OSError``.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from skillgate.config import LoggingConfig, TransportMode

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    CHANGE = "CHANGE"


class TestStatus(str, Enum):
    __test__ = False

    START = "START"
    RETRY = "RETRY"
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"
    END = "END"


class LogWriteError(RuntimeError):
    """Raised when an append still fails after every retry."""


CORRELATION_FIELDS = (
    "skill",
    "change_id",
    "phase",
    "suite",
    "test_point",
    "test_status",
    "attempt",
    "max_attempts",
)

# Short keys used in the text log, in output order.
_TEXT_KEYS = {
    "skill": "skill",
    "change_id": "change",
    "phase": "phase",
    "suite": "suite",
    "test_point": "test_point",
    "test_status": "status",
    "attempt": "attempt",
    "max_attempts": "max_attempts",
}


@dataclass(frozen=True)
class LogRecord:
    timestamp: str
    level: LogLevel
    message: str
    skill: str | None = None
    change_id: str | None = None
    phase: str | None = None
    suite: str | None = None
    test_point: str | None = None
    test_status: TestStatus | None = None
    attempt: int | None = None
    max_attempts: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["level"] = self.level.value
        if self.test_status is not None:
            data["test_status"] = self.test_status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogRecord:
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["level"] = LogLevel(kwargs.get("level", LogLevel.INFO.value))
        if kwargs.get("test_status") is not None:
            kwargs["test_status"] = TestStatus(kwargs["test_status"])
        kwargs.setdefault("message", "")
        kwargs.setdefault("timestamp", "")
        return cls(**kwargs)

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    def to_text_line(self) -> str:
        tokens = [self.timestamp, f"level={self.level.value}"]
        for name, key in _TEXT_KEYS.items():
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            tokens.append(f"{key}={_quote(str(value))}")
        tokens.append(" ".join(self.message.splitlines()))
        return " ".join(tokens)


def _quote(value: str) -> str:
    if not value or any(c.isspace() or c in '="' for c in value):
        return json.dumps(value, ensure_ascii=False)
    return value


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def append_line(
    path: Path,
    line: str,
    retries: int = 10,
    backoff_seconds: float = 0.12,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Append one line to *path*, retrying on transient ``OSError``.

    The file is opened and closed on every call; no handle is kept between
    writes. Raises :class:`LogWriteError` once *retries* attempts failed.
    """
    last_error: OSError | None = None
    for attempt in range(1, retries + 1):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
            return
        except OSError as e:
            last_error = e
            logger.debug(f"Append to {path} failed (attempt {attempt}/{retries}): {e}")
            if attempt < retries:
                sleep(backoff_seconds)
    raise LogWriteError(
        f"Could not append to {path} after {retries} attempts: {last_error}"
    ) from last_error


class StructuredLogger:
    """Writes :class:`LogRecord` events to the text log and/or JSON relay."""

    def __init__(
        self,
        config: LoggingConfig,
        *,
        base_dir: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
        **context: Any,
    ) -> None:
        unknown = set(context) - set(CORRELATION_FIELDS)
        if unknown:
            raise TypeError(f"Unknown correlation fields: {', '.join(sorted(unknown))}")
        self.config = config
        base = Path(base_dir) if base_dir is not None else Path.cwd()
        self.log_file = base / config.log_file
        self.relay_file = base / config.relay_file
        self.context = {k: v for k, v in context.items() if v is not None}
        self._sleep = sleep

    def bind(self, **fields_: Any) -> StructuredLogger:
        """Return a logger sharing the sinks with extra default fields."""
        bound = copy.copy(self)
        bound.context = {
            **self.context,
            **{k: v for k, v in fields_.items() if v is not None},
        }
        return bound

    def emit(self, level: LogLevel, message: str, **correlation: Any) -> LogRecord:
        unknown = set(correlation) - set(CORRELATION_FIELDS)
        if unknown:
            raise TypeError(f"Unknown correlation fields: {', '.join(sorted(unknown))}")

        values = {**self.context, **{k: v for k, v in correlation.items() if v is not None}}
        if "test_status" in values:
            values["test_status"] = TestStatus(values["test_status"])
        record = LogRecord(
            timestamp=_now(), level=LogLevel(level), message=message, **values
        )
        self.write(record)
        return record

    def write(self, record: LogRecord) -> None:
        mode = self.config.mode
        write_text = mode in (TransportMode.REALTIME, TransportMode.HYBRID)

        if mode in (TransportMode.JSON, TransportMode.HYBRID):
            try:
                self._append(self.relay_file, record.to_json_line())
            except LogWriteError as e:
                if not self.config.fallback_to_realtime_on_json_error:
                    raise
                logger.warning(f"JSON relay unavailable, falling back to text log: {e}")
                write_text = True

        if write_text:
            self._append(self.log_file, record.to_text_line())

    def _append(self, path: Path, line: str) -> None:
        append_line(
            path,
            line,
            retries=self.config.write_retries,
            backoff_seconds=self.config.write_backoff_seconds,
            sleep=self._sleep,
        )

    def info(self, message: str, **correlation: Any) -> LogRecord:
        return self.emit(LogLevel.INFO, message, **correlation)

    def success(self, message: str, **correlation: Any) -> LogRecord:
        return self.emit(LogLevel.SUCCESS, message, **correlation)

    def error(self, message: str, **correlation: Any) -> LogRecord:
        return self.emit(LogLevel.ERROR, message, **correlation)

    def change(self, message: str, **correlation: Any) -> LogRecord:
        return self.emit(LogLevel.CHANGE, message, **correlation)
