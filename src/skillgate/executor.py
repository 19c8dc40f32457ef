from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar

from skillgate.checks.base import Action, CheckOutcome
from skillgate.events import LogLevel, StructuredLogger, TestStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_SECONDS = 0.2
EXHAUSTED_MESSAGE = "max attempts exceeded"


@dataclass
class TestPoint:
    __test__: ClassVar[bool] = False

    id: str
    suite: str
    action: Action
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    group: str | None = None
    covers: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TestResult:
    """Terminal outcome of one test point.

    ``skipped`` means every attempt failed; a skipped result never passes.
    """

    __test__: ClassVar[bool] = False

    test_point: str
    passed: bool
    message: str
    attempts: int
    skipped: bool = False
    suite: str | None = None
    group: str | None = None

    @property
    def status(self) -> str:
        if self.passed:
            return TestStatus.PASS.value
        return TestStatus.SKIP.value if self.skipped else TestStatus.FAIL.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_point": self.test_point,
            "pass": self.passed,
            "message": self.message,
            "attempts": self.attempts,
            "skipped": self.skipped,
            "suite": self.suite,
            "group": self.group,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestResult:
        return cls(
            test_point=data["test_point"],
            passed=bool(data.get("pass", data.get("passed", False))),
            message=data.get("message", ""),
            attempts=int(data.get("attempts", 0)),
            skipped=bool(data.get("skipped", False)),
            suite=data.get("suite"),
            group=data.get("group"),
        )


def _invoke(action: Action) -> CheckOutcome:
    """Run *action*, turning anything it raises into a failed outcome."""
    try:
        outcome = action()
    except Exception as e:
        logger.debug(f"Check raised {type(e).__name__}: {e}")
        return CheckOutcome(passed=False, message=str(e) or type(e).__name__)
    if not isinstance(outcome, CheckOutcome):
        return CheckOutcome(
            passed=False, message=f"check returned {type(outcome).__name__}"
        )
    return outcome


class TestPointExecutor:
    """Runs test points with a bounded number of attempts.

    Each attempt is announced (START for the first, RETRY afterwards) and
    followed by PASS or FAIL. A point that never passes ends with SKIP.
    Only logger write failures propagate out of :meth:`run`.
    """

    __test__: ClassVar[bool] = False

    def __init__(
        self,
        events: StructuredLogger,
        *,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.events = events
        self.default_max_attempts = default_max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def run(
        self,
        test_point_id: str,
        suite: str,
        action: Action,
        max_attempts: int | None = None,
        *,
        group: str | None = None,
    ) -> TestResult:
        if max_attempts is None:
            max_attempts = self.default_max_attempts
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        events = self.events.bind(
            suite=suite, test_point=test_point_id, max_attempts=max_attempts
        )

        for attempt in range(1, max_attempts + 1):
            if attempt == 1:
                events.info("start", test_status=TestStatus.START, attempt=attempt)
            else:
                events.info(
                    f"retry {attempt}/{max_attempts}",
                    test_status=TestStatus.RETRY,
                    attempt=attempt,
                )

            outcome = _invoke(action)

            if outcome.passed:
                events.emit(
                    LogLevel.SUCCESS,
                    outcome.message or "passed",
                    test_status=TestStatus.PASS,
                    attempt=attempt,
                )
                return TestResult(
                    test_point=test_point_id,
                    passed=True,
                    message=outcome.message,
                    attempts=attempt,
                    suite=suite,
                    group=group,
                )

            events.emit(
                LogLevel.ERROR,
                outcome.message or "failed",
                test_status=TestStatus.FAIL,
                attempt=attempt,
            )
            if attempt < max_attempts:
                self._sleep(self.backoff_seconds)

        events.emit(
            LogLevel.ERROR,
            EXHAUSTED_MESSAGE,
            test_status=TestStatus.SKIP,
            attempt=max_attempts,
        )
        return TestResult(
            test_point=test_point_id,
            passed=False,
            message=EXHAUSTED_MESSAGE,
            attempts=max_attempts,
            skipped=True,
            suite=suite,
            group=group,
        )

    def run_point(self, point: TestPoint) -> TestResult:
        return self.run(
            point.id,
            point.suite,
            point.action,
            point.max_attempts,
            group=point.group,
        )
