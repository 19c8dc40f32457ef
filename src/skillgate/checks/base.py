"""Base data structures for test point checks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass(frozen=True)
class CheckOutcome:
    """Result of a single attempt of a check.

    Attributes:
        passed: Whether the check held on this attempt.
        message: Human-readable detail, e.g. the HTTP status that was
            received or the reason a file assertion failed.
    """

    passed: bool
    message: str = ""


@dataclass
class RunContext:
    """State shared by the checks of one run.

    ``variables`` collects values saved from earlier HTTP responses (for
    example an auth token) so later requests can reference them as
    ``${name}``.
    """

    base_url: str = "http://localhost:8000"
    workdir: str = "."
    timeout: float = 8.0
    variables: dict[str, Any] = field(default_factory=dict)


Action = Callable[[], CheckOutcome]
