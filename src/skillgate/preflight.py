"""Preflight gate run before any test point.

Checks that every required artifact exists and every required endpoint
answers with a status in ``[200, 400)``. All problems are collected so a
single run reports every blocking issue at once.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 6.0


@dataclass(frozen=True)
class EndpointIssue:
    url: str
    status: int | None = None
    error: str | None = None

    def describe(self) -> str:
        if self.status is not None:
            return f"GET {self.url} returned {self.status}"
        return f"GET {self.url} failed: {self.error}"


@dataclass
class PreflightResult:
    passed: bool
    missing_files: list[str] = field(default_factory=list)
    endpoint_issues: list[EndpointIssue] = field(default_factory=list)
    checked_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def problems(self) -> list[str]:
        lines = [f"missing file: {p}" for p in self.missing_files]
        lines.extend(issue.describe() for issue in self.endpoint_issues)
        return lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "pass": self.passed,
            "checked_at": self.checked_at,
            "missing_files": list(self.missing_files),
            "endpoint_issues": [asdict(i) for i in self.endpoint_issues],
        }


class PreflightFailed(RuntimeError):
    """Raised by the runner when the preflight gate does not pass."""

    def __init__(self, result: PreflightResult) -> None:
        self.result = result
        super().__init__(
            "preflight failed:\n" + "\n".join(f"  {p}" for p in result.problems())
        )


def _check_endpoint(
    client: httpx.Client, url: str, timeout: float
) -> EndpointIssue | None:
    # A 3xx already proves the service is up, so redirects are not followed.
    try:
        response = client.get(url, timeout=timeout, follow_redirects=False)
    except httpx.TimeoutException:
        return EndpointIssue(url=url, error="timed out")
    except httpx.HTTPError as e:
        return EndpointIssue(url=url, error=str(e) or type(e).__name__)

    if 200 <= response.status_code < 400:
        logger.debug(f"Endpoint {url} ok ({response.status_code})")
        return None
    return EndpointIssue(url=url, status=response.status_code)


def check(
    required_files: Iterable[str],
    required_endpoints: Iterable[str],
    *,
    root: Path | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    client: httpx.Client | None = None,
) -> PreflightResult:
    """Verify required files and endpoints; never stops at the first problem."""
    missing: list[str] = []
    for raw in required_files:
        path = Path(raw)
        if root is not None and not path.is_absolute():
            path = root / path
        if not path.exists():
            logger.debug(f"Required file missing: {path}")
            missing.append(raw)

    issues: list[EndpointIssue] = []
    endpoints = list(required_endpoints)
    if endpoints:
        owns_client = client is None
        if client is None:
            client = httpx.Client(timeout=timeout)
        try:
            for url in endpoints:
                issue = _check_endpoint(client, url, timeout)
                if issue is not None:
                    issues.append(issue)
        finally:
            if owns_client:
                client.close()

    return PreflightResult(
        passed=not missing and not issues,
        missing_files=missing,
        endpoint_issues=issues,
    )


def write_result(result: PreflightResult, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result.to_dict(), indent=2) + "\n", encoding="utf-8")
    return path
