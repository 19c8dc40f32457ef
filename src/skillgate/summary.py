from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
from jinja2 import Environment, FileSystemLoader

from skillgate.coverage import CoverageEntry, CoverageReport
from skillgate.executor import TestResult

DEFAULT_THRESHOLD = 1.0


@dataclass
class AttemptStatistics:
    """Statistics of attempts used per test point."""

    avg: float | None
    min: float | None
    max: float | None
    stddev: float | None

    def to_dict(self) -> dict[str, float | None]:
        return asdict(self)


def attempt_stats(results: list[TestResult]) -> AttemptStatistics:
    """Compute avg, min, max, stddev of the attempts used by *results*."""
    if not results:
        return AttemptStatistics(avg=None, min=None, max=None, stddev=None)

    arr = np.array([r.attempts for r in results])
    return AttemptStatistics(
        avg=round(float(np.mean(arr)), 4),
        min=round(float(np.min(arr)), 4),
        max=round(float(np.max(arr)), 4),
        stddev=round(float(np.std(arr)), 4),
    )


def compute_pass_rate(results: list[TestResult]) -> float:
    """Fraction of passing results, rounded to 4 places; 0.0 when empty."""
    if not results:
        return 0.0
    passed = sum(1 for r in results if r.passed)
    return round(passed / len(results), 4)


@dataclass
class RunSummary:
    pass_rate: float
    threshold: float
    test_points: list[TestResult]
    suite: str | None = None
    coverage: CoverageReport | None = None
    generated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def passed(self) -> bool:
        if self.pass_rate < self.threshold:
            return False
        if self.coverage is not None and not self.coverage.gate_passed:
            return False
        return True

    @property
    def verdict(self) -> str:
        return "PASS" if self.passed else "FAIL"

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    @property
    def counts(self) -> dict[str, int]:
        return {
            "total": len(self.test_points),
            "passed": sum(1 for r in self.test_points if r.passed),
            "failed": sum(1 for r in self.test_points if not r.passed),
            "skipped": sum(1 for r in self.test_points if r.skipped),
        }

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "generated_at": self.generated_at,
            "suite": self.suite,
            "pass_rate": self.pass_rate,
            "threshold": self.threshold,
            "verdict": self.verdict,
            "counts": self.counts,
            "attempt_stats": attempt_stats(self.test_points).to_dict(),
            "test_points": [r.to_dict() for r in self.test_points],
        }
        if self.coverage is not None:
            data["api_coverage"] = [e.to_dict() for e in self.coverage.api]
            data["acceptance_coverage"] = [
                e.to_dict() for e in self.coverage.acceptance
            ]
            data["all_items_included"] = self.coverage.all_items_included
            data["all_items_passed"] = self.coverage.all_items_passed
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunSummary:
        coverage = None
        if "api_coverage" in data or "acceptance_coverage" in data:
            entries = [
                CoverageEntry.from_dict(e)
                for e in data.get("acceptance_coverage", []) + data.get("api_coverage", [])
            ]
            coverage = CoverageReport(entries=entries)
        return cls(
            pass_rate=float(data["pass_rate"]),
            threshold=float(data.get("threshold", DEFAULT_THRESHOLD)),
            test_points=[TestResult.from_dict(r) for r in data.get("test_points", [])],
            suite=data.get("suite"),
            coverage=coverage,
            generated_at=data.get("generated_at", ""),
        )


def build(
    test_results: list[TestResult],
    threshold: float = DEFAULT_THRESHOLD,
    *,
    suite: str | None = None,
    coverage: CoverageReport | None = None,
) -> RunSummary:
    return RunSummary(
        pass_rate=compute_pass_rate(test_results),
        threshold=threshold,
        test_points=list(test_results),
        suite=suite,
        coverage=coverage,
    )


def write_summary_json(summary: RunSummary, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(summary.to_dict(), indent=2, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )
    return path


def load_summary(path: Path) -> RunSummary:
    return RunSummary.from_dict(json.loads(path.read_text(encoding="utf-8")))


def _cell(value: Any) -> str:
    """Make *value* safe inside a Markdown table cell."""
    return " ".join(str(value).split()).replace("|", "\\|")


def render_markdown(
    summary: RunSummary, suites: list[RunSummary] | None = None
) -> str:
    """Render the human-readable report for *summary*.

    *suites* are the per-suite summaries of the same run, listed in an
    overview table when given.
    """
    tmpl_dir = Path(__file__).parent / "templates"
    env = Environment(
        loader=FileSystemLoader(str(tmpl_dir)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["cell"] = _cell
    template = env.get_template("report.md.j2")
    return template.render(
        summary=summary,
        suites=suites or [],
        counts=summary.counts,
        stats=attempt_stats(summary.test_points),
    )


def write_markdown_report(
    summary: RunSummary, path: Path, suites: list[RunSummary] | None = None
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_markdown(summary, suites), encoding="utf-8")
    return path
