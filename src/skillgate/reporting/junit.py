from __future__ import annotations

from pathlib import Path

from junitparser import Failure, JUnitXml, TestCase, TestSuite

from skillgate.summary import RunSummary, attempt_stats


def write_junit(run_dir: Path, summaries: list[RunSummary]) -> Path:
    """Write junit.xml with one suite per per-suite summary, return path."""
    xml = JUnitXml()

    for summary in summaries:
        suite = TestSuite(summary.suite or "run")

        suite.add_property("pass_rate", str(summary.pass_rate))
        suite.add_property("threshold", str(summary.threshold))
        suite.add_property("verdict", summary.verdict)
        stats = attempt_stats(summary.test_points)
        for stat_name in ("avg", "stddev", "min", "max"):
            stat_val = getattr(stats, stat_name)
            if stat_val is not None:
                suite.add_property(f"attempts_{stat_name}", str(stat_val))

        # Test cases: one per test point; exhausted retries count as failures
        for result in summary.test_points:
            case = TestCase(result.test_point)
            case.classname = result.group or summary.suite or "run"
            if not result.passed:
                case.result = [
                    Failure(f"{result.message} (attempts: {result.attempts})")
                ]
            suite.add_testcase(case)

        # Use append (not +=) to preserve properties
        xml.append(suite)

    junit_path = run_dir / "junit.xml"
    xml.write(str(junit_path), pretty=True)
    return junit_path
