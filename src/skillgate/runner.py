from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
import yaml

from skillgate import preflight
from skillgate.boundary import BoundaryEmitter
from skillgate.checks import RunContext, build_action
from skillgate.config import Settings, SuiteConfig, TestPlan
from skillgate.coverage import CoverageAggregator
from skillgate.events import StructuredLogger
from skillgate.executor import TestPointExecutor, TestResult
from skillgate.preflight import PreflightFailed, PreflightResult
from skillgate.summary import (
    RunSummary,
    build,
    write_markdown_report,
    write_summary_json,
)
from skillgate.verbose import setup_logger


def suite_slug(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "-", name).strip("-").lower() or "suite"


class Runner:
    """Orchestrates one acceptance run of a test plan."""

    def __init__(
        self,
        plan: TestPlan,
        settings: Settings,
        output_dir: Path,
        workdir: Path | None = None,
        suite_filter: str | None = None,
        verbose: bool = False,
        skip_preflight: bool = False,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.plan = plan
        self.settings = settings
        self.output_dir = Path(output_dir)
        self.workdir = Path(workdir) if workdir is not None else Path.cwd()
        self.suite_filter = suite_filter
        self.verbose = verbose
        self.skip_preflight = skip_preflight
        self.client = client
        self._sleep = sleep
        self.run_dir: Path | None = None
        self.preflight_result: PreflightResult | None = None
        self.summary: RunSummary | None = None
        self.suite_summaries: list[RunSummary] = []

    def execute(self) -> Path:
        """Run the plan. Returns the run directory.

        Raises PreflightFailed when the preflight gate does not pass; no test
        point is executed in that case.
        """
        suites = self.plan.suites
        if self.suite_filter:
            suites = [s for s in suites if s.name == self.suite_filter]
            if not suites:
                raise ValueError(f"No suite named '{self.suite_filter}' in the plan")

        run_id = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
        run_dir = self.output_dir / run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        self.run_dir = run_dir

        logger = setup_logger(
            run_dir / "debug.log", verbose=self.verbose, logger_name="skillgate"
        )
        logger.debug(f"Starting acceptance run {run_id}")

        events = StructuredLogger(
            self.settings.logging,
            base_dir=self.output_dir,
            sleep=self._sleep,
            skill=self.plan.skill,
            change_id=self.plan.change_id,
            phase=self.plan.phase,
        )

        aggregator = None
        if self.plan.coverage is not None:
            try:
                aggregator = self._coverage_aggregator()
            except OSError as e:
                events.error(f"coverage documents unreadable: {e}")
                logger.error(f"Cannot read coverage documents: {e}")
                self._write_meta(run_dir)
                raise

        owns_client = self.client is None
        client = self.client
        if client is None:
            client = httpx.Client(
                timeout=self.settings.executor.request_timeout, follow_redirects=True
            )
        try:
            if not self.skip_preflight:
                self._preflight(run_dir, events, client, logger)

            results = self._run_suites(suites, events, client, logger)
        finally:
            if owns_client:
                client.close()

        threshold = self.settings.threshold
        coverage_report = None
        if aggregator is not None:
            aggregator.record_all(r for suite_results in results.values() for r in suite_results)
            coverage_report = aggregator.report()

        self.suite_summaries = [
            build(suite_results, threshold, suite=name)
            for name, suite_results in results.items()
        ]
        all_results = [r for suite_results in results.values() for r in suite_results]
        self.summary = build(all_results, threshold, coverage=coverage_report)

        verdict_msg = (
            f"run verdict {self.summary.verdict}: pass rate {self.summary.pass_rate}"
            f" (threshold {threshold})"
        )
        if self.summary.passed:
            events.success(verdict_msg)
        else:
            events.error(verdict_msg)
        logger.debug(verdict_msg)

        self._write_results(run_dir)
        return run_dir

    def _preflight(
        self,
        run_dir: Path,
        events: StructuredLogger,
        client: httpx.Client,
        logger: logging.Logger,
    ) -> None:
        cfg = self.settings.preflight
        if not cfg.required_files and not cfg.required_endpoints:
            logger.debug("No preflight requirements configured")
            return

        result = preflight.check(
            cfg.required_files,
            cfg.required_endpoints,
            root=self.workdir,
            timeout=cfg.timeout,
            client=client,
        )
        self.preflight_result = result
        preflight.write_result(result, run_dir / "preflight.json")

        if result.passed:
            events.success("preflight passed")
            return

        for problem in result.problems():
            events.error(f"preflight: {problem}")
        logger.error(f"Preflight failed with {len(result.problems())} problem(s)")
        self._write_meta(run_dir)
        raise PreflightFailed(result)

    def _run_suites(
        self,
        suites: list[SuiteConfig],
        events: StructuredLogger,
        client: httpx.Client,
        logger: logging.Logger,
    ) -> dict[str, list[TestResult]]:
        executor = TestPointExecutor(
            events,
            default_max_attempts=self.settings.executor.max_attempts,
            backoff_seconds=self.settings.executor.backoff_seconds,
            sleep=self._sleep,
        )
        boundaries = BoundaryEmitter(events)
        context = RunContext(
            base_url=self.plan.base_url,
            workdir=str(self.workdir),
            timeout=self.settings.executor.request_timeout,
        )

        total = sum(len(g.test_points) for s in suites for g in s.groups)
        print(f"Running {total} test point(s) in {len(suites)} suite(s)...")

        results: dict[str, list[TestResult]] = {}
        completed = 0
        for suite in suites:
            suite_results: list[TestResult] = []
            with boundaries.suite(suite.name):
                for group in suite.groups:
                    with boundaries.group(suite.name, group.name):
                        for point in group.test_points:
                            action = build_action(
                                point, context, client=client, logger=logger
                            )
                            result = executor.run(
                                point.id,
                                suite.name,
                                action,
                                point.max_attempts,
                                group=group.name,
                            )
                            suite_results.append(result)

                            completed += 1
                            attempts = "attempt" if result.attempts == 1 else "attempts"
                            print(
                                f"  [{completed}/{total}] {result.status:<4}  "
                                f"{suite.name} / {point.id} ({result.attempts} {attempts})"
                            )
                            logger.debug(
                                f"Test point '{point.id}' finished {result.status}: {result.message}"
                            )
            results[suite.name] = suite_results
        return results

    def _coverage_aggregator(self) -> CoverageAggregator:
        cov = self.plan.coverage
        aggregator = CoverageAggregator.from_documents(
            cov.requirements_doc,
            cov.api_doc,
            cov.map,
            acceptance_pattern=cov.acceptance_pattern,
            api_pattern=cov.api_pattern,
        )
        for point in self.plan.test_points():
            for coverage_id in point.covers:
                aggregator.assign(coverage_id, point.id)
        return aggregator

    def _write_results(self, run_dir: Path) -> None:
        """Write summaries, report.md, junit.xml and meta.yaml to the run directory."""
        from skillgate.reporting.junit import write_junit

        for suite_summary in self.suite_summaries:
            write_summary_json(
                suite_summary, run_dir / f"summary-{suite_slug(suite_summary.suite)}.json"
            )
        write_summary_json(self.summary, run_dir / "summary.json")
        write_markdown_report(self.summary, run_dir / "report.md", self.suite_summaries)
        write_junit(run_dir, self.suite_summaries)
        self._write_meta(run_dir)

    def _write_meta(self, run_dir: Path) -> None:
        try:
            import importlib.metadata

            skillgate_version = importlib.metadata.version("skillgate")
        except Exception:
            skillgate_version = "unknown"

        meta: dict[str, Any] = {
            "run_id": run_dir.name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "skill": self.plan.skill,
            "change_id": self.plan.change_id,
            "phase": self.plan.phase,
            "base_url": self.plan.base_url,
            "suites": [s.name for s in self.plan.suites],
            "transport_mode": self.settings.logging.mode.value,
            "skillgate_version": skillgate_version,
        }
        if self.preflight_result is not None:
            meta["preflight"] = "PASS" if self.preflight_result.passed else "FAIL"
        if self.summary is not None:
            meta["verdict"] = self.summary.verdict

        (run_dir / "meta.yaml").write_text(yaml.dump(meta, default_flow_style=False))
