from __future__ import annotations

from pathlib import Path

import typer

app = typer.Typer(
    name="skillgate", help="Run acceptance test plans against generated CRUD apps"
)
schema_app = typer.Typer(name="schema", help="Generate schema tooling")
app.add_typer(schema_app, name="schema")


@app.command()
def run(
    plan: str = typer.Argument(help="Path to test plan YAML"),
    settings: str | None = typer.Option(
        None, "--settings", "-s", help="Settings document (YAML or JSON)"
    ),
    suite: str | None = typer.Option(None, help="Run only this suite"),
    output_dir: str = typer.Option("runs", help="Output directory for run results"),
    workdir: str | None = typer.Option(
        None, help="Project directory for file checks (defaults to the plan's directory)"
    ),
    skip_preflight: bool = typer.Option(
        False, "--skip-preflight", help="Do not run the preflight gate"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output to terminal"
    ),
):
    """Run a test plan against the service under test."""
    from pydantic import ValidationError

    from skillgate.config import load_plan, load_settings
    from skillgate.preflight import PreflightFailed
    from skillgate.runner import Runner

    plan_path = Path(plan)
    if not plan_path.exists():
        typer.echo(f"Error: test plan not found: {plan}", err=True)
        raise typer.Exit(1)

    try:
        test_plan = load_plan(plan_path)
    except (ValueError, ValidationError) as e:
        typer.echo(f"Error: invalid test plan {plan}: {e}", err=True)
        raise typer.Exit(1)

    problems: list[str] = []
    run_settings = load_settings(Path(settings) if settings else None, problems)
    for problem in problems:
        typer.echo(f"Warning: {problem}", err=True)

    runner = Runner(
        plan=test_plan,
        settings=run_settings,
        output_dir=Path(output_dir),
        workdir=Path(workdir) if workdir else plan_path.parent.resolve(),
        suite_filter=suite,
        verbose=verbose,
        skip_preflight=skip_preflight,
    )

    try:
        run_dir = runner.execute()
    except PreflightFailed as e:
        typer.echo(f"Error: {e}", err=True)
        if runner.run_dir is not None:
            typer.echo(f"Preflight result: {runner.run_dir / 'preflight.json'}")
        raise typer.Exit(1)
    except (ValueError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    summary = runner.summary
    typer.echo(f"Run complete: {run_dir}")
    typer.echo(f"Report: {run_dir / 'report.md'}")
    if not verbose:
        typer.echo(f"Debug log: {run_dir / 'debug.log'}")
    typer.echo(
        f"Verdict: {summary.verdict} (pass rate {summary.pass_rate:.2%}, "
        f"threshold {summary.threshold:.0%})"
    )
    if summary.coverage is not None and not summary.coverage.gate_passed:
        typer.echo(
            f"Coverage: included={summary.coverage.all_items_included} "
            f"passed={summary.coverage.all_items_passed}"
        )

    # Exit with non-zero unless the run is delivery-ready
    if not summary.passed:
        raise typer.Exit(1)


@app.command()
def preflight(
    settings: str | None = typer.Option(
        None, "--settings", "-s", help="Settings document (YAML or JSON)"
    ),
    workdir: str = typer.Option(".", help="Directory required files are relative to"),
    output: str = typer.Option("preflight.json", help="Where to write the result"),
):
    """Check required files and endpoints without running any test point."""
    from skillgate import preflight as gate
    from skillgate.config import load_settings

    problems: list[str] = []
    cfg = load_settings(Path(settings) if settings else None, problems).preflight
    for problem in problems:
        typer.echo(f"Warning: {problem}", err=True)
    result = gate.check(
        cfg.required_files,
        cfg.required_endpoints,
        root=Path(workdir),
        timeout=cfg.timeout,
    )
    gate.write_result(result, Path(output))

    for problem in result.problems():
        typer.echo(f"  {problem}")
    typer.echo(f"Preflight {'passed' if result.passed else 'failed'}: {output}")
    if not result.passed:
        raise typer.Exit(result.exit_code)


@app.command()
def report(
    run_dir: str = typer.Argument(help="Path to run output directory"),
):
    """Regenerate report.md from the summaries of a previous run."""
    from skillgate.summary import load_summary, write_markdown_report

    run_path = Path(run_dir)
    summary_path = run_path / "summary.json"
    if not run_path.exists() or not summary_path.exists():
        typer.echo(f"Error: not a valid run directory: {run_dir}", err=True)
        raise typer.Exit(1)

    summary = load_summary(summary_path)
    suites = [load_summary(p) for p in sorted(run_path.glob("summary-*.json"))]
    report_path = write_markdown_report(summary, run_path / "report.md", suites)
    typer.echo(f"Report generated: {report_path}")
    typer.echo(f"Verdict: {summary.verdict}")


@app.command()
def events(
    relay: str = typer.Argument(help="Path to the JSON-lines relay file"),
    test_point: str | None = typer.Option(None, help="Only this test point"),
    suite: str | None = typer.Option(None, help="Only this suite"),
    change_id: str | None = typer.Option(None, help="Only this change id"),
    status: str | None = typer.Option(None, help="Only this test status"),
    check_boundaries: bool = typer.Option(
        False, "--check-boundaries", help="Verify suite/group markers pair up"
    ),
):
    """Filter relay records by correlation fields."""
    from skillgate.events import TestStatus
    from skillgate.relay import filter_records, read_records, validate_boundaries

    relay_path = Path(relay)
    if not relay_path.exists():
        typer.echo(f"Error: relay file not found: {relay}", err=True)
        raise typer.Exit(1)

    if status is not None:
        try:
            status = TestStatus(status.upper()).value
        except ValueError:
            allowed = ", ".join(s.value for s in TestStatus)
            typer.echo(f"Error: unknown status '{status}' (one of: {allowed})", err=True)
            raise typer.Exit(1)

    records = read_records(relay_path)
    selected = filter_records(
        records,
        test_point=test_point,
        suite=suite,
        change_id=change_id,
        test_status=status,
    )
    for record in selected:
        typer.echo(record.to_text_line())

    if check_boundaries:
        issues = validate_boundaries(selected)
        for issue in issues:
            typer.echo(f"boundary: {issue}", err=True)
        if issues:
            raise typer.Exit(1)
        typer.echo("Boundaries OK")


@app.command()
def init(
    dir: str = typer.Option(
        "skillgate", "--dir", help="Directory to initialize the test project in"
    ),
):
    """Initialize a test project with an example plan and settings."""
    project_dir = Path(dir)
    project_dir.mkdir(parents=True, exist_ok=True)

    plan = project_dir / "plan.yaml"
    if plan.exists():
        typer.echo(f"plan.yaml already exists in {dir}, skipping.")
        return

    plan.write_text("""\
skill: crud-webapp
change_id: CHG-001
phase: delivery
base_url: ${BACKEND_URL:-http://localhost:8000}

suites:
  - name: backend-api
    groups:
      - name: health
        test_points:
          - id: API-HEALTH-001-up
            http:
              path: /health
              expect_status: 200
      - name: auth
        test_points:
          - id: API-AUTH-002-login-valid
            covers: [AC-AUTH-001]
            http:
              method: POST
              path: /api/auth/login
              json: {username: admin, password: admin123}
              expect_status: 200
              expect_code: 0
              save: {token: data.token}

coverage:
  requirements_doc: docs/requirements.md
  api_doc: docs/api-list.md
  map:
    API-HEALTH-001: API-HEALTH-001-up
    API-AUTH-002: API-AUTH-002-login-valid
""")

    (project_dir / "skillgate.yaml").write_text("""\
logging:
  mode: hybrid
  logFile: skillgate.log
  relayFile: skillgate-relay.jsonl
  fallbackToRealtimeOnJsonError: true
executor:
  maxAttempts: 5
preflight:
  requiredFiles: [docs/requirements.md, docs/api-list.md]
  requiredEndpoints: ["${BACKEND_URL:-http://localhost:8000}/health"]
threshold: 1.0
""")

    docs = project_dir / "docs"
    docs.mkdir(parents=True, exist_ok=True)
    (docs / "requirements.md").write_text(
        "# Requirements\n\n## Login\n\n- AC-AUTH-001: a valid user can log in\n"
    )
    (docs / "api-list.md").write_text(
        "# API list\n\n"
        "| Id | Method | Path |\n|---|---|---|\n"
        "| API-HEALTH-001 | GET | /health |\n"
        "| API-AUTH-002 | POST | /api/auth/login |\n"
    )

    typer.echo(f"Initialized test project in {dir}:")
    typer.echo("  plan.yaml        - example test plan")
    typer.echo("  skillgate.yaml   - settings (transport mode, preflight, threshold)")
    typer.echo("  docs/            - requirement and API documents for coverage")


@schema_app.command("generate")
def schema_generate(
    dir: str = typer.Option(
        "skillgate", "--dir", help="Project directory for default schema/doc outputs"
    ),
    out: str | None = typer.Option(
        None,
        help="Output path for the plan JSON Schema (defaults to <dir>/schemas/plan.schema.json)",
    ),
    settings_out: str | None = typer.Option(
        None,
        help="Output path for the settings JSON Schema (defaults to <dir>/schemas/settings.schema.json)",
    ),
    doc: str | None = typer.Option(
        None, help="Output path for schema docs (defaults to <dir>/docs/schema.md)"
    ),
):
    """Generate JSON Schemas and docs for the plan and settings formats."""
    from skillgate.config import Settings, TestPlan
    from skillgate.schema import write_json_schema, write_schema_doc

    project_dir = Path(dir)
    out_path = (
        Path(out) if out is not None else project_dir / "schemas" / "plan.schema.json"
    )
    settings_path = (
        Path(settings_out)
        if settings_out is not None
        else project_dir / "schemas" / "settings.schema.json"
    )
    doc_path = Path(doc) if doc is not None else project_dir / "docs" / "schema.md"
    write_json_schema(out_path, TestPlan)
    write_json_schema(settings_path, Settings)
    write_schema_doc(doc_path)
    typer.echo(f"Wrote schema: {out_path}")
    typer.echo(f"Wrote schema: {settings_path}")
    typer.echo(f"Wrote docs: {doc_path}")
