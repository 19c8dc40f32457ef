import logging
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from skillgate.config import (
    HttpCheckSpec,
    Settings,
    TestPlan,
    TransportMode,
    load_plan,
    load_settings,
)


def _write(path, text):
    path.write_text(text)
    return path


MINIMAL_PLAN = """\
skill: crud-webapp
change_id: CHG-7
suites:
  - name: backend
    groups:
      - name: health
        test_points:
          - id: TP-HEALTH
            http: {path: /health}
"""


def test_load_minimal_plan(tmp_path):
    plan = load_plan(_write(tmp_path / "plan.yaml", MINIMAL_PLAN))
    assert plan.skill == "crud-webapp"
    assert plan.base_url == "http://localhost:8000"
    point = plan.test_points()[0]
    assert point.check_kind == "http"
    assert point.http.method == "GET"
    assert point.max_attempts is None


def test_base_url_expands_env_and_strips_slash(tmp_path, monkeypatch):
    monkeypatch.setenv("BACKEND_URL", "http://api:9000/")
    text = MINIMAL_PLAN + "base_url: ${BACKEND_URL:-http://localhost:8000}\n"
    assert load_plan(_write(tmp_path / "plan.yaml", text)).base_url == "http://api:9000"


def test_base_url_default_when_env_unset(tmp_path, monkeypatch):
    monkeypatch.delenv("BACKEND_URL", raising=False)
    text = MINIMAL_PLAN + "base_url: ${BACKEND_URL:-http://localhost:8001}\n"
    assert load_plan(_write(tmp_path / "plan.yaml", text)).base_url == "http://localhost:8001"


def test_coverage_docs_resolve_relative_to_plan(tmp_path):
    text = MINIMAL_PLAN + "coverage:\n  requirements_doc: docs/req.md\n  map: {AC-1: TP-HEALTH}\n"
    plan = load_plan(_write(tmp_path / "plan.yaml", text))
    assert plan.coverage.requirements_doc == str((tmp_path / "docs" / "req.md").resolve())
    assert plan.coverage.api_doc is None
    assert plan.coverage.map == {"AC-1": ["TP-HEALTH"]}


def test_plan_must_be_mapping(tmp_path):
    with pytest.raises(ValueError, match="mapping"):
        load_plan(_write(tmp_path / "plan.yaml", "- just\n- a list\n"))


@pytest.mark.parametrize(
    "points,match",
    [
        ("[{id: A}]", "exactly one check"),
        ("[{id: A, file_exists: x, command_succeeds: 'true'}]", "exactly one check"),
        ("[{id: A, file_exists: x}, {id: A, file_exists: y}]", "duplicate test point ids"),
        ("[{id: A, file_exists: x, max_attempts: 0}]", "greater than or equal to 1"),
        ("[{id: A, file_exists: x, retries: 3}]", "Extra inputs"),
        ("[]", "test_points must not be empty"),
    ],
)
def test_invalid_test_points(points, match):
    raw = {"suites": [{"name": "s", "groups": [{"name": "g", "test_points": None}]}]}
    raw["suites"][0]["groups"][0]["test_points"] = yaml.safe_load(points)
    with pytest.raises(ValidationError, match=match):
        TestPlan(**raw)


def test_duplicate_suite_names():
    suite = {"name": "s", "groups": [{"name": "g", "test_points": [{"id": "A", "file_exists": "x"}]}]}
    other = {"name": "s", "groups": [{"name": "g", "test_points": [{"id": "B", "file_exists": "x"}]}]}
    with pytest.raises(ValidationError, match="duplicate suite names: s"):
        TestPlan(suites=[suite, other])


def test_http_check_needs_path_or_url():
    with pytest.raises(ValidationError, match="exactly one of 'path' or 'url'"):
        HttpCheckSpec()
    with pytest.raises(ValidationError, match="exactly one of 'path' or 'url'"):
        HttpCheckSpec(path="/a", url="http://b/")


# --- settings ---


def test_settings_defaults():
    settings = load_settings(None)
    assert settings.logging.mode is TransportMode.REALTIME
    assert settings.logging.write_retries == 10
    assert settings.logging.write_backoff_seconds == 0.12
    assert settings.executor.max_attempts == 5
    assert settings.threshold == 1.0


def test_settings_accept_camel_case_and_snake_case(tmp_path):
    path = _write(
        tmp_path / "skillgate.yaml",
        "logging:\n  mode: hybrid\n  relayFile: relay.jsonl\n"
        "  fallback_to_realtime_on_json_error: false\n"
        "executor:\n  maxAttempts: 3\nthreshold: 0.9\n",
    )
    settings = load_settings(path)
    assert settings.logging.mode is TransportMode.HYBRID
    assert settings.logging.relay_file == "relay.jsonl"
    assert settings.logging.fallback_to_realtime_on_json_error is False
    assert settings.executor.max_attempts == 3
    assert settings.threshold == 0.9


def test_settings_accept_json(tmp_path):
    path = _write(tmp_path / "settings.json", '{"logging": {"mode": "json"}}')
    assert load_settings(path).logging.mode is TransportMode.JSON


@pytest.mark.parametrize(
    "text",
    [
        "logging: [unclosed",
        "logging:\n  mode: carrier-pigeon\n",
        "threshold: 2\n",
        "- a list\n",
    ],
)
def test_bad_settings_fall_back_to_defaults(tmp_path, caplog, text):
    path = _write(tmp_path / "skillgate.yaml", text)
    with caplog.at_level(logging.WARNING, logger="skillgate.config"):
        settings = load_settings(path)
    assert settings == Settings()
    assert "using defaults" in caplog.text


def test_invalid_section_only_resets_that_section(tmp_path):
    text = (
        "logging:\n  mode: carrier-pigeon\n"
        "executor:\n  maxAttempts: 3\n"
        "preflight:\n  requiredFiles: [docs/requirements.md]\n"
    )
    problems: list[str] = []
    settings = load_settings(_write(tmp_path / "skillgate.yaml", text), problems)

    assert settings.logging == Settings().logging
    assert settings.executor.max_attempts == 3
    assert settings.preflight.required_files == ["docs/requirements.md"]
    assert len(problems) == 1
    assert "'logging'" in problems[0]


def test_settings_problems_are_collected(tmp_path):
    problems: list[str] = []
    load_settings(_write(tmp_path / "s.yaml", "logging: [unclosed"), problems)
    assert len(problems) == 1
    assert "using defaults" in problems[0]


def test_unknown_settings_key_is_ignored(tmp_path):
    problems: list[str] = []
    settings = load_settings(_write(tmp_path / "s.yaml", "colour: blue\nthreshold: 0.5\n"), problems)
    assert settings.threshold == 0.5
    assert problems == []


def test_missing_settings_file_falls_back(tmp_path):
    assert load_settings(tmp_path / "nope.yaml") == Settings()


def test_empty_settings_file(tmp_path):
    assert load_settings(_write(tmp_path / "s.yaml", "")) == Settings()


def test_preflight_endpoints_expand_env(monkeypatch):
    monkeypatch.setenv("BACKEND_URL", "http://api:9000")
    settings = Settings(preflight={"requiredEndpoints": ["${BACKEND_URL}/health"]})
    assert settings.preflight.required_endpoints == ["http://api:9000/health"]


def test_example_project_loads(monkeypatch):
    monkeypatch.delenv("BACKEND_URL", raising=False)
    example = Path(__file__).parents[1] / "examples" / "todo-webapp"

    plan = load_plan(example / "plan.yaml")
    assert [s.name for s in plan.suites] == ["backend-api", "frontend"]
    assert len(plan.test_points()) == 10
    assert Path(plan.coverage.requirements_doc).exists()

    settings = load_settings(example / "skillgate.yaml")
    assert settings.logging.mode is TransportMode.HYBRID
    assert settings.preflight.required_endpoints == ["http://localhost:8000/health"]


def test_required_base_url_must_be_set(tmp_path, monkeypatch):
    monkeypatch.delenv("SG_BACKEND_URL", raising=False)
    text = MINIMAL_PLAN + "base_url: ${SG_BACKEND_URL:?must be set}\n"
    with pytest.raises(ValueError, match="SG_BACKEND_URL"):
        load_plan(_write(tmp_path / "plan.yaml", text))


def test_preflight_endpoint_without_default_is_invalid(monkeypatch):
    monkeypatch.delenv("SG_BACKEND_URL", raising=False)
    with pytest.raises(ValidationError, match="SG_BACKEND_URL"):
        Settings(preflight={"requiredEndpoints": ["${SG_BACKEND_URL:?not set}/health"]})
