from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar

import yaml
from expandvars import ExpandvarsException, expand
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DEFAULT_ACCEPTANCE_PATTERN = r"\bAC-[A-Z0-9]+(?:-[A-Z0-9]+)*\b"
DEFAULT_API_PATTERN = r"\bAPI-[A-Z]+-\d+\b"


class TransportMode(str, Enum):
    REALTIME = "realtime"
    JSON = "json"
    HYBRID = "hybrid"


class _SettingsModel(BaseModel):
    # Settings documents are written by hand and by other tools, so both
    # camelCase and snake_case keys are accepted.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoggingConfig(_SettingsModel):
    mode: TransportMode = TransportMode.REALTIME
    log_file: str = "skillgate.log"
    relay_file: str = "skillgate-relay.jsonl"
    fallback_to_realtime_on_json_error: bool = True
    write_retries: int = Field(default=10, ge=1)
    write_backoff_seconds: float = Field(default=0.12, ge=0)


class ExecutorConfig(_SettingsModel):
    max_attempts: int = Field(default=5, ge=1)
    backoff_seconds: float = Field(default=0.2, ge=0)
    request_timeout: float = Field(default=8.0, gt=0)


class PreflightConfig(_SettingsModel):
    required_files: list[str] = []
    required_endpoints: list[str] = []
    timeout: float = Field(default=6.0, gt=0)

    @field_validator("required_endpoints")
    @classmethod
    def expand_env(cls, v: list[str]) -> list[str]:
        try:
            return [expand(url, environ=os.environ) for url in v]
        except ExpandvarsException as e:
            raise ValueError(str(e)) from e


class Settings(_SettingsModel):
    """Process-wide settings, read once at start-up."""

    logging: LoggingConfig = LoggingConfig()
    executor: ExecutorConfig = ExecutorConfig()
    preflight: PreflightConfig = PreflightConfig()
    threshold: float = Field(default=1.0, ge=0, le=1)


def load_settings(path: Path | None, problems: list[str] | None = None) -> Settings:
    """Load the settings document, falling back to defaults on any failure.

    A missing, unreadable or invalid document never aborts a run: the
    defaults (realtime transport, 5 attempts, 100% threshold) are used and
    the problem is reported on the diagnostic logger. An invalid section
    only resets that section; the others are kept.

    Problems are also appended to *problems* when given, so callers can
    show them to the user.
    """
    if path is None:
        return Settings()

    def _report(message: str) -> None:
        logger.warning(message)
        if problems is not None:
            problems.append(message)

    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        _report(f"Could not load settings from {path}, using defaults: {e}")
        return Settings()
    if raw is None:
        return Settings()
    if not isinstance(raw, dict):
        _report(f"Could not load settings from {path}, using defaults: not a mapping")
        return Settings()

    kept: dict[str, Any] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            _report(f"Ignoring settings key {key!r} in {path}")
            continue
        try:
            Settings(**{key: value})
        except ValidationError as e:
            _report(f"Invalid settings section '{key}' in {path}, using defaults for it: {e}")
            continue
        kept[key] = value
    return Settings(**kept)


# ---------------------------------------------------------------------------
# Test plan
# ---------------------------------------------------------------------------


class HttpCheckSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")
    method: str = "GET"
    path: str | None = None
    url: str | None = None
    headers: dict[str, str] = {}
    json_body: Any = Field(default=None, alias="json")
    expect_status: int | None = None
    expect_code: int | str | None = None
    save: dict[str, str] = {}

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def path_or_url(self) -> HttpCheckSpec:
        if (self.path is None) == (self.url is None):
            raise ValueError("http check needs exactly one of 'path' or 'url'")
        return self


class FileContainsSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")
    path: str
    pattern: str


class TestPointConfig(BaseModel):
    __test__: ClassVar[bool] = False

    model_config = ConfigDict(extra="forbid")
    id: str
    max_attempts: int | None = Field(default=None, ge=1)
    covers: list[str] = []
    http: HttpCheckSpec | None = None
    file_exists: str | None = None
    file_contains: FileContainsSpec | None = None
    command_succeeds: str | None = None
    command_fails: str | None = None

    @model_validator(mode="after")
    def exactly_one_check(self) -> TestPointConfig:
        checks = [
            name
            for name in (
                "http",
                "file_exists",
                "file_contains",
                "command_succeeds",
                "command_fails",
            )
            if getattr(self, name) is not None
        ]
        if len(checks) != 1:
            raise ValueError(
                f"test point '{self.id}' must define exactly one check, got {checks or 'none'}"
            )
        return self

    @property
    def check_kind(self) -> str:
        for name in ("http", "file_exists", "file_contains", "command_succeeds"):
            if getattr(self, name) is not None:
                return name
        return "command_fails"


class GroupConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str
    test_points: list[TestPointConfig]

    @field_validator("test_points")
    @classmethod
    def test_points_must_not_be_empty(
        cls, v: list[TestPointConfig]
    ) -> list[TestPointConfig]:
        if not v:
            raise ValueError("test_points must not be empty")
        return v


class SuiteConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str
    groups: list[GroupConfig]

    @field_validator("groups")
    @classmethod
    def groups_must_not_be_empty(cls, v: list[GroupConfig]) -> list[GroupConfig]:
        if not v:
            raise ValueError("groups must not be empty")
        return v


class CoverageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    requirements_doc: str | None = None
    api_doc: str | None = None
    acceptance_pattern: str = DEFAULT_ACCEPTANCE_PATTERN
    api_pattern: str = DEFAULT_API_PATTERN
    map: dict[str, list[str]] = {}

    @field_validator("map", mode="before")
    @classmethod
    def normalize_map(cls, v: dict) -> dict:
        # A single test point may be given as a bare string.
        if not isinstance(v, dict):
            return v
        return {k: [item] if isinstance(item, str) else item for k, item in v.items()}


class TestPlan(BaseModel):
    __test__: ClassVar[bool] = False

    model_config = ConfigDict(extra="forbid")
    skill: str | None = None
    change_id: str | None = None
    phase: str | None = None
    base_url: str = "http://localhost:8000"
    suites: list[SuiteConfig]
    coverage: CoverageConfig | None = None

    @model_validator(mode="after")
    def validate_plan(self) -> TestPlan:
        if not self.suites:
            raise ValueError("suites must not be empty")

        suite_names = [s.name for s in self.suites]
        duplicates = sorted({n for n in suite_names if suite_names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate suite names: {', '.join(duplicates)}")

        seen: set[str] = set()
        repeated: list[str] = []
        for point in self.test_points():
            if point.id in seen:
                repeated.append(point.id)
            seen.add(point.id)
        if repeated:
            raise ValueError(f"duplicate test point ids: {', '.join(repeated)}")
        return self

    def test_points(self) -> list[TestPointConfig]:
        return [p for s in self.suites for g in s.groups for p in g.test_points]


def load_plan(path: Path) -> TestPlan:
    """Load and validate a test plan from a YAML file."""
    plan_dir = path.parent.resolve()

    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: test plan must be a mapping")

    plan = TestPlan(**raw)
    try:
        plan.base_url = expand(plan.base_url, environ=os.environ).rstrip("/")
    except ExpandvarsException as e:
        raise ValueError(f"{path}: base_url: {e}") from e

    # Resolve relative document paths relative to the plan file location
    if plan.coverage is not None:
        for attr in ("requirements_doc", "api_doc"):
            value = getattr(plan.coverage, attr)
            if value and not Path(value).is_absolute():
                setattr(plan.coverage, attr, str((plan_dir / value).resolve()))

    return plan
