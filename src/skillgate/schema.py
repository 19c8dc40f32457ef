"""Generate JSON Schema and docs for the test plan and settings documents."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel

from skillgate.config import Settings, TestPlan

CHECK_KINDS = {
    "http": "HttpCheckSpec",
    "file_exists": None,
    "file_contains": "FileContainsSpec",
    "command_succeeds": None,
    "command_fails": None,
}


def _collect_refs(obj: object) -> set[str]:
    """Return all ``$defs`` names referenced via ``$ref`` inside *obj*."""
    refs: set[str] = set()
    if isinstance(obj, dict):
        ref = obj.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/$defs/"):
            refs.add(ref.removeprefix("#/$defs/"))
        for v in obj.values():
            refs |= _collect_refs(v)
    elif isinstance(obj, list):
        for v in obj:
            refs |= _collect_refs(v)
    return refs


def _order_defs(defs: dict) -> dict:
    """Sort ``$defs`` so referenced types precede the types using them."""
    ordered: dict[str, dict] = {}
    visited: set[str] = set()

    def _visit(name: str) -> None:
        if name in visited or name not in defs:
            return
        visited.add(name)
        for dep in sorted(_collect_refs(defs[name])):
            _visit(dep)
        ordered[name] = defs[name]

    for name in defs:
        _visit(name)
    return ordered


def generate_json_schema(model: type[BaseModel] = TestPlan) -> dict:
    schema = model.model_json_schema(by_alias=True)
    if "$defs" in schema:
        schema["$defs"] = _order_defs(schema["$defs"])
    return schema


def write_json_schema(path: Path, model: type[BaseModel] = TestPlan) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(generate_json_schema(model), indent=2) + "\n")


def generate_schema_doc() -> str:
    plan_defs = generate_json_schema(TestPlan).get("$defs", {})

    lines: list[str] = []
    lines.append("# skillgate document formats")
    lines.append("")
    lines.append("This doc is generated from the Pydantic models.")
    lines.append("")
    lines.append("## Test plan")
    lines.append("- `skill`, `change_id`, `phase`: correlation fields stamped on every event.")
    lines.append("- `base_url`: service under test; `${VAR}` references are expanded.")
    lines.append("- `suites`: list of `{name, groups}`; each group is `{name, test_points}`.")
    lines.append("- `coverage`: optional requirement/API coverage gate.")
    lines.append("")
    lines.append("## Test point checks")
    lines.append("Each test point has an `id`, optional `max_attempts` and `covers`, and exactly one of:")
    for kind, def_name in CHECK_KINDS.items():
        if def_name is None:
            lines.append(f"- `{kind}`: string")
            continue
        fields = plan_defs.get(def_name, {}).get("properties", {}).keys()
        lines.append(f"- `{kind}`: {{ {', '.join(fields)} }}")
    lines.append("")
    lines.append("## Settings")
    for section, model_field in Settings.model_fields.items():
        annotation = model_field.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            keys = ", ".join(
                f.alias or name for name, f in annotation.model_fields.items()
            )
            lines.append(f"- `{section}`: {{ {keys} }}")
        else:
            lines.append(f"- `{section}`: default {model_field.default}")
    lines.append("")
    return "\n".join(lines)


def write_schema_doc(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_schema_doc())
