"""Requirement and API coverage gate.

Acceptance item ids and API ids are extracted from the requirements and API
list documents. A hand-authored mapping (plus the ``covers`` lists on test
points) says which test points prove each id. As results come in, every id
gets a :class:`CoverageEntry`; the run is delivery-ready only when every id
was exercised and every one of them passed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from skillgate.config import DEFAULT_ACCEPTANCE_PATTERN, DEFAULT_API_PATTERN
from skillgate.executor import TestResult

logger = logging.getLogger(__name__)

NOT_ASSIGNED = "no test point assigned"


class CoverageKind(str, Enum):
    ACCEPTANCE = "acceptance"
    API = "api"


@dataclass
class CoverageEntry:
    id: str
    kind: CoverageKind
    included: bool = False
    passed: bool = False
    evidence: str = NOT_ASSIGNED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "included": self.included,
            "pass": self.passed,
            "evidence": self.evidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoverageEntry:
        return cls(
            id=data["id"],
            kind=CoverageKind(data["kind"]),
            included=bool(data.get("included", False)),
            passed=bool(data.get("pass", data.get("passed", False))),
            evidence=data.get("evidence", ""),
        )


@dataclass
class CoverageReport:
    entries: list[CoverageEntry]

    @property
    def acceptance(self) -> list[CoverageEntry]:
        return [e for e in self.entries if e.kind is CoverageKind.ACCEPTANCE]

    @property
    def api(self) -> list[CoverageEntry]:
        return [e for e in self.entries if e.kind is CoverageKind.API]

    @property
    def all_items_included(self) -> bool:
        return all(e.included for e in self.entries)

    @property
    def all_items_passed(self) -> bool:
        return all(e.passed for e in self.entries)

    @property
    def gate_passed(self) -> bool:
        return self.all_items_included and self.all_items_passed


def extract_ids(text: str, pattern: str) -> list[str]:
    """Return the ids matching *pattern* in order of first appearance."""
    seen: dict[str, None] = {}
    for match in re.finditer(pattern, text):
        seen.setdefault(match.group(0), None)
    return list(seen)


def extract_ids_from_file(path: Path | str | None, pattern: str) -> list[str]:
    if path is None:
        return []
    return extract_ids(Path(path).read_text(encoding="utf-8"), pattern)


class CoverageAggregator:
    def __init__(
        self,
        acceptance_ids: Iterable[str] = (),
        api_ids: Iterable[str] = (),
        mapping: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self._kinds: dict[str, CoverageKind] = {}
        for cid in acceptance_ids:
            self._kinds.setdefault(cid, CoverageKind.ACCEPTANCE)
        for cid in api_ids:
            self._kinds.setdefault(cid, CoverageKind.API)

        self._mapping: dict[str, list[str]] = {cid: [] for cid in self._kinds}
        self._results: dict[str, TestResult] = {}
        for cid, points in (mapping or {}).items():
            for point in points:
                self.assign(cid, point)

    @classmethod
    def from_documents(
        cls,
        requirements_doc: Path | str | None,
        api_doc: Path | str | None,
        mapping: Mapping[str, Iterable[str]] | None = None,
        *,
        acceptance_pattern: str = DEFAULT_ACCEPTANCE_PATTERN,
        api_pattern: str = DEFAULT_API_PATTERN,
    ) -> CoverageAggregator:
        return cls(
            acceptance_ids=extract_ids_from_file(requirements_doc, acceptance_pattern),
            api_ids=extract_ids_from_file(api_doc, api_pattern),
            mapping=mapping,
        )

    @property
    def ids(self) -> list[str]:
        return list(self._kinds)

    def assign(self, coverage_id: str, test_point: str) -> None:
        """Declare that *test_point* proves *coverage_id*."""
        if coverage_id not in self._kinds:
            logger.warning(
                f"Coverage id {coverage_id} is not in the requirement or API documents; ignoring"
            )
            return
        points = self._mapping[coverage_id]
        if test_point not in points:
            points.append(test_point)

    def record(self, result: TestResult) -> None:
        self._results[result.test_point] = result

    def record_all(self, results: Iterable[TestResult]) -> None:
        for result in results:
            self.record(result)

    def entry(self, coverage_id: str) -> CoverageEntry:
        kind = self._kinds[coverage_id]
        points = self._mapping[coverage_id]
        if not points:
            return CoverageEntry(id=coverage_id, kind=kind)

        evidence: list[str] = []
        ran: list[TestResult] = []
        for point in points:
            result = self._results.get(point)
            if result is None:
                evidence.append(f"{point}: not run")
                continue
            ran.append(result)
            detail = f" ({result.message})" if result.message else ""
            evidence.append(f"{point}: {result.status}{detail}")

        return CoverageEntry(
            id=coverage_id,
            kind=kind,
            included=bool(ran),
            passed=bool(ran) and len(ran) == len(points) and all(r.passed for r in ran),
            evidence="; ".join(evidence),
        )

    def report(self) -> CoverageReport:
        return CoverageReport(entries=[self.entry(cid) for cid in self._kinds])
