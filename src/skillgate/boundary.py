"""Suite and group boundary markers.

Boundaries bracket the test points of a suite and of each group inside it
with a START and an END record. They never gate execution; they exist so
readers of the log can tell where a scope begins and ends even when several
runs interleave in the same file.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from skillgate.events import StructuredLogger, TestStatus

_NON_ALNUM = re.compile(r"[^A-Z0-9]+")


class BoundaryScope(str, Enum):
    SUITE = "SUITE"
    GROUP = "GROUP"


class BoundaryError(RuntimeError):
    """Raised when boundaries are opened or closed out of order."""


@dataclass(frozen=True)
class BoundaryMarker:
    suite: str
    scope: BoundaryScope
    name: str
    direction: TestStatus

    @property
    def test_point(self) -> str:
        return boundary_id(self.scope, self.name)


def boundary_id(scope: BoundaryScope | str, name: str) -> str:
    """Derive the pseudo test point id of a boundary.

    >>> boundary_id(BoundaryScope.GROUP, "auth / login flow")
    'GROUP-AUTH-LOGIN-FLOW'
    """
    normalized = _NON_ALNUM.sub("-", name.upper()).strip("-")
    return f"{BoundaryScope(scope).value}-{normalized or 'UNNAMED'}"


class BoundaryEmitter:
    def __init__(self, events: StructuredLogger) -> None:
        self.events = events
        # suite name -> open group names, in opening order
        self._open: dict[str, list[str]] = {}
        self.markers: list[BoundaryMarker] = []

    def open(self, suite: str, scope: BoundaryScope | str, name: str) -> BoundaryMarker:
        scope = BoundaryScope(scope)
        if scope is BoundaryScope.SUITE:
            if suite in self._open:
                raise BoundaryError(f"suite '{suite}' is already open")
            self._open[suite] = []
        else:
            groups = self._open.get(suite)
            if groups is None:
                raise BoundaryError(
                    f"cannot open group '{name}': suite '{suite}' is not open"
                )
            if name in groups:
                raise BoundaryError(f"group '{name}' is already open in '{suite}'")
            groups.append(name)
        return self._emit(suite, scope, name, TestStatus.START)

    def close(self, suite: str, scope: BoundaryScope | str, name: str) -> BoundaryMarker:
        scope = BoundaryScope(scope)
        groups = self._open.get(suite)
        if scope is BoundaryScope.SUITE:
            if groups is None:
                raise BoundaryError(f"suite '{suite}' is not open")
            if groups:
                raise BoundaryError(
                    f"cannot close suite '{suite}' while groups are open: {', '.join(groups)}"
                )
            del self._open[suite]
        else:
            if groups is None or name not in groups:
                raise BoundaryError(f"group '{name}' is not open in '{suite}'")
            groups.remove(name)
        return self._emit(suite, scope, name, TestStatus.END)

    def open_scopes(self) -> list[tuple[str, BoundaryScope, str]]:
        scopes: list[tuple[str, BoundaryScope, str]] = []
        for suite, groups in self._open.items():
            scopes.append((suite, BoundaryScope.SUITE, suite))
            scopes.extend((suite, BoundaryScope.GROUP, g) for g in groups)
        return scopes

    @contextmanager
    def suite(self, name: str) -> Iterator[BoundaryMarker]:
        marker = self.open(name, BoundaryScope.SUITE, name)
        try:
            yield marker
        finally:
            self.close(name, BoundaryScope.SUITE, name)

    @contextmanager
    def group(self, suite: str, name: str) -> Iterator[BoundaryMarker]:
        marker = self.open(suite, BoundaryScope.GROUP, name)
        try:
            yield marker
        finally:
            self.close(suite, BoundaryScope.GROUP, name)

    def _emit(
        self,
        suite: str,
        scope: BoundaryScope,
        name: str,
        direction: TestStatus,
    ) -> BoundaryMarker:
        marker = BoundaryMarker(suite=suite, scope=scope, name=name, direction=direction)
        self.events.info(
            f"{scope.value} {direction.value}: {name}",
            suite=suite,
            test_point=marker.test_point,
            test_status=direction,
        )
        self.markers.append(marker)
        return marker
