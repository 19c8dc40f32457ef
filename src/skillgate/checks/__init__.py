"""Checks that test points run against the project and service under test."""

from __future__ import annotations

import logging

import httpx

from skillgate.checks.base import Action, CheckOutcome, RunContext
from skillgate.checks.deterministic import (
    check_command_fails,
    check_command_succeeds,
    check_file_contains,
    check_file_exists,
)
from skillgate.checks.http import check_http
from skillgate.config import TestPointConfig


def build_action(
    point: TestPointConfig,
    context: RunContext,
    *,
    client: httpx.Client | None = None,
    logger: logging.Logger | None = None,
) -> Action:
    """Return a zero-argument callable running the check of *point*.

    Raises ValueError for unknown check kinds.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    kind = point.check_kind
    if kind == "http":
        spec = point.http
        return lambda: check_http(spec, context, logger, client=client)
    if kind == "file_exists":
        filename = point.file_exists
        return lambda: check_file_exists(context.workdir, filename, logger)
    if kind == "file_contains":
        fc = point.file_contains
        return lambda: check_file_contains(
            context.workdir, fc.path, fc.pattern, logger
        )
    if kind == "command_succeeds":
        command = point.command_succeeds
        return lambda: check_command_succeeds(context.workdir, command, logger)
    if kind == "command_fails":
        command = point.command_fails
        return lambda: check_command_fails(context.workdir, command, logger)
    raise ValueError(f"Unknown check type: '{kind}'")


__all__ = ["Action", "CheckOutcome", "RunContext", "build_action"]
