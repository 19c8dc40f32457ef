"""File and command checks against the generated project tree."""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

from skillgate.checks.base import CheckOutcome

COMMAND_TIMEOUT = 60


def check_file_exists(
    workdir: str | Path, filename: str, logger: logging.Logger
) -> CheckOutcome:
    """Check that a file exists in the working directory."""
    path = Path(workdir) / filename
    passed = path.exists()
    logger.debug(f"File {filename} exists={passed}")

    return CheckOutcome(
        passed=passed,
        message=f"{filename} exists" if passed else f"{filename} does not exist",
    )


def check_file_contains(
    workdir: str | Path, filename: str, pattern: str, logger: logging.Logger
) -> CheckOutcome:
    """Check that a file contains text matching a regex pattern."""
    path = Path(workdir) / filename

    if not path.is_file():
        logger.debug(f"File {filename} not found")
        return CheckOutcome(passed=False, message=f"{filename} not found")

    content = path.read_text(encoding="utf-8", errors="replace")
    matched = re.search(pattern, content) is not None
    logger.debug(f"Pattern '{pattern}' matched={matched} in {filename}")

    if matched:
        return CheckOutcome(True, f"{filename} matches pattern '{pattern}'")
    return CheckOutcome(False, f"{filename} does not match pattern '{pattern}'")


def _run_command(
    workdir: str | Path, command: str, logger: logging.Logger
) -> subprocess.CompletedProcess[bytes]:
    result = subprocess.run(
        command,
        shell=True,
        cwd=workdir,
        timeout=COMMAND_TIMEOUT,
        capture_output=True,
        check=False,
    )
    logger.debug(f"Command '{command}' exited with code {result.returncode}")
    if result.stdout:
        logger.debug(f"stdout: {result.stdout.decode('utf-8', errors='replace')}")
    if result.stderr:
        logger.debug(f"stderr: {result.stderr.decode('utf-8', errors='replace')}")
    return result


def check_command_succeeds(
    workdir: str | Path, command: str, logger: logging.Logger
) -> CheckOutcome:
    """Check that a shell command exits with code 0."""
    try:
        result = _run_command(workdir, command, logger)
    except subprocess.TimeoutExpired:
        return CheckOutcome(False, f"command timed out after {COMMAND_TIMEOUT}s")

    message = f"exit code {result.returncode}"
    if result.returncode != 0 and result.stderr:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        if stderr:
            message += f" | stderr: {stderr[:200]}"
    return CheckOutcome(result.returncode == 0, message)


def check_command_fails(
    workdir: str | Path, command: str, logger: logging.Logger
) -> CheckOutcome:
    """Check that a shell command exits with a non-zero code."""
    try:
        result = _run_command(workdir, command, logger)
    except subprocess.TimeoutExpired:
        return CheckOutcome(
            True, f"command timed out after {COMMAND_TIMEOUT}s (counts as failure)"
        )
    return CheckOutcome(result.returncode != 0, f"exit code {result.returncode}")
