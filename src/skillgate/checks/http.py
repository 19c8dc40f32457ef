"""HTTP checks against the service under test.

A check passes when the HTTP status matches (``expect_status``, or any 2xx
when unset) and, when ``expect_code`` is given, the ``code`` field of the
``{code, message, data}`` response envelope matches as well.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any

import httpx
from expandvars import ExpandvarsException, expand

from skillgate.checks.base import CheckOutcome, RunContext
from skillgate.config import HttpCheckSpec

_MISSING = object()

# Only braced references are substituted; any other `$` is literal text.
_PLACEHOLDER = re.compile(r"\$\{[^{}]+\}")


def _expand(value: Any, variables: dict[str, Any]) -> Any:
    """Expand ``${name}`` references in strings nested anywhere in *value*."""
    if isinstance(value, str):
        environ = {**os.environ, **{k: str(v) for k, v in variables.items()}}
        return _PLACEHOLDER.sub(
            lambda m: expand(m.group(0), nounset=True, environ=environ), value
        )
    if isinstance(value, dict):
        return {k: _expand(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v, variables) for v in value]
    return value


def extract_path(body: Any, dotted: str) -> Any:
    """Return the value at ``a.b.0.c`` inside a decoded JSON body."""
    node = body
    for part in dotted.split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return _MISSING
    return node


def _status_ok(status: int, expected: int | None) -> bool:
    if expected is None:
        return 200 <= status < 300
    return status == expected


def check_http(
    spec: HttpCheckSpec,
    context: RunContext,
    logger: logging.Logger,
    client: httpx.Client | None = None,
) -> CheckOutcome:
    """Issue one request described by *spec* and classify the response."""
    try:
        if spec.url is not None:
            url = _expand(spec.url, context.variables)
        else:
            url = context.base_url.rstrip("/") + _expand(spec.path, context.variables)
        headers = _expand(spec.headers, context.variables)
        body = _expand(spec.json_body, context.variables)
    except ExpandvarsException as e:
        return CheckOutcome(False, f"{spec.method} {spec.url or spec.path}: {e}")
    label = f"{spec.method} {url}"

    logger.debug(f"Requesting {label}")
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=context.timeout, follow_redirects=True)
    try:
        response = client.request(spec.method, url, headers=headers, json=body)
    except httpx.TimeoutException:
        return CheckOutcome(False, f"{label} timed out after {context.timeout}s")
    except httpx.HTTPError as e:
        return CheckOutcome(False, f"{label} failed: {e}")
    finally:
        if owns_client:
            client.close()

    status = response.status_code
    logger.debug(f"{label} -> {status}")
    if not _status_ok(status, spec.expect_status):
        expected = spec.expect_status if spec.expect_status is not None else "2xx"
        return CheckOutcome(
            False, f"{label} returned {status}, expected {expected}"
        )

    needs_body = spec.expect_code is not None or spec.save
    payload: Any = None
    if needs_body:
        try:
            payload = response.json()
        except ValueError:
            return CheckOutcome(False, f"{label} returned a non-JSON body")

    if spec.expect_code is not None:
        code = payload.get("code") if isinstance(payload, dict) else None
        if str(code) != str(spec.expect_code):
            message = payload.get("message", "") if isinstance(payload, dict) else ""
            return CheckOutcome(
                False,
                f"{label} returned code {code!r}, expected {spec.expect_code!r}"
                + (f": {message}" if message else ""),
            )

    for name, dotted in spec.save.items():
        value = extract_path(payload, dotted)
        if value is _MISSING:
            return CheckOutcome(False, f"{label} response has no '{dotted}' to save")
        context.variables[name] = value
        logger.debug(f"Saved ${{{name}}} from '{dotted}'")

    return CheckOutcome(True, f"{label} returned {status}")
