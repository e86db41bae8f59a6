"""Shared helpers for backend endpoint modules.

This module centralizes:
- classifying backend faults into :class:`RankMatchRemoteError` subclasses
- deriving operator-facing remediation hints
- unwrapping row payloads

It is internal to rankmatch and may change at any time.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from rankmatch._transport import RemoteFault, RemoteResponse
from rankmatch.exceptions import (
    AmbiguousOverloadError,
    CredentialExpiredError,
    OrderedSetAggregateError,
    PermissionDeniedError,
    ProcedureMissingError,
    RankMatchRemoteError,
    ReturnTypeMismatchError,
    SqlSyntaxError,
    TransientServerError,
)

LATEST_SESSION_PROCEDURE = "fetch_latest_rank_session_v2"

_MISSING_CODES = frozenset({"42883", "42P01", "PGRST100", "PGRST204", "PGRST301"})

HINT_ORDERED_SET = (
    "An ordered-set aggregate (percentile, mode, ...) is called without a WITHIN GROUP clause. "
    "Add `WITHIN GROUP (ORDER BY ...)` to the procedure and redeploy it."
)
HINT_RETURN_TYPE = (
    "The procedure body does not end with a SELECT returning jsonb (42P13). "
    "Deploy the latest PL/pgSQL version of the procedure and re-run its GRANT statements."
)
HINT_SYNTAX = (
    "The procedure definition has a syntax error; it was probably truncated while pasting. "
    "Redeploy the complete SQL file and make sure no placeholders such as `...` remain."
)
HINT_AMBIGUOUS = "Several overloads of the procedure match the call (PGRST203). Drop the legacy overloads."
HINT_PERMISSION = (
    "The caller lacks permission on the procedure or table. "
    "Grant EXECUTE/SELECT to the service and authenticated roles."
)
HINT_CREDENTIAL = (
    "The service key or user token was rejected. "
    "Check that the configured API key is current and sign in again if needed."
)
HINT_AUTH_REQUIRED = "Loading the session requires a valid auth token. Sign in again or refresh the session."
HINT_TRANSIENT = "The backend returned a 5xx error. Check the server logs and retry."
HINT_LATEST_SESSION_FALLBACK = (
    f"{LATEST_SESSION_PROCEDURE} could not be called. Redeploy the procedure and check its permissions."
)


def _merged_text(fault: RemoteFault) -> str:
    return f"{fault.message} {fault.details} {fault.hint}".lower().strip()


def is_ordered_set_error(fault: RemoteFault) -> bool:
    text = _merged_text(fault)
    return fault.code.upper() == "42809" or ("ordered-set" in text and "within group" in text)


def is_return_type_mismatch(fault: RemoteFault) -> bool:
    text = _merged_text(fault)
    return fault.code.upper() == "42P13" or ("return type mismatch" in text and "jsonb" in text)


def is_syntax_error(fault: RemoteFault) -> bool:
    if fault.code.upper() == "42601":
        return True
    text = _merged_text(fault)
    return "syntax error" in text and ("near" in text or "line" in text)


def is_procedure_missing(fault: RemoteFault | None) -> bool:
    if fault is None:
        return False
    code = fault.code.upper()
    if not code or code == "NULL":
        text = f"{fault.message} {fault.details}".lower()
        return "not exist" in text or "missing" in text
    return code in _MISSING_CODES or "does not exist" in _merged_text(fault)


def _is_credential_error(fault: RemoteFault) -> bool:
    text = _merged_text(fault)
    return fault.code.upper() == "PGRST301" or "jwt expired" in text or "jwterror" in text or fault.status == 401


def _is_permission_error(fault: RemoteFault) -> bool:
    return fault.code == "42501" or "permission denied" in _merged_text(fault) or fault.status == 403


def classify_remote_error(
    fault: RemoteFault,
    *,
    operation: str,
    endpoint: str = "",
) -> RankMatchRemoteError | None:
    """Map a backend fault to a classified error, or ``None`` if unrecognized."""

    checks: list[tuple[bool, type[RankMatchRemoteError], str, str]] = [
        (is_return_type_mismatch(fault), ReturnTypeMismatchError, HINT_RETURN_TYPE, "returns the wrong type"),
        (is_syntax_error(fault), SqlSyntaxError, HINT_SYNTAX, "has a syntax error"),
        (is_ordered_set_error(fault), OrderedSetAggregateError, HINT_ORDERED_SET, "misuses an ordered-set aggregate"),
        (fault.code.upper() == "PGRST203", AmbiguousOverloadError, HINT_AMBIGUOUS, "is ambiguous"),
        (_is_credential_error(fault), CredentialExpiredError, HINT_CREDENTIAL, "rejected the credentials"),
        (is_procedure_missing(fault), ProcedureMissingError, _missing_hint(operation), "is not deployed"),
        (_is_permission_error(fault), PermissionDeniedError, HINT_PERMISSION, "denied permission"),
        (fault.status is not None and fault.status >= 500, TransientServerError, HINT_TRANSIENT, "failed"),
    ]
    for matched, error_cls, hint, verb in checks:
        if matched:
            return error_cls(
                f"{operation} {verb}: {fault.message or fault.code or fault.status}",
                code=fault.code,
                endpoint=endpoint,
                hint=fault.hint if error_cls is TransientServerError and fault.hint else hint,
                source=operation,
                remote_error=fault.as_dict(),
            )
    return None


def raise_for_fault(response: RemoteResponse, *, operation: str, endpoint: str = "") -> None:
    """Raise the classified (or generic) error for a failed response."""
    fault = response.fault
    if fault is None:
        return
    classified = classify_remote_error(fault, operation=operation, endpoint=endpoint)
    if classified is not None:
        raise classified
    raise RankMatchRemoteError(
        f"{operation} failed: code={fault.code} message={fault.message}",
        code=fault.code,
        endpoint=endpoint,
        hint=fault.hint,
        source=operation,
        remote_error=fault.as_dict(),
    )


def _missing_hint(operation: str) -> str:
    return (
        f"{operation} is not deployed. Run its SQL script to create it and grant EXECUTE "
        "to the service and authenticated roles."
    )


def derive_latest_session_hint(
    fault: RemoteFault | None,
    *,
    status: int | None = None,
    hint: str | None = None,
    circuit_breaker: Mapping[str, Any] | None = None,
) -> str | None:
    """Remediation hint for a failed latest-session lookup.

    *hint* is a hint the proxied API sent alongside the failure and
    *circuit_breaker* its circuit-breaker diagnostics, if any.
    """

    effective_status = status if status is not None else fault.status if fault is not None else None
    code = fault.code.upper() if fault is not None else ""
    text = _merged_text(fault) if fault is not None else ""

    if fault is not None and is_ordered_set_error(fault):
        return HINT_ORDERED_SET
    if effective_status in (401, 403):
        return HINT_AUTH_REQUIRED
    if hint and not code and not text:
        return hint
    if isinstance(circuit_breaker, Mapping) and circuit_breaker.get("hint"):
        return str(circuit_breaker["hint"])
    if hint:
        return hint
    if code in ("42883", "42P01") or "does not exist" in text:
        return _missing_hint(LATEST_SESSION_PROCEDURE)
    if code == "42501" or "permission denied" in text:
        return HINT_PERMISSION
    if code == "PGRST301" or "jwterror" in text or "jwt expired" in text:
        return HINT_CREDENTIAL
    if effective_status in (500, 502):
        return HINT_TRANSIENT
    return None


def rows_of(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [row for row in data if isinstance(row, dict)]
    if isinstance(data, dict):
        return [data]
    return []


def first_row(data: Any) -> dict[str, Any] | None:
    rows = rows_of(data)
    return rows[0] if rows else None
