from __future__ import annotations

import pytest

from rankmatch._api._common import (
    HINT_AUTH_REQUIRED,
    HINT_ORDERED_SET,
    classify_remote_error,
    derive_latest_session_hint,
    is_procedure_missing,
    raise_for_fault,
)
from rankmatch._transport import RemoteFault, RemoteResponse
from rankmatch.exceptions import (
    AmbiguousOverloadError,
    CredentialExpiredError,
    OrderedSetAggregateError,
    PermissionDeniedError,
    ProcedureMissingError,
    RankMatchRemoteError,
    ReadySignalError,
    ReturnTypeMismatchError,
    SqlSyntaxError,
    TransientServerError,
)


@pytest.mark.parametrize(
    ("fault", "expected"),
    [
        (RemoteFault(code="42P13", message="return type mismatch"), ReturnTypeMismatchError),
        (RemoteFault(code="42601", message='syntax error at or near "..."'), SqlSyntaxError),
        (
            RemoteFault(message="ordered-set aggregate percentile_cont requires WITHIN GROUP"),
            OrderedSetAggregateError,
        ),
        (RemoteFault(code="PGRST203", message="Could not choose the best candidate"), AmbiguousOverloadError),
        (RemoteFault(code="PGRST301", message="JWT expired", status=401), CredentialExpiredError),
        (RemoteFault(code="42883", message="function does not exist", status=404), ProcedureMissingError),
        (RemoteFault(code="42501", message="permission denied for table"), PermissionDeniedError),
        (RemoteFault(message="upstream failed", status=502), TransientServerError),
    ],
)
def test_classify_remote_error(fault: RemoteFault, expected: type[RankMatchRemoteError]) -> None:
    error = classify_remote_error(fault, operation="fetch_rank_match_ready_snapshot")

    assert type(error) is expected
    assert error.hint
    assert error.source == "fetch_rank_match_ready_snapshot"
    assert error.remote_error is not None


def test_unrecognized_fault_is_not_classified() -> None:
    assert classify_remote_error(RemoteFault(code="XX000", message="odd", status=400), operation="op") is None


def test_raise_for_fault_falls_back_to_generic_error() -> None:
    response = RemoteResponse(status=400, fault=RemoteFault(code="XX000", message="odd", status=400))

    with pytest.raises(RankMatchRemoteError) as exc_info:
        raise_for_fault(response, operation="rank_turns")

    assert type(exc_info.value) is RankMatchRemoteError
    assert exc_info.value.code == "XX000"
    raise_for_fault(RemoteResponse(status=200, data=[]), operation="rank_turns")


def test_latest_session_hint_precedence() -> None:
    ordered = RemoteFault(code="42809", status=401)
    assert derive_latest_session_hint(ordered) == HINT_ORDERED_SET
    assert derive_latest_session_hint(RemoteFault(status=403)) == HINT_AUTH_REQUIRED
    assert derive_latest_session_hint(None, status=500, hint="Deploy it") == "Deploy it"
    assert derive_latest_session_hint(None, circuit_breaker={"hint": "Cooling down"}) == "Cooling down"
    assert derive_latest_session_hint(RemoteFault(code="XX000", message="odd")) is None


def test_ready_signal_error_refresh_reasons() -> None:
    assert ReadySignalError("x", reason="expired").needs_refresh
    assert ReadySignalError("x", reason="session_not_found").needs_refresh
    assert not ReadySignalError("x", reason="forbidden").needs_refresh


def test_is_procedure_missing() -> None:
    assert is_procedure_missing(RemoteFault(code="42883", status=404))
    assert is_procedure_missing(RemoteFault(message="function fetch_x does not exist"))
    assert not is_procedure_missing(RemoteFault(code="42501", message="permission denied"))
    assert not is_procedure_missing(None)
