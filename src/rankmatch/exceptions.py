"""Custom exception hierarchy for rankmatch."""

from __future__ import annotations

from typing import Any


class RankMatchError(Exception):
    """Base exception for all rankmatch errors."""


class RankMatchConfigError(RankMatchError):
    """Invalid or missing configuration."""


class RankMatchTransportError(RankMatchError):
    """HTTP-level failure (network, unexpected status, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class RankMatchRemoteError(RankMatchError):
    """The backend answered with a classified failure.

    Every subclass carries a remediation ``hint`` meant to be shown to an
    operator, the backend error ``code`` and the ``source`` operation that
    failed.  ``remote_error`` keeps the raw fault payload.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
        hint: str = "",
        source: str = "",
        remote_error: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        self.hint = hint
        self.source = source
        self.remote_error = remote_error
        super().__init__(message)


class ProcedureMissingError(RankMatchRemoteError):
    """Remote procedure or table is not deployed (e.g. ``42883``, ``42P01``)."""


class AmbiguousOverloadError(RankMatchRemoteError):
    """Several overloads of a remote procedure match the call (``PGRST203``)."""


class OrderedSetAggregateError(RankMatchRemoteError):
    """Ordered-set aggregate called without ``WITHIN GROUP`` (``42809``)."""


class ReturnTypeMismatchError(RankMatchRemoteError):
    """Procedure body does not return the declared type (``42P13``)."""


class SqlSyntaxError(RankMatchRemoteError):
    """Procedure definition has a syntax defect (``42601``)."""


class PermissionDeniedError(RankMatchRemoteError):
    """Caller lacks execute/select permission (``42501``, HTTP 403)."""


class CredentialExpiredError(RankMatchRemoteError):
    """Service key or user token rejected (``PGRST301``, HTTP 401)."""


class TransientServerError(RankMatchRemoteError):
    """Backend answered with a 5xx status."""


class LatestSessionUnavailableError(RankMatchRemoteError):
    """No session could be resolved and the lookup reported diagnostics."""


class ReadySignalError(RankMatchError):
    """Ready-signal request failed.

    ``reason`` is one of ``expired``, ``forbidden``, ``session_not_found``
    or ``failed``.  ``expired`` and ``session_not_found`` mean the caller
    should refresh match state before retrying.
    """

    def __init__(self, message: str, *, reason: str = "failed", status_code: int | None = None) -> None:
        self.reason = reason
        self.status_code = status_code
        super().__init__(message)

    @property
    def needs_refresh(self) -> bool:
        return self.reason in {"expired", "session_not_found"}
