"""HTTP transport for the REST backend and the server-proxied API."""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import aiohttp

from rankmatch._redact import redact_for_log
from rankmatch.config import RankMatchConfig
from rankmatch.exceptions import RankMatchTransportError

_logger = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1"


@dataclasses.dataclass(frozen=True)
class RemoteFault:
    """A failure reported by the backend in a well-formed response body."""

    code: str = ""
    message: str = ""
    details: str = ""
    hint: str = ""
    status: int | None = None
    payload: dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Any, *, status: int | None) -> RemoteFault:
        data = body if isinstance(body, dict) else {}
        code = data.get("code") or data.get("error") or ""
        message = data.get("message") or data.get("error_description") or data.get("error") or ""
        if not message and isinstance(body, str):
            message = body[:200]
        return cls(
            code=str(code),
            message=str(message),
            details=str(data.get("details") or ""),
            hint=str(data.get("hint") or ""),
            status=status,
            payload=dict(data),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "hint": self.hint,
            "status": self.status,
        }


@dataclasses.dataclass(frozen=True)
class RemoteResponse:
    status: int
    data: Any = None
    fault: RemoteFault | None = None

    @property
    def ok(self) -> bool:
        return self.fault is None


@dataclasses.dataclass(frozen=True)
class TableQuery:
    """A single-table select: equality filters, ordering and a row limit."""

    table: str
    columns: str = "*"
    filters: tuple[tuple[str, Any], ...] = ()
    order: tuple[tuple[str, bool], ...] = ()
    limit: int | None = None

    def eq(self, column: str, value: Any) -> TableQuery:
        return dataclasses.replace(self, filters=(*self.filters, (column, value)))

    def order_by(self, column: str, *, descending: bool = False) -> TableQuery:
        return dataclasses.replace(self, order=(*self.order, (column, descending)))

    def limited(self, limit: int) -> TableQuery:
        return dataclasses.replace(self, limit=limit)

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {"select": self.columns}
        for column, value in self.filters:
            params[column] = f"eq.{value}"
        if self.order:
            params["order"] = ",".join(f"{column}.{'desc' if desc else 'asc'}" for column, desc in self.order)
        if self.limit is not None:
            params["limit"] = str(self.limit)
        return params


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (:class:`RestTransport`) concrete.
    Backend-reported failures come back as ``RemoteResponse.fault``; only
    network-level failures raise :class:`RankMatchTransportError`.
    """

    async def rpc(self, name: str, params: Mapping[str, Any]) -> RemoteResponse: ...

    async def select(self, query: TableQuery) -> RemoteResponse: ...

    async def post_api(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        access_token: str | None = None,
    ) -> RemoteResponse: ...


class RestTransport:
    """aiohttp transport speaking the PostgREST dialect plus the proxied API."""

    def __init__(
        self,
        config: RankMatchConfig,
        http_session: aiohttp.ClientSession,
        *,
        access_token: Callable[[], str | None] | None = None,
    ) -> None:
        self._config = config
        self._http = http_session
        self._access_token = access_token
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    def _headers(self, *, bearer: str | None = None) -> dict[str, str]:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
        }
        if self._config.api_key:
            headers["apikey"] = self._config.api_key
        token = bearer or (self._access_token() if self._access_token is not None else None) or self._config.api_key
        if token:
            headers["authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        endpoint: str,
        *,
        headers: dict[str, str],
        params: Mapping[str, str] | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> RemoteResponse:
        _logger.debug("%s %s params=%s body=%s", method, url, params, redact_for_log(payload))
        body = json.dumps(payload) if payload is not None else None
        try:
            async with self._http.request(
                method,
                url,
                params=params,
                data=body,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                status = resp.status
                text = await resp.text()
        except aiohttp.ClientError as exc:
            raise RankMatchTransportError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc
        except TimeoutError as exc:
            raise RankMatchTransportError(f"Request to {endpoint} timed out", endpoint=endpoint) from exc

        data: Any = None
        if text.strip():
            try:
                data = json.loads(text)
            except json.JSONDecodeError as exc:
                if 200 <= status < 300:
                    raise RankMatchTransportError(
                        f"Invalid JSON from {endpoint}: {text[:200]}",
                        status_code=status,
                        endpoint=endpoint,
                    ) from exc
                data = text

        if not 200 <= status < 300:
            fault = RemoteFault.from_body(data, status=status)
            _logger.debug("HTTP %s from %s: %s", status, endpoint, redact_for_log(fault.as_dict()))
            return RemoteResponse(status=status, data=data, fault=fault)
        return RemoteResponse(status=status, data=data)

    async def rpc(self, name: str, params: Mapping[str, Any]) -> RemoteResponse:
        endpoint = f"{REST_PREFIX}/rpc/{name}"
        return await self._request(
            "POST",
            f"{self._config.base_url}{endpoint}",
            endpoint,
            headers=self._headers(),
            payload=params,
        )

    async def select(self, query: TableQuery) -> RemoteResponse:
        endpoint = f"{REST_PREFIX}/{query.table}"
        return await self._request(
            "GET",
            f"{self._config.base_url}{endpoint}",
            endpoint,
            headers=self._headers(),
            params=query.to_params(),
        )

    async def post_api(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        access_token: str | None = None,
    ) -> RemoteResponse:
        return await self._request(
            "POST",
            f"{self._config.resolved_api_base_url}{path}",
            path,
            headers=self._headers(bearer=access_token),
            payload=payload,
        )
