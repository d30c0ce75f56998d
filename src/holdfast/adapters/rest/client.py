"""Remote store and identity adapters speaking the PostgREST / auth admin HTTP API."""

from __future__ import annotations

from datetime import date, datetime
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from holdfast.adapters.http_resilience import ResilientClient
from holdfast.domain.ports import StoreFailure, StoreResponse

from .schema import ErrorPayload

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import TracebackType

    from holdfast.config.http_resilience import ResilienceConfig
    from holdfast.config.store import StoreConfig
    from holdfast.domain.ports import Filters, IdentityAdmin, RemoteStore, Row

log = getLogger(__name__)

REST_PATH = "/rest/v1"
AUTH_ADMIN_PATH = "/auth/v1/admin/users"
SINGLE_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def encode_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


def encode_filters(filters: Filters | None) -> dict[str, str]:
    """Translate equality filters into PostgREST query parameters."""

    if not filters:
        return {}
    return {
        column: "is.null" if value is None else f"eq.{encode_value(value)}"
        for column, value in filters.items()
    }


def to_json(value: object) -> object:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): to_json(item) for key, item in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [to_json(item) for item in value]
    return value


def parse_content_range(header: str | None) -> int | None:
    """Return the total from a ``Content-Range: 0-9/42`` header, if known."""

    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


class _RestAdapter:
    def __init__(
        self,
        config: StoreConfig,
        *,
        client_factory: Callable[[ResilienceConfig], ResilientClient] = _default_client_factory,
    ) -> None:
        self.config = config
        self._client_factory = client_factory
        self._client: ResilientClient | None = None

    async def __aenter__(self) -> _RestAdapter:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> ResilientClient:
        if self._client is None:
            self._client = self._client_factory(self.config.resilience)
        return self._client

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: object = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response | StoreFailure:
        """Perform one request; transport failures come back as a ``StoreFailure``."""

        url = f"{self.config.base_url}{path}"
        merged_headers = {**self.config.auth_headers, **(headers or {})}
        try:
            response = await self._http().request(
                method,
                url,
                params=params,
                json=to_json(json) if json is not None else None,
                headers=merged_headers,
            )
        except httpx.TimeoutException as exc:
            return StoreFailure(message=str(exc) or "Request timed out", code="ETIMEDOUT")
        except httpx.ConnectError as exc:
            return StoreFailure(message=str(exc) or "Connection refused", code="ECONNREFUSED")
        except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
            return StoreFailure(message=str(exc) or "Connection reset", code="ECONNRESET")

        if response.is_error:
            return _failure_from_response(response)
        return response


def _failure_from_response(response: httpx.Response) -> StoreFailure:
    fallback = response.reason_phrase or f"HTTP {response.status_code}"
    try:
        payload = ErrorPayload.model_validate(response.json())
    except (ValueError, ValidationError):
        text = response.text.strip()
        return StoreFailure(message=text or fallback, status=response.status_code)
    failure = payload.to_failure(status=response.status_code, fallback=fallback)
    log.debug("Store request failed: status=%s code=%s", response.status_code, failure.code)
    return failure


def _rows(response: httpx.Response) -> list[Row]:
    if not response.content:
        return []
    payload = response.json()
    if isinstance(payload, list):
        return [dict(item) for item in payload]
    if isinstance(payload, dict):
        return [dict(payload)]
    raise ValueError(f"Unexpected store payload: {payload!r}")


def _rows_response(response: httpx.Response | StoreFailure) -> StoreResponse[list[Row]]:
    if isinstance(response, StoreFailure):
        return StoreResponse(error=response)
    rows = _rows(response)
    count = parse_content_range(response.headers.get("content-range"))
    return StoreResponse(data=rows, count=len(rows) if count is None else count)


class RestStore(_RestAdapter):
    """``RemoteStore`` over the PostgREST table API."""

    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        columns: Sequence[str] | None = None,
    ) -> StoreResponse[list[Row]]:
        """Read every matching row, following pages when the server caps responses."""

        params = encode_filters(filters)
        params["select"] = ",".join(columns) if columns else "*"
        rows: list[Row] = []
        while True:
            page_params = {**params, "offset": str(len(rows))} if rows else params
            response = await self._send(
                "GET",
                f"{REST_PATH}/{table}",
                params=page_params,
                headers={"Prefer": "count=exact"},
            )
            if isinstance(response, StoreFailure):
                return StoreResponse(error=response)
            page = _rows(response)
            rows.extend(page)
            total = parse_content_range(response.headers.get("content-range"))
            if total is None or len(rows) >= total:
                return StoreResponse(data=rows, count=len(rows))
            if not page:
                return StoreResponse(
                    error=StoreFailure(
                        message=f"Read of {table} stopped after {len(rows)} of {total} rows",
                        status=response.status_code,
                    )
                )
            log.debug("Read %s of %s rows from %s, fetching next page", len(rows), total, table)

    async def select_one(
        self,
        table: str,
        *,
        filters: Filters,
        columns: Sequence[str] | None = None,
    ) -> StoreResponse[Row]:
        params = encode_filters(filters)
        params["select"] = ",".join(columns) if columns else "*"
        response = await self._send(
            "GET",
            f"{REST_PATH}/{table}",
            params=params,
            headers={"Accept": SINGLE_OBJECT_MEDIA_TYPE},
        )
        if isinstance(response, StoreFailure):
            return StoreResponse(error=response)
        rows = _rows(response)
        if not rows:
            return StoreResponse(
                error=StoreFailure(message=f"No rows in {table}", code="PGRST116", status=406)
            )
        return StoreResponse(data=rows[0], count=1)

    async def count(self, table: str, *, filters: Filters) -> StoreResponse[int]:
        params = encode_filters(filters)
        params["select"] = "*"
        response = await self._send(
            "HEAD",
            f"{REST_PATH}/{table}",
            params=params,
            headers={"Prefer": "count=exact"},
        )
        if isinstance(response, StoreFailure):
            return StoreResponse(error=response)
        total = parse_content_range(response.headers.get("content-range"))
        return StoreResponse(data=total or 0, count=total or 0)

    async def insert(self, table: str, rows: Sequence[Row]) -> StoreResponse[list[Row]]:
        response = await self._send(
            "POST",
            f"{REST_PATH}/{table}",
            json=list(rows),
            headers={"Prefer": "return=representation"},
        )
        return _rows_response(response)

    async def update(
        self,
        table: str,
        *,
        values: Row,
        filters: Filters,
    ) -> StoreResponse[list[Row]]:
        _require_filters("update", table, filters)
        response = await self._send(
            "PATCH",
            f"{REST_PATH}/{table}",
            params=encode_filters(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return _rows_response(response)

    async def upsert(
        self,
        table: str,
        rows: Sequence[Row],
        *,
        on_conflict: Sequence[str],
        ignore_duplicates: bool = False,
    ) -> StoreResponse[list[Row]]:
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        response = await self._send(
            "POST",
            f"{REST_PATH}/{table}",
            params={"on_conflict": ",".join(on_conflict)},
            json=list(rows),
            headers={"Prefer": f"resolution={resolution},return=representation"},
        )
        return _rows_response(response)

    async def delete(self, table: str, *, filters: Filters) -> StoreResponse[list[Row]]:
        _require_filters("delete", table, filters)
        response = await self._send(
            "DELETE",
            f"{REST_PATH}/{table}",
            params=encode_filters(filters),
            headers={"Prefer": "return=representation,count=exact"},
        )
        return _rows_response(response)


class RestIdentityAdmin(_RestAdapter):
    """``IdentityAdmin`` over the auth admin API."""

    async def delete_user(self, user_id: str) -> StoreResponse[None]:
        response = await self._send("DELETE", f"{AUTH_ADMIN_PATH}/{user_id}")
        if isinstance(response, StoreFailure):
            return StoreResponse(error=response)
        return StoreResponse()


def _require_filters(action: str, table: str, filters: Filters) -> None:
    if not filters:
        raise ValueError(f"Refusing to {action} every row of {table}: no filters given")


if TYPE_CHECKING:

    def _check_ports(store: RestStore, identity: RestIdentityAdmin) -> tuple[RemoteStore, IdentityAdmin]:
        return store, identity
