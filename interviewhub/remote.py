"""
Client for the hosted backend (Supabase: PostgREST tables, GoTrue auth, Storage).

The orchestration layer only depends on the RemoteDataService protocol:
  query(table, filters, order, columns) -> rows
  insert / upsert / update / delete      -> affected rows
  current_user()                         -> {"id", "email", ...} | None
  upload(bucket, path, content, type)    -> public URL
  sign_out()

Notes / Pitfalls:
- Every write asks PostgREST for `return=representation`, so callers get the rows
  as the server stored them (ids, created_at) and can put them straight in the cache.
- Row-level security lives server-side; a delete the policy refuses comes back as
  "0 rows deleted", not as an error. Callers verify.
- HTTP errors and network failures are turned into RemoteError / NotFoundError here;
  nothing httpx-specific leaks out of this module.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from interviewhub.errors import PGRST_NO_ROWS, NotAuthenticatedError, NotFoundError, RemoteError
from interviewhub.observability import REMOTE_CALLS
from interviewhub.utils import stopwatch

log = logging.getLogger(__name__)

Row = dict[str, Any]


class RemoteDataService(Protocol):
    async def query(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        columns: str = "*",
    ) -> list[Row]: ...

    async def insert(self, table: str, record: Row) -> list[Row]: ...

    async def upsert(self, table: str, record: Row) -> list[Row]: ...

    async def update(self, table: str, changes: Row, *, filters: dict[str, Any]) -> list[Row]: ...

    async def delete(self, table: str, *, filters: dict[str, Any]) -> list[Row]: ...

    async def current_user(self) -> Row | None: ...

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> str: ...

    async def sign_out(self) -> None: ...

    def with_session(self, access_token: str | None) -> RemoteDataService: ...


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
def _filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def eq_params(filters: dict[str, Any] | None) -> dict[str, str]:
    """{"user_id": "u1"} -> {"user_id": "eq.u1"} (PostgREST equality filters)."""
    return {col: f"eq.{_filter_value(val)}" for col, val in (filters or {}).items()}


def order_param(order: str | None) -> str | None:
    """
    "created_at" -> "created_at.asc", "-created_at" -> "created_at.desc".
    Already-qualified values ("created_at.desc") pass through.
    """
    if not order:
        return None
    if "." in order:
        return order
    if order.startswith("-"):
        return f"{order[1:]}.desc"
    return f"{order}.asc"


def error_from_response(resp: httpx.Response) -> RemoteError:
    """Map a failed response from any of the three APIs onto our error types."""
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = body.get("code") or body.get("error")
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or resp.text
        or resp.reason_phrase
    )
    code = str(code) if code is not None else None

    if code == PGRST_NO_ROWS or resp.status_code == 404:
        return NotFoundError(message, code=code, status=resp.status_code)
    if resp.status_code == 401:
        return NotAuthenticatedError(message, code=code, status=resp.status_code)
    return RemoteError(message, code=code, status=resp.status_code)


# --------------------------------------------------------------------------------------
# Supabase REST client
# --------------------------------------------------------------------------------------
class SupabaseRemote:
    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def with_session(self, access_token: str | None) -> SupabaseRemote:
        """Same connection pool, acting as the user behind access_token."""
        return SupabaseRemote(
            self.url, self.api_key, access_token=access_token, client=self._client
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }

    async def _request(
        self,
        op: str,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        merged = {**self._headers, **(headers or {})}
        with stopwatch() as elapsed:
            try:
                resp = await self._client.request(
                    method,
                    f"{self.url}{path}",
                    params=params,
                    json=json,
                    content=content,
                    headers=merged,
                )
            except httpx.RequestError as e:
                REMOTE_CALLS.labels(op=op, outcome="network_error").inc()
                raise RemoteError(f"network error: {e}", code="NETWORK") from e

            if resp.is_error:
                REMOTE_CALLS.labels(op=op, outcome="error").inc()
                raise error_from_response(resp)

        REMOTE_CALLS.labels(op=op, outcome="ok").inc()
        log.debug("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed() * 1000)
        return resp

    # ---- tables ----
    async def query(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        columns: str = "*",
    ) -> list[Row]:
        params = {"select": columns, **eq_params(filters)}
        ordering = order_param(order)
        if ordering:
            params["order"] = ordering
        resp = await self._request("query", "GET", f"/rest/v1/{table}", params=params)
        return resp.json() or []

    async def insert(self, table: str, record: Row) -> list[Row]:
        resp = await self._request(
            "insert",
            "POST",
            f"/rest/v1/{table}",
            json=[record],
            headers={"Prefer": "return=representation"},
        )
        return resp.json() or []

    async def upsert(self, table: str, record: Row) -> list[Row]:
        resp = await self._request(
            "upsert",
            "POST",
            f"/rest/v1/{table}",
            json=[record],
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return resp.json() or []

    async def update(self, table: str, changes: Row, *, filters: dict[str, Any]) -> list[Row]:
        if not filters:
            raise ValueError("update without filters would touch every row")
        resp = await self._request(
            "update",
            "PATCH",
            f"/rest/v1/{table}",
            params=eq_params(filters),
            json=changes,
            headers={"Prefer": "return=representation"},
        )
        return resp.json() or []

    async def delete(self, table: str, *, filters: dict[str, Any]) -> list[Row]:
        if not filters:
            raise ValueError("delete without filters would touch every row")
        resp = await self._request(
            "delete",
            "DELETE",
            f"/rest/v1/{table}",
            params=eq_params(filters),
            headers={"Prefer": "return=representation"},
        )
        return resp.json() or []

    # ---- auth ----
    async def current_user(self) -> Row | None:
        if not self.access_token:
            return None
        try:
            resp = await self._request("current_user", "GET", "/auth/v1/user")
        except NotAuthenticatedError:
            return None
        return resp.json()

    async def sign_out(self) -> None:
        if not self.access_token:
            return
        await self._request("sign_out", "POST", "/auth/v1/logout")

    # ---- storage ----
    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{path}"

    async def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> str:
        await self._request(
            "upload",
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=content,
            headers={"Content-Type": content_type, "x-upsert": "true"},
        )
        return self.public_url(bucket, path)
