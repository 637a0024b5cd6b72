"""RADHAT API client."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from radhat.core.types import (
    CreateDepositResponse,
    DepositInfo,
    DepositStatus,
    ListDepositsResponse,
    RouteBatchResult,
)


class RadhatClientError(Exception):
    """Request to the RADHAT API failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.response = response


class RadhatClient:
    """Async client for a running RADHAT service.

    Usage::

        async with RadhatClient("http://localhost:3001") as client:
            deposit = await client.create_deposit("0xAbC...")
            result = await client.run_router()

    Only reads are retried. Creating a deposit or running a cycle is sent
    once, so a lost response never allocates a second address.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        timeout: float = 120.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> RadhatClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ── HTTP primitives ──────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        attempts = self._max_retries if method == "GET" else 1
        last_exc: Exception | None = None

        for attempt in range(attempts):
            try:
                resp = await self._client.request(method, path, **kwargs)
            except httpx.RequestError as exc:
                last_exc = exc
                if attempt < attempts - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                break

            if resp.status_code >= 500 and attempt < attempts - 1:
                await asyncio.sleep(2 ** attempt)
                continue
            if resp.status_code >= 400:
                raise _error_from_response(resp)
            return resp

        raise RadhatClientError(f"{method} {path} failed after {attempts} attempt(s): {last_exc}")

    # ── Endpoints ────────────────────────────────────────────────────

    async def health(self) -> dict[str, Any]:
        return (await self._request("GET", "/api/health")).json()

    async def create_deposit(self, user: str) -> CreateDepositResponse:
        resp = await self._request("POST", "/api/deposit", json={"user": user})
        return CreateDepositResponse(**resp.json())

    async def list_deposits(
        self, status: DepositStatus | None = None, user: str | None = None
    ) -> ListDepositsResponse:
        params: dict[str, str] = {}
        if status is not None:
            params["status"] = status.value
        if user:
            params["user"] = user
        resp = await self._request("GET", "/api/deposits", params=params)
        return ListDepositsResponse(**resp.json())

    async def get_deposit(self, address: str) -> DepositInfo:
        resp = await self._request("GET", f"/api/deposits/{address}")
        return DepositInfo(**resp.json())

    async def run_router(self) -> RouteBatchResult:
        resp = await self._request("POST", "/api/router")
        return RouteBatchResult(**resp.json())


def _error_from_response(resp: httpx.Response) -> RadhatClientError:
    try:
        body = resp.json()
    except ValueError:
        body = None
    error = body.get("error", {}) if isinstance(body, dict) else {}
    return RadhatClientError(
        error.get("message") or f"HTTP {resp.status_code}",
        status_code=resp.status_code,
        code=error.get("code"),
        response=body,
    )
