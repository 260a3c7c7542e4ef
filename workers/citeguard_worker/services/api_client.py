from __future__ import annotations

from typing import Any

import httpx


class CiteGuardClient:
    """Machine-authenticated calls the scheduler makes against the API."""

    def __init__(
        self,
        base_url: str,
        module_id: str,
        api_key: str,
        *,
        timeout_seconds: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def poll_replacement_jobs(self) -> dict[str, Any]:
        return await self._post("/replacement-jobs/poll")

    async def cleanup_stale_alerts(self) -> dict[str, Any]:
        return await self._post("/compliance/alerts/cleanup")

    async def run_compliance_scan(self) -> dict[str, Any]:
        return await self._post("/compliance/scan")

    async def create_replacement_job(self, items: list[dict[str, str]]) -> dict[str, Any]:
        return await self._post("/replacement-jobs", {"items": items})

    async def get_replacement_job(self, job_id: str) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.get(f"{self.base_url}/replacement-jobs/{job_id}", headers=self.headers)
            response.raise_for_status()
            return response.json()

    async def _post(self, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(f"{self.base_url}{path}", json=payload, headers=self.headers)
            response.raise_for_status()
            return response.json()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)
