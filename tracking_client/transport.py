"""HTTP transport between a player and the tracking API."""

from typing import Any

import httpx

DEFAULT_TIMEOUT_SECONDS = 10.0


class TrackingTransport:
    """
    Thin async wrapper over the tracking endpoints.

    Every method raises httpx.HTTPError on network failure or a non-2xx
    response (via raise_for_status); retry policy lives in the session.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    async def start_session(
        self, lesson_id: str, client_instance_id: str | None
    ) -> dict[str, Any]:
        response = await self._client.post(
            "/api/video/sessions",
            json={"lesson_id": lesson_id, "client_instance_id": client_instance_id},
        )
        response.raise_for_status()
        return response.json()

    async def send_batch(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post("/api/video/events/batch", json=payload)
        response.raise_for_status()
        return response.json()

    async def end_session(self, session_token: str) -> None:
        response = await self._client.post(
            "/api/video/sessions/end", json={"session_token": session_token}
        )
        response.raise_for_status()

    async def get_progress(self, lesson_id: str) -> dict[str, Any]:
        response = await self._client.get(
            "/api/video/progress", params={"lesson_id": lesson_id}
        )
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
