# HTTP client for the event server.
# Version: 1.0.0
# Async httpx wrapper for delta fetch, full overwrite, upsert and delete of calendar events.

from datetime import datetime
from typing import Any

import httpx

from .constants import SyncSettings
from .errors import MasterPlanError, SyncError
from .events import CalendarEvent
from .logger import logger
from .sync import SyncResponse


class EventApiClient:
    """Talks to the event server's /api endpoints.

    Every failure (transport error, non-2xx status, undecodable body) is
    raised as SyncError.

    Usage:
        async with EventApiClient("http://localhost:8000") as client:
            response = await client.fetch_since(None)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        transport: httpx.AsyncBaseTransport | None = None
    ) -> "EventApiClient":
        return cls(settings.base_url, settings.timeout_seconds, transport)

    async def __aenter__(self) -> "EventApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SyncError(operation, e)

    async def fetch_since(self, since: datetime | None) -> SyncResponse:
        """Delta fetch: events changed after since (everything if None)."""
        params = {"since": since.isoformat()} if since is not None else {}
        body = await self._request("fetch_since", "GET", "/api/events/sync", params=params)
        try:
            return SyncResponse.from_dict(body)
        except MasterPlanError as e:
            raise SyncError("fetch_since", e)

    async def get_events(self) -> list[CalendarEvent]:
        """Fetch the full event collection."""
        body = await self._request("get_events", "GET", "/api/events")
        try:
            return [CalendarEvent.from_dict(raw) for raw in body.get("events", [])]
        except (MasterPlanError, AttributeError) as e:
            raise SyncError("get_events", e)

    async def save_events(self, events: list[CalendarEvent]) -> int:
        """Overwrite the server collection.

        Returns:
            Number of events the server stored.
        """
        payload = {"events": [e.to_dict() for e in events]}
        body = await self._request("save_events", "POST", "/api/events", json=payload)
        logger.info(f"Saved {len(events)} events to {self.base_url}")
        return int(body.get("count", len(events)))

    async def upsert_event(self, event: CalendarEvent) -> CalendarEvent:
        """Create or replace one event on the server."""
        body = await self._request(
            "upsert_event", "PUT", f"/api/events/{event.id}", json=event.to_dict()
        )
        try:
            return CalendarEvent.from_dict(body["event"])
        except (MasterPlanError, KeyError, TypeError) as e:
            raise SyncError("upsert_event", e)

    async def delete_event(self, event_id: str) -> None:
        await self._request("delete_event", "DELETE", f"/api/events/{event_id}")

    async def health_check(self) -> bool:
        """Return True if the server answers its health endpoint with status ok."""
        try:
            body = await self._request("health_check", "GET", "/api/health")
        except SyncError as e:
            logger.warning(str(e))
            return False
        return body.get("status") == "ok"
