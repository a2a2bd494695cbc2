"""Client for the Estuary remote pinning service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from .exceptions import EstuaryError
from .models import EstuaryPin

logger = logging.getLogger(__name__)

ESTUARY_API_URL = "https://api.estuary.tech"


class EstuaryClient:
    """Mirrors directory pins to Estuary."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str = ESTUARY_API_URL,
        timeout: float | None = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the Estuary client.

        Args:
            api_key: Estuary API key; pinning fails without one
            api_url: Estuary API URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        try:
            response = await self._get_client().request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EstuaryError(
                f"Estuary request failed with status {e.response.status_code}: "
                f"{e.response.text}"
            ) from e
        except httpx.RequestError as e:
            raise EstuaryError(f"Network error: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise EstuaryError("Invalid JSON response from Estuary") from e

    async def pin(self, cid: str, name: str) -> None:
        """Create a pin for a CID.

        Raises:
            EstuaryError: If no API key is configured or the request fails
        """
        if not self.has_api_key:
            raise EstuaryError("Missing Estuary API key.")
        await self._request("POST", "/pinning/pins", json={"cid": cid, "name": name})

    async def list_pins(self, cid: str) -> list[EstuaryPin]:
        """List pins, asking the service to filter on ``cid``."""
        data = await self._request("GET", "/pinning/pins", params={"cid": cid})
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise EstuaryError(f"Unexpected pin listing: {data!r}")
        return [EstuaryPin.from_api_response(item) for item in results]

    async def update_pin(self, old_cid: str, new_cid: str, name: str) -> None:
        """Point the pin of ``old_cid`` at ``new_cid``.

        Falls back to creating a fresh pin when no pin for the old CID
        exists or the replace request fails.
        """
        try:
            pins = await self.list_pins(old_cid)
        except EstuaryError as e:
            logger.error(f"Error getting estuary pin: {e}")
            return

        # Estuary ignores the cid filter, so match the listing client-side
        pin_id = next((p.request_id for p in pins if p.cid == old_cid), "")

        if pin_id:
            try:
                await self._request(
                    "POST",
                    f"/pinning/pins/{pin_id}",
                    json={"cid": new_cid, "name": name},
                )
                return
            except EstuaryError as e:
                logger.error(f"Error updating estuary pin: {e}")

        await self.pin(new_cid, name)
