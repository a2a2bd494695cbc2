"""API client for the IPFS daemon RPC interface."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import httpx

from .exceptions import (
    IpfsAPIError,
    IpfsInvalidResponseError,
    IpfsNetworkError,
    IpfsPinnedError,
)
from .models import AddResult, FilestoreEntry, FileStat, Key, NameResolution, RefEntry

logger = logging.getLogger(__name__)

KEY_SPACE = "ipfs-sync."
API_PREFIX = "/api/v0"

DEFAULT_ENDPOINT = "http://127.0.0.1:5001"
DEFAULT_BASE_PATH = "/ipfs-sync/"


def key_name(directory_id: str) -> str:
    """Return the IPNS key name used for a monitored directory."""
    return f"{KEY_SPACE}{directory_id}"


class IpfsClient:
    """Client for the IPFS daemon HTTP RPC API.

    Paths given to the mutable file system (MFS) helpers are relative to
    ``base_path``. Short administrative calls use ``timeout``; uploads,
    publishing and streamed listings run without one.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        base_path: str = DEFAULT_BASE_PATH,
        timeout: float | None = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the IPFS client.

        Args:
            endpoint: Daemon API address (default: http://127.0.0.1:5001)
            base_path: MFS directory all synced directories live under
            timeout: Timeout in seconds for short API calls
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            transport: Optional httpx transport, used by tests
        """
        self.endpoint = endpoint.rstrip("/")
        self.api_url = f"{self.endpoint}{API_PREFIX}"
        self.base_path = base_path if base_path.endswith("/") else f"{base_path}/"
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(None),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def mfs_path(self, path: str) -> str:
        """Return the absolute MFS path for a path relative to ``base_path``."""
        return f"{self.base_path}{path}"

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    @staticmethod
    def _error_from_response(response: httpx.Response) -> tuple[IpfsAPIError, bool]:
        """Map an error response to an exception.

        Returns:
            Tuple of (exception to raise, whether the failure is transient)
        """
        status_code = response.status_code
        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if isinstance(data, dict) and ("Message" in data or "message" in data):
            # a command error: the daemon is up and answered, retrying won't help
            return IpfsAPIError.from_response_body(data, status_code), False

        error = IpfsAPIError(
            f"API request failed with status {status_code}",
            code=status_code,
            status_code=status_code,
        )
        return error, 500 <= status_code < 600

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        """Decode a JSON (or newline delimited JSON) response body."""
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            pass
        # some commands answer with one JSON document per line, keep the last
        lines = [line for line in response.text.splitlines() if line.strip()]
        try:
            return json.loads(lines[-1])
        except (IndexError, ValueError) as e:
            raise IpfsInvalidResponseError(
                f"Invalid JSON response from {response.url}"
            ) from e

    async def _request(
        self,
        command: str,
        params: Any = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> Any:
        """Make an RPC request with retry logic.

        Args:
            command: RPC command, e.g. ``files/stat``
            params: Query parameters (mapping or list of pairs)
            timeout: Request timeout in seconds, ``None`` for no timeout
            **kwargs: Additional arguments passed to httpx

        Returns:
            Decoded response JSON

        Raises:
            IpfsAPIError: If the request fails after all retries
        """
        url = f"{self.api_url}/{command.lstrip('/')}"
        client = self._get_client()
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.post(
                    url, params=params, timeout=timeout, **kwargs
                )
            except httpx.RequestError as e:
                last_exception = IpfsNetworkError(f"Network error: {e}")
                if attempt < self.max_retries:
                    await asyncio.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise last_exception from e

            if response.is_success:
                return self._decode(response)

            error, transient = self._error_from_response(response)
            last_exception = error
            if transient and attempt < self.max_retries:
                logger.debug(f"{command} failed ({error}), retrying")
                await asyncio.sleep(self._calculate_retry_delay(attempt))
                continue
            raise error

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise IpfsAPIError("Request failed after all retry attempts")

    async def _stream(self, command: str, params: Any = None) -> AsyncIterator[Any]:
        """Stream a newline delimited JSON response, one object per line.

        Errors can surface after the first items were produced.
        """
        url = f"{self.api_url}/{command.lstrip('/')}"
        client = self._get_client()
        try:
            async with client.stream("POST", url, params=params) as response:
                if not response.is_success:
                    await response.aread()
                    error, _ = self._error_from_response(response)
                    raise error
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        yield json.loads(line)
                    except ValueError as e:
                        raise IpfsInvalidResponseError(
                            f"Invalid {command} chunk: {line!r}"
                        ) from e
        except httpx.RequestError as e:
            raise IpfsNetworkError(f"Network error: {e}") from e

    # =========================
    # Daemon
    # =========================

    async def version(self) -> str:
        """Return the daemon version, failing if it cannot be reached."""
        data = await self._request("version", timeout=self.timeout)
        version = data.get("Version") if isinstance(data, dict) else None
        if not isinstance(version, str):
            raise IpfsInvalidResponseError(f"Unexpected version response: {data!r}")
        return version

    # =========================
    # Content
    # =========================

    async def add_file(
        self, file_path: str | Path, nocopy: bool = False, only_hash: bool = False
    ) -> str:
        """Add a file to IPFS and return its CID.

        Args:
            file_path: Absolute path of the file on disk
            nocopy: Reference the file through the filestore instead of
                copying its blocks
            only_hash: Only compute the CID, don't store anything

        Returns:
            CID of the added file
        """
        path = Path(file_path)
        logger.debug(f"Preparing to add file {path}")
        content = await asyncio.to_thread(path.read_bytes)
        files = {
            "file": (
                path.name,
                content,
                "application/octet-stream",
                {"Abspath": str(path)},
            )
        }
        params = {
            "nocopy": _flag(nocopy),
            "only-hash": _flag(only_hash),
            "pin": "false",
            "quieter": "true",
        }
        data = await self._request("add", params=params, files=files)
        result = AddResult.from_api_response(data)
        logger.debug(f"File hash: {result.hash}")
        return result.hash

    # =========================
    # Mutable file system
    # =========================

    async def get_file_cid(self, path: str) -> str:
        """Return the CID at an MFS path relative to ``base_path``.

        Returns an empty string when the path can't be resolved.
        """
        try:
            data = await self._request(
                "files/stat",
                params={"hash": "true", "arg": self.mfs_path(path)},
                timeout=self.timeout,
            )
            return FileStat.from_api_response(data).hash
        except IpfsAPIError as e:
            logger.debug(f"files/stat failed for {path}: {e}")
            return ""

    async def copy_file(self, source: str, destination: str) -> None:
        """Link ``source`` (an ``/ipfs/<cid>`` path) at an MFS destination."""
        await self._request(
            "files/cp",
            params=[("arg", source), ("arg", destination)],
            timeout=self.timeout,
        )

    async def remove_file(self, path: str) -> None:
        """Remove an MFS entry relative to ``base_path``."""
        await self._request(
            "files/rm",
            params={"arg": self.mfs_path(path), "force": "true"},
            timeout=self.timeout,
        )

    async def make_dir(self, path: str) -> None:
        """Make an MFS directory, with parents, relative to ``base_path``."""
        await self._request(
            "files/mkdir",
            params={"arg": self.mfs_path(path), "parents": "true"},
            timeout=self.timeout,
        )

    # =========================
    # Keys and names
    # =========================

    async def list_keys(self) -> list[Key]:
        """Return all keys known to the daemon."""
        data = await self._request("key/list", timeout=self.timeout)
        keys = data.get("Keys") if isinstance(data, dict) else None
        if not isinstance(keys, list):
            raise IpfsInvalidResponseError(f"Unexpected key/list response: {data!r}")
        return [Key.from_api_response(item) for item in keys]

    async def generate_key(self, name: str) -> Key:
        """Generate a key in the sync key space for a directory ID."""
        data = await self._request(
            "key/gen", params={"arg": key_name(name)}, timeout=self.timeout
        )
        return Key.from_api_response(data)

    async def resolve_name(self, key_id: str) -> str:
        """Resolve an IPNS key to the CID it currently points to."""
        data = await self._request("name/resolve", params={"arg": key_id})
        return NameResolution.from_api_response(data).cid

    async def publish(self, cid: str, key: str) -> None:
        """Publish a CID under an IPNS key."""
        await self._request("name/publish", params={"arg": cid, "key": key})

    # =========================
    # Pins and blocks
    # =========================

    async def pin(self, cid: str) -> None:
        """Pin a CID recursively."""
        await self._request("pin/add", params={"arg": cid})

    async def remove_pin(self, cid: str) -> None:
        """Remove a CID from the pin set."""
        await self._request("pin/rm", params={"arg": cid})

    async def update_pin(self, from_cid: str, to_cid: str) -> None:
        """Move a recursive pin to a new CID, unpinning the old content."""
        await self._request("pin/update", params=[("arg", from_cid), ("arg", to_cid)])

    async def remove_block(self, cid: str) -> None:
        """Remove a raw block.

        Raises:
            IpfsPinnedError: If the block is pinned; carries the pin to drop
        """
        try:
            data = await self._request("block/rm", params={"arg": cid})
        except IpfsAPIError as e:
            error = e
        else:
            # block/rm may report per-block failures in a successful response
            message = data.get("Error") if isinstance(data, dict) else None
            if not message:
                return
            error = IpfsAPIError(str(message))

        if not error.message.startswith("pinned"):
            raise error
        parts = error.message.split(" ")
        # "pinned (recursive)" omits the pin, the block itself is pinned
        pin_cid = parts[2] if len(parts) >= 3 else cid
        raise IpfsPinnedError(
            error.message, pin_cid, code=error.code, status_code=error.status_code
        ) from error

    async def iter_refs(self, cid: str) -> AsyncIterator[RefEntry]:
        """Stream every unique block reachable from a CID."""
        params = {"unique": "true", "recursive": "true", "arg": cid}
        async for item in self._stream("refs", params=params):
            yield RefEntry.from_api_response(item)

    async def iter_filestore_verify(self) -> AsyncIterator[FilestoreEntry]:
        """Stream the filestore consistency report."""
        async for item in self._stream("filestore/verify"):
            yield FilestoreEntry.from_api_response(item)


def _flag(value: bool) -> str:
    return "true" if value else "false"
