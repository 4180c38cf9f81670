"""
DocumentStore backed by the Firebase Realtime Database REST API.

    write  -> PUT    {database_url}/{path}.json
    patch  -> PATCH  {database_url}/{path}.json
    read   -> GET    {database_url}/{path}.json
    remove -> DELETE {database_url}/{path}.json

subscribe() keeps a Server-Sent Events stream open per listener and re-reads
the path whenever the database reports a put/patch beneath it. The values come
back with the database's own lossy array encoding; callers normalize them.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from .exceptions import StoreError, StorePermissionError, StoreUnavailableError
from .store import ChangeCallback, Unsubscribe, split_path

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 10.0
RECONNECT_DELAY = 2.0

# Events that carry data; keep-alive is ignored, cancel/auth_revoked end the stream.
DATA_EVENTS = ("put", "patch")
TERMINAL_EVENTS = ("cancel", "auth_revoked")


class FirebaseRealtimeStore:
    """
    Async REST client for one Realtime Database instance.

    The httpx.AsyncClient is created lazily and recreated when the running
    event loop changes, so the store can be built before the loop starts.
    """

    def __init__(
        self,
        database_url: str,
        auth_token: Optional[str] = None,
        timeout: float = HTTP_TIMEOUT,
        reconnect_delay: float = RECONNECT_DELAY,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.database_url = database_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.reconnect_delay = reconnect_delay
        self._client = client
        self._owns_client = client is None
        self._client_loop: Optional[asyncio.AbstractEventLoop] = None
        self._streams: Dict[int, asyncio.Task] = {}
        self._stream_counter = 0

    # ── HTTP plumbing ────────────────────────────────────────────────────

    @property
    def http(self) -> httpx.AsyncClient:
        if not self._owns_client:
            return self._client
        cur_loop: Optional[asyncio.AbstractEventLoop] = None
        try:
            cur_loop = asyncio.get_running_loop()
        except RuntimeError:
            pass
        if (
            self._client is None
            or (cur_loop is not None and self._client_loop is not cur_loop)
        ):
            self._retire_client()
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
            self._client_loop = cur_loop
        return self._client

    def _retire_client(self) -> None:
        """Close the replaced client on its own loop; nothing is left to close once that loop is closed."""
        old, old_loop = self._client, self._client_loop
        if old is None or old_loop is None or old_loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(old.aclose(), old_loop)

    def _url(self, path: str) -> str:
        return f"{self.database_url}/{'/'.join(split_path(path))}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    @staticmethod
    def _check_response(resp: httpx.Response, path: str) -> None:
        if resp.is_success:
            return
        message = f"Realtime Database error {resp.status_code} at '{path}': {resp.text[:300]}"
        if resp.status_code in (401, 403):
            raise StorePermissionError(message, path=path, status_code=resp.status_code)
        if resp.status_code >= 500:
            raise StoreUnavailableError(message, path=path, status_code=resp.status_code)
        raise StoreError(message, path=path, status_code=resp.status_code)

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        try:
            resp = await self.http.request(method, self._url(path), params=self._params(), json=json)
        except httpx.HTTPError as e:
            raise StoreUnavailableError(f"Realtime Database unreachable: {e}", path=path) from e
        self._check_response(resp, path)
        return resp

    # ── DocumentStore ────────────────────────────────────────────────────

    # PUBLIC_INTERFACE
    async def write(self, path: str, document: Any) -> None:
        await self._request("PUT", path, json=document)

    # PUBLIC_INTERFACE
    async def patch(self, path: str, fields: Dict[str, Any]) -> None:
        await self._request("PATCH", path, json=fields)

    # PUBLIC_INTERFACE
    async def read(self, path: str) -> Optional[Any]:
        resp = await self._request("GET", path)
        try:
            return resp.json()
        except ValueError as e:
            raise StoreError(f"Malformed response body at '{path}'", path=path) from e

    # PUBLIC_INTERFACE
    async def remove(self, path: str) -> None:
        await self._request("DELETE", path)

    # PUBLIC_INTERFACE
    def subscribe(self, path: str, on_change: ChangeCallback) -> Unsubscribe:
        """Start a stream task for path; must be called from a running event loop."""
        stream_id = self._stream_counter
        self._stream_counter += 1
        task = asyncio.get_running_loop().create_task(self._listen(path, on_change))
        self._streams[stream_id] = task
        task.add_done_callback(lambda _: self._streams.pop(stream_id, None))

        def unsubscribe():
            stream = self._streams.pop(stream_id, None)
            if stream is not None:
                stream.cancel()

        return unsubscribe

    async def _listen(self, path: str, on_change: ChangeCallback) -> None:
        headers = {"Accept": "text/event-stream"}
        # Keep-alives arrive every ~30s, so the read timeout is disabled for streams.
        timeout = httpx.Timeout(self.timeout, read=None)
        while True:
            try:
                async with self.http.stream(
                    "GET", self._url(path), params=self._params(), headers=headers, timeout=timeout
                ) as resp:
                    if not resp.is_success:
                        await resp.aread()
                        self._check_response(resp, path)
                    event = None
                    async for line in resp.aiter_lines():
                        line = line.strip()
                        if line.startswith("event:"):
                            event = line[len("event:"):].strip()
                        elif line.startswith("data:"):
                            if event in DATA_EVENTS:
                                on_change(await self.read(path))
                            elif event in TERMINAL_EVENTS:
                                logger.warning("Stream for '%s' closed by server (%s)", path, event)
                                return
                logger.info("Stream for '%s' ended, reconnecting", path)
            except StorePermissionError:
                logger.exception("Stream for '%s' not permitted, giving up", path)
                return
            except (httpx.HTTPError, StoreError):
                logger.exception("Stream for '%s' failed, reconnecting in %.1fs", path, self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def aclose(self) -> None:
        """Cancel open streams and close the HTTP client if this store created it."""
        for task in self._streams.values():
            task.cancel()
        self._streams.clear()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
