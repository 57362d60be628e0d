"""
Firebase Realtime Database adapter (RemoteStore port) over the REST API.

    get     GET    {db}/{path}.json
    set     PUT    {db}/{path}.json
    delete  DELETE {db}/{path}.json
    subscribe      GET {db}/{path}.json with Accept: text/event-stream

The streaming endpoint sends server-sent events:

    event: put | patch | keep-alive | cancel | auth_revoked
    data:  {"path": "/relative/path", "data": <json>}

A subscription keeps its own copy of the value under the subscribed path,
applies every put/patch to it and hands the full value to the listener.
Dropped streams reconnect with exponential backoff and jitter; the first
`put` after a reconnect carries the full value again.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import random
from typing import Any, Optional

import aiohttp
import orjson

from coinwise.config.configs import FirebaseConfig
from coinwise.errors.errors import ConfigurationError, SyncFailure
from coinwise.ports.remote_store import Listener

logger = logging.getLogger(__name__)


# --- Tree helpers ---


def _segments(path: str) -> list[str]:
    return [s for s in path.strip("/").split("/") if s]


def apply_put(root: Any, rel_path: str, data: Any) -> Any:
    """Return `root` with the value at rel_path replaced by data (None deletes)."""
    segs = _segments(rel_path)
    if not segs:
        return copy.deepcopy(data)
    out = copy.deepcopy(root) if isinstance(root, dict) else {}
    node = out
    for seg in segs[:-1]:
        child = node.get(seg)
        if not isinstance(child, dict):
            child = {}
            node[seg] = child
        node = child
    if data is None:
        node.pop(segs[-1], None)
    else:
        node[segs[-1]] = copy.deepcopy(data)
    return _prune(out)


def apply_patch(root: Any, rel_path: str, data: Any) -> Any:
    """A patch is a put of each child key under rel_path."""
    out = root
    if not isinstance(data, dict):
        return apply_put(root, rel_path, data)
    base = rel_path.rstrip("/")
    for key, value in data.items():
        out = apply_put(out, f"{base}/{key}", value)
    return out


def _prune(node: Any) -> Any:
    if not isinstance(node, dict):
        return node
    cleaned = {k: _prune(v) for k, v in node.items()}
    cleaned = {k: v for k, v in cleaned.items() if v is not None and v != {}}
    return cleaned or None


class _StreamSubscription:
    """One server-sent-events stream bound to one listener."""

    def __init__(self, store: "FirebaseRealtimeStore", path: str, listener: Listener) -> None:
        self._store = store
        self._path = path
        self._listener = listener
        self._value: Any = None
        self._attempt = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._first_delivery = asyncio.Event()
        self._closed = False

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"firebase_stream:{self._path}")

    async def wait_first(self, timeout_s: float) -> None:
        await asyncio.wait_for(self._first_delivery.wait(), timeout=timeout_s)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self in self._store._streams:
            self._store._streams.remove(self)
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        try:
            while not self._closed:
                try:
                    await self._stream_once()
                    self._attempt = 0
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._attempt += 1
                    delay = self._store.backoff_delay_s(self._attempt)
                    logger.warning(
                        f"[firebase] stream {self._path} dropped (attempt {self._attempt}), "
                        f"reconnecting in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug(f"[firebase] stream {self._path} cancelled")
            raise

    async def _stream_once(self) -> None:
        session = await self._store._get_session()
        url, params = self._store._url(self._path)
        headers = {"Accept": "text/event-stream"}
        timeout = aiohttp.ClientTimeout(total=None, sock_read=self._store.stream_read_timeout_s)

        async with session.get(url, params=params, headers=headers, timeout=timeout) as resp:
            if resp.status != 200:
                raise SyncFailure(f"stream request failed with HTTP {resp.status}", path=self._path)
            logger.info(f"[firebase] stream {self._path} connected")
            event: Optional[str] = None
            data_lines: list[str] = []
            async for raw_line in resp.content:
                line = raw_line.decode("utf-8").rstrip("\r\n")
                if line.startswith("event:"):
                    event = line[len("event:") :].strip()
                elif line.startswith("data:"):
                    data_lines.append(line[len("data:") :].strip())
                elif line == "":
                    if event is not None:
                        await self._dispatch(event, "\n".join(data_lines))
                    event, data_lines = None, []
        raise SyncFailure("stream closed by server", path=self._path)

    async def _dispatch(self, event: str, data: str) -> None:
        if event == "keep-alive":
            return
        if event in ("cancel", "auth_revoked"):
            raise SyncFailure(f"stream {event}", path=self._path)
        if event not in ("put", "patch"):
            logger.debug(f"[firebase] ignoring stream event {event}")
            return

        msg = orjson.loads(data)
        rel_path, payload = msg.get("path", "/"), msg.get("data")
        if event == "put":
            self._value = apply_put(self._value, rel_path, payload)
        else:
            self._value = apply_patch(self._value, rel_path, payload)

        try:
            await self._listener(copy.deepcopy(self._value))
        except Exception as e:
            logger.error(f"[firebase] listener on {self._path} failed: {e!r}")
        self._first_delivery.set()


class FirebaseRealtimeStore:
    """
    Usage:
        store = FirebaseRealtimeStore(FirebaseConfig(database_url="https://x.firebaseio.com"),
                                      auth_token=secrets.get_optional("firebase_db_token"))
        await store.set("users/uid-1", {...})
        sub = await store.subscribe("competition/players", on_pool)
        ...
        await sub.close()
        await store.close()
    """

    def __init__(
        self,
        cfg: FirebaseConfig,
        auth_token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_retry_delay_s: float = 1.0,
        max_retry_delay_s: float = 30.0,
        retry_jitter: float = 0.3,
        stream_read_timeout_s: float = 90.0,
    ) -> None:
        if not cfg.database_url:
            raise ConfigurationError("firebase.database_url is required", field="database_url")
        self._cfg = cfg
        self._base = cfg.database_url.rstrip("/")
        self._auth_token = auth_token
        self._session = session
        self._owns_session = session is None
        self._base_retry_delay_s = base_retry_delay_s
        self._max_retry_delay_s = max_retry_delay_s
        self._retry_jitter = retry_jitter
        self.stream_read_timeout_s = stream_read_timeout_s
        self._streams: list[_StreamSubscription] = []

    def set_auth_token(self, token: Optional[str]) -> None:
        """Swap the credential used by subsequent requests (after sign-in)."""
        self._auth_token = token

    def _url(self, path: str) -> tuple[str, dict[str, str]]:
        params = {"auth": self._auth_token} if self._auth_token else {}
        return f"{self._base}/{'/'.join(_segments(path))}.json", params

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._cfg.request_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    def backoff_delay_s(self, attempt: int) -> float:
        """Exponential backoff delay with jitter."""
        delay = self._base_retry_delay_s * (2 ** (attempt - 1))
        delay = min(delay, self._max_retry_delay_s)
        jitter_range = delay * self._retry_jitter
        delay += random.uniform(-jitter_range, jitter_range)
        return float(max(0.1, delay))

    async def close(self) -> None:
        for stream in list(self._streams):
            await stream.close()
        self._streams.clear()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # --- RemoteStore ---

    async def get(self, path: str) -> Optional[Any]:
        body = await self._request("GET", path)
        return orjson.loads(body) if body else None

    async def set(self, path: str, value: Any) -> None:
        if value is None:
            await self.delete(path)
            return
        await self._request("PUT", path, orjson.dumps(value))

    async def delete(self, path: str) -> None:
        await self._request("DELETE", path)

    async def subscribe(self, path: str, listener: Listener) -> _StreamSubscription:
        stream = _StreamSubscription(self, path, listener)
        self._streams.append(stream)
        await stream.start()
        try:
            await stream.wait_first(self._cfg.request_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"[firebase] no initial value for {path} yet, stream keeps trying")
        return stream

    async def _request(self, method: str, path: str, body: Optional[bytes] = None) -> bytes:
        session = await self._get_session()
        url, params = self._url(path)
        headers = {"Content-Type": "application/json"} if body is not None else None
        try:
            async with session.request(method, url, params=params, data=body, headers=headers) as resp:
                payload = await resp.read()
                if resp.status >= 400:
                    raise SyncFailure(
                        f"{method} failed with HTTP {resp.status}",
                        path=path,
                        details={"body": payload[:200].decode(errors="replace")},
                    )
                return payload
        except asyncio.TimeoutError as e:
            raise SyncFailure(f"{method} timed out", path=path) from e
        except aiohttp.ClientError as e:
            raise SyncFailure(f"{method} failed: {e}", path=path) from e
