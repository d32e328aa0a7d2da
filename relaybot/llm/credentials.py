"""
API key rotation with failover.

Several upstream keys sit behind one logical call. Calls start at the
rotation cursor and walk the key list once; a key that fails has its cached
client dropped (and closed) and the next key is tried. A success moves the
cursor one past the key that answered.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from relaybot.chat.errors import AllCredentialsExhausted, NoCredentialsConfigured

from .errors import mask_api_key, parse_error_message


T = TypeVar("T")

ClientFactory = Callable[[str], Any]


async def close_client(client: Any) -> None:
    """Close a cached client if it knows how; failures are only logged."""
    close = getattr(client, "close", None)
    if close is None:
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception as e:  # noqa: BLE001
        logging.warning("Failed to close model client: %s", parse_error_message(e))


class CredentialPool:
    def __init__(self, client_factory: ClientFactory):
        self._client_factory = client_factory
        self._clients: dict[str, Any] = {}
        self._cursor = 0
        # Key count the cursor was last normalized against, and a counter
        # bumped on every re-normalization.
        self._count: int | None = None
        self._generation = 0
        self._closing: set[asyncio.Task] = set()
        self._lock = threading.Lock()

    @property
    def cursor(self) -> int:
        return self._cursor

    def sync(self, count: int) -> None:
        """Re-normalize the cursor against the current number of keys."""
        with self._lock:
            self._sync_locked(count)

    def _sync_locked(self, count: int) -> None:
        self._count = count
        self._generation += 1
        self._cursor = self._cursor % count if count > 0 else 0

    def _pop_client(self, api_key: str, expected: Any = None) -> Any:
        with self._lock:
            cached = self._clients.get(api_key)
            if cached is None or (expected is not None and cached is not expected):
                return None
            return self._clients.pop(api_key)

    def _schedule_close(self, client: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(close_client(client))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def evict(self, api_key: str) -> None:
        client = self._pop_client(api_key)
        if client is not None:
            self._schedule_close(client)

    def credential_removed(self, api_key: str, index: int, count: int) -> None:
        """
        Drop the removed key's client and keep the cursor on the same
        surviving key when the removal happened before it.
        """
        with self._lock:
            if index < self._cursor:
                self._cursor -= 1
            self._sync_locked(count)
        self.evict(api_key)

    def _client_for(self, api_key: str) -> Any:
        with self._lock:
            client = self._clients.get(api_key)
        if client is None:
            client = self._client_factory(api_key)
            with self._lock:
                client = self._clients.setdefault(api_key, client)
        return client

    async def dispatch(
        self,
        api_keys: Sequence[str],
        call: Callable[[Any], Awaitable[T]],
    ) -> T:
        """
        Run ``call(client)`` with each key in turn until one succeeds.

        The key list is snapshotted up front, so at most len(api_keys)
        attempts are made and no key is tried twice. When the key list is
        re-synced while a call is in flight, the success advances the
        re-normalized cursor against the live count rather than the
        snapshot.
        """
        keys = [k for k in api_keys if k]
        if not keys:
            raise NoCredentialsConfigured()

        with self._lock:
            if self._count != len(keys):
                self._sync_locked(len(keys))
            start = self._cursor % len(keys)
            generation = self._generation

        last_error: BaseException | None = None
        for attempt in range(len(keys)):
            index = (start + attempt) % len(keys)
            api_key = keys[index]
            client = None
            try:
                client = self._client_for(api_key)
                result = await call(client)
            except Exception as e:  # noqa: BLE001
                logging.warning(
                    "API key %d (%s) failed: %s", index + 1, mask_api_key(api_key), parse_error_message(e)
                )
                if client is not None and self._pop_client(api_key, client) is not None:
                    await close_client(client)
                last_error = e
                continue
            with self._lock:
                if generation == self._generation:
                    self._cursor = (index + 1) % len(keys)
                elif self._count:
                    self._cursor = (self._cursor + 1) % self._count
                else:
                    self._cursor = 0
            return result

        logging.error("All %d API keys failed", len(keys))
        raise AllCredentialsExhausted(len(keys)) from last_error
