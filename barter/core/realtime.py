import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional


logger = logging.getLogger(__name__)

ChangeHandler = Callable[[dict], Awaitable[None]]


def extract_record(payload: dict) -> Optional[dict]:
    """
    Pull the row out of a postgres_changes payload.

    Realtime wraps the change as `{"data": {"type", "record", "old_record",
    ...}, "ids": [...]}`; older clients hand over the inner dict directly.
    Returns None for deletes, which carry only `old_record`.
    """
    data = payload.get("data", payload) if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return None
    return data.get("record") or data.get("new") or None


def change_type(payload: dict) -> Optional[str]:
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    kind = data.get("type") or data.get("eventType")
    return kind.upper() if isinstance(kind, str) else None


class LiveUpdateListener:
    """
    Owns one Realtime channel for the lifetime of a view.

    The Realtime client invokes callbacks synchronously. Each event is queued
    on the event loop the listener was started on, and a single worker hands
    them to `on_change` one at a time, in arrival order. A failing handler is
    logged and the listener keeps running. There is no reconnect or backoff
    beyond what the transport does.
    """

    def __init__(
        self,
        client: Any,
        channel_name: str,
        on_change: ChangeHandler,
        table: str = "messages",
        event: str = "*",
        filter: Optional[str] = None,
        schema: str = "public",
    ):
        self.client = client
        self.channel_name = channel_name
        self.on_change = on_change
        self.table = table
        self.event = event
        self.filter = filter
        self.schema = schema

        self._channel = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._channel is not None

    async def start(self) -> None:
        if self._channel is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = self._loop.create_task(self._run())

        channel = self.client.channel(self.channel_name)

        options = {"schema": self.schema, "table": self.table}
        if self.filter:
            options["filter"] = self.filter

        channel.on_postgres_changes(self.event, callback=self._handle, **options)
        self._channel = channel

        try:
            await channel.subscribe()
        except Exception:
            await self.stop()
            raise

        logger.info(
            f"realtime_subscribed channel={self.channel_name} table={self.table} "
            f"filter={self.filter}"
        )

    async def stop(self) -> None:
        channel, self._channel = self._channel, None
        worker, self._worker = self._worker, None

        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

        if channel is None:
            return

        try:
            await self.client.remove_channel(channel)
        except Exception:
            logger.exception(f"realtime_unsubscribe_failed channel={self.channel_name}")
        else:
            logger.info(f"realtime_unsubscribed channel={self.channel_name}")

    def _handle(self, payload: dict) -> None:
        if self._channel is None or self._loop is None or self._loop.is_closed():
            return
        # Callbacks may fire off the loop thread
        self._loop.call_soon_threadsafe(self._queue.put_nowait, payload)

    async def _run(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self.on_change(payload)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"realtime_handler_failed channel={self.channel_name}")
