"""Client side of the worker protocol.

One request, one connection, one response: every :meth:`Transport.send` opens a
fresh Unix-socket connection, writes a single ``-eval`` line and collects
``-print``/``-print-nonl`` lines until the worker closes the connection.
"""

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

from async_find.logger import logging
from async_find.protocol.decoder import ResponseAccumulator, decode_candidates
from async_find.protocol.messages import WorkerMessage, format_request_line

logger = logging.getLogger(__name__)

# Longest single response line the reader accepts.
STREAM_LIMIT = 1024 * 1024

CompletionCallback = Callable[[Any], None]
Decoder = Callable[[str | None], Any]


class Connection:
    """
    Handle for one request in flight.

    The completion callback runs at most once, and never after :meth:`abort`.
    """

    endpoint: str
    message: WorkerMessage
    accumulator: ResponseAccumulator

    def __init__(
        self,
        endpoint: str,
        message: WorkerMessage,
        on_complete: CompletionCallback | None,
        decoder: Decoder,
        timeout: float | None,
    ):
        self.endpoint = endpoint
        self.message = message
        self.accumulator = ResponseAccumulator()
        self._on_complete = on_complete
        self._decoder = decoder
        self._timeout = timeout
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task | None = None
        self._aborted = False
        self._completed = False

    @property
    def done(self) -> bool:
        return self._aborted or self._completed

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self):
        """Close the channel and drop the partial response. Never raises."""
        if self.done:
            return
        self._aborted = True
        self.accumulator.reset()
        self._close_writer()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self):
        """Wait for the connection task to finish, whatever the outcome."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self):
        try:
            if self._timeout is None:
                await self._exchange()
            else:
                await asyncio.wait_for(self._exchange(), self._timeout)
        except asyncio.CancelledError:
            if not self._aborted:
                raise
            return
        except asyncio.TimeoutError:
            logger.warning("Request to %s timed out after %.1fs", self.endpoint, self._timeout)
            self.accumulator.reset()
        except (OSError, ValueError, asyncio.IncompleteReadError) as e:
            # Connection refused, socket missing, reset, or an oversized line.
            logger.debug("Channel to %s dropped: %s", self.endpoint, e)
            self.accumulator.reset()
        finally:
            self._close_writer()

        self._complete()

    async def _exchange(self):
        reader, self._writer = await asyncio.open_unix_connection(self.endpoint, limit=STREAM_LIMIT)
        self._writer.write(format_request_line(self.message))
        await self._writer.drain()

        while True:
            line = await reader.readline()
            if not line:
                break
            self.accumulator.feed(line)

    def _complete(self):
        if self._aborted or self._completed:
            return
        self._completed = True
        if self._on_complete is None:
            return
        try:
            result = self._decoder(self.accumulator.payload)
        except Exception as e:
            logger.warning("Could not decode response from %s: %s", self.endpoint, e)
            result = self._decoder(None)
        self._on_complete(result)

    def _close_writer(self):
        writer, self._writer = self._writer, None
        if writer is None:
            return
        try:
            writer.close()
        except (OSError, RuntimeError) as e:
            logger.debug("Error closing channel to %s: %s", self.endpoint, e)


class Transport:
    """Sends instructions to workers without blocking the caller."""

    _pending: set[asyncio.Task]

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        self._pending = set()

    def send(
        self,
        endpoint: str,
        message: WorkerMessage,
        on_complete: CompletionCallback | None = None,
        *,
        timeout: float | None = None,
        decoder: Decoder = decode_candidates,
    ) -> Connection:
        """
        Dispatch ``message`` to the worker listening on ``endpoint``.

        Returns immediately. ``on_complete`` later receives the decoded response, or
        the decoding of "no result" if the channel failed. Without a callback the
        send is fire-and-forget.
        """
        connection = Connection(
            endpoint,
            message,
            on_complete,
            decoder,
            timeout if timeout is not None else self.timeout,
        )
        task = asyncio.get_running_loop().create_task(connection._run())
        connection._task = task
        self._pending.add(task)
        task.add_done_callback(self._forget)
        return connection

    async def request(
        self,
        endpoint: str,
        message: WorkerMessage,
        timeout: float | None = None,
    ) -> Sequence[str]:
        """Send ``message`` and await the decoded response."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def resolve(result):
            if not future.done():
                future.set_result(result)

        connection = self.send(endpoint, message, resolve, timeout=timeout)
        try:
            return await future
        finally:
            connection.abort()

    async def drain(self, timeout: float | None = None):
        """Wait for outstanding sends, fire-and-forget ones included."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if pending:
            logger.debug("%d sends still pending after drain", len(pending))

    def _forget(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Transport task failed: %s", task.exception())
