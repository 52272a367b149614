import asyncio
import json
import signal
import time
from pathlib import Path

from async_find.errors import ProtocolError
from async_find.logger import logging
from async_find.protocol.messages import (
    DEFAULT_CHUNK_SIZE,
    FilterRequest,
    ShutdownRequest,
    StartSearchRequest,
    WorkerMessage,
    format_response_lines,
    parse_request_line,
)
from async_find.protocol.transport import STREAM_LIMIT
from async_find.worker.matcher import Matcher
from async_find.worker.source import CandidateSource
from async_find.worker.watcher import DirectoryWatcher

logger = logging.getLogger(__name__)

# Stop a worker nobody has talked to for this long (its front-end probably died).
DEFAULT_IDLE_TIMEOUT = 30 * 60  # seconds


class WorkerServer:
    """
    Background worker answering filter requests over a Unix socket.

    Each connection carries exactly one ``-eval`` request. Filter requests are
    answered with ``-print``/``-print-nonl`` lines and the connection is closed;
    other instructions get no reply.
    """

    endpoint: Path
    watch: bool
    chunk_size: int
    idle_timeout: float | None

    source: CandidateSource
    watcher: DirectoryWatcher | None

    def __init__(
        self,
        endpoint: str | Path,
        watch: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        idle_timeout: float | None = DEFAULT_IDLE_TIMEOUT,
    ):
        self.endpoint = Path(endpoint)
        self.watch = watch
        self.chunk_size = chunk_size
        self.idle_timeout = idle_timeout
        self.source = CandidateSource()
        self.watcher = None
        self._stopped = asyncio.Event()
        self._connections: set[asyncio.Task] = set()
        self._background: set[asyncio.Task] = set()
        self._last_activity = time.monotonic()

    async def serve(self):
        server = await asyncio.start_unix_server(
            self._handle_connection, path=str(self.endpoint), limit=STREAM_LIMIT
        )
        logger.info("Worker listening on %s", self.endpoint)
        if self.idle_timeout is not None:
            self._run_in_background(self._watch_idle())

        try:
            await self._stopped.wait()
        finally:
            await self._shutdown(server)

    def stop(self):
        if not self._stopped.is_set():
            logger.info("Worker on %s stopping", self.endpoint)
            self._stopped.set()

    async def process_message(self, message: WorkerMessage) -> list[bytes]:
        """Handle one instruction and return the response lines to send back."""
        if isinstance(message, FilterRequest):
            return await self.filter(message)
        if isinstance(message, StartSearchRequest):
            await self.start_search(message)
        elif isinstance(message, ShutdownRequest):
            self.stop()
        return []

    async def start_search(self, message: StartSearchRequest):
        directory = Path(message.directory).expanduser() if message.directory else None
        logger.info("Starting search %r in %s", message.command, directory or Path.cwd())
        await self.source.start(message.command, directory)

        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        if self.watch:
            self.watcher = DirectoryWatcher(
                directory or Path.cwd(),
                self._on_directory_change,
                asyncio.get_running_loop(),
            )
            self.watcher.start()

    async def filter(self, message: FilterRequest) -> list[bytes]:
        await self.source.wait()
        matcher = Matcher(message.terms)
        time_start = time.time()
        results = await asyncio.to_thread(matcher.filter, self.source.candidates, message.limit)
        logger.debug(
            "Filter %r matched %d candidates in %.3fs",
            message.terms,
            len(results),
            time.time() - time_start,
        )
        return format_response_lines(json.dumps(results), self.chunk_size)

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        self._last_activity = time.monotonic()
        try:
            line = await reader.readline()
            if not line:
                return
            try:
                message = parse_request_line(line)
            except ProtocolError as e:
                logger.warning("Rejected request: %s", e)
                return

            for response_line in await self.process_message(message):
                writer.write(response_line)
            await writer.drain()
        except (ConnectionError, ValueError) as e:
            # The client aborted, or sent a line longer than the stream limit.
            logger.debug("Connection dropped: %s", e)
        finally:
            if task is not None:
                self._connections.discard(task)
            self._last_activity = time.monotonic()
            writer.close()

    def _on_directory_change(self):
        logger.info("Directory changed, re-running %r", self.source.command)
        self._run_in_background(self.source.restart())

    async def _watch_idle(self):
        assert self.idle_timeout is not None
        while not self._stopped.is_set():
            idle = time.monotonic() - self._last_activity
            if not self._connections and idle >= self.idle_timeout:
                logger.info("Worker idle for %.0fs, exiting", idle)
                self.stop()
                return
            await asyncio.sleep(min(self.idle_timeout, 60.0))

    def _run_in_background(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _shutdown(self, server: asyncio.AbstractServer):
        server.close()
        for task in list(self._connections) + list(self._background):
            task.cancel()
        await asyncio.gather(*self._connections, *self._background, return_exceptions=True)
        await server.wait_closed()

        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        await self.source.close()
        self.endpoint.unlink(missing_ok=True)
        logger.info("Worker on %s stopped", self.endpoint)


def run_worker(
    endpoint: str | Path,
    watch: bool = False,
    idle_timeout: float | None = DEFAULT_IDLE_TIMEOUT,
):
    """Entry point for the worker process: serve until shut down or signalled."""
    worker = WorkerServer(endpoint, watch=watch, idle_timeout=idle_timeout)

    async def main():
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP):
            loop.add_signal_handler(signum, worker.stop)
        await worker.serve()

    asyncio.run(main())
