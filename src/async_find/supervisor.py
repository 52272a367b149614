"""Spawning and tearing down the per-session worker process."""

import asyncio
import os
import subprocess
import sys
import tempfile
import time
import uuid
from pathlib import Path

from async_find.errors import SetupError
from async_find.logger import logging
from async_find.protocol.messages import ShutdownRequest, StartSearchRequest
from async_find.protocol.transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT_PREFIX = "async-find"
READY_POLL_INTERVAL = 0.02  # seconds


def make_endpoint_name(prefix: str = DEFAULT_ENDPOINT_PREFIX) -> str:
    """Return a fresh socket path that no other session uses."""
    return str(Path(tempfile.gettempdir()) / f"{prefix}-{os.getpid()}-{uuid.uuid4().hex[:12]}.sock")


def worker_command(endpoint: str, watch: bool = False) -> list[str]:
    command = [sys.executable, "-m", "async_find.main", "worker", "--endpoint", endpoint]
    if watch:
        command.append("--watch")
    return command


class WorkerSupervisor:
    """
    Owns exactly one worker process and the endpoint it listens on.

    Only :meth:`spawn` and :meth:`wait_until_reachable` can fail loudly; the
    instructions sent afterwards are best-effort because the worker may already be
    gone by the time they run.
    """

    transport: Transport
    watch: bool
    process: subprocess.Popen | None

    def __init__(self, transport: Transport | None = None, watch: bool = False):
        self.transport = transport if transport is not None else Transport()
        self.watch = watch
        self.process = None

    def spawn(self, endpoint: str) -> subprocess.Popen:
        if os.path.exists(endpoint):
            raise SetupError(f"Endpoint already in use: {endpoint}")

        command = worker_command(endpoint, watch=self.watch)
        logger.info("Spawning worker: %s", " ".join(command))
        try:
            self.process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
                close_fds=True,
            )
        except OSError as e:
            raise SetupError(f"Could not start worker: {e}") from e
        return self.process

    async def wait_until_reachable(self, endpoint: str, timeout: float) -> bool:
        """
        Wait for the worker to bind ``endpoint``.

        Returns False when ``timeout`` runs out while the process is still alive;
        requests sent after that may simply be lost.
        """
        deadline = time.monotonic() + timeout
        while not os.path.exists(endpoint):
            if self.process is not None and self.process.poll() is not None:
                raise SetupError(
                    f"Worker exited with status {self.process.returncode} before listening"
                )
            if time.monotonic() >= deadline:
                logger.warning("Worker not reachable at %s after %.1fs", endpoint, timeout)
                return False
            await asyncio.sleep(READY_POLL_INTERVAL)
        return True

    def initialize(self, endpoint: str, command: str, directory: str | None = None):
        """Tell the worker which command produces its candidates. Does not wait."""
        logger.info("Initializing worker at %s with %r", endpoint, command)
        try:
            self.transport.send(endpoint, StartSearchRequest(command=command, directory=directory))
        except RuntimeError as e:
            logger.debug("Could not send start-search to %s: %s", endpoint, e)

    def terminate(self, endpoint: str):
        """Ask the worker to shut down. Does not wait for it to exit."""
        logger.info("Terminating worker at %s", endpoint)
        if not os.path.exists(endpoint):
            # Never started listening, so a shutdown request could not reach it.
            self.kill()
            return
        try:
            self.transport.send(endpoint, ShutdownRequest())
        except RuntimeError as e:
            # No running event loop: fall back to a hard stop.
            logger.debug("Could not send shutdown to %s: %s", endpoint, e)
            self.kill()

    def kill(self):
        process = self.process
        if process is None or process.poll() is not None:
            return
        try:
            process.kill()
        except OSError as e:
            logger.debug("Could not kill worker %d: %s", process.pid, e)
