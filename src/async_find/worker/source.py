import asyncio
import os
import signal
import time
from pathlib import Path

from async_find.logger import logging

logger = logging.getLogger(__name__)

# Longest output line accepted from the search command.
LINE_LIMIT = 1024 * 1024


class CandidateSource:
    """
    Runs the backing search command and collects its output lines as candidates.

    Lines are decoded with ``surrogateescape`` so file names that are not valid
    UTF-8 survive the trip to the front-end unchanged.
    """

    command: str | None
    directory: Path | None
    candidates: list[str]

    def __init__(self):
        self.command = None
        self.directory = None
        self.candidates = []
        self._started = asyncio.Event()
        self._finished = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._process: asyncio.subprocess.Process | None = None

    @property
    def started(self) -> bool:
        return self._started.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    async def start(self, command: str, directory: Path | None = None):
        await self.close()
        self.command = command
        self.directory = directory
        self.candidates = []
        self._finished.clear()
        self._task = asyncio.create_task(self._run(command, directory))
        self._started.set()

    async def restart(self):
        """Re-run the current command, replacing the candidates."""
        if self.command is None:
            return
        await self.start(self.command, self.directory)

    async def wait(self):
        """Wait until a command has been started and has finished."""
        await self._started.wait()
        await self._finished.wait()

    async def close(self):
        self._kill()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _run(self, command: str, directory: Path | None):
        time_start = time.time()
        try:
            self._process = await asyncio.create_subprocess_shell(
                command,
                cwd=str(directory) if directory else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                limit=LINE_LIMIT,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("Could not run %r: %s", command, e)
            self._finished.set()
            return

        process = self._process
        assert process.stdout is not None
        try:
            async for line in process.stdout:
                text = line.decode("utf-8", errors="surrogateescape").rstrip("\r\n")
                if text:
                    self.candidates.append(text)
        except ValueError as e:
            logger.warning("Stopped reading %r output: %s", command, e)
            self._kill()
        returncode = await process.wait()
        self._process = None

        if returncode != 0:
            logger.warning("Search command %r exited with status %d", command, returncode)
        logger.info(
            "Collected %d candidates in %.2fs", len(self.candidates), time.time() - time_start
        )
        self._finished.set()

    def _kill(self):
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        # The shell runs in its own session; take its pipeline down with it.
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            process.kill()
