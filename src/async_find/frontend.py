"""A line-oriented stand-in for the interactive picker.

Every line read from the input is treated as the current contents of the
prompt; every completed query cycle prints the candidates it produced.
"""

import asyncio
from collections.abc import AsyncIterator, Callable

import click

from async_find.logger import logging
from async_find.protocol.transport import Transport
from async_find.session import (
    Append,
    Begin,
    Destroyed,
    Flush,
    Refresh,
    Session,
    SessionConfig,
    SessionEvent,
)
from async_find.supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)


def printable(candidate: str) -> str:
    """Candidates may carry undecodable bytes as surrogates; show them as U+FFFD."""
    return candidate.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="replace")


class LineFrontend:
    """Consumes session events and renders each completed result batch."""

    config: SessionConfig
    echo: Callable[[str], None]
    candidates: list[str]
    batches: int

    def __init__(self, config: SessionConfig, echo: Callable[[str], None] = click.echo):
        self.config = config
        self.echo = echo
        self.candidates = []
        self.batches = 0
        self.session: Session | None = None
        self.settled = asyncio.Event()
        self.settled.set()

    def __call__(self, event: SessionEvent):
        if isinstance(event, Begin):
            logger.debug("Session started")
        elif isinstance(event, Flush):
            self.candidates = []
        elif isinstance(event, Append):
            self.candidates.extend(event.candidates)
        elif isinstance(event, Refresh):
            self.render()
            self.settled.set()
        elif isinstance(event, Destroyed):
            self.settled.set()

    def render(self):
        self.batches += 1
        pattern = self.session.last_pattern if self.session is not None else None
        terms = list(self.config.transform(pattern)) if pattern else []
        self.echo(click.style(f"# {pattern} ({len(self.candidates)})", dim=True))
        for candidate in self.candidates:
            self.echo(self.config.highlight(printable(candidate), terms))

    def input(self, pattern: str):
        if self.session is None:
            return
        self.session.input(pattern)
        if self.session.in_flight is not None:
            self.settled.clear()


async def _read_lines(stream) -> AsyncIterator[str]:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, stream.readline)
        if not line:
            return
        yield line.rstrip("\r\n")


async def run_query_loop(
    config: SessionConfig,
    stream,
    echo: Callable[[str], None] = click.echo,
    settle_timeout: float | None = 30.0,
    supervisor: WorkerSupervisor | None = None,
    transport: Transport | None = None,
) -> LineFrontend:
    """
    Drive one session from ``stream`` until end of input.

    The last pattern gets up to ``settle_timeout`` seconds to produce its result
    before the session is destroyed.
    """
    frontend = LineFrontend(config, echo=echo)
    session = Session(config, frontend, supervisor=supervisor, transport=transport)
    frontend.session = session

    await session.setup()
    try:
        async for pattern in _read_lines(stream):
            frontend.input(pattern)
        try:
            await asyncio.wait_for(frontend.settled.wait(), settle_timeout)
        except asyncio.TimeoutError:
            logger.warning("Gave up waiting for the last query after %.1fs", settle_timeout)
    finally:
        session.destroy()
        await session.wait_closed()
    return frontend
