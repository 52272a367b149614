"""End-to-end scenarios against a real worker process."""

import asyncio
import os

import pytest
from click.testing import CliRunner

from async_find.frontend import LineFrontend, printable
from async_find.highlight import no_highlight
from async_find.main import main
from async_find.session import (
    Append,
    Begin,
    Destroyed,
    Flush,
    Refresh,
    Session,
    SessionConfig,
    SessionState,
)
from async_find.supervisor import WorkerSupervisor


class Recorder:
    def __init__(self):
        self.events = []
        self.refreshed = asyncio.Event()

    def __call__(self, event):
        self.events.append(event)
        if isinstance(event, Refresh):
            self.refreshed.set()


async def wait_for_exit(supervisor: WorkerSupervisor, timeout: float = 10.0):
    for _ in range(int(timeout / 0.05)):
        if supervisor.process is None or supervisor.process.poll() is not None:
            return
        await asyncio.sleep(0.05)
    supervisor.kill()
    pytest.fail("worker did not exit after shutdown")


@pytest.mark.asyncio
async def test_echo_foo_scenario():
    recorder = Recorder()
    session = Session(SessionConfig(search_command="echo foo", startup_timeout=10), recorder)
    try:
        await session.setup()
        assert session.state is SessionState.READY
        assert os.path.exists(session.endpoint)

        session.input("fo")
        await asyncio.wait_for(recorder.refreshed.wait(), 10)

        assert recorder.events == [Begin(), Flush(), Append(("foo",)), Refresh()]
    finally:
        session.destroy()
        await session.wait_closed()
        await wait_for_exit(session.supervisor)

    assert recorder.events[-1] == Destroyed()
    assert not os.path.exists(session.endpoint)


@pytest.mark.asyncio
async def test_rapid_inputs_complete_once_for_the_last_pattern():
    recorder = Recorder()
    session = Session(
        SessionConfig(search_command="printf 'x1\\ny1\\ny2\\n'", startup_timeout=10), recorder
    )
    try:
        await session.setup()
        session.input("x")
        session.input("y")
        await asyncio.wait_for(recorder.refreshed.wait(), 10)
        await asyncio.sleep(0.2)

        appends = [event for event in recorder.events if isinstance(event, Append)]
        assert appends == [Append(("y1", "y2"))]
    finally:
        session.destroy()
        await session.wait_closed()
        await wait_for_exit(session.supervisor)


@pytest.mark.asyncio
async def test_destroy_while_in_flight_ends_the_stream():
    recorder = Recorder()
    session = Session(
        SessionConfig(search_command="sleep 1; echo foo", startup_timeout=10), recorder
    )
    try:
        await session.setup()
        session.input("fo")
        session.destroy()
        await session.wait_closed()
        await asyncio.sleep(1.5)

        assert recorder.events == [Begin(), Destroyed()]
    finally:
        session.destroy()
        await wait_for_exit(session.supervisor)


def test_line_frontend_renders_completed_batches():
    lines = []
    frontend = LineFrontend(
        SessionConfig(search_command="true", highlight=no_highlight), echo=lines.append
    )
    events = [Begin(), Flush(), Append(("a", "b")), Refresh(), Flush(), Append(("c",)), Refresh()]
    for event in events:
        frontend(event)

    assert frontend.batches == 2
    assert frontend.candidates == ["c"]
    rendered = [line for line in lines if not line.startswith(("\x1b", "#"))]
    assert rendered == ["a", "b", "c"]


def test_printable_replaces_undecodable_bytes():
    assert printable("caf\udce9") == "caf�"


def test_cli_find_reads_patterns_from_stdin(tmp_path):
    (tmp_path / "alpha.txt").write_text("a")
    (tmp_path / "beta.txt").write_text("b")

    result = CliRunner().invoke(main, ["find", str(tmp_path)], input="alp\n")

    assert result.exit_code == 0, result.output
    assert "alpha.txt" in result.output
    assert "beta.txt" not in result.output


def test_cli_rejects_unknown_matcher():
    result = CliRunner().invoke(main, ["find", "--matcher", "telepathy"])
    assert result.exit_code != 0
