"""Tests for the background worker: matching, the candidate source and the socket server."""

import asyncio
import os

import pytest

from async_find.protocol.messages import FilterRequest, ShutdownRequest, StartSearchRequest
from async_find.protocol.transport import Transport
from async_find.worker.matcher import Matcher
from async_find.worker.server import WorkerServer
from async_find.worker.source import CandidateSource
from async_find.worker.watcher import DirectoryWatcher

CANDIDATES = ["src/Foo.py", "src/foo_test.py", "docs/food.md", "README"]


# ── Matcher ─────────────────────────────────────────────────────────────


def test_all_terms_must_match():
    assert Matcher(["foo", "py$"]).filter(CANDIDATES) == ["src/Foo.py", "src/foo_test.py"]


def test_smart_case():
    assert Matcher(["Foo"]).filter(CANDIDATES) == ["src/Foo.py"]
    assert Matcher(["foo"]).filter(CANDIDATES) == ["src/Foo.py", "src/foo_test.py", "docs/food.md"]


def test_invalid_terms_are_skipped():
    assert Matcher(["read(", "me"]).filter(CANDIDATES) == ["README"]


def test_no_terms_match_everything():
    assert Matcher([]).filter(CANDIDATES) == CANDIDATES


def test_limit_keeps_source_order():
    assert Matcher(["o"]).filter(CANDIDATES, limit=2) == ["src/Foo.py", "src/foo_test.py"]


# ── Candidate source ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_source_collects_command_output(tmp_path):
    (tmp_path / "a.txt").write_text("x")
    (tmp_path / "b.txt").write_text("y")

    source = CandidateSource()
    await source.start("ls", tmp_path)
    await asyncio.wait_for(source.wait(), 5)

    assert sorted(source.candidates) == ["a.txt", "b.txt"]
    assert source.finished
    await source.close()


@pytest.mark.asyncio
async def test_source_keeps_undecodable_bytes():
    source = CandidateSource()
    await source.start("printf 'caf\\351\\n'")
    await asyncio.wait_for(source.wait(), 5)

    assert len(source.candidates) == 1
    assert os.fsencode(source.candidates[0]) == b"caf\xe9"
    await source.close()


@pytest.mark.asyncio
async def test_source_restart_replaces_candidates(tmp_path):
    source = CandidateSource()
    await source.start("ls", tmp_path)
    await asyncio.wait_for(source.wait(), 5)
    assert source.candidates == []

    (tmp_path / "new.txt").write_text("z")
    await source.restart()
    await asyncio.wait_for(source.wait(), 5)
    assert source.candidates == ["new.txt"]
    await source.close()


@pytest.mark.asyncio
async def test_close_kills_a_running_command():
    source = CandidateSource()
    await source.start("echo early; sleep 30")
    await asyncio.sleep(0.2)
    await asyncio.wait_for(source.close(), 5)
    assert not source.finished


# ── Directory watcher ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_watcher_reports_settled_changes(tmp_path):
    changed = asyncio.Event()
    watcher = DirectoryWatcher(
        tmp_path, changed.set, asyncio.get_running_loop(), settle_delay=0.1
    )
    watcher.start()
    try:
        (tmp_path / "new.txt").write_text("hello")
        await asyncio.wait_for(changed.wait(), 5)
    finally:
        watcher.stop()


@pytest.mark.asyncio
async def test_watcher_ignores_git_internals(tmp_path):
    calls = []
    watcher = DirectoryWatcher(
        tmp_path, lambda: calls.append(1), asyncio.get_running_loop(), settle_delay=0.01
    )
    watcher.notify(tmp_path / ".git" / "index")
    await asyncio.sleep(0.1)
    assert calls == []

    watcher.notify(tmp_path / "a.txt")
    watcher.notify(tmp_path / "b.txt")
    await asyncio.sleep(0.1)
    assert calls == [1]


# ── Server ──────────────────────────────────────────────────────────────


async def start_worker(socket_path, **kwargs):
    worker = WorkerServer(socket_path, idle_timeout=None, **kwargs)
    task = asyncio.create_task(worker.serve())
    for _ in range(250):
        if os.path.exists(socket_path):
            break
        await asyncio.sleep(0.02)
    return worker, task


async def stop_worker(worker, task):
    worker.stop()
    await asyncio.wait_for(task, 5)


@pytest.mark.asyncio
async def test_worker_filters_backing_command_output(socket_path):
    worker, task = await start_worker(socket_path)
    try:
        transport = Transport()
        transport.send(socket_path, StartSearchRequest(command="printf 'foo\\nbar\\nfood\\n'"))
        result = await transport.request(socket_path, FilterRequest(terms=["fo"]), timeout=5)
        assert result == ["foo", "food"]
    finally:
        await stop_worker(worker, task)


@pytest.mark.asyncio
async def test_filter_waits_for_the_search_to_start(socket_path):
    worker, task = await start_worker(socket_path)
    try:
        transport = Transport()
        pending = asyncio.create_task(
            transport.request(socket_path, FilterRequest(terms=["o"]), timeout=5)
        )
        await asyncio.sleep(0.1)
        assert not pending.done()

        transport.send(socket_path, StartSearchRequest(command="echo one; echo two"))
        assert await pending == ["one", "two"]
    finally:
        await stop_worker(worker, task)


@pytest.mark.asyncio
async def test_large_results_are_streamed_in_fragments(socket_path):
    worker, task = await start_worker(socket_path, chunk_size=16)
    try:
        transport = Transport()
        transport.send(socket_path, StartSearchRequest(command="seq 1 500"))
        result = await transport.request(socket_path, FilterRequest(limit=300), timeout=5)
        assert result == [str(i) for i in range(1, 301)]
    finally:
        await stop_worker(worker, task)


@pytest.mark.asyncio
async def test_search_runs_in_requested_directory(socket_path, tmp_path):
    (tmp_path / "only-here.txt").write_text("x")
    worker, task = await start_worker(socket_path)
    try:
        transport = Transport()
        transport.send(socket_path, StartSearchRequest(command="ls", directory=str(tmp_path)))
        result = await transport.request(socket_path, FilterRequest(terms=["here"]), timeout=5)
        assert result == ["only-here.txt"]
    finally:
        await stop_worker(worker, task)


@pytest.mark.asyncio
async def test_malformed_request_closes_without_reply(socket_path):
    worker, task = await start_worker(socket_path)
    try:
        reader, writer = await asyncio.open_unix_connection(socket_path)
        writer.write(b"-eval &_not&_json\n")
        await writer.drain()
        assert await asyncio.wait_for(reader.read(), 5) == b""
        writer.close()
    finally:
        await stop_worker(worker, task)


@pytest.mark.asyncio
async def test_shutdown_request_stops_worker(socket_path):
    worker, task = await start_worker(socket_path)
    transport = Transport()
    transport.send(socket_path, StartSearchRequest(command="sleep 30"))
    transport.send(socket_path, ShutdownRequest())
    await transport.drain(timeout=5)

    await asyncio.wait_for(task, 5)
    assert not os.path.exists(socket_path)
