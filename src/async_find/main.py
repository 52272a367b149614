import asyncio
import os
import sys
from collections.abc import Sequence
from pathlib import Path

import click

from async_find.errors import SetupError
from async_find.modes import get_matcher_name, get_mode_config
from async_find.patterns import TRANSFORMS, get_transform


@click.group("async-find")
@click.option(
    "--log-level",
    help="Logging level. Overrides ASYNC_FIND_LOG_LEVEL env var.",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
)
@click.option(
    "--log-file",
    help="Write logs to this file instead of stderr. Overrides ASYNC_FIND_LOG_FILE env var.",
    type=click.Path(dir_okay=False, file_okay=True),
    default=None,
)
def main(log_level: str | None, log_file: str | None):
    """
    CLI for async-find.
    """
    from async_find import logger

    # Exported so the worker process, which inherits the environment, logs alike.
    if log_level:
        os.environ[logger.LOG_LEVEL_ENV_VAR] = log_level
    if log_file:
        os.environ[logger.LOG_FILE_ENV_VAR] = str(Path(log_file).resolve())
    if log_level or log_file:
        logger.configure(log_level, log_file)


def search_options(func):
    func = click.argument(
        "directory",
        required=False,
        type=click.Path(exists=True, dir_okay=True, file_okay=False, path_type=Path),
    )(func)
    func = click.option(
        "--matcher",
        "-m",
        "matcher_name",
        help=f"How patterns match. Overrides ASYNC_FIND_MATCHER env var. Supported: {', '.join(TRANSFORMS.keys())}",
        type=click.Choice(list(TRANSFORMS.keys())),
        default=None,
    )(func)
    func = click.option(
        "--command",
        "-c",
        "command",
        help="Shell command producing the candidates, run inside DIRECTORY.",
        default=None,
    )(func)
    func = click.option(
        "--limit", "-n", help="Maximum candidates per query.", type=click.IntRange(min=1), default=1000
    )(func)
    func = click.option(
        "--timeout",
        help="Give up on a query after this many seconds.",
        type=click.FloatRange(min=0, min_open=True),
        default=None,
    )(func)
    func = click.option("--watch", is_flag=True, help="Re-run the search when files change.")(func)
    return func


@main.command("find")
@search_options
def find_cmd(
    directory: Path | None,
    matcher_name: str | None,
    command: str | None,
    limit: int,
    timeout: float | None,
    watch: bool,
):
    """
    Match file names under DIRECTORY against patterns read from stdin.
    """
    run_search("find", directory, matcher_name, command, limit, timeout, watch)


@main.command("grep")
@search_options
def grep_cmd(
    directory: Path | None,
    matcher_name: str | None,
    command: str | None,
    limit: int,
    timeout: float | None,
    watch: bool,
):
    """
    Match lines of files under DIRECTORY against patterns read from stdin.
    """
    run_search("grep", directory, matcher_name, command, limit, timeout, watch)


def run_search(
    mode_name: str,
    directory: Path | None,
    matcher_name: str | None,
    command: str | None,
    limit: int,
    timeout: float | None,
    watch: bool,
):
    from async_find.frontend import run_query_loop
    from async_find.protocol.transport import Transport
    from async_find.session import SessionConfig
    from async_find.supervisor import WorkerSupervisor

    mode = get_mode_config(mode_name)
    try:
        transform = get_transform(get_matcher_name(matcher_name))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--matcher") from e

    config = SessionConfig(
        search_command=command or mode.command,
        directory=str((directory or Path.cwd()).resolve()),
        transform=transform,
        candidate_limit=limit,
        request_timeout=timeout,
    )

    transport = Transport(timeout)
    supervisor = WorkerSupervisor(transport, watch=watch)
    try:
        asyncio.run(
            run_query_loop(config, sys.stdin, supervisor=supervisor, transport=transport)
        )
    except SetupError as e:
        raise click.ClickException(str(e)) from e


@main.command("worker")
@click.option(
    "--endpoint",
    "-e",
    help="Unix socket path to listen on.",
    required=True,
    type=click.Path(dir_okay=False, file_okay=True, path_type=Path),
)
@click.option("--watch", is_flag=True, help="Re-run the search command when files change.")
@click.option(
    "--idle-timeout",
    help="Exit after this many seconds without requests (0 disables).",
    type=click.FloatRange(min=0),
    default=30 * 60,
)
def worker_cmd(endpoint: Path, watch: bool, idle_timeout: float):
    """
    Run a background worker. Started by the front-end; not meant for direct use.
    """
    from async_find.worker.server import run_worker

    run_worker(endpoint, watch=watch, idle_timeout=idle_timeout or None)


@main.command("filter")
@click.option(
    "--endpoint",
    "-e",
    help="Unix socket path of a running worker.",
    required=True,
    type=click.Path(exists=True, dir_okay=False, file_okay=True, path_type=Path),
)
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None)
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=10.0)
@click.argument("terms", nargs=-1)
def filter_cmd(endpoint: Path, limit: int | None, timeout: float, terms: Sequence[str]):
    """
    Send one filter request to a running worker and print the candidates.
    """
    from async_find.frontend import printable
    from async_find.protocol.messages import FilterRequest
    from async_find.protocol.transport import Transport

    async def run():
        return await Transport().request(
            str(endpoint), FilterRequest(terms=list(terms), limit=limit), timeout=timeout
        )

    for candidate in asyncio.run(run()):
        click.echo(printable(candidate))


if __name__ == "__main__":
    main()
