"""Search mode registry and configuration."""

import os
from dataclasses import dataclass


@dataclass
class SearchMode:
    """Configuration for a backing candidate source."""

    name: str  # Short name: "find"
    command: str  # Shell command run by the worker, inside the search directory
    description: str = ""
    command_env_var: str = ""  # Overrides `command` when set


SUPPORTED_MODES: dict[str, SearchMode] = {
    "find": SearchMode(
        name="find",
        command="find . -type f -not -path '*/.git/*'",
        description="File names under the directory",
        command_env_var="ASYNC_FIND_FIND_COMMAND",
    ),
    "grep": SearchMode(
        name="grep",
        command="grep -rnI --exclude-dir=.git '' .",
        description="Lines of text files under the directory",
        command_env_var="ASYNC_FIND_GREP_COMMAND",
    ),
}

DEFAULT_MODE = "find"

MODE_ENV_VAR = "ASYNC_FIND_MODE"
MATCHER_ENV_VAR = "ASYNC_FIND_MATCHER"


def get_mode_config(mode_name: str | None = None) -> SearchMode:
    """
    Get the search mode for the specified name.

    Args:
        mode_name: The name of the mode. If None, uses the environment variable
                   ASYNC_FIND_MODE, falling back to DEFAULT_MODE.

    Returns:
        The mode, with its command replaced by the mode's override variable when
        that is set.

    Raises:
        ValueError: If the mode name is not supported.
    """
    if mode_name is None:
        mode_name = os.environ.get(MODE_ENV_VAR, DEFAULT_MODE)

    if mode_name not in SUPPORTED_MODES:
        supported = ", ".join(SUPPORTED_MODES.keys())
        raise ValueError(f"Unsupported mode: {mode_name}. Supported modes: {supported}")

    mode = SUPPORTED_MODES[mode_name]
    override = os.environ.get(mode.command_env_var) if mode.command_env_var else None
    if override:
        return SearchMode(
            name=mode.name,
            command=override,
            description=mode.description,
            command_env_var=mode.command_env_var,
        )
    return mode


def get_matcher_name(matcher_name: str | None = None) -> str:
    if matcher_name is None:
        matcher_name = os.environ.get(MATCHER_ENV_VAR, "regex")
    return matcher_name
