"""Environment handling for tmux and git subprocesses."""

from __future__ import annotations

import os
from typing import Mapping

_STRIPPED_VARS = frozenset(
    {
        "PYTHONHOME",
        "PYTHONPATH",
        "VIRTUAL_ENV",
        "PIP_RESPECT_VIRTUALENV",
        "CLAUDECODE",
    }
)


def sanitize_environment(
    additional: Mapping[str, str] | None = None,
    *,
    non_interactive: bool = False,
) -> dict[str, str]:
    """Copy the current environment without the coordinator's interpreter settings.

    With ``non_interactive`` set, git is told never to prompt for credentials.
    """

    env = {key: value for key, value in os.environ.items() if key not in _STRIPPED_VARS}
    if non_interactive:
        env["GIT_TERMINAL_PROMPT"] = "0"
    if additional:
        env.update(additional)
    return env


__all__ = ["sanitize_environment"]
