from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol

from .errors import TaskExecutionError, TaskTimeoutError
from .graph import Component
from .lib.command import fmt_argv, run_cmd

logger = logging.getLogger(__name__)


STDERR_TAIL_LINES = 5


class TaskRunner(Protocol):
    """Runs one component's task once.

    Returns on success; raises TaskTimeoutError or TaskExecutionError otherwise.
    """

    def __call__(self, component: Component, *, timeout: Optional[float]) -> None:
        ...


def _tail(text: str, lines: int = STDERR_TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class CommandTaskRunner:
    """Executes a TaskRef argument vector as a subprocess.

    Scripts (first argument ending in .sh) and relative paths are resolved
    against base_dir, the directory holding the component configuration.
    """

    def __init__(self, base_dir: Optional[str] = None) -> None:
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()

    def command_for(self, component: Component) -> List[str]:
        if component.task is None:
            raise TaskExecutionError(component.id, "no task reference", retryable=False)

        first, *rest = component.task.argv
        path = Path(first)
        if first.endswith(".sh"):
            script = path if path.is_absolute() else self.base_dir / path
            if not script.is_file():
                raise TaskExecutionError(
                    component.id, f"installation script not found: {script}", retryable=False
                )
            return ["bash", str(script), *rest]
        if not path.is_absolute() and len(path.parts) > 1:
            return [str(self.base_dir / path), *rest]
        return [first, *rest]

    def __call__(self, component: Component, *, timeout: Optional[float]) -> None:
        argv = self.command_for(component)
        try:
            res = run_cmd(argv, timeout=timeout, cwd=str(self.base_dir), new_session=True)
        except subprocess.TimeoutExpired as e:
            raise TaskTimeoutError(component.id, float(timeout or 0)) from e
        except OSError as e:
            raise TaskExecutionError(
                component.id, f"cannot execute {fmt_argv(argv)}: {e.strerror or e}", retryable=False
            ) from e

        if res.returncode != 0:
            msg = f"exit code {res.returncode}"
            if res.stderr.strip():
                msg += f": {_tail(res.stderr)}"
            raise TaskExecutionError(component.id, msg, returncode=res.returncode)

        logger.debug("Task for %s finished: %s", component.id, fmt_argv(argv))
