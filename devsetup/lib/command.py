from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    timeout: Optional[float] = None,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
    new_session: bool = False,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command.
    - Captures stdout/stderr.
    - timeout kills the child and raises subprocess.TimeoutExpired. With
      new_session the whole process group goes, including anything the
      child started in the background.
    - new_session detaches the child from the terminal's process group, so a
      Ctrl-C aimed at the caller does not reach it.
    """

    argv_list = list(argv)
    logger.info("CMD %s", fmt_argv(argv_list))

    with subprocess.Popen(
        argv_list,
        stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        cwd=cwd,
        env=dict(os.environ, **(env or {})),
        start_new_session=new_session,
    ) as p:
        try:
            stdout, stderr = p.communicate(input_text, timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill(p, new_session)
            p.communicate()
            logger.warning("CMD timed out after %ss: %s", timeout, fmt_argv(argv_list))
            raise
        except BaseException:
            _kill(p, new_session)
            raise

    if stdout:
        logger.debug("STDOUT %s", stdout.strip())
    if stderr:
        logger.debug("STDERR %s", stderr.strip())

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=stdout, stderr=stderr)


def _kill(p: subprocess.Popen, group: bool) -> None:
    if group:
        try:
            os.killpg(p.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            pass
    p.kill()
