"""Shared fixtures for devsetup tests."""

import textwrap
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from devsetup.errors import TaskExecutionError, TaskTimeoutError
from devsetup.graph import Component
from devsetup.graph_loader import parse_graph
from devsetup.logging_utils import reset_logging


SAMPLE_CONFIG = """\
components:
  devtools:
    requires: []
    script: "setup-devtools.sh"
    description: "Development Tools"
  terminal:
    requires: ["devtools"]
    script: "setup-terminal.sh"
    description: "Terminal Enhancements"
  desktop:
    requires: devtools
    script: "setup-desktop.sh"
    description: "Desktop Environment"
"""


class FakeRunner:
    """Task runner that records calls and fails ids on demand."""

    def __init__(
        self,
        fail: Optional[Dict[str, int]] = None,
        timeout_ids: Optional[List[str]] = None,
        fatal: Optional[List[str]] = None,
        on_call=None,
    ):
        # fail maps id -> number of attempts that fail before succeeding (-1: always)
        self.fail = dict(fail or {})
        self.timeout_ids = list(timeout_ids or [])
        self.fatal = list(fatal or [])
        self.on_call = on_call
        self.calls: List[str] = []
        self.timeouts: List[Optional[float]] = []

    def __call__(self, component: Component, *, timeout: Optional[float]) -> None:
        self.calls.append(component.id)
        self.timeouts.append(timeout)
        if self.on_call is not None:
            self.on_call(component.id)
        if component.id in self.timeout_ids:
            raise TaskTimeoutError(component.id, timeout or 0)
        if component.id in self.fatal:
            raise TaskExecutionError(component.id, "script not found", retryable=False)
        remaining = self.fail.get(component.id, 0)
        if remaining:
            if remaining > 0:
                self.fail[component.id] = remaining - 1
            raise TaskExecutionError(component.id, "exit code 1", returncode=1)


@pytest.fixture(autouse=True)
def _clean_logging():
    yield
    reset_logging()


@pytest.fixture
def sample_config() -> str:
    return SAMPLE_CONFIG


@pytest.fixture
def sample_graph(sample_config):
    return parse_graph(sample_config)


@pytest.fixture
def write_config(tmp_path: Path):
    """Write dedented config text to tmp_path and return its path."""

    def _write(text: str, name: str = "dependencies.yaml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def fake_runner():
    """The FakeRunner class, for building runners with per-test failure plans."""
    return FakeRunner
