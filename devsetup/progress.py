from __future__ import annotations

import logging
from typing import List, Protocol, Tuple

from .status import TaskStatus

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    """Receives every state transition of the executor. Rendering is up to the caller."""

    def report(self, index: int, total: int, component_id: str, state: TaskStatus) -> None:
        ...


class LoggingProgressSink:
    def __init__(self, log: logging.Logger = logger) -> None:
        self.log = log

    def report(self, index: int, total: int, component_id: str, state: TaskStatus) -> None:
        level = logging.WARNING if state.blocks_dependents else logging.INFO
        self.log.log(level, "[%d/%d] %s: %s", index, total, component_id, state.value)


class RecordingProgressSink:
    """Keeps every report in memory; handy for embedding callers and tests."""

    def __init__(self) -> None:
        self.events: List[Tuple[int, int, str, TaskStatus]] = []

    def report(self, index: int, total: int, component_id: str, state: TaskStatus) -> None:
        self.events.append((index, total, component_id, state))
