from __future__ import annotations

from typing import Optional, Sequence


class InstallerError(RuntimeError):
    exit_code = 1


class ConfigParseError(InstallerError):
    exit_code = 3

    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        component_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        self.line = line
        self.component_id = component_id
        self.source = source

        where = []
        if source:
            where.append(source)
        if line is not None:
            where.append(f"line {line}")
        prefix = ":".join(where)
        super().__init__(f"{prefix}: {message}" if prefix else message)


class UnknownComponentError(InstallerError):
    exit_code = 4

    def __init__(
        self,
        component_id: str,
        *,
        referenced_by: Optional[str] = None,
        line: Optional[int] = None,
        kind: str = "component",
    ) -> None:
        self.component_id = component_id
        self.referenced_by = referenced_by
        self.line = line

        msg = f"Unknown {kind}: {component_id}"
        if referenced_by:
            msg += f" (required by {referenced_by}"
            msg += f" at line {line})" if line is not None else ")"
        super().__init__(msg)


class CycleError(InstallerError):
    exit_code = 5

    def __init__(self, component_id: str, cycle: Sequence[str] = ()) -> None:
        self.component_id = component_id
        self.cycle = list(cycle)
        msg = f"Cycle detected at component: {component_id}"
        if self.cycle:
            msg += f" ({' -> '.join(self.cycle)})"
        super().__init__(msg)


class StateStoreIOError(InstallerError):
    exit_code = 6

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(f"{message}: {path}" if path else message)


class TaskError(InstallerError):
    """Failure of a single task. Recovered by the executor, never fatal."""

    def __init__(self, component_id: str, message: str) -> None:
        self.component_id = component_id
        super().__init__(f"{component_id}: {message}")


class TaskTimeoutError(TaskError):
    def __init__(self, component_id: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(component_id, f"timed out after {timeout:g}s")


class TaskExecutionError(TaskError):
    def __init__(
        self,
        component_id: str,
        message: str,
        *,
        returncode: Optional[int] = None,
        retryable: bool = True,
    ) -> None:
        self.returncode = returncode
        self.retryable = retryable
        super().__init__(component_id, message)
