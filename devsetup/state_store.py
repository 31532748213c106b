from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import StateStoreIOError

logger = logging.getLogger(__name__)


STATE_VERSION = 1


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def _dumps(fmt: str, data: Dict[str, Any]) -> str:
    if fmt in {"yaml", "yml"}:
        return yaml.safe_dump(data, sort_keys=False)
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def _loads(fmt: str, text: str) -> Any:
    if fmt in {"yaml", "yml"}:
        return yaml.safe_load(text) or {}
    return json.loads(text)


class ExecutionStateStore:
    """Persisted set of completed component ids for one installation run.

    Every write goes to a temp file in the same directory, is flushed and
    fsynced, then renamed over the previous record, so an interrupted process
    leaves either the old or the new record and never a partial one.

    Single writer only: two orchestrators sharing a path need an external lock.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path).expanduser()
        self._fmt = _detect_format(self.path)
        self._completed: Optional[List[str]] = None

    def _load(self) -> List[str]:
        if self._completed is not None:
            return self._completed

        if not self.path.exists():
            self._completed = []
            return self._completed

        try:
            data = _loads(self._fmt, self.path.read_text(encoding="utf-8"))
        except OSError as e:
            raise StateStoreIOError(f"Cannot read state ({e.strerror or e})", path=str(self.path)) from e
        except (ValueError, yaml.YAMLError) as e:
            raise StateStoreIOError("State file is corrupt", path=str(self.path)) from e

        if not isinstance(data, dict) or not isinstance(data.get("completed", []), list):
            raise StateStoreIOError("State file must contain an object with a 'completed' list", path=str(self.path))

        self._completed = [str(c) for c in data.get("completed") or []]
        logger.debug("Loaded state from %s (%d completed)", self.path, len(self._completed))
        return self._completed

    def _write(self, completed: List[str]) -> None:
        data = {
            "version": STATE_VERSION,
            "completed": list(completed),
            "updated_at": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        }
        content = _dumps(self._fmt, data)

        tmp_path: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".state_", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
            self._fsync_dir()
        except OSError as e:
            raise StateStoreIOError(f"Cannot persist state ({e.strerror or e})", path=str(self.path)) from e
        finally:
            if tmp_path is not None:
                Path(tmp_path).unlink(missing_ok=True)

    def _fsync_dir(self) -> None:
        # Makes the rename itself durable; not supported on every platform.
        try:
            dir_fd = os.open(self.path.parent, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(dir_fd)
        except OSError:
            pass
        finally:
            os.close(dir_fd)

    def is_done(self, component_id: str) -> bool:
        return component_id in self._load()

    def completed(self) -> List[str]:
        return list(self._load())

    def mark_done(self, component_id: str) -> None:
        completed = self._load()
        if component_id in completed:
            return
        self._write([*completed, component_id])
        completed.append(component_id)
        logger.debug("Marked %s completed in %s", component_id, self.path)

    def reset(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StateStoreIOError(f"Cannot clear state ({e.strerror or e})", path=str(self.path)) from e
        self._completed = []
        logger.info("Cleared installation state at %s", self.path)
