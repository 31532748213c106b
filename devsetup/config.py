from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigParseError
from .lib.env import PATHS

DEFAULT_TASK_TIMEOUT = 600.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 5.0

_TRUE = {"1", "true", "yes", "on"}


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE
    return bool(value)


@dataclass(frozen=True)
class InstallerConfig:
    raw: Dict[str, Any]

    def _section(self, name: str) -> Dict[str, Any]:
        return self.raw.get(name) or {}

    @property
    def dependencies_path(self) -> str:
        return str(self._section("paths").get("dependencies") or PATHS.dependencies_default)

    @property
    def state_path(self) -> str:
        return os.path.expanduser(str(self._section("paths").get("state") or PATHS.state_default))

    @property
    def log_path(self) -> str:
        return os.path.expanduser(str(self._section("paths").get("log") or PATHS.log_default))

    @property
    def task_timeout(self) -> Optional[float]:
        """Per-attempt timeout in seconds; 0 disables the bound."""
        value = self._section("execution").get("task_timeout", DEFAULT_TASK_TIMEOUT)
        timeout = float(value)
        return timeout or None

    @property
    def max_attempts(self) -> int:
        return int(self._section("execution").get("max_attempts", DEFAULT_MAX_ATTEMPTS))

    @property
    def backoff_seconds(self) -> float:
        return float(self._section("execution").get("backoff_seconds", DEFAULT_BACKOFF_SECONDS))

    @property
    def dry_run(self) -> bool:
        return _flag(self._section("execution").get("dry_run", False))

    @property
    def log_level(self) -> int:
        name = str(self._section("logging").get("level") or "INFO").upper()
        level = logging.getLevelName(name)
        return level if isinstance(level, int) else logging.INFO

    @property
    def log_console(self) -> bool:
        return _flag(self._section("logging").get("console", True))

    def validate(self) -> "InstallerConfig":
        try:
            timeout = self.task_timeout
            attempts = self.max_attempts
            backoff = self.backoff_seconds
        except (TypeError, ValueError) as e:
            raise ConfigParseError(f"invalid execution setting: {e}") from e

        if timeout is not None and timeout < 0:
            raise ConfigParseError("execution.task_timeout must not be negative")
        if attempts < 1:
            raise ConfigParseError("execution.max_attempts must be at least 1")
        if backoff < 0:
            raise ConfigParseError("execution.backoff_seconds must not be negative")
        return self


def apply_env_overrides(raw: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """DRY_RUN=true and DEBUG_MODE=true, as honoured by the shell installers."""

    if "DRY_RUN" in environ:
        raw.setdefault("execution", {})["dry_run"] = _flag(environ["DRY_RUN"])
    if _flag(environ.get("DEBUG_MODE", "")):
        raw.setdefault("logging", {})["level"] = "DEBUG"
    return raw


def load_installer_config(
    path: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> InstallerConfig:
    raw: Dict[str, Any] = {}

    if path:
        p = Path(path)
        if not p.exists():
            raise ConfigParseError("settings file not found", source=str(p))
        if p.suffix.lower() not in {".yaml", ".yml"}:
            raise ConfigParseError("settings must be YAML", source=str(p))

        try:
            loaded = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            raise ConfigParseError(
                "cannot parse settings",
                line=mark.line + 1 if mark is not None else None,
                source=str(p),
            ) from e
        if not isinstance(loaded, dict):
            raise ConfigParseError("settings must contain a mapping/object", source=str(p))
        for section in ("paths", "execution", "logging"):
            if not isinstance(loaded.get(section) or {}, dict):
                raise ConfigParseError(f"'{section}' must be a mapping", source=str(p))
        raw = loaded

    apply_env_overrides(raw, os.environ if environ is None else environ)
    return InstallerConfig(raw=raw).validate()
