from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    dependencies_default: str = "dependencies.yaml"
    state_default: str = os.path.expanduser("~/.local/state/devsetup/state.json")
    log_default: str = os.path.expanduser("~/.local/share/devsetup/logs/devsetup.log")
    log_fallback_name: str = "devsetup.log"


PATHS = Paths()
