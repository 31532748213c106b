"""
Tests for the CLI surface: selection, modes and exit codes.
"""

import json
import stat
from pathlib import Path

import pytest

from devsetup.main import main


GRAPH = """\
profiles:
  minimal:
    components: ["devtools"]
components:
  devtools:
    requires: []
    script: "setup-devtools.sh"
    description: "Development Tools"
  terminal-enhancements:
    requires: ["devtools"]
    script: "setup-terminal.sh"
    description: "Terminal Enhancements"
  desktop:
    requires: devtools
    script: "setup-desktop.sh"
    description: "Desktop Environment"
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("DRY_RUN", raising=False)
    monkeypatch.delenv("DEBUG_MODE", raising=False)


@pytest.fixture
def project(tmp_path: Path):
    """A graph file with one script per component that appends its id to ran.log."""

    (tmp_path / "dependencies.yaml").write_text(GRAPH)
    for name, cid in [
        ("setup-devtools.sh", "devtools"),
        ("setup-terminal.sh", "terminal-enhancements"),
        ("setup-desktop.sh", "desktop"),
    ]:
        set_script(tmp_path, name, f"echo {cid} >> ran.log")
    return tmp_path


def set_script(directory: Path, name: str, body: str) -> None:
    path = directory / name
    path.write_text("#!/usr/bin/env bash\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)


def ran(directory: Path):
    log = directory / "ran.log"
    return log.read_text().split() if log.exists() else []


def cli(directory: Path, *args: str) -> int:
    return main(
        [
            "--config",
            str(directory / "dependencies.yaml"),
            "--state",
            str(directory / "state.json"),
            "--log",
            str(directory / "devsetup.log"),
            *args,
        ]
    )


class TestSelection:
    """Tests for component selection."""

    def test_id_flags(self, project: Path):
        assert cli(project, "--terminal-enhancements", "--desktop") == 0
        assert ran(project) == ["devtools", "terminal-enhancements", "desktop"]

    def test_component_option(self, project: Path):
        assert cli(project, "--component", "desktop") == 0
        assert ran(project) == ["devtools", "desktop"]

    def test_all(self, project: Path):
        assert cli(project, "--all") == 0
        assert ran(project) == ["devtools", "terminal-enhancements", "desktop"]
        state = json.loads((project / "state.json").read_text())
        assert state["completed"] == ["devtools", "terminal-enhancements", "desktop"]

    def test_profile(self, project: Path):
        assert cli(project, "--profile", "minimal") == 0
        assert ran(project) == ["devtools"]

    def test_unknown_profile(self, project: Path):
        assert cli(project, "--profile", "huge") == 4

    def test_unknown_component(self, project: Path):
        assert cli(project, "--nonexistent") == 4
        assert ran(project) == []

    def test_nothing_selected_is_usage_error(self, project: Path):
        with pytest.raises(SystemExit) as exc:
            cli(project)
        assert exc.value.code == 2

    def test_positional_rejected(self, project: Path):
        with pytest.raises(SystemExit) as exc:
            cli(project, "devtools")
        assert exc.value.code == 2


class TestModes:
    """Tests for --graph, --validate and --dry-run."""

    def test_graph(self, project: Path, capsys):
        out_file = project / "graph.dot"
        assert cli(project, "--graph", "--graph-out", str(out_file)) == 0

        out = capsys.readouterr().out
        assert out.startswith("digraph G {")
        assert '"devtools" -> "terminal-enhancements";' in out
        assert out_file.read_text() == out
        assert ran(project) == []

    def test_validate(self, project: Path):
        assert cli(project, "--validate") == 0
        assert ran(project) == []
        assert not (project / "state.json").exists()

    def test_validate_unknown_dependency(self, project: Path):
        (project / "dependencies.yaml").write_text(GRAPH.replace('requires: ["devtools"]', 'requires: ["ghost"]'))
        assert cli(project, "--validate") == 4
        assert ran(project) == []

    def test_validate_cycle(self, project: Path):
        text = GRAPH.replace("requires: []", 'requires: ["desktop"]')
        (project / "dependencies.yaml").write_text(text)
        assert cli(project, "--validate") == 5
        assert cli(project, "--desktop") == 5
        assert ran(project) == []

    def test_parse_error(self, project: Path):
        (project / "dependencies.yaml").write_text("components:\n  a:\n    script: x\n   description: y\n")
        assert cli(project, "--all") == 3
        assert ran(project) == []

    def test_dry_run(self, project: Path):
        assert cli(project, "--all", "--dry-run") == 0
        assert ran(project) == []
        assert not (project / "state.json").exists()

    def test_dry_run_from_environment(self, project: Path, monkeypatch):
        monkeypatch.setenv("DRY_RUN", "true")
        assert cli(project, "--all") == 0
        assert ran(project) == []


class TestExecution:
    """Tests for failure handling and resume through the CLI."""

    def test_failure_skips_dependents(self, project: Path):
        set_script(project, "setup-devtools.sh", "echo devtools >> ran.log\nexit 1")
        assert cli(project, "--all", "--max-attempts", "1") == 1
        assert ran(project) == ["devtools"]
        assert not (project / "state.json").exists()

    def test_retries_from_settings(self, project: Path):
        set_script(project, "setup-devtools.sh", "echo devtools >> ran.log\nexit 1")
        settings = project / "settings.yaml"
        settings.write_text("execution:\n  max_attempts: 2\n  backoff_seconds: 0\n")
        assert cli(project, "--settings", str(settings), "--devtools") == 1
        assert ran(project) == ["devtools", "devtools"]

    def test_invalid_settings(self, project: Path):
        settings = project / "settings.yaml"
        settings.write_text("execution:\n  max_attempts: 0\n")
        assert cli(project, "--settings", str(settings), "--devtools") == 3

    def test_resume(self, project: Path):
        set_script(project, "setup-terminal.sh", "echo terminal-enhancements >> ran.log\nexit 1")
        assert cli(project, "--terminal-enhancements", "--max-attempts", "1") == 1
        assert ran(project) == ["devtools", "terminal-enhancements"]

        set_script(project, "setup-terminal.sh", "echo terminal-enhancements >> ran.log")
        assert cli(project, "--terminal-enhancements", "--resume") == 0
        assert ran(project) == ["devtools", "terminal-enhancements", "terminal-enhancements"]

    def test_fresh_run_clears_state(self, project: Path):
        assert cli(project, "--devtools") == 0
        assert cli(project, "--devtools") == 0
        assert ran(project) == ["devtools", "devtools"]

    def test_corrupt_state_on_resume(self, project: Path):
        (project / "state.json").write_text("{{{")
        assert cli(project, "--devtools", "--resume") == 6
        assert ran(project) == []

    def test_interrupt_keeps_completed_state(self, project: Path):
        set_script(project, "setup-devtools.sh", "echo devtools >> ran.log\nkill -INT $PPID")
        assert cli(project, "--all") == 130
        assert ran(project) == ["devtools"]
        state = json.loads((project / "state.json").read_text())
        assert state["completed"] == ["devtools"]

        set_script(project, "setup-devtools.sh", "echo devtools >> ran.log")
        assert cli(project, "--all", "--resume") == 0
        assert ran(project) == ["devtools", "terminal-enhancements", "desktop"]

    def test_negative_timeout_rejected(self, project: Path):
        with pytest.raises(SystemExit) as exc:
            cli(project, "--all", "--timeout", "-1")
        assert exc.value.code == 2
