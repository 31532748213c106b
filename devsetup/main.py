from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import __version__
from .config import InstallerConfig, load_installer_config
from .errors import InstallerError, UnknownComponentError
from .executor import CancelToken, ExecutionReport, RetryPolicy, interrupt_guard, run_plan
from .graph import ComponentGraph
from .graph_loader import load_graph
from .logging_utils import configure_logging
from .progress import LoggingProgressSink, ProgressSink
from .resolver import resolve, resolve_all
from .state_store import ExecutionStateStore
from .tasks import CommandTaskRunner, TaskRunner

logger = logging.getLogger(__name__)


def select_components(
    graph: ComponentGraph,
    *,
    install_all: bool = False,
    profiles: Sequence[str] = (),
    components: Sequence[str] = (),
) -> List[str]:
    """Turn CLI selection into an ordered, de-duplicated list of requested ids."""

    selected: List[str] = []
    if install_all:
        selected.extend(graph.ids)
    for name in profiles:
        if name not in graph.profiles:
            raise UnknownComponentError(name, kind="profile")
        selected.extend(graph.profiles[name])
    selected.extend(components)

    dedup: List[str] = []
    for cid in selected:
        if cid not in dedup:
            dedup.append(cid)
    return dedup


def run(
    *,
    config_path: str,
    settings: Optional[InstallerConfig] = None,
    state_path: Optional[str] = None,
    log_path: Optional[str] = None,
    install_all: bool = False,
    profiles: Sequence[str] = (),
    components: Sequence[str] = (),
    resume: bool = False,
    graph_only: bool = False,
    graph_out: Optional[str] = None,
    validate_only: bool = False,
    dry_run: Optional[bool] = None,
    timeout: Optional[float] = None,
    max_attempts: Optional[int] = None,
    log_level: Optional[int] = None,
    runner: Optional[TaskRunner] = None,
    sink: Optional[ProgressSink] = None,
) -> Optional[ExecutionReport]:
    """Load, resolve and (unless graph/validate only) execute the selection.

    Returns None when nothing was executed.
    """

    settings = settings or load_installer_config()
    actual_log_path = configure_logging(
        log_path=log_path or settings.log_path,
        level=log_level if log_level is not None else settings.log_level,
        also_console=settings.log_console,
    )
    logger.info("devsetup %s (log: %s)", __version__, actual_log_path)

    try:
        graph = load_graph(config_path)

        if graph_only:
            dot = graph.to_dot()
            sys.stdout.write(dot)
            if graph_out:
                Path(graph_out).write_text(dot, encoding="utf-8")
                logger.info("Dependency graph saved to: %s", graph_out)
            return None

        requested = select_components(
            graph, install_all=install_all, profiles=profiles, components=components
        )
        plan = resolve(graph, requested) if requested else resolve_all(graph)
        logger.info("Execution plan (%d): %s", len(plan), " ".join(plan))

        if validate_only:
            logger.info("Configuration valid: %d components, %d in plan", len(graph), len(plan))
            return None

        dry_run = settings.dry_run if dry_run is None else dry_run
        store = ExecutionStateStore(state_path or settings.state_path)
        if dry_run:
            logger.info("DRY RUN: no task will be executed and state is left untouched")
        elif resume:
            logger.info("Resuming installation (%d previously completed)", len(store.completed()))
        else:
            logger.info("Starting fresh installation (removing previous state)")
            store.reset()

        policy = RetryPolicy(
            max_attempts=max_attempts or settings.max_attempts,
            backoff_seconds=settings.backoff_seconds,
        )

        with interrupt_guard(CancelToken()) as cancel:
            return run_plan(
                graph=graph,
                plan=plan,
                store=store,
                runner=runner or CommandTaskRunner(graph.base_dir),
                sink=sink or LoggingProgressSink(),
                policy=policy,
                timeout=settings.task_timeout if timeout is None else (timeout or None),
                resume=resume,
                dry_run=dry_run,
                cancel=cancel,
            )
    except InstallerError:
        raise
    except Exception:
        logger.exception("Installer failed")
        raise


def _component_flags(p: argparse.ArgumentParser, extra: Sequence[str]) -> List[str]:
    """Unrecognised --<id> flags select the component of that id."""

    ids: List[str] = []
    for token in extra:
        if token.startswith("--") and len(token) > 2 and "=" not in token:
            ids.append(token[2:])
        else:
            p.error(f"unrecognized arguments: {token}")
    return ids


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return n


def _non_negative_float(value: str) -> float:
    n = float(value)
    if n < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return n


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="devsetup",
        description="Install development environment components in dependency order.",
        epilog="Any other --<id> flag selects the component with that id.",
        allow_abbrev=False,
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--config", default=None, help="Component graph file (default: dependencies.yaml)")
    p.add_argument("--settings", default=None, help="Installer settings (yaml)")
    p.add_argument("--state", default=None, help="Path to installation state (json|yaml)")
    p.add_argument("--log", default=None, help="Path to installer log")

    sel = p.add_argument_group("selection")
    sel.add_argument("--all", action="store_true", help="Install all available components")
    sel.add_argument("--profile", action="append", default=[], help="Install a named profile (repeatable)")
    sel.add_argument("--component", action="append", default=[], metavar="ID", help="Install a component (repeatable)")

    mode = p.add_argument_group("mode")
    mode.add_argument("--resume", action="store_true", help="Skip components completed by a previous run")
    mode.add_argument("--graph", action="store_true", help="Print the dependency graph (DOT) and exit")
    mode.add_argument("--graph-out", default=None, help="Also write the --graph output to this file")
    mode.add_argument("--validate", action="store_true", help="Load and resolve only; run nothing")
    mode.add_argument("--dry-run", action="store_true", default=None, help="Show what would run without executing")

    ex = p.add_argument_group("execution")
    ex.add_argument("--timeout", type=_non_negative_float, default=None, help="Per-attempt task timeout in seconds (0: none)")
    ex.add_argument("--max-attempts", type=_positive_int, default=None, help="Attempts per task before FAILED")
    ex.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    p = build_parser()
    args, extra = p.parse_known_args(argv)
    components = [*args.component, *_component_flags(p, extra)]

    if not (args.all or args.profile or components or args.graph or args.validate):
        p.error("no components specified (use --all, --profile, --component ID or --<id>)")

    try:
        settings = load_installer_config(args.settings)
        report = run(
            config_path=args.config or settings.dependencies_path,
            settings=settings,
            state_path=args.state,
            log_path=args.log,
            install_all=bool(args.all),
            profiles=args.profile,
            components=components,
            resume=bool(args.resume),
            graph_only=bool(args.graph),
            graph_out=args.graph_out,
            validate_only=bool(args.validate),
            dry_run=args.dry_run,
            timeout=args.timeout,
            max_attempts=args.max_attempts,
            log_level=logging.DEBUG if args.debug else None,
        )
    except InstallerError as e:
        logger.error("%s", e)
        return e.exit_code
    except KeyboardInterrupt:
        return 130

    return 0 if report is None else report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
