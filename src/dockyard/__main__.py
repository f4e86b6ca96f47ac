"""
Entry point: `python -m dockyard`.

  python -m dockyard                      interactive Textual UI
  python -m dockyard -c "docker ps -a"    run one command against the saved session
  python -m dockyard --lint Dockerfile    print diagnostics for a file
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__, get_log_path
from .config import config_manager
from .evaluator import Evaluator
from .session import load_session, save_session
from .state import StateManager
from .utils import IdGenerator, SeededIdGenerator
from .validation import validate
from .workspace import detect_language, load_workspace

console = Console()


def setup_logging() -> None:
    logging.basicConfig(
        filename=config_manager.get_custom_log_path() or get_log_path(),
        level=getattr(logging, config_manager.get_log_level(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )


def run_once(raw: str, workspace_dir: Optional[Path] = None) -> int:
    engine = config_manager.get_engine_config()
    ids = SeededIdGenerator(engine.seed) if engine.seed is not None else IdGenerator()
    state_mgr = StateManager(load_session(), Evaluator(ids, engine))
    workspace = load_workspace(workspace_dir or config_manager.get_workspace_dir())

    result = state_mgr.execute(raw, workspace)
    for line in result.output:
        console.print(line, markup=False, highlight=False)
    save_session(state_mgr.get_snapshot())
    return 1 if state_mgr.get_snapshot().last_error else 0


def lint(path: Path) -> int:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]cannot read {path}: {e}[/red]")
        return 2

    language = detect_language(path.name)
    diagnostics = validate(language, content)
    if not diagnostics:
        console.print(f"[green]{path}: no problems found[/green]")
        return 0

    table = Table(title=str(path))
    table.add_column("Line", justify="right")
    table.add_column("Severity")
    table.add_column("Rule")
    table.add_column("Message")
    for d in diagnostics:
        style = "red" if d.is_error else "yellow"
        table.add_row(str(d.line), f"[{style}]{d.severity}[/{style}]", d.rule_id, d.message)
    console.print(table)
    return 1 if any(d.is_error for d in diagnostics) else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="dockyard", description="Educational Docker CLI simulator")
    parser.add_argument("-c", "--command", help="run a single command and exit")
    parser.add_argument("-w", "--workspace", type=Path, help="workspace directory (default from config)")
    parser.add_argument("--lint", type=Path, metavar="FILE", help="validate a Dockerfile or compose file")
    parser.add_argument("--version", action="version", version=f"dockyard {__version__}")
    args = parser.parse_args(argv)

    setup_logging()
    logging.info(f"dockyard {__version__} starting")

    if args.lint:
        return lint(args.lint)
    if args.command:
        return run_once(args.command, args.workspace)

    from .textual_app import run
    run(workspace_dir=args.workspace)
    return 0


if __name__ == "__main__":
    sys.exit(main())
