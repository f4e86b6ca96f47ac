"""
dockyard - an educational simulator of a Docker-like command line.

A learner types commands into a terminal, edits a Dockerfile or compose.yml,
and watches the simulated effects on images, containers, port bindings and
compose stacks. Nothing is executed for real: every command is evaluated by a
pure engine against an immutable state snapshot.

Features:
  - Shell-like command parsing (quotes, bundled short flags, value flags)
  - Dockerfile and compose.yml linting with explained diagnostics
  - Image, container, port and compose stack lifecycles
  - Append-only event log for lesson objectives and UI replay
  - Session snapshots that survive restarts

Main Components:
  - parser.py: raw string -> ParsedCommand
  - dockerfile.py / compose_file.py / yaml_reader.py: static validators
  - evaluator.py: dispatches a ParsedCommand to the *_actions handlers
  - state.py: caller-side store that merges deltas and queues commands
  - model.py: Data structures (ImageRecord, ContainerRecord, EngineContext, ...)

Usage:
  python -m dockyard
  python -m dockyard -c "docker pull nginx"

Dependencies:
  - docker>=7.0.0 (image reference parsing only, no daemon needed)
  - PyYAML, textual, rich
  - Python 3.10+
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def _data_dir() -> Path:
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        return Path.home() / '.local' / 'share' / 'dockyard'
    return Path(xdg_data_home) / 'dockyard'


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/dockyard/logs/dockyard.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/dockyard.log as fallback)
    """
    log_dir = _data_dir() / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'dockyard.log')
    except (PermissionError, OSError):
        # Fallback to /tmp if permission denied
        return '/tmp/dockyard.log'


def get_session_path() -> str:
    """Default location of the saved session snapshot."""
    data_dir = _data_dir()
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        return str(data_dir / 'session.yaml')
    except (PermissionError, OSError):
        return '/tmp/dockyard-session.yaml'
