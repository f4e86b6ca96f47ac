"""Reads the learner's workspace directory into WorkspaceFile records."""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from .model import WorkspaceFile

logger = logging.getLogger(__name__)

SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv"}
MAX_FILES = 200
MAX_FILE_BYTES = 256 * 1024


def detect_language(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    if name == "Dockerfile" or name.startswith("Dockerfile.") or name.endswith(".dockerfile"):
        return "dockerfile"
    if name.endswith((".yml", ".yaml")):
        return "yaml"
    if name.endswith((".js", ".mjs", ".cjs")):
        return "javascript"
    if name.endswith(".sh"):
        return "sh"
    return "text"


def load_workspace(directory: Union[str, Path]) -> Optional[Dict[str, WorkspaceFile]]:
    """
    Snapshot text files under `directory`, keyed by POSIX relative path.

    Returns None when the directory does not exist, so callers can tell
    "no workspace" apart from "empty workspace". Hidden and vendored
    directories are skipped; oversized or binary files are ignored.
    """
    root = Path(directory).expanduser()
    if not root.is_dir():
        return None

    files: Dict[str, WorkspaceFile] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if any(part in SKIP_DIRS or part.startswith(".") for part in rel.parts[:-1]):
            continue
        if not path.is_file() or path.stat().st_size > MAX_FILE_BYTES:
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError) as e:
            logger.debug(f"Skipping workspace file {rel}: {e}")
            continue
        key = rel.as_posix()
        files[key] = WorkspaceFile(path=key, content=content, language=detect_language(key))
        if len(files) >= MAX_FILES:
            logger.warning(f"Workspace {root} truncated at {MAX_FILES} files")
            break
    return files
