"""
Session snapshots: the whole EngineContext saved as a YAML document.

    version: 1
    saved_at: 2024-01-01T00:00:00+00:00
    engine: {images: ..., containers: ..., event_log: ..., ...}

A snapshot that fails to load (missing file, bad YAML, wrong version,
malformed state) is reported as None and logged; callers start fresh.
"""

import os
import yaml
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from . import get_session_path
from .model import EngineContext

logger = logging.getLogger(__name__)

SESSION_VERSION = 1

PathLike = Union[str, Path]


def _resolve(path: Optional[PathLike]) -> Path:
    return Path(path) if path else Path(get_session_path())


def save_session(ctx: EngineContext, path: Optional[PathLike] = None) -> bool:
    target = _resolve(path)
    document = {
        "version": SESSION_VERSION,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "engine": ctx.merge({"pending_command": None}).to_dict(),
    }
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        with open(tmp, "w") as f:
            yaml.safe_dump(document, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        os.replace(tmp, target)
        logger.debug(f"Saved session to {target}")
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to save session to {target}: {e}")
        return False


def load_session(path: Optional[PathLike] = None) -> Optional[EngineContext]:
    target = _resolve(path)
    if not target.exists():
        return None
    try:
        with open(target, "r") as f:
            document = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to read session {target}: {e}")
        return None

    if not isinstance(document, dict) or document.get("version") != SESSION_VERSION:
        logger.warning(f"Ignoring session {target}: unsupported format")
        return None
    try:
        return EngineContext.from_dict(document.get("engine") or {})
    except ValueError as e:
        logger.warning(f"Ignoring session {target}: {e}")
        return None


def clear_session(path: Optional[PathLike] = None) -> None:
    target = _resolve(path)
    try:
        target.unlink()
        logger.info(f"Cleared session {target}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"Failed to clear session {target}: {e}")
