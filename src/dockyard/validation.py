"""Single entry point for editor-side linting of workspace files."""

import logging
from typing import List, Optional

from .compose_file import validate_compose
from .dockerfile import validate_dockerfile
from .model import Diagnostic

logger = logging.getLogger(__name__)

FILE_TYPES = ("dockerfile", "yaml")


def validate(file_type: str, content: str, workspace_paths: Optional[List[str]] = None) -> List[Diagnostic]:
    """Dispatch on file type; unknown types yield no diagnostics."""
    if file_type == "dockerfile":
        return validate_dockerfile(content)
    if file_type == "yaml":
        return validate_compose(content, workspace_paths)
    logger.debug(f"No validator for file type {file_type!r}")
    return []


def split_by_severity(diagnostics: List[Diagnostic]):
    """Return (errors, warnings) preserving order."""
    errors = [d for d in diagnostics if d.is_error]
    warnings = [d for d in diagnostics if not d.is_error]
    return errors, warnings
