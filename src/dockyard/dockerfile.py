"""
Dockerfile linting.

Pipeline:
  1. parse_dockerfile_lines(): joins `\\` continuations, skips blanks and
     comments, and tags each logical instruction with its starting line
  2. validate_dockerfile(): runs the per-instruction and whole-file rules

Rule ids:
  - DF-E-001 no FROM at all (reported alone)
  - DF-E-002 FROM is not the first non-ARG instruction
  - DF-E-003 unknown instruction
  - DF-E-004 COPY/ADD with fewer than two arguments
  - DF-E-005 CMD/ENTRYPOINT exec form is not a JSON array of strings
  - DF-E-006 ENV without KEY=VALUE
  - DF-E-007 EXPOSE port is not numeric
  - DF-E-008 WORKDIR with `..` segments
  - DF-W-001 FROM without a pinned tag
  - DF-W-002 three or more RUN instructions
  - DF-W-003 ADD used for a plain local copy
  - DF-W-005 apt-get install without --no-install-recommends / cleanup
  - DF-W-006 CMD and ENTRYPOINT both in shell form
  - DF-W-007 network-serving CMD without EXPOSE

Errors do not stop the later checks; every finding is collected.
"""

import difflib
import json
import re
from dataclasses import dataclass
from typing import List, Optional, Set

from docker.utils import parse_repository_tag

from .model import Diagnostic

KNOWN_INSTRUCTIONS = {
    "FROM", "RUN", "CMD", "LABEL", "EXPOSE", "ENV", "ADD", "COPY",
    "ENTRYPOINT", "VOLUME", "USER", "WORKDIR", "ARG", "ONBUILD",
    "STOPSIGNAL", "HEALTHCHECK", "SHELL", "MAINTAINER",
}

PORT_LISTENING_IMAGES = ["nginx", "node", "apache", "httpd", "python", "flask", "express", "rails"]


@dataclass(frozen=True)
class DockerfileLine:
    line_number: int
    raw: str
    instruction: str
    rest: str


def _split_instruction(line_number: int, text: str) -> DockerfileLine:
    parts = text.split(None, 1)
    instruction = parts[0].upper() if parts else ""
    rest = parts[1].strip() if len(parts) > 1 else ""
    return DockerfileLine(line_number, text, instruction, rest)


def parse_dockerfile_lines(content: str) -> List[DockerfileLine]:
    result: List[DockerfileLine] = []
    continued = ""
    continued_start = 0

    for line_number, line in enumerate(content.split("\n"), start=1):
        line = line.rstrip("\r")
        trimmed = line.strip()
        if trimmed == "" or trimmed.startswith("#"):
            continue

        ends_with_slash = trimmed.endswith("\\")
        piece = trimmed[:-1].strip() if ends_with_slash else trimmed

        if continued:
            continued = f"{continued} {piece}"
        else:
            continued = piece
            continued_start = line_number

        if not ends_with_slash:
            result.append(_split_instruction(continued_start, continued))
            continued = ""

    if continued:
        # file ended on a dangling continuation
        result.append(_split_instruction(continued_start, continued))
    return result


def is_json_string_array(value: str) -> bool:
    try:
        parsed = json.loads(value.strip())
    except (ValueError, RecursionError):
        return False
    return isinstance(parsed, list) and all(isinstance(v, str) for v in parsed)


def _is_exec_form(rest: str) -> bool:
    return rest.strip().startswith("[")


def _from_image(rest: str) -> str:
    """Image reference of a FROM line, skipping --platform style options."""
    for token in rest.split():
        if not token.startswith("--"):
            return token
    return ""


def check_from_presence(lines: List[DockerfileLine]) -> List[Diagnostic]:
    if not any(l.instruction == "FROM" for l in lines):
        return [Diagnostic.at(
            "DF-E-001", "error", lines[0].line_number,
            "Dockerfile must begin with a FROM instruction",
            "Every Dockerfile must start with FROM to set the base image. Without it Docker cannot construct a build context.",
            "Add `FROM <image>` as the first instruction.",
        )]

    first_non_arg = next((l for l in lines if l.instruction != "ARG"), None)
    if first_non_arg is None or first_non_arg.instruction == "FROM":
        return []
    return [Diagnostic.at(
        "DF-E-002", "error", first_non_arg.line_number,
        "FROM must be the first non-ARG instruction",
        "ARG is the only instruction allowed before FROM. All others (RUN, COPY, LABEL, etc.) must come after the base image is declared.",
        "Move the FROM instruction above all non-ARG instructions.",
    )]


def check_unknown_instruction(line: DockerfileLine) -> Optional[Diagnostic]:
    if line.instruction in KNOWN_INSTRUCTIONS:
        return None
    close = difflib.get_close_matches(line.instruction, sorted(KNOWN_INSTRUCTIONS), n=3, cutoff=0.6)
    suggestion = ", ".join(close) if close else "COPY, FROM, RUN"
    return Diagnostic.at(
        "DF-E-003", "error", line.line_number,
        f"Unknown instruction: {line.instruction}",
        f"'{line.instruction}' is not a valid Dockerfile instruction. Check for typos such as COPPY, FRROM or RRUN.",
        f"Did you mean one of: {suggestion}?",
    )


def check_copy_add_args(line: DockerfileLine) -> Optional[Diagnostic]:
    if _is_exec_form(line.rest) and is_json_string_array(line.rest):
        if len(json.loads(line.rest)) >= 2:
            return None
    elif len([t for t in line.rest.split() if not t.startswith("--")]) >= 2:
        return None
    return Diagnostic.at(
        "DF-E-004", "error", line.line_number,
        f"{line.instruction} requires at least two arguments: <src> <dest>",
        f"{line.instruction} needs a source path and a destination path. A single argument is ambiguous and will fail at build time.",
        "Example: `COPY . /app`",
    )


def check_exec_form(line: DockerfileLine) -> Optional[Diagnostic]:
    if not _is_exec_form(line.rest) or is_json_string_array(line.rest):
        return None
    return Diagnostic.at(
        "DF-E-005", "error", line.line_number,
        "Invalid exec form: must be a proper JSON array",
        f'{line.instruction} exec form must be a valid JSON array of strings, e.g. ["npm","start"]. Single quotes or a missing comma break the JSON parse.',
        'Use either shell form or exec form `["executable","param"]`.',
    )


def check_env_format(line: DockerfileLine) -> Optional[Diagnostic]:
    if "=" in line.rest:
        return None
    return Diagnostic.at(
        "DF-E-006", "error", line.line_number,
        "ENV instruction requires KEY=VALUE format",
        "The modern ENV syntax requires `KEY=VALUE`. The legacy `ENV KEY VALUE` form only allows setting one variable and is deprecated.",
        f"Change to `ENV {line.rest.split()[0] if line.rest else 'KEY'}=<value>`",
    )


def check_expose_port(line: DockerfileLine) -> Optional[Diagnostic]:
    tokens = line.rest.split() or [""]
    for token in tokens:
        port = token.split("/")[0].strip()
        if re.fullmatch(r"[0-9]+", port):
            continue
        return Diagnostic.at(
            "DF-E-007", "error", line.line_number,
            "EXPOSE argument must be a valid port number",
            f"'{port}' is not a valid port number. EXPOSE accepts integers in the range 1-65535, optionally followed by /tcp or /udp.",
            "Example: `EXPOSE 8080` or `EXPOSE 80/tcp`",
        )
    return None


def check_workdir_path(line: DockerfileLine) -> Optional[Diagnostic]:
    if ".." not in line.rest.split("/"):
        return None
    return Diagnostic.at(
        "DF-E-008", "error", line.line_number,
        "WORKDIR must be an absolute path or a valid relative path within the image",
        "A WORKDIR path containing `..` could escape the intended directory boundary. Use an absolute path like `/app` for clarity.",
        "Change to an absolute path, e.g. `WORKDIR /app`",
    )


def check_from_tag(line: DockerfileLine, stage_names: Set[str]) -> Optional[Diagnostic]:
    image = _from_image(line.rest)
    if not image or image == "scratch" or image.lower() in stage_names or image.startswith("$"):
        return None
    repository, tag = parse_repository_tag(image)
    if tag and tag != "latest":
        return None
    return Diagnostic.at(
        "DF-W-001", "warning", line.line_number,
        "Avoid using :latest; pin a specific version for reproducibility",
        "The :latest tag resolves to whatever the registry considers current at build time. Pinning (e.g. `node:18.20-alpine`) guarantees identical builds across machines and time.",
        f"Pin a version: `FROM {repository}:18-alpine`",
    )


def check_run_count(run_line_numbers: List[int]) -> Optional[Diagnostic]:
    if len(run_line_numbers) < 3:
        return None
    return Diagnostic.at(
        "DF-W-002", "warning", run_line_numbers[-1],
        "Consider combining RUN instructions with && to reduce image layers",
        "Each RUN instruction creates a new image layer. Combining them with && keeps the image smaller and the layer count lower.",
        "Merge: `RUN apt-get update && apt-get install ...`",
    )


def check_add_over_copy(line: DockerfileLine) -> Optional[Diagnostic]:
    if line.rest.startswith(("http://", "https://")) or re.search(r"\.tar(\.|\s|$)", line.rest):
        return None
    return Diagnostic.at(
        "DF-W-003", "warning", line.line_number,
        "Prefer COPY over ADD for local file copies; ADD has implicit tar extraction behavior",
        "ADD automatically extracts tar archives and can fetch remote URLs, which makes builds less predictable. COPY is explicit and safer for local files.",
        f"Replace `ADD {line.rest}` with `COPY {line.rest}`",
    )


def check_apt_get_clean(line: DockerfileLine) -> Optional[Diagnostic]:
    if "apt-get install" not in line.rest:
        return None
    if "--no-install-recommends" in line.rest or "apt-get clean" in line.rest or "rm -rf /var/lib/apt/lists" in line.rest:
        return None
    return Diagnostic.at(
        "DF-W-005", "warning", line.line_number,
        "Consider --no-install-recommends and cleaning apt cache to reduce layer size",
        "Without --no-install-recommends, apt installs suggested packages bloating the layer. Without apt-get clean the package cache remains in the image.",
        "Append `--no-install-recommends && rm -rf /var/lib/apt/lists/*`",
    )


def check_cmd_entrypoint_shell_form(cmd: Optional[DockerfileLine],
                                    entrypoint: Optional[DockerfileLine]) -> Optional[Diagnostic]:
    if cmd is None or entrypoint is None:
        return None
    if _is_exec_form(cmd.rest) or _is_exec_form(entrypoint.rest):
        return None
    return Diagnostic.at(
        "DF-W-006", "warning", max(cmd.line_number, entrypoint.line_number),
        "When combining CMD and ENTRYPOINT, prefer exec form (JSON array) for both",
        "When both CMD and ENTRYPOINT are in shell form, CMD arguments are not passed to ENTRYPOINT as expected. Exec form ensures proper signal propagation and argument passing.",
        'Use exec form: `ENTRYPOINT ["executable"]` and `CMD ["param"]`',
    )


def check_missing_expose(has_expose: bool, last_cmd: Optional[DockerfileLine]) -> Optional[Diagnostic]:
    if has_expose or last_cmd is None:
        return None
    text = last_cmd.rest.lower()
    if not any(img in text for img in PORT_LISTENING_IMAGES):
        return None
    return Diagnostic.at(
        "DF-W-007", "warning", last_cmd.line_number,
        "Consider adding EXPOSE to document the port your service listens on",
        "EXPOSE is a documentation hint telling consumers which port the service binds. It does not publish the port but makes the Dockerfile self-describing.",
        "Add `EXPOSE 80` (or the appropriate port) before CMD.",
    )


def validate_dockerfile(content: str) -> List[Diagnostic]:
    """Lint Dockerfile content. Never raises; empty content yields no findings."""
    lines = parse_dockerfile_lines(content)
    if not lines:
        return []

    diagnostics = check_from_presence(lines)
    if diagnostics and diagnostics[0].rule_id == "DF-E-001":
        return diagnostics

    last_cmd: Optional[DockerfileLine] = None
    last_entrypoint: Optional[DockerfileLine] = None
    has_expose = False
    run_line_numbers: List[int] = []
    stage_names: Set[str] = set()

    for line in lines:
        unknown = check_unknown_instruction(line)
        if unknown:
            diagnostics.append(unknown)
            continue

        found: List[Optional[Diagnostic]] = []
        if line.instruction in ("COPY", "ADD"):
            found.append(check_copy_add_args(line))
            if line.instruction == "ADD":
                found.append(check_add_over_copy(line))
        elif line.instruction == "CMD":
            last_cmd = line
            found.append(check_exec_form(line))
        elif line.instruction == "ENTRYPOINT":
            last_entrypoint = line
            found.append(check_exec_form(line))
        elif line.instruction == "ENV":
            found.append(check_env_format(line))
        elif line.instruction == "EXPOSE":
            has_expose = True
            found.append(check_expose_port(line))
        elif line.instruction == "WORKDIR":
            found.append(check_workdir_path(line))
        elif line.instruction == "FROM":
            found.append(check_from_tag(line, stage_names))
            m = re.search(r"\s+as\s+(\S+)\s*$", line.rest, re.IGNORECASE)
            if m:
                stage_names.add(m.group(1).lower())
        elif line.instruction == "RUN":
            run_line_numbers.append(line.line_number)
            found.append(check_apt_get_clean(line))

        diagnostics.extend(d for d in found if d is not None)

    for d in (
        check_run_count(run_line_numbers),
        check_cmd_entrypoint_shell_form(last_cmd, last_entrypoint),
        check_missing_expose(has_expose, last_cmd),
    ):
        if d is not None:
            diagnostics.append(d)

    return diagnostics
