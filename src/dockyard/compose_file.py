"""
compose.yml linting on top of the minimal YAML reader.

Structural errors stop validation early:
  - DC-YAML  the content could not be read
  - DC-E-001 no top-level `services`

Everything else is collected per service and concatenated:
  - DC-E-002 neither `image` nor `build`
  - DC-E-003 ports entry is not a string/number
  - DC-E-004 ports mapping with non-numeric host/container part
  - DC-E-005 build context missing from the workspace
  - DC-E-006 depends_on references an unknown service
  - DC-E-007 named volume not declared under top-level `volumes`
  - DC-E-008 network not declared under top-level `networks`
  - DC-W-001 image on :latest or without a tag
  - DC-W-002 no restart policy
  - DC-W-003 database image without a healthcheck
  - DC-W-004 environment mixes list and map syntax
  - DC-W-005 plain-text secret in environment
"""

import re
from typing import Any, Dict, List, Optional

from docker.utils import parse_repository_tag

from .model import Diagnostic
from .yaml_reader import YamlDoc, as_array, as_doc, as_string, parse_yaml

SECRET_PATTERN = re.compile(r"password|secret|passwd|token|api_key|private_key", re.IGNORECASE)
DB_IMAGE_PATTERN = re.compile(r"postgres|mysql|mariadb|mongo", re.IGNORECASE)
PORT_PART_RE = re.compile(r"^\d+(-\d+)?$")


def normalize_path(path: str) -> str:
    path = path.strip()
    while path.startswith("./"):
        path = path[2:]
    return path.rstrip("/") or "."


class _ServiceContext:
    """Everything one service's rules look at."""

    def __init__(self, name: str, svc: YamlDoc, line: int, service_names: List[str],
                 top_volumes: YamlDoc, top_networks: YamlDoc, workspace_paths: List[str],
                 lines: List[str]) -> None:
        self.name = name
        self.svc = svc
        self.line = line
        self.service_names = service_names
        self.top_volumes = top_volumes
        self.top_networks = top_networks
        self.workspace_paths = {normalize_path(p) for p in workspace_paths}
        self.lines = lines

    def key_line(self, key: str) -> int:
        """Line of `key:` inside this service block, falling back to the service line."""
        pattern = re.compile(rf"^\s+{re.escape(key)}\s*:")
        base_indent = _indent_of(self.lines[self.line - 1]) if 0 < self.line <= len(self.lines) else 0
        for idx in range(self.line, len(self.lines)):
            text = self.lines[idx]
            if text.strip() and not text.strip().startswith("#") and _indent_of(text) <= base_indent:
                break
            if pattern.match(text):
                return idx + 1
        return self.line


def _indent_of(text: str) -> int:
    return len(text) - len(text.lstrip(" "))


def _service_lines(lines: List[str], names: List[str]) -> Dict[str, int]:
    """1-based line of each service header under `services:`."""
    found: Dict[str, int] = {}
    start = next((i for i, l in enumerate(lines) if re.match(r"^services\s*:", l)), None)
    if start is None:
        return found
    for idx in range(start + 1, len(lines)):
        text = lines[idx]
        if text.strip() and _indent_of(text) == 0 and not text.startswith("#"):
            break
        m = re.match(r"^\s+[\"']?([^\s:\"']+)[\"']?\s*:", text)
        if m and m.group(1) in names and m.group(1) not in found:
            found[m.group(1)] = idx + 1
    return found


def check_services_key(doc: YamlDoc) -> List[Diagnostic]:
    if doc.get("services") not in (None, "", False):
        return []
    return [Diagnostic.at(
        "DC-E-001", "error", 1,
        "compose.yml must define a top-level 'services' key",
        "Docker Compose files must have a top-level `services` map listing the containers to run. Without it compose up has nothing to start.",
        "Add `services:` at the top level with at least one service underneath.",
    )]


def check_image_or_build(ctx: _ServiceContext) -> Optional[Diagnostic]:
    if "image" in ctx.svc or "build" in ctx.svc:
        return None
    return Diagnostic.at(
        "DC-E-002", "error", ctx.line,
        f"Service '{ctx.name}': must specify either 'image' or 'build'",
        "Every service needs to know what container to run. Use `image` to reference a pre-built image, or `build` to build from a Dockerfile.",
        f"Add `image: nginx:stable` or `build: .` under service '{ctx.name}'.",
    )


def build_context(svc: YamlDoc) -> Optional[str]:
    value = svc.get("build")
    path = as_string(value)
    if path is None:
        build_doc = as_doc(value)
        path = as_string(build_doc.get("context")) if build_doc else None
    return path


def check_build_context(ctx: _ServiceContext) -> Optional[Diagnostic]:
    if "build" not in ctx.svc:
        return None
    path = build_context(ctx.svc)
    if not path or normalize_path(path) == "." or normalize_path(path) in ctx.workspace_paths:
        return None
    return Diagnostic.at(
        "DC-E-005", "error", ctx.key_line("build"),
        f"Service '{ctx.name}': build context '{path}' does not exist in workspace",
        f"The build context path '{path}' was not found among workspace files. Compose cannot locate the Dockerfile.",
        f"Create the directory '{path}' or correct the path.",
    )


def check_ports(ctx: _ServiceContext) -> List[Diagnostic]:
    ports = as_array(ctx.svc.get("ports"))
    if not ports:
        return []
    line = ctx.key_line("ports")
    diagnostics = []
    for entry in ports:
        raw = as_string(entry)
        if raw is None:
            diagnostics.append(Diagnostic.at(
                "DC-E-003", "error", line,
                f"Service '{ctx.name}': ports entries must be strings in 'host:container' format",
                "Each ports entry must be a string like \"8080:80\" or a bare number. Objects and other types are not valid in this position.",
                'Use string format: "8080:80"',
            ))
            continue
        if ":" not in raw:
            continue
        parts = re.sub(r"/(tcp|udp)$", "", raw).split(":")
        host, container = parts[-2], parts[-1]
        if not (PORT_PART_RE.match(host) and PORT_PART_RE.match(container)):
            diagnostics.append(Diagnostic.at(
                "DC-E-004", "error", line,
                f"Service '{ctx.name}': invalid port mapping '{raw}'",
                "Both the host and container port in a port mapping must be numeric. Non-numeric values cause compose up to fail.",
                'Correct the mapping to use integers, e.g. "8080:80".',
            ))
    return diagnostics


def dependency_names(svc: YamlDoc) -> List[str]:
    value = svc.get("depends_on")
    if isinstance(value, list):
        return [s for s in (as_string(d) for d in value) if s]
    deps = as_doc(value)
    return list(deps.keys()) if deps else []


def check_depends_on(ctx: _ServiceContext) -> List[Diagnostic]:
    line = ctx.key_line("depends_on")
    return [
        Diagnostic.at(
            "DC-E-006", "error", line,
            f"Service '{ctx.name}': depends_on references unknown service '{dep}'",
            f"'{dep}' is listed in depends_on but is not defined in the services map. Compose will refuse to start.",
            f"Add service '{dep}' to the services map or remove the dependency.",
        )
        for dep in dependency_names(ctx.svc)
        if dep not in ctx.service_names
    ]


def check_volume_mounts(ctx: _ServiceContext) -> List[Diagnostic]:
    volumes = as_array(ctx.svc.get("volumes"))
    if not volumes:
        return []
    line = ctx.key_line("volumes")
    diagnostics = []
    for entry in volumes:
        text = as_string(entry)
        if text is None:
            continue
        source = text.split(":")[0]
        if source.startswith((".", "/", "~", "$")) or source in ctx.top_volumes:
            continue
        diagnostics.append(Diagnostic.at(
            "DC-E-007", "error", line,
            f"Volume '{source}' is used by service '{ctx.name}' but not declared under top-level 'volumes'",
            "Named volumes referenced in service volume mounts must be declared at the top-level 'volumes' key so Compose knows to create them.",
            f"Add `{source}:` under the top-level `volumes:` key.",
        ))
    return diagnostics


def check_networks(ctx: _ServiceContext) -> List[Diagnostic]:
    value = ctx.svc.get("networks")
    if isinstance(value, list):
        names = [str(n) for n in value if n is not None]
    elif isinstance(value, dict):
        names = list(value.keys())
    else:
        return []
    line = ctx.key_line("networks")
    return [
        Diagnostic.at(
            "DC-E-008", "error", line,
            f"Network '{name}' is used but not declared under top-level 'networks'",
            "Networks named in a service must be declared at the top-level 'networks' key. Otherwise Compose doesn't know how to create them.",
            f"Add `{name}:` under the top-level `networks:` key.",
        )
        for name in names
        if name != "default" and name not in ctx.top_networks
    ]


def check_image_tag(ctx: _ServiceContext) -> List[Diagnostic]:
    image = as_string(ctx.svc.get("image"))
    if not image:
        return []
    line = ctx.key_line("image")
    diagnostics = []
    repository, tag = parse_repository_tag(image)
    if not tag or tag == "latest":
        diagnostics.append(Diagnostic.at(
            "DC-W-001", "warning", line,
            f"Service '{ctx.name}': avoid image:latest; pin a version for reproducibility",
            "The :latest tag resolves to whatever is current at pull time. Pinning a version guarantees the same image across deployments.",
            f"Pin the image version, e.g. `image: {repository}:stable`",
        ))
    if DB_IMAGE_PATTERN.search(image) and not ctx.svc.get("healthcheck") and "healthcheck" not in ctx.svc:
        diagnostics.append(Diagnostic.at(
            "DC-W-003", "warning", line,
            f"Service '{ctx.name}': consider adding a healthcheck so dependent services wait for readiness",
            "Database services often take a moment to accept connections. A healthcheck lets depends_on: condition: service_healthy wait properly instead of racing.",
            "Add a `healthcheck:` block with a test command like `pg_isready`.",
        ))
    return diagnostics


def check_restart_policy(ctx: _ServiceContext) -> Optional[Diagnostic]:
    if ctx.svc.get("restart"):
        return None
    return Diagnostic.at(
        "DC-W-002", "warning", ctx.line,
        f"Service '{ctx.name}': consider adding a restart policy (e.g., unless-stopped)",
        "Without a restart policy the container stays stopped after a crash or reboot. `unless-stopped` is a safe default for long-running services.",
        f"Add `restart: unless-stopped` under service '{ctx.name}'.",
    )


def _environment_forms(ctx: _ServiceContext) -> set:
    """Which syntaxes ('list', 'map') appear directly under `environment:`."""
    forms = set()
    start = ctx.key_line("environment")
    if start == ctx.line or start > len(ctx.lines):
        return forms
    env_indent = _indent_of(ctx.lines[start - 1])
    child_indent = None
    for text in ctx.lines[start:]:
        stripped = text.strip()
        if not stripped or stripped.startswith("#"):
            continue
        indent = _indent_of(text)
        if indent < env_indent or (indent == env_indent and not stripped.startswith("- ")):
            break
        if child_indent is None:
            child_indent = indent
        if indent != child_indent:
            continue
        forms.add("list" if stripped.startswith("- ") else "map")
    return forms


def environment_entries(value: Any) -> Dict[str, str]:
    entries: Dict[str, str] = {}
    if isinstance(value, list):
        for item in value:
            text = as_string(item)
            if not text:
                continue
            key, _, val = text.partition("=")
            entries[key] = val
    elif isinstance(value, dict):
        for key, val in value.items():
            entries[key] = as_string(val) or ""
    return entries


def check_environment(ctx: _ServiceContext) -> List[Diagnostic]:
    value = ctx.svc.get("environment")
    if not value:
        return []
    line = ctx.key_line("environment")
    diagnostics = []

    if _environment_forms(ctx) == {"list", "map"}:
        diagnostics.append(Diagnostic.at(
            "DC-W-004", "warning", line,
            f"Service '{ctx.name}': mix of array and map environment syntax; prefer one form consistently",
            "Using both array and map forms for the same service's environment is confusing and may cause unexpected merge behavior.",
            "Standardise on either the map form (`KEY: value`) or list form (`- KEY=value`).",
        ))

    for key, val in environment_entries(value).items():
        if SECRET_PATTERN.search(key) and val:
            diagnostics.append(Diagnostic.at(
                "DC-W-005", "warning", line,
                f"Service '{ctx.name}': plain-text secret detected in environment; prefer Docker secrets or .env files",
                "Embedding passwords and tokens directly in compose.yml checks them into source control. Use a .env file or Docker secrets instead.",
                f"Move the value to a `.env` file and reference it as `${{{key}}}`.",
            ))
    return diagnostics


def validate_compose(content: str, workspace_paths: Optional[List[str]] = None) -> List[Diagnostic]:
    """Lint compose content. Never raises."""
    doc, error = parse_yaml(content)
    if error is not None:
        return [Diagnostic.at(
            "DC-YAML", "error", error.line,
            f"YAML parse error: {error.message}",
            "The compose file could not be parsed as valid YAML. Check for tabs in indentation, bad indentation, or duplicate keys.",
        )]

    missing = check_services_key(doc)
    if missing:
        return missing

    services = as_doc(doc.get("services"))
    if services is None:
        return []

    lines = content.split("\n")
    names = list(services.keys())
    service_lines = _service_lines(lines, names)
    top_volumes = as_doc(doc.get("volumes")) or {}
    top_networks = as_doc(doc.get("networks")) or {}
    diagnostics: List[Diagnostic] = []

    for name, raw in services.items():
        svc = as_doc(raw)
        ctx = _ServiceContext(name, svc or {}, service_lines.get(name, 1), names,
                              top_volumes, top_networks, workspace_paths or [], lines)
        if svc is None:
            diagnostics.append(check_image_or_build(ctx))
            continue

        for d in (check_image_or_build(ctx), check_build_context(ctx)):
            if d is not None:
                diagnostics.append(d)
        diagnostics.extend(check_ports(ctx))
        diagnostics.extend(check_depends_on(ctx))
        diagnostics.extend(check_volume_mounts(ctx))
        diagnostics.extend(check_networks(ctx))
        diagnostics.extend(check_image_tag(ctx))
        diagnostics.extend(check_environment(ctx))
        restart = check_restart_policy(ctx)
        if restart is not None:
            diagnostics.append(restart)

    return diagnostics
