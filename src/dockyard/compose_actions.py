"""
Compose commands: up, down, ps, logs.

compose up runs in phases, each of which may abort before any mutation:
  1. validate the compose file (errors -> COMPOSE_FAILED)
  2. read service definitions from the YAML tree
  3. check every service's image exists locally (all-or-nothing)
  4. order services by depends_on (cycle -> abort)
Only then are containers created, one service at a time. A port or name
conflict fails that service alone; its siblings still start, and the stack
record is always written.
"""

import re
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .compose_file import build_context, dependency_names, environment_entries, validate_compose
from .config import EngineConfig
from .container_actions import release_ports
from .exec_actions import parse_tail, tail_lines
from .model import (CommandResult, ComposeStack, ContainerRecord, EngineContext, EngineEvent,
                    ImageRecord, ParsedCommand, PortMapping)
from .utils import IdGenerator, create_event, image_label, image_ref_key, pad_end, resolve_image
from .validation import split_by_severity
from .yaml_reader import as_array, as_doc, as_string, parse_yaml

logger = logging.getLogger(__name__)

COMPOSE_PORT_RE = re.compile(r'^(?:.*:)?(\d+):(\d+)(?:/(tcp|udp))?$')


@dataclass
class ServiceDef:
    """What compose up needs from one service block."""
    name: str
    image: Optional[str] = None
    build: Optional[str] = None  # context path when `build` is present
    ports: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)


def parse_services(content: str) -> Optional[Dict[str, ServiceDef]]:
    """Service definitions in file order, or None when the file is unreadable."""
    doc, error = parse_yaml(content)
    if error is not None or doc is None:
        return None
    services_raw = as_doc(doc.get("services"))
    if services_raw is None:
        return None

    services: Dict[str, ServiceDef] = {}
    for name, raw in services_raw.items():
        svc = as_doc(raw)
        if svc is None:
            continue
        ports = [p for p in (as_string(p) for p in as_array(svc.get("ports")) or []) if p is not None]
        services[name] = ServiceDef(
            name=name,
            image=as_string(svc.get("image")) or None,
            build=(build_context(svc) or ".") if "build" in svc else None,
            ports=ports,
            environment=environment_entries(svc.get("environment")),
            depends_on=dependency_names(svc),
        )
    return services


def topo_sort(services: Dict[str, ServiceDef]) -> Optional[List[str]]:
    """Dependency-first order; None on a cycle. Unknown dependencies are ignored."""
    visited = set()
    visiting = set()
    order: List[str] = []

    def visit(name: str) -> bool:
        if name in visiting:
            return False
        if name in visited:
            return True
        visiting.add(name)
        for dep in services[name].depends_on:
            if dep in services and not visit(dep):
                return False
        visiting.discard(name)
        visited.add(name)
        order.append(name)
        return True

    for name in services:
        if not visit(name):
            return None
    return order


def parse_port(spec: str) -> Optional[PortMapping]:
    """`[ip:]host:container[/proto]`; bare container ports publish nothing."""
    m = COMPOSE_PORT_RE.match(spec.strip())
    if m is None:
        return None
    return PortMapping(host_port=int(m.group(1)), container_port=int(m.group(2)), protocol=m.group(3) or "tcp")


def resolve_service_image(state: EngineContext, svc: ServiceDef,
                          default_tag: str = "latest") -> Tuple[str, Optional[ImageRecord]]:
    if svc.image:
        return image_ref_key(svc.image, default_tag), resolve_image(state, svc.image, default_tag)
    return f"{svc.name}:{default_tag}", resolve_image(state, svc.name, default_tag)


def service_logs(service: str, image_key: str, ids: IdGenerator) -> List[str]:
    base = image_key.rsplit(":", 1)[0].lower()
    if base == "postgres" or any(s in base for s in ("db", "mysql", "mongo")):
        return [
            f"{service}  | LOG:  database system was shut down at {ids.now()}",
            f"{service}  | LOG:  database system is ready to accept connections",
        ]
    if "redis" in base:
        return [f"{service}  | * Ready to accept connections"]
    if base == "nginx" or "web" in base or "app" in base:
        return [f"{service}  | /docker-entrypoint.sh: Configuration complete; ready for start up"]
    return [f"{service}  | service started"]


def _missing_image_line(svc: ServiceDef) -> str:
    if svc.image:
        return f"  Service '{svc.name}': image '{svc.image}' not found locally. Run 'docker pull {svc.image}' first."
    return (f"  Service '{svc.name}': no built image found for build context '{svc.build}'. "
            f"Run 'docker build -t {svc.name} {svc.build}' first.")


def handle_compose_up(state: EngineContext, cmd: ParsedCommand, ids: IdGenerator,
                      compose_content: Optional[str] = None,
                      workspace_paths: Optional[List[str]] = None,
                      settings: Optional[EngineConfig] = None) -> CommandResult:
    settings = settings or EngineConfig()
    detached = cmd.has_flag("d", "detach")

    if not compose_content:
        return CommandResult.message("validating compose file: no compose.yml found in workspace")

    output: List[str] = []
    errors, warnings = split_by_severity(validate_compose(compose_content, workspace_paths))
    output.extend(f"WARNING: [{w.rule_id}] {w.message}" for w in warnings)
    if warnings:
        output.append("")
    if errors:
        output.append("validating compose file: compose validation failed.")
        output.extend(f"  Error [{e.rule_id}]: {e.message}" for e in errors)
        logger.info(f"compose up rejected with {len(errors)} error(s)")
        return CommandResult(
            events=[create_event(ids, "COMPOSE_FAILED", {"errors": [e.to_dict() for e in errors]},
                                 "Compose validation failed")],
            output=output,
        )

    services = parse_services(compose_content)
    if not services:
        return CommandResult.message(*output, "validating compose file: no services defined")

    images: Dict[str, Tuple[str, ImageRecord]] = {}
    missing: List[str] = []
    for svc in services.values():
        key, image = resolve_service_image(state, svc, settings.default_tag)
        if image is None:
            missing.append(_missing_image_line(svc))
        else:
            images[svc.name] = (key, image)
    if missing:
        return CommandResult.message(*output, "validating compose file: compose validation failed.", *missing)

    ordered = topo_sort(services)
    if ordered is None:
        return CommandResult.message(*output, "error: circular dependency detected in depends_on")

    containers = dict(state.containers)
    bound_ports = dict(state.bound_ports)
    stacks = dict(state.compose_stacks)
    existing = stacks.get(settings.stack_name)
    stack_ids: Dict[str, str] = dict(existing.container_ids) if existing else {}
    events: List[EngineEvent] = []
    lines: List[str] = []
    running = 0

    for name in ordered:
        svc = services[name]
        key, image = images[name]

        previous = containers.get(stack_ids.get(name, ""))
        if previous is not None and previous.is_running:
            lines.append(f" ✔ Container {name}  Running")
            running += 1
            continue

        conflict = _service_conflict(svc, containers, bound_ports, previous)
        if conflict is not None:
            lines.append(f" ✗ Container {name}  Error")
            lines.append(f"Error: {conflict}")
            continue

        recreated = previous is not None and previous.is_active
        if recreated:
            release_ports(bound_ports, previous)
            containers[previous.id] = replace(previous, status="removed")

        mappings = [pm for pm in (parse_port(p) for p in svc.ports) if pm is not None]
        container_id = ids.fake_id()
        now = ids.now()
        for pm in mappings:
            bound_ports[str(pm.host_port)] = container_id
        containers[container_id] = ContainerRecord(
            id=container_id,
            name=name,
            image_id=image.id,
            status="running",
            ports=mappings,
            env=dict(svc.environment),
            created_at=now,
            started_at=now,
            stopped_at=None,
            logs=service_logs(name, key, ids),
        )
        stack_ids[name] = container_id
        running += 1
        events.append(create_event(ids, "COMPOSE_SERVICE_STARTED",
                                   {"service": name, "container_id": container_id, "image_key": key},
                                   f"Compose service '{name}' started (image: {key})"))
        lines.append(f" ✔ Container {name}  {'Recreated' if recreated else 'Created'}")
        if detached:
            lines.append(f" ✔ Container {name}  Started")

    output.append(f"[+] Running {running}/{len(ordered)}")
    output.extend(lines)
    if not detached:
        attached = [n for n in ordered if n in stack_ids and containers[stack_ids[n]].is_running]
        output.append("")
        output.append(f"Attaching to {', '.join(attached)}")
        for n in attached:
            output.extend(containers[stack_ids[n]].logs)

    stacks[settings.stack_name] = ComposeStack(
        name=settings.stack_name,
        service_names=list(ordered),
        container_ids=stack_ids,
    )
    logger.debug(f"compose up: {len(events)} service(s) started, order={ordered}")
    return CommandResult(
        state_delta={"containers": containers, "bound_ports": bound_ports, "compose_stacks": stacks},
        events=events,
        output=output,
    )


def _service_conflict(svc: ServiceDef, containers: Dict[str, ContainerRecord],
                      bound_ports: Dict[str, str], previous: Optional[ContainerRecord]) -> Optional[str]:
    """Reason this service cannot start right now, or None."""
    for c in containers.values():
        if c.is_active and c.name == svc.name and (previous is None or c.id != previous.id):
            return (f'Conflict. The container name "/{svc.name}" is already in use by container {c.id}. '
                    f"You have to remove (or rename) that container to be able to reuse that name.")
    seen = set()
    for spec in svc.ports:
        pm = parse_port(spec)
        if pm is None:
            continue
        host = str(pm.host_port)
        owner = bound_ports.get(host)
        if host in seen or (owner is not None and (previous is None or owner != previous.id)):
            return f"Bind for 0.0.0.0:{pm.host_port} failed: port is already allocated"
        seen.add(host)
    return None


def handle_compose_down(state: EngineContext, cmd: Optional[ParsedCommand], ids: IdGenerator,
                        settings: Optional[EngineConfig] = None) -> CommandResult:
    settings = settings or EngineConfig()
    stack = state.compose_stacks.get(settings.stack_name)
    if stack is None:
        return CommandResult.message("no compose stack running")

    ordered_ids = [stack.container_ids[s] for s in stack.service_names if s in stack.container_ids]
    ordered_ids += [cid for cid in stack.container_ids.values() if cid not in ordered_ids]

    containers = dict(state.containers)
    bound_ports = dict(state.bound_ports)
    events: List[EngineEvent] = []
    output: List[str] = []

    for cid in reversed(ordered_ids):
        c = containers.get(cid)
        if c is None or not c.is_active:
            continue
        release_ports(bound_ports, c)
        containers[cid] = replace(c, status="removed", stopped_at=ids.now() if c.is_running else c.stopped_at)
        service = stack.service_for(cid) or c.name
        events.append(create_event(ids, "COMPOSE_SERVICE_STOPPED", {"service": service, "container_id": cid},
                                   f"Compose service '{service}' stopped and removed"))
        output.append(f" Container {c.name}  Stopped")
        output.append(f" Container {c.name}  Removed")

    stacks = {k: v for k, v in state.compose_stacks.items() if k != settings.stack_name}
    if not output:
        output.append("no compose stack running")
    return CommandResult(
        state_delta={"containers": containers, "bound_ports": bound_ports, "compose_stacks": stacks},
        events=events,
        output=output,
    )


def _managed_containers(state: EngineContext, settings: EngineConfig) -> Tuple[Optional[ComposeStack], List[ContainerRecord]]:
    stack = state.compose_stacks.get(settings.stack_name)
    if stack is None:
        return None, state.active_containers()
    tracked = set(stack.container_ids.values())
    return stack, [c for c in state.active_containers() if c.id in tracked]


def handle_compose_ps(state: EngineContext, cmd: Optional[ParsedCommand] = None,
                      settings: Optional[EngineConfig] = None) -> CommandResult:
    stack, managed = _managed_containers(state, settings or EngineConfig())
    if not managed:
        return CommandResult.message("no compose services running")

    header = pad_end("NAME", 22) + pad_end("IMAGE", 20) + pad_end("SERVICE", 16) + pad_end("STATUS", 12) + "PORTS"
    rows = []
    for c in managed:
        service = (stack.service_for(c.id) if stack else None) or c.name
        rows.append(
            pad_end(c.name, 22)
            + pad_end(image_label(state, c.image_id)[:18], 20)
            + pad_end(service, 16)
            + pad_end("Up" if c.is_running else c.status, 12)
            + ", ".join(pm.describe() for pm in c.ports)
        )
    return CommandResult.message(header, *rows)


def handle_compose_logs(state: EngineContext, cmd: ParsedCommand,
                        settings: Optional[EngineConfig] = None) -> CommandResult:
    stack, managed = _managed_containers(state, settings or EngineConfig())
    if not managed:
        return CommandResult.message("no compose services running")

    tail = parse_tail(cmd.flag_value("tail", "n"))
    wanted = set(cmd.args)
    output: List[str] = []
    for c in managed:
        service = (stack.service_for(c.id) if stack else None) or c.name
        if wanted and service not in wanted:
            continue
        logs = c.logs or [f"{service}  | (no log output)"]
        for line in tail_lines(logs, tail):
            output.append(line if "  | " in line else f"{service}  | {line}")
    if cmd.has_flag("f", "follow"):
        output.insert(0, "(Following compose logs. Press Ctrl+C to stop)")
    return CommandResult(output=output)
