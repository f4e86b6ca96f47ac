"""
Container lifecycle commands: run, ps, stop, start, rm.

`run` is all-or-nothing: any failed precondition (missing image, name
conflict, bad or taken port) returns output only, with no delta and no
events. The multi-target commands (stop/start/rm) evaluate each target on
its own; failures are reported inline and successes are still committed.
"""

import re
import logging
from dataclasses import replace
from typing import Dict, List, Optional

from .config import EngineConfig
from .model import CommandResult, ContainerRecord, EngineContext, EngineEvent, ParsedCommand, PortMapping
from .utils import IdGenerator, create_event, image_label, pad_end, resolve_container, resolve_image

logger = logging.getLogger(__name__)

PORT_SPEC_RE = re.compile(r'^(\d+):(\d+)(?:/(tcp|udp))?$')


def _invalid_port(spec: str) -> CommandResult:
    return CommandResult.message(f'docker: invalid port specification: "{spec}". See \'docker run --help\'.')


def parse_port_spec(spec: str) -> Optional[PortMapping]:
    """`8080:80[/udp]` -> PortMapping, or None when malformed or out of range."""
    m = PORT_SPEC_RE.match(spec)
    if m is None:
        return None
    host, container = int(m.group(1)), int(m.group(2))
    if not (0 < host < 65536 and 0 < container < 65536):
        return None
    return PortMapping(host_port=host, container_port=container, protocol=m.group(3) or "tcp")


def parse_env(entries: List[str]) -> Dict[str, str]:
    env: Dict[str, str] = {}
    for entry in entries:
        key, sep, value = entry.partition("=")
        if sep and key:
            env[key] = value
    return env


def release_ports(bound_ports: Dict[str, str], container: ContainerRecord) -> None:
    """Drop this container's claims from a working copy of the port index."""
    for pm in container.ports:
        if bound_ports.get(str(pm.host_port)) == container.id:
            del bound_ports[str(pm.host_port)]


def handle_run(state: EngineContext, cmd: ParsedCommand, ids: IdGenerator,
               settings: Optional[EngineConfig] = None) -> CommandResult:
    settings = settings or EngineConfig()
    if not cmd.args:
        return CommandResult.message("Usage: docker run [OPTIONS] IMAGE [COMMAND] [ARG...]")

    ref = cmd.args[0]
    image = resolve_image(state, ref, settings.default_tag)
    if image is None:
        return CommandResult.message(
            f"Unable to find image '{ref}' locally",
            f"docker: Error response from daemon: pull access denied for {ref}, repository does not exist "
            f"or may require 'docker login': denied: requested access to the resource is denied.",
            "See 'docker run --help'.",
            "",
            f"Explain: Image {ref} does not exist in the simulated registry. Try docker pull {ref}.",
        )

    name = cmd.flag_value("name") or f"agitated_{ids.fake_id()}"
    detached = cmd.has_flag("d", "detach")

    if any(c.name == name for c in state.active_containers()):
        return CommandResult.message(
            f'Error response from daemon: Conflict. The container name "/{name}" is already in use by container. '
            f"You have to remove (or rename) that container to be able to reuse that name.",
            "",
            f"Explain: Docker requires unique container names. Use --rm or docker rm {name} first.",
        )

    mappings: List[PortMapping] = []
    claimed = set(state.bound_ports)
    for spec in cmd.flag_values("p", "publish"):
        pm = parse_port_spec(spec)
        if pm is None:
            return _invalid_port(spec)
        if str(pm.host_port) in claimed:
            return CommandResult.message(
                f"Error: failed to create endpoint on network bridge: Bind for 0.0.0.0:{pm.host_port} "
                f"failed: port is already allocated.",
                "",
                f"Explain: Port {pm.host_port} is occupied by another running container.",
            )
        claimed.add(str(pm.host_port))
        mappings.append(pm)

    container_id = ids.fake_id()
    now = ids.now()
    container = ContainerRecord(
        id=container_id,
        name=name,
        image_id=image.id,
        status="running",
        ports=mappings,
        env=parse_env(cmd.flag_values("e", "env")),
        created_at=now,
        started_at=now,
        stopped_at=None,
        logs=[f"{name} - started"],
    )
    bound_ports = dict(state.bound_ports)
    for pm in mappings:
        bound_ports[str(pm.host_port)] = container_id

    events: List[EngineEvent] = []
    if mappings:
        summary = ", ".join(f"{pm.host_port}->{pm.container_port}" for pm in mappings)
        events.append(create_event(ids, "PORT_BOUND",
                                   {"ports": [pm.to_dict() for pm in mappings], "container_id": container_id},
                                   f"Bound ports {summary} for container {name}"))
    events.append(create_event(ids, "CONTAINER_CREATED", {"container": container.to_dict()},
                               f"Created container {name} ({container_id})"))
    events.append(create_event(ids, "CONTAINER_STARTED", {"container_id": container_id, "name": name},
                               f"Started container {name}"))
    logger.debug(f"run {image.key} -> {name} ({container_id}), {len(mappings)} port(s)")

    output = [container_id] if detached else [
        f"Attaching to {name}",
        f"{name}  | (simulated stdout from {image.repository}:{image.tag})",
    ]
    return CommandResult(
        state_delta={
            "containers": {**state.containers, container_id: container},
            "bound_ports": bound_ports,
        },
        events=events,
        output=output,
    )


def handle_ps(state: EngineContext, cmd: ParsedCommand) -> CommandResult:
    show_all = cmd.has_flag("a", "all")
    containers = [c for c in state.active_containers() if show_all or c.is_running]

    header = (
        pad_end("CONTAINER ID", 14)
        + pad_end("IMAGE", 20)
        + pad_end("COMMAND", 12)
        + pad_end("CREATED", 18)
        + pad_end("STATUS", 12)
        + pad_end("PORTS", 24)
        + "NAMES"
    )
    rows = []
    for c in containers:
        image = image_label(state, c.image_id)
        if image == c.image_id:
            image = image.replace("sha256:", "")[:12]
        ports = ", ".join(pm.describe() for pm in c.ports)
        rows.append(
            pad_end(c.id[:12], 14)
            + pad_end(image[:18], 20)
            + pad_end('"..."', 12)
            + pad_end(c.created_at[:16].replace("T", " "), 18)
            + pad_end(c.status, 12)
            + pad_end(ports[:22], 24)
            + c.name
        )
    return CommandResult.message(header, *rows)


def _multi_target_result(state: EngineContext, containers: Dict[str, ContainerRecord],
                         bound_ports: Dict[str, str], events: List[EngineEvent],
                         output: List[str]) -> CommandResult:
    delta = {}
    if containers != state.containers:
        delta["containers"] = containers
    if bound_ports != state.bound_ports:
        delta["bound_ports"] = bound_ports
    return CommandResult(state_delta=delta, events=events, output=output)


def handle_stop(state: EngineContext, cmd: ParsedCommand, ids: IdGenerator) -> CommandResult:
    if not cmd.args:
        return CommandResult.message("Usage: docker stop CONTAINER [CONTAINER...]")

    containers = dict(state.containers)
    bound_ports = dict(state.bound_ports)
    events: List[EngineEvent] = []
    output: List[str] = []

    for ref in cmd.args:
        found = resolve_container(state, ref)
        c = containers.get(found.id) if found else None
        if c is None:
            output.append(f"Error response from daemon: No such container: {ref}")
            continue
        if not c.is_running:
            output.append(f"Error response from daemon: container {c.name} is not running")
            output.append("Explain: The container is already stopped.")
            continue

        containers[c.id] = replace(c, status="stopped", stopped_at=ids.now())
        release_ports(bound_ports, c)
        events.append(create_event(ids, "CONTAINER_STOPPED", {"container_id": c.id, "name": c.name},
                                   f"Stopped container {c.name}"))
        if c.ports:
            events.append(create_event(ids, "PORT_RELEASED",
                                       {"ports": [pm.to_dict() for pm in c.ports], "container_id": c.id},
                                       f"Released ports for container {c.name}"))
        output.append(c.name)

    return _multi_target_result(state, containers, bound_ports, events, output)


def handle_start(state: EngineContext, cmd: ParsedCommand, ids: IdGenerator) -> CommandResult:
    if not cmd.args:
        return CommandResult.message("Usage: docker start CONTAINER [CONTAINER...]")

    containers = dict(state.containers)
    bound_ports = dict(state.bound_ports)
    events: List[EngineEvent] = []
    output: List[str] = []

    for ref in cmd.args:
        found = resolve_container(state, ref)
        c = containers.get(found.id) if found else None
        if c is None:
            output.append(f"Error response from daemon: No such container: {ref}")
            continue
        if c.is_running:
            output.append(c.name)
            continue

        taken = next((pm for pm in c.ports if bound_ports.get(str(pm.host_port), c.id) != c.id), None)
        if taken is not None:
            output.append(
                f"Error response from daemon: driver failed programming external connectivity on endpoint "
                f"{c.name}: Bind for 0.0.0.0:{taken.host_port} failed: port is already allocated."
            )
            output.append(f"Explain: Port {taken.host_port} is occupied by another running container.")
            continue

        for pm in c.ports:
            bound_ports[str(pm.host_port)] = c.id
        containers[c.id] = replace(c, status="running", started_at=ids.now(), stopped_at=None)
        events.append(create_event(ids, "CONTAINER_STARTED", {"container_id": c.id, "name": c.name},
                                   f"Started container {c.name}"))
        output.append(c.name)

    return _multi_target_result(state, containers, bound_ports, events, output)


def handle_rm(state: EngineContext, cmd: ParsedCommand, ids: IdGenerator) -> CommandResult:
    if not cmd.args:
        return CommandResult.message("Usage: docker rm [OPTIONS] CONTAINER [CONTAINER...]")

    force = cmd.has_flag("f", "force")
    containers = dict(state.containers)
    bound_ports = dict(state.bound_ports)
    events: List[EngineEvent] = []
    output: List[str] = []

    for ref in cmd.args:
        found = resolve_container(state, ref)
        c = containers.get(found.id) if found else None
        if c is None or not c.is_active:
            output.append(f"Error response from daemon: No such container: {ref}")
            continue
        if c.is_running and not force:
            output.append(
                f"Error response from daemon: You cannot remove a running container {c.id}. "
                f"Stop the container before attempting removal or force remove."
            )
            output.append("Explain: Stop the container first with docker stop, or use docker rm -f.")
            continue

        if c.is_running:
            release_ports(bound_ports, c)
            c = replace(c, stopped_at=ids.now())
        containers[c.id] = replace(c, status="removed")
        events.append(create_event(ids, "CONTAINER_REMOVED", {"container_id": c.id, "name": c.name},
                                   f"Removed container {c.name}"))
        output.append(c.name)

    return _multi_target_result(state, containers, bound_ports, events, output)
