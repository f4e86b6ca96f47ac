"""
Data models for the simulated engine state.

This module defines immutable dataclasses (frozen=True) that represent the
simulated Docker resources and the aggregate engine state. Used throughout
the app for:
  - Type safety and IDE autocomplete
  - Clear separation of data (models) from logic (parser/handlers/store)
  - Lossless serialization to plain dicts for session snapshots

Data Classes:
  - ImageRecord: pulled or built image (digest id, repository, tag, layers)
  - ContainerRecord: container lifecycle record (status, ports, env, logs)
  - PortMapping / VolumeMount: container attachments
  - NetworkRecord / VolumeRecord: declared resources
  - ComposeStack: services started together by `docker compose up`
  - EngineEvent: one entry of the append-only audit log
  - Diagnostic: one Dockerfile/compose validation finding
  - WorkspaceFile: editor file content handed to the engine
  - ParsedCommand: structured command produced by parser.py
  - EngineContext: complete engine state threaded through all handlers
  - CommandResult: state delta + events + output lines of one command

Key Rules:
  - Records are never mutated; transitions go through dataclasses.replace
  - EngineContext.merge() applies a delta shallowly per top-level key
  - from_dict() constructors validate untrusted input and raise ValueError
"""

from dataclasses import dataclass, field, fields, replace
from typing import List, Optional, Dict, Any, Tuple, Union

FlagValue = Union[str, bool, List[str]]

CONTAINER_STATUSES = ("created", "running", "stopped", "removed")
PORT_PROTOCOLS = ("tcp", "udp")
NETWORK_DRIVERS = ("bridge", "overlay", "host", "none")
WORKSPACE_LANGUAGES = ("dockerfile", "yaml", "javascript", "sh", "text")
SEVERITIES = ("error", "warning")

_MISSING = object()


def _field(data: Dict[str, Any], key: str, kind: Any, where: str, default: Any = _MISSING) -> Any:
    """Fetch and type-check one key of an untrusted mapping."""
    if not isinstance(data, dict):
        raise ValueError(f"{where}: expected a mapping, got {type(data).__name__}")
    if key not in data:
        if default is _MISSING:
            raise ValueError(f"{where}: missing field '{key}'")
        return default
    value = data[key]
    # bool is an int subclass; keep them apart
    if kind is int and isinstance(value, bool):
        raise ValueError(f"{where}: field '{key}' must be int")
    if not isinstance(value, kind):
        raise ValueError(f"{where}: field '{key}' has invalid type {type(value).__name__}")
    return value


def _choice(value: str, allowed: Tuple[str, ...], where: str) -> str:
    if value not in allowed:
        raise ValueError(f"{where}: '{value}' is not one of {', '.join(allowed)}")
    return value


def _str_list(data: Dict[str, Any], key: str, where: str) -> List[str]:
    items = _field(data, key, list, where, [])
    if not all(isinstance(i, str) for i in items):
        raise ValueError(f"{where}: field '{key}' must be a list of strings")
    return list(items)


def _str_map(data: Dict[str, Any], key: str, where: str) -> Dict[str, str]:
    items = _field(data, key, dict, where, {})
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in items.items()):
        raise ValueError(f"{where}: field '{key}' must map strings to strings")
    return dict(items)


@dataclass(frozen=True)
class ImageRecord:
    id: str
    repository: str
    tag: str
    size: int
    created_at: str
    layers: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        if self.tag.startswith("sha256:"):
            return f"{self.repository}@{self.tag}"
        return f"{self.repository}:{self.tag}"

    @property
    def short_id(self) -> str:
        return self.id.replace("sha256:", "")[:12]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repository": self.repository,
            "tag": self.tag,
            "size": self.size,
            "created_at": self.created_at,
            "layers": list(self.layers),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageRecord":
        where = "image"
        return cls(
            id=_field(data, "id", str, where),
            repository=_field(data, "repository", str, where),
            tag=_field(data, "tag", str, where),
            size=_field(data, "size", int, where),
            created_at=_field(data, "created_at", str, where),
            layers=_str_list(data, "layers", where),
        )


@dataclass(frozen=True)
class PortMapping:
    host_port: int
    container_port: int
    protocol: str = "tcp"

    def describe(self) -> str:
        return f"0.0.0.0:{self.host_port}->{self.container_port}/{self.protocol}"

    def to_dict(self) -> Dict[str, Any]:
        return {"host_port": self.host_port, "container_port": self.container_port, "protocol": self.protocol}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortMapping":
        where = "port"
        return cls(
            host_port=_field(data, "host_port", int, where),
            container_port=_field(data, "container_port", int, where),
            protocol=_choice(_field(data, "protocol", str, where, "tcp"), PORT_PROTOCOLS, where),
        )


@dataclass(frozen=True)
class VolumeMount:
    volume_id: str
    mount_path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"volume_id": self.volume_id, "mount_path": self.mount_path}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VolumeMount":
        return cls(
            volume_id=_field(data, "volume_id", str, "volume mount"),
            mount_path=_field(data, "mount_path", str, "volume mount"),
        )


@dataclass(frozen=True)
class ContainerRecord:
    id: str
    name: str
    image_id: str
    status: str = "created"  # created, running, stopped, removed
    ports: List[PortMapping] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    created_at: str = ""
    started_at: Optional[str] = None
    stopped_at: Optional[str] = None
    logs: List[str] = field(default_factory=list)
    network_ids: List[str] = field(default_factory=list)
    volume_mounts: List[VolumeMount] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status != "removed"

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "image_id": self.image_id,
            "status": self.status,
            "ports": [p.to_dict() for p in self.ports],
            "env": dict(self.env),
            "created_at": self.created_at,
            "started_at": self.started_at,
            "stopped_at": self.stopped_at,
            "logs": list(self.logs),
            "network_ids": list(self.network_ids),
            "volume_mounts": [m.to_dict() for m in self.volume_mounts],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContainerRecord":
        where = "container"
        started_at = _field(data, "started_at", (str, type(None)), where, None)
        stopped_at = _field(data, "stopped_at", (str, type(None)), where, None)
        return cls(
            id=_field(data, "id", str, where),
            name=_field(data, "name", str, where),
            image_id=_field(data, "image_id", str, where),
            status=_choice(_field(data, "status", str, where), CONTAINER_STATUSES, where),
            ports=[PortMapping.from_dict(p) for p in _field(data, "ports", list, where, [])],
            env=_str_map(data, "env", where),
            created_at=_field(data, "created_at", str, where, ""),
            started_at=started_at,
            stopped_at=stopped_at,
            logs=_str_list(data, "logs", where),
            network_ids=_str_list(data, "network_ids", where),
            volume_mounts=[VolumeMount.from_dict(m) for m in _field(data, "volume_mounts", list, where, [])],
        )


@dataclass(frozen=True)
class NetworkRecord:
    id: str
    name: str
    driver: str = "bridge"
    container_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "driver": self.driver, "container_ids": list(self.container_ids)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkRecord":
        where = "network"
        return cls(
            id=_field(data, "id", str, where),
            name=_field(data, "name", str, where),
            driver=_choice(_field(data, "driver", str, where, "bridge"), NETWORK_DRIVERS, where),
            container_ids=_str_list(data, "container_ids", where),
        )


@dataclass(frozen=True)
class VolumeRecord:
    id: str
    name: str
    mountpoint: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "mountpoint": self.mountpoint}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VolumeRecord":
        where = "volume"
        return cls(
            id=_field(data, "id", str, where),
            name=_field(data, "name", str, where),
            mountpoint=_field(data, "mountpoint", str, where),
        )


@dataclass(frozen=True)
class ComposeStack:
    name: str
    service_names: List[str] = field(default_factory=list)
    container_ids: Dict[str, str] = field(default_factory=dict)  # service -> container id

    def service_for(self, container_id: str) -> Optional[str]:
        for service, cid in self.container_ids.items():
            if cid == container_id:
                return service
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "service_names": list(self.service_names),
            "container_ids": dict(self.container_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComposeStack":
        where = "compose stack"
        return cls(
            name=_field(data, "name", str, where),
            service_names=_str_list(data, "service_names", where),
            container_ids=_str_map(data, "container_ids", where),
        )


@dataclass(frozen=True)
class EngineEvent:
    id: str
    type: str
    timestamp: str
    payload: Dict[str, Any] = field(default_factory=dict)
    human_summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "human_summary": self.human_summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineEvent":
        where = "event"
        return cls(
            id=_field(data, "id", str, where),
            type=_field(data, "type", str, where),
            timestamp=_field(data, "timestamp", str, where),
            payload=dict(_field(data, "payload", dict, where, {})),
            human_summary=_field(data, "human_summary", str, where, ""),
        )


@dataclass(frozen=True)
class Diagnostic:
    rule_id: str
    severity: str  # error, warning
    line: int
    col: int
    end_line: int
    end_col: int
    message: str
    explanation: str
    fix: Optional[str] = None

    @classmethod
    def at(cls, rule_id: str, severity: str, line: int, message: str,
           explanation: str, fix: Optional[str] = None) -> "Diagnostic":
        """Whole-line diagnostic (columns 1..999)."""
        return cls(rule_id, severity, line, 1, line, 999, message, explanation, fix)

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity,
            "line": self.line,
            "col": self.col,
            "end_line": self.end_line,
            "end_col": self.end_col,
            "message": self.message,
            "explanation": self.explanation,
            "fix": self.fix,
        }


@dataclass(frozen=True)
class WorkspaceFile:
    path: str
    content: str
    language: str = "text"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkspaceFile":
        where = "workspace file"
        return cls(
            path=_field(data, "path", str, where),
            content=_field(data, "content", str, where),
            language=_choice(_field(data, "language", str, where, "text"), WORKSPACE_LANGUAGES, where),
        )


@dataclass(frozen=True)
class ParsedCommand:
    raw: str
    command: str
    subcommand: Optional[str] = None
    args: List[str] = field(default_factory=list)
    flags: Dict[str, FlagValue] = field(default_factory=dict)

    def has_flag(self, *names: str) -> bool:
        """True when any of the names was given as a bare boolean flag."""
        return any(self.flags.get(n) is True for n in names)

    def flag_value(self, *names: str) -> Optional[str]:
        """First string value among names; the last one wins for repeated flags."""
        for n in names:
            value = self.flags.get(n)
            if isinstance(value, str):
                return value
            if isinstance(value, list) and value:
                return value[-1]
        return None

    def flag_values(self, *names: str) -> List[str]:
        values: List[str] = []
        for n in names:
            value = self.flags.get(n)
            if isinstance(value, str):
                values.append(value)
            elif isinstance(value, list):
                values.extend(value)
        return values

    def wants_help(self) -> bool:
        return self.has_flag("h", "help")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw": self.raw,
            "command": self.command,
            "subcommand": self.subcommand,
            "args": list(self.args),
            "flags": {k: (list(v) if isinstance(v, list) else v) for k, v in self.flags.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParsedCommand":
        where = "parsed command"
        flags = _field(data, "flags", dict, where, {})
        for key, value in flags.items():
            if not isinstance(key, str):
                raise ValueError(f"{where}: flag names must be strings")
            if isinstance(value, list):
                if not all(isinstance(v, str) for v in value):
                    raise ValueError(f"{where}: flag '{key}' list must hold strings")
            elif not isinstance(value, (str, bool)):
                raise ValueError(f"{where}: flag '{key}' has invalid type {type(value).__name__}")
        return cls(
            raw=_field(data, "raw", str, where),
            command=_field(data, "command", str, where),
            subcommand=_field(data, "subcommand", (str, type(None)), where, None),
            args=_str_list(data, "args", where),
            flags=dict(flags),
        )


def validate_parsed_command(data: Any) -> Tuple[Optional[ParsedCommand], Optional[str]]:
    """Non-throwing boundary check for command payloads coming from outside."""
    if isinstance(data, ParsedCommand):
        return data, None
    try:
        return ParsedCommand.from_dict(data), None
    except ValueError as e:
        return None, str(e)


@dataclass(frozen=True)
class EngineContext:
    images: Dict[str, ImageRecord] = field(default_factory=dict)  # "repository:tag" -> image
    containers: Dict[str, ContainerRecord] = field(default_factory=dict)
    networks: Dict[str, NetworkRecord] = field(default_factory=dict)
    volumes: Dict[str, VolumeRecord] = field(default_factory=dict)
    compose_stacks: Dict[str, ComposeStack] = field(default_factory=dict)
    event_log: List[EngineEvent] = field(default_factory=list)
    bound_ports: Dict[str, str] = field(default_factory=dict)  # host port -> container id
    pending_command: Optional[ParsedCommand] = None
    last_error: Optional[str] = None

    def active_containers(self) -> List[ContainerRecord]:
        return [c for c in self.containers.values() if c.is_active]

    def merge(self, delta: Dict[str, Any]) -> "EngineContext":
        """Return a new context with each delta key replacing its top-level field."""
        known = {f.name for f in fields(self)}
        unknown = set(delta) - known
        if unknown:
            raise ValueError(f"unknown engine state keys: {', '.join(sorted(unknown))}")
        return replace(self, **delta)

    def with_events(self, events: List[EngineEvent]) -> "EngineContext":
        if not events:
            return self
        return replace(self, event_log=[*self.event_log, *events])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "images": {k: v.to_dict() for k, v in self.images.items()},
            "containers": {k: v.to_dict() for k, v in self.containers.items()},
            "networks": {k: v.to_dict() for k, v in self.networks.items()},
            "volumes": {k: v.to_dict() for k, v in self.volumes.items()},
            "compose_stacks": {k: v.to_dict() for k, v in self.compose_stacks.items()},
            "event_log": [e.to_dict() for e in self.event_log],
            "bound_ports": dict(self.bound_ports),
            "pending_command": self.pending_command.to_dict() if self.pending_command else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineContext":
        where = "engine state"

        def section(key: str, record_cls: Any) -> Dict[str, Any]:
            raw = _field(data, key, dict, where, {})
            return {str(k): record_cls.from_dict(v) for k, v in raw.items()}

        pending = _field(data, "pending_command", (dict, type(None)), where, None)
        bound = _field(data, "bound_ports", dict, where, {})
        return cls(
            images=section("images", ImageRecord),
            containers=section("containers", ContainerRecord),
            networks=section("networks", NetworkRecord),
            volumes=section("volumes", VolumeRecord),
            compose_stacks=section("compose_stacks", ComposeStack),
            event_log=[EngineEvent.from_dict(e) for e in _field(data, "event_log", list, where, [])],
            bound_ports={str(k): str(v) for k, v in bound.items()},
            pending_command=ParsedCommand.from_dict(pending) if pending is not None else None,
            last_error=_field(data, "last_error", (str, type(None)), where, None),
        )


@dataclass
class CommandResult:
    state_delta: Dict[str, Any] = field(default_factory=dict)
    events: List[EngineEvent] = field(default_factory=list)
    output: List[str] = field(default_factory=list)

    @classmethod
    def message(cls, *lines: str) -> "CommandResult":
        """Output-only result: no delta, no events."""
        return cls(output=list(lines))
