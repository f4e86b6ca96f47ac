"""logs and exec: read-only commands against a single container."""

import logging
from typing import Callable, Dict, List, Optional

from .model import CommandResult, ContainerRecord, EngineContext, ParsedCommand
from .utils import IdGenerator, create_event, image_label, resolve_container

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


def parse_tail(value: Optional[str]) -> Optional[int]:
    """`--tail N` as a non-negative int; `all` or junk means no limit."""
    if value is None:
        return None
    try:
        n = int(value)
    except ValueError:
        return None
    return n if n >= 0 else None


def tail_lines(lines: List[str], n: Optional[int]) -> List[str]:
    if n is None:
        return list(lines)
    return list(lines[len(lines) - n:]) if n else []


def handle_logs(state: EngineContext, cmd: ParsedCommand) -> CommandResult:
    if not cmd.args:
        return CommandResult.message("Usage: docker logs [OPTIONS] CONTAINER")

    c = resolve_container(state, cmd.args[0])
    if c is None:
        return CommandResult.message(f"Error response from daemon: No such container: {cmd.args[0]}")

    logs = c.logs or [f"{c.name} | (no log output)"]
    output = tail_lines(logs, parse_tail(cmd.flag_value("tail", "n")))
    if cmd.has_flag("f", "follow"):
        output.insert(0, f"(Following logs for {c.name}. Press Ctrl+C to stop)")
    return CommandResult(output=output)


def _env_output(state: EngineContext, c: ContainerRecord) -> List[str]:
    merged = {"PATH": DEFAULT_PATH, "HOSTNAME": c.name, "TERM": "xterm-256color", **c.env}
    return [f"{k}={v}" for k, v in merged.items()]


def _os_release_output(state: EngineContext, c: ContainerRecord) -> List[str]:
    label = image_label(state, c.image_id)
    name = label.rsplit(":", 1)[0] if label != c.image_id else "linux"
    return [
        f'PRETTY_NAME="Simulated {name} Linux"',
        'NAME="SimOS"',
        "ID=simdocker",
        'HOME_URL="https://docker-yard.dev/"',
    ]


def _ls_app_output(state: EngineContext, c: ContainerRecord) -> List[str]:
    return ["index.js  node_modules  package.json"]


def _shell_output(shell: str) -> Callable[[EngineContext, ContainerRecord], List[str]]:
    def render(state: EngineContext, c: ContainerRecord) -> List[str]:
        return [
            f"Welcome to {c.name} ({shell})",
            "This is a simulated shell. Try: env, ls /app, cat /etc/os-release",
        ]
    return render


CANNED_COMMANDS: Dict[str, Callable[[EngineContext, ContainerRecord], List[str]]] = {
    "env": _env_output,
    "cat /etc/os-release": _os_release_output,
    "ls /app": _ls_app_output,
    "sh": _shell_output("sh"),
    "bash": _shell_output("bash"),
}


def handle_exec(state: EngineContext, cmd: ParsedCommand, ids: IdGenerator) -> CommandResult:
    if not (cmd.has_flag("i", "interactive") and cmd.has_flag("t", "tty")) or len(cmd.args) < 2:
        return CommandResult.message("Usage: docker exec -it CONTAINER COMMAND [ARG...]")

    c = resolve_container(state, cmd.args[0])
    if c is None:
        return CommandResult.message(f"Error response from daemon: No such container: {cmd.args[0]}")
    if not c.is_running:
        return CommandResult.message(
            f"Error response from daemon: Container {c.name} is not running",
            "Explain: exec needs a running container. Start it first with docker start.",
        )

    exec_cmd = " ".join(cmd.args[1:])
    render = CANNED_COMMANDS.get(exec_cmd.lower())
    if render is None:
        logger.debug(f"exec {exec_cmd!r} in {c.name}: not a canned command")
        return CommandResult.message(
            f"OCI runtime exec failed: exec failed: unable to start container process: "
            f'exec: "{cmd.args[1]}": executable file not found in $PATH'
        )

    event = create_event(ids, "EXEC_COMMAND_RUN", {"container_id": c.id, "cmd": exec_cmd},
                         f"Ran '{exec_cmd}' in {c.name}")
    return CommandResult(events=[event], output=render(state, c))
