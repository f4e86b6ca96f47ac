"""
Command evaluation: ParsedCommand + EngineContext -> CommandResult.

The evaluator is the single entry point the caller uses. It:
  - validates the command shape at the boundary (dicts from outside)
  - answers non-docker commands, bare `docker` and `--help` itself
  - picks workspace files (Dockerfile, compose.yml) for build/compose up
  - dispatches to the handler for the subcommand

It is total: whatever comes in, a CommandResult comes out. Unexpected
exceptions inside a handler are logged and reported as an internal engine
error with an empty delta.
"""

import logging
import posixpath
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .compose_actions import handle_compose_down, handle_compose_logs, handle_compose_ps, handle_compose_up
from .config import EngineConfig
from .container_actions import handle_ps, handle_rm, handle_run, handle_start, handle_stop
from .exec_actions import handle_exec, handle_logs
from .image_actions import handle_build, handle_images, handle_pull
from .model import CommandResult, EngineContext, ParsedCommand, WorkspaceFile, validate_parsed_command
from .parser import parse_command
from .utils import IdGenerator, engine_safe

logger = logging.getLogger(__name__)

HELP_SUBCOMMANDS = ("-h", "--help", "help")
COMPOSE_FILE_NAMES = ("compose.yml", "compose.yaml", "docker-compose.yml", "docker-compose.yaml")

TOP_LEVEL_USAGE = [
    "Usage:  docker [OPTIONS] COMMAND",
    "",
    "A self-sufficient runtime for containers (simulated)",
    "",
    "Common Commands:",
    "  run         Create and run a new container from an image",
    "  exec        Execute a command in a running container",
    "  ps          List containers",
    "  build       Build an image from a Dockerfile",
    "  pull        Download an image from a registry",
    "  images      List images",
    "",
    "Management Commands:",
    "  compose     Docker Compose",
    "",
    "Container Commands:",
    "  logs        Fetch the logs of a container",
    "  rm          Remove one or more containers",
    "  start       Start one or more stopped containers",
    "  stop        Stop one or more running containers",
    "",
    "Run 'docker COMMAND --help' for more information on a command.",
]

HELP_TEXTS: Dict[str, List[str]] = {
    "pull": [
        "Usage:  docker pull [OPTIONS] NAME[:TAG|@DIGEST]",
        "",
        "Download an image from a registry",
    ],
    "images": [
        "Usage:  docker images [OPTIONS] [REPOSITORY[:TAG]]",
        "",
        "List images",
    ],
    "build": [
        "Usage:  docker build [OPTIONS] PATH",
        "",
        "Build an image from a Dockerfile",
        "",
        "Options:",
        "  -f, --file string     Name of the Dockerfile (default: \"PATH/Dockerfile\")",
        "  -t, --tag list        Name and optionally a tag in the \"name:tag\" format",
    ],
    "run": [
        "Usage:  docker run [OPTIONS] IMAGE [COMMAND] [ARG...]",
        "",
        "Create and run a new container from an image",
        "",
        "Options:",
        "  -d, --detach          Run container in background and print container ID",
        "  -e, --env list        Set environment variables",
        "      --name string     Assign a name to the container",
        "  -p, --publish list    Publish a container's port(s) to the host",
    ],
    "ps": [
        "Usage:  docker ps [OPTIONS]",
        "",
        "List containers",
        "",
        "Options:",
        "  -a, --all             Show all containers (default shows just running)",
    ],
    "stop": [
        "Usage:  docker stop [OPTIONS] CONTAINER [CONTAINER...]",
        "",
        "Stop one or more running containers",
    ],
    "start": [
        "Usage:  docker start [OPTIONS] CONTAINER [CONTAINER...]",
        "",
        "Start one or more stopped containers",
    ],
    "rm": [
        "Usage:  docker rm [OPTIONS] CONTAINER [CONTAINER...]",
        "",
        "Remove one or more containers",
        "",
        "Options:",
        "  -f, --force           Force the removal of a running container",
    ],
    "logs": [
        "Usage:  docker logs [OPTIONS] CONTAINER",
        "",
        "Fetch the logs of a container",
        "",
        "Options:",
        "  -f, --follow          Follow log output",
        "  -n, --tail string     Number of lines to show from the end of the logs",
    ],
    "exec": [
        "Usage:  docker exec [OPTIONS] CONTAINER COMMAND [ARG...]",
        "",
        "Execute a command in a running container",
        "",
        "Options:",
        "  -i, --interactive     Keep STDIN open even if not attached",
        "  -t, --tty             Allocate a pseudo-TTY",
    ],
    "compose": [
        "Usage:  docker compose [OPTIONS] COMMAND",
        "",
        "Define and run multi-container applications with Docker.",
        "",
        "Commands:",
        "  down        Stop and remove containers, networks",
        "  logs        View output from containers",
        "  ps          List containers",
        "  up          Create and start containers",
    ],
    "compose up": [
        "Usage:  docker compose up [OPTIONS] [SERVICE...]",
        "",
        "Create and start containers",
        "",
        "Options:",
        "  -d, --detach          Detached mode: Run containers in the background",
    ],
    "compose down": [
        "Usage:  docker compose down [OPTIONS] [SERVICES]",
        "",
        "Stop and remove containers, networks",
    ],
    "compose ps": [
        "Usage:  docker compose ps [OPTIONS] [SERVICE...]",
        "",
        "List containers",
    ],
    "compose logs": [
        "Usage:  docker compose logs [OPTIONS] [SERVICE...]",
        "",
        "View output from containers",
        "",
        "Options:",
        "  -n, --tail string     Number of lines to show from the end of the logs for each container",
    ],
}

WorkspaceInput = Mapping[str, Union[WorkspaceFile, Mapping[str, Any], str]]


def _normalize(path: str) -> str:
    return posixpath.normpath(path.strip())


def workspace_contents(files: Optional[WorkspaceInput]) -> Optional[Dict[str, str]]:
    """Path -> content. Accepts WorkspaceFile, {content, language} dicts or plain strings."""
    if files is None:
        return None
    contents: Dict[str, str] = {}
    for path, entry in files.items():
        if isinstance(entry, WorkspaceFile):
            contents[_normalize(path)] = entry.content
        elif isinstance(entry, str):
            contents[_normalize(path)] = entry
        elif isinstance(entry, Mapping) and isinstance(entry.get("content"), str):
            contents[_normalize(path)] = entry["content"]
        else:
            logger.warning(f"Ignoring workspace entry {path!r}: no string content")
    return contents


def workspace_paths(contents: Dict[str, str]) -> List[str]:
    """File paths plus every directory that contains them."""
    paths = set()
    for path in contents:
        paths.add(path)
        parent = posixpath.dirname(path)
        while parent:
            paths.add(parent)
            parent = posixpath.dirname(parent)
    return sorted(paths)


def find_dockerfile(cmd: ParsedCommand) -> str:
    explicit = cmd.flag_value("f", "file")
    if explicit:
        return _normalize(explicit)
    context = cmd.args[0] if cmd.args else "."
    return _normalize(posixpath.join(context, "Dockerfile"))


def find_compose_file(contents: Dict[str, str], cmd: ParsedCommand) -> Optional[str]:
    explicit = cmd.flag_value("f", "file")
    if explicit:
        return _normalize(explicit)
    return next((name for name in COMPOSE_FILE_NAMES if name in contents), None)


def not_a_docker_command(sub: str) -> CommandResult:
    return CommandResult.message(
        f"docker: '{sub}' is not a docker command. See 'docker --help'.",
        "",
        "Usage:  docker [OPTIONS] COMMAND",
        "",
        "Run 'docker COMMAND --help' for more information on a command.",
    )


def _normalize_compose(cmd: ParsedCommand) -> ParsedCommand:
    """`docker compose -f x.yml up -d` parses as `compose` + args; fold the verb back in."""
    if cmd.subcommand != "compose" or not cmd.args:
        return cmd
    quoted = [f'"{a}"' if " " in a else a for a in cmd.args]
    reparsed = parse_command(" ".join(["docker", "compose", *quoted]))
    return ParsedCommand(
        raw=cmd.raw,
        command=cmd.command,
        subcommand=reparsed.subcommand,
        args=reparsed.args,
        flags={**cmd.flags, **reparsed.flags},
    )


class Evaluator:
    """Holds the injected id generator and engine settings for dispatch."""

    def __init__(self, ids: Optional[IdGenerator] = None, settings: Optional[EngineConfig] = None):
        self.ids = ids or IdGenerator()
        self.settings = settings or EngineConfig()
        self._handlers: Dict[str, Callable[[EngineContext, ParsedCommand, Optional[Dict[str, str]]], CommandResult]] = {
            "pull": lambda s, c, w: handle_pull(s, c, self.ids, self.settings),
            "images": lambda s, c, w: handle_images(s, c),
            "build": self._build,
            "run": lambda s, c, w: handle_run(s, c, self.ids, self.settings),
            "ps": lambda s, c, w: handle_ps(s, c),
            "stop": lambda s, c, w: handle_stop(s, c, self.ids),
            "start": lambda s, c, w: handle_start(s, c, self.ids),
            "rm": lambda s, c, w: handle_rm(s, c, self.ids),
            "logs": lambda s, c, w: handle_logs(s, c),
            "exec": lambda s, c, w: handle_exec(s, c, self.ids),
            "compose up": self._compose_up,
            "compose down": lambda s, c, w: handle_compose_down(s, c, self.ids, self.settings),
            "compose ps": lambda s, c, w: handle_compose_ps(s, c, self.settings),
            "compose logs": lambda s, c, w: handle_compose_logs(s, c, self.settings),
        }

    def _build(self, state: EngineContext, cmd: ParsedCommand, contents: Optional[Dict[str, str]]) -> CommandResult:
        if contents is None:
            return handle_build(state, cmd, self.ids, None, self.settings)
        path = find_dockerfile(cmd)
        if path not in contents:
            return CommandResult.message(
                f"failed to solve: failed to read dockerfile: open {path}: no such file or directory"
            )
        return handle_build(state, cmd, self.ids, contents[path], self.settings)

    def _compose_up(self, state: EngineContext, cmd: ParsedCommand,
                    contents: Optional[Dict[str, str]]) -> CommandResult:
        contents = contents or {}
        path = find_compose_file(contents, cmd)
        content = contents.get(path) if path else None
        return handle_compose_up(state, cmd, self.ids, content, workspace_paths(contents), self.settings)

    def evaluate(self, state: EngineContext, command: Union[ParsedCommand, Mapping[str, Any]],
                 workspace_files: Optional[WorkspaceInput] = None) -> CommandResult:
        cmd, error = validate_parsed_command(command)
        if cmd is None:
            logger.warning(f"Rejected malformed command: {error}")
            return CommandResult.message(f"Error: invalid command: {error}")
        return self._dispatch(state, cmd, workspace_files)

    @engine_safe(default_return=lambda e: CommandResult.message(f"Error: internal engine error: {e}"))
    def _dispatch(self, state: EngineContext, cmd: ParsedCommand,
                  workspace_files: Optional[WorkspaceInput]) -> CommandResult:
        if cmd.command == "":
            return CommandResult()
        if cmd.command != "docker":
            return CommandResult.message(f"{cmd.command}: command not found")
        if cmd.subcommand is None or cmd.subcommand in HELP_SUBCOMMANDS:
            return CommandResult.message(*TOP_LEVEL_USAGE)

        cmd = _normalize_compose(cmd)
        sub = cmd.subcommand

        if cmd.wants_help():
            if sub in HELP_TEXTS:
                return CommandResult.message(*HELP_TEXTS[sub])
            return not_a_docker_command(sub)
        if sub == "compose":
            return CommandResult.message(*HELP_TEXTS["compose"])

        handler = self._handlers.get(sub)
        if handler is None:
            return not_a_docker_command(sub)

        logger.debug(f"Dispatching {sub!r} args={cmd.args} flags={cmd.flags}")
        return handler(state, cmd, workspace_contents(workspace_files))


def evaluate(state: EngineContext, command: Union[ParsedCommand, Mapping[str, Any]],
             workspace_files: Optional[WorkspaceInput] = None,
             ids: Optional[IdGenerator] = None,
             settings: Optional[EngineConfig] = None) -> CommandResult:
    """Evaluate one command against one state snapshot."""
    return Evaluator(ids, settings).evaluate(state, command, workspace_files)
