"""
Shell-like command line parsing.

Turns a raw terminal line into a ParsedCommand:
  - tokens split on whitespace outside single/double quotes (quotes stripped)
  - `docker <sub>` and `docker compose <sub>` become the subcommand
  - `--key=value`, `--key [value]`, `-k [value]` and bundled `-abc` flags
  - the first positional token ends flag parsing; the rest are args

The parser is total: any input, however odd, yields a structurally valid
command. Unparsable flag shapes (`-`, `--`) degrade to positional args.
"""

import re
import logging
from typing import Dict, List, Set

from .model import FlagValue, ParsedCommand

logger = logging.getLogger(__name__)

SENTINEL = "docker"
COMPOSE = "compose"

TOKEN_RE = re.compile(r'"([^"]*)"|\'([^\']*)\'|(\S+)')
LONG_FLAG_VALUE_RE = re.compile(r'^--([^=]+)=(.+)$')
LONG_FLAG_BARE_RE = re.compile(r'^--(.+)$')
SHORT_FLAG_RE = re.compile(r'^-([^-].*)$')

# Flags that consume the following token as their value, per subcommand.
VALUE_FLAGS: Dict[str, Set[str]] = {
    "run": {"p", "publish", "e", "env", "v", "name", "net", "network", "h", "hostname", "u", "user", "w", "workdir"},
    "exec": {"e", "u", "w", "workdir"},
    "build": {"t", "tag", "f", "file", "target"},
    "logs": {"n", "tail", "since", "until"},
    "compose": {"f", "file", "p", "project-name"},
    "global": {"H", "host", "c", "context"},
}

# Value flags after the compose verb; `-f` there means follow.
COMPOSE_VERB_FLAGS: Dict[str, Set[str]] = {
    "logs": {"n", "tail", "since", "until"},
}


def tokenize(raw: str) -> List[str]:
    tokens = []
    for m in TOKEN_RE.finditer(raw):
        if m.group(1) is not None:
            tokens.append(m.group(1))
        elif m.group(2) is not None:
            tokens.append(m.group(2))
        else:
            tokens.append(m.group(3))
    return tokens


def _set_flag(flags: Dict[str, FlagValue], key: str, value: FlagValue) -> None:
    previous = flags.get(key)
    if isinstance(value, str) and isinstance(previous, str):
        flags[key] = [previous, value]
    elif isinstance(value, str) and isinstance(previous, list):
        flags[key] = [*previous, value]
    else:
        flags[key] = value


def parse_command(raw: str) -> ParsedCommand:
    """Parse one terminal line. `raw` is preserved verbatim on the result."""
    tokens = tokenize(raw.strip())
    if not tokens:
        return ParsedCommand(raw=raw, command="", subcommand=None, args=[], flags={})

    if tokens[0] != SENTINEL:
        # Not ours: keep everything positional for the "command not found" path.
        return ParsedCommand(raw=raw, command=tokens[0], subcommand=None, args=tokens[1:], flags={})

    cursor = 1
    subcommand = None
    if cursor < len(tokens):
        subcommand = tokens[cursor]
        cursor += 1
        if subcommand == COMPOSE and cursor < len(tokens) and not tokens[cursor].startswith("-"):
            subcommand = f"{subcommand} {tokens[cursor]}"
            cursor += 1

    base, _, verb = (subcommand or "").partition(" ")
    if verb:
        value_flags = COMPOSE_VERB_FLAGS.get(verb, set()) | VALUE_FLAGS["global"]
    else:
        value_flags = VALUE_FLAGS.get(base, set()) | VALUE_FLAGS["global"]

    args: List[str] = []
    flags: Dict[str, FlagValue] = {}

    while cursor < len(tokens):
        token = tokens[cursor]

        if args:
            args.append(token)
            cursor += 1
            continue

        m = LONG_FLAG_VALUE_RE.match(token)
        if m:
            _set_flag(flags, m.group(1), m.group(2))
            cursor += 1
            continue

        m = LONG_FLAG_BARE_RE.match(token) or SHORT_FLAG_RE.match(token)
        if m is None:
            # first positional token: flag parsing stops for good
            args.append(token)
            cursor += 1
            continue

        key = m.group(1)
        if token.startswith("-") and not token.startswith("--") and len(key) > 1:
            for ch in key:
                flags[ch] = True
            cursor += 1
            continue

        nxt = tokens[cursor + 1] if cursor + 1 < len(tokens) else None
        if key in value_flags and nxt is not None and not nxt.startswith("-"):
            _set_flag(flags, key, nxt)
            cursor += 2
        else:
            flags[key] = True
            cursor += 1

    logger.debug(f"Parsed {raw!r} -> sub={subcommand!r} args={args} flags={flags}")
    return ParsedCommand(raw=raw, command=SENTINEL, subcommand=subcommand, args=args, flags=flags)
