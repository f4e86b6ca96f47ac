"""
Minimal indentation-based YAML reader for compose files.

Supports exactly what compose files in the lessons need:
  - nested mappings via indentation
  - sequences via `- ` items, attached to the last key at the enclosing indent
  - scalar coercion: true/false, null/~, int/float, quoted strings, plain text

Not supported: anchors, multiple documents, flow collections ({...}/[...] stay
plain strings), block scalars (`|`/`>` become an empty nested mapping). Items
of a sequence are always scalars; `- key: value` is kept as the text
"key: value".

This is deliberately lossy. Config and session files use PyYAML; this reader
exists so the validator can report on half-typed editor content line by line
without a full YAML loader rejecting it outright.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

YamlDoc = Dict[str, Any]

NUMBER_RE = re.compile(r'^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$')
KEY_RE = re.compile(r'^(.*?):(?:\s+(.*))?$')


@dataclass(frozen=True)
class YamlError:
    line: int
    message: str


def as_doc(value: Any) -> Optional[YamlDoc]:
    return value if isinstance(value, dict) else None


def as_string(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return None


def as_array(value: Any) -> Optional[List[Any]]:
    return value if isinstance(value, list) else None


def _strip_comment(value: str) -> str:
    if value[:1] in ('"', "'"):
        return value
    idx = value.find(" #")
    return value[:idx].rstrip() if idx != -1 else value


def parse_scalar(value: str) -> Any:
    value = _strip_comment(value.strip())
    if value == "true":
        return True
    if value == "false":
        return False
    if value in ("null", "~"):
        return None
    if NUMBER_RE.match(value):
        if re.match(r'^[-+]?\d+$', value):
            return int(value)
        return float(value)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def _unquote_key(key: str) -> str:
    key = key.strip()
    if len(key) >= 2 and key[0] == key[-1] and key[0] in ('"', "'"):
        return key[1:-1]
    return key


@dataclass
class _Frame:
    indent: int
    obj: Any  # dict or list
    parent: Optional[YamlDoc] = None
    key: Optional[str] = None


def parse_yaml(content: str) -> Tuple[Optional[YamlDoc], Optional[YamlError]]:
    """Parse content into a nested dict. Returns (doc, None) or (None, error)."""
    doc: YamlDoc = {}
    stack: List[_Frame] = [_Frame(indent=-1, obj=doc)]
    last_key: Optional[str] = None
    # keys seen per mapping, to report duplicates
    seen: Dict[int, set] = {id(doc): set()}

    for line_number, raw_line in enumerate(content.split("\n"), start=1):
        line = raw_line.rstrip("\r")
        trimmed = line.lstrip(" ")
        if trimmed.strip() == "" or trimmed.startswith("#"):
            continue
        if trimmed.startswith("\t"):
            return None, YamlError(line_number, "found character '\\t' that cannot start any token")

        indent = len(line) - len(trimmed)

        if trimmed == "-" or trimmed.startswith("- "):
            while len(stack) > 1 and stack[-1].indent > indent:
                stack.pop()
            top = stack[-1]
            item = parse_scalar(trimmed[1:]) if trimmed != "-" else None

            if isinstance(top.obj, list):
                top.obj.append(item)
            elif isinstance(top.obj, dict) and not top.obj and top.parent is not None:
                # empty placeholder opened by `key:` turns into a sequence
                items = [item]
                top.parent[top.key] = items
                top.obj = items
            elif isinstance(top.obj, dict) and last_key is not None and last_key in top.obj:
                existing = top.obj[last_key]
                if not isinstance(existing, list):
                    existing = []
                    top.obj[last_key] = existing
                existing.append(item)
            continue

        m = KEY_RE.match(trimmed)
        if m is None:
            continue

        key = _unquote_key(m.group(1))
        rest = (m.group(2) or "").strip()
        if key == "":
            return None, YamlError(line_number, "mapping key is empty")

        while len(stack) > 1 and stack[-1].indent >= indent:
            stack.pop()
        parent = stack[-1].obj
        if not isinstance(parent, dict):
            # keys under a sequence item are outside what this reader keeps
            continue

        keys = seen.setdefault(id(parent), set())
        if key in keys:
            return None, YamlError(line_number, f"duplicate key '{key}'")
        keys.add(key)

        if rest in ("", "|", ">") or rest.startswith("#"):
            nested: YamlDoc = {}
            parent[key] = nested
            seen[id(nested)] = set()
            stack.append(_Frame(indent=indent, obj=nested, parent=parent, key=key))
        else:
            parent[key] = parse_scalar(rest)
        last_key = key

    return doc, None
