"""
Helpers shared by the command handlers.

- IdGenerator / SeededIdGenerator: the only source of randomness and time.
  Handlers receive one and never touch `random` or the clock directly.
- create_event: builds an EngineEvent with a fresh id and timestamp.
- format_size / pad_end: fixed-width table rendering.
- resolve_container / resolve_image: name, id or prefix lookup.
- engine_safe: decorator turning unexpected exceptions into a default value.
"""

import functools
import logging
import random
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from docker.utils import parse_repository_tag

from .model import ContainerRecord, EngineContext, EngineEvent, ImageRecord

logger = logging.getLogger(__name__)


class IdGenerator:
    """Random ids, digests and sizes backed by uuid4 and the wall clock."""

    def _hex(self) -> str:
        return uuid.uuid4().hex

    def fake_id(self) -> str:
        return self._hex()[:12]

    def fake_digest(self) -> str:
        return f"sha256:{self._hex()}{self._hex()}"

    def event_id(self) -> str:
        return str(uuid.uuid4())

    def size(self, low: int, high: int) -> int:
        return random.randint(low, high)

    def layer_count(self) -> int:
        return self.size(2, 3)

    def now(self) -> str:
        return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SeededIdGenerator(IdGenerator):
    """Deterministic variant for tests and reproducible sessions."""

    def __init__(self, seed: int = 0, clock: str = "2024-01-01T00:00:00.000Z"):
        self._rng = random.Random(seed)
        self._clock = clock

    def _hex(self) -> str:
        return f"{self._rng.getrandbits(128):032x}"

    def event_id(self) -> str:
        return str(uuid.UUID(int=self._rng.getrandbits(128), version=4))

    def size(self, low: int, high: int) -> int:
        return self._rng.randint(low, high)

    def now(self) -> str:
        return self._clock


def create_event(ids: IdGenerator, event_type: str, payload: Dict[str, Any], summary: str) -> EngineEvent:
    return EngineEvent(
        id=ids.event_id(),
        type=event_type,
        timestamp=ids.now(),
        payload=payload,
        human_summary=summary,
    )


def format_size(size: int) -> str:
    if size >= 1_000_000_000:
        return f"{size / 1_000_000_000:.2f}GB"
    if size >= 1_000_000:
        return f"{size / 1_000_000:.1f}MB"
    return f"{size / 1_000:.1f}kB"


def pad_end(text: str, width: int) -> str:
    return text.ljust(width)


def image_key(repository: str, tag: str) -> str:
    if tag.startswith("sha256:"):
        return f"{repository}@{tag}"
    return f"{repository}:{tag}"


def image_ref_key(ref: str, default_tag: str = "latest") -> str:
    """`nginx` -> `nginx:latest`; registry ports and digests are kept intact."""
    repository, tag = parse_repository_tag(ref)
    return image_key(repository, tag or default_tag)


def split_image_ref(ref: str, default_tag: str = "latest"):
    """Return (repository, tag); a missing tag becomes `default_tag`."""
    repository, tag = parse_repository_tag(ref)
    return repository, tag or default_tag


def resolve_container(state: EngineContext, name_or_id: str) -> Optional[ContainerRecord]:
    """Exact id, exact name, then id prefix. Removed containers are invisible."""
    if not name_or_id:
        return None
    active = state.active_containers()
    for c in active:
        if c.id == name_or_id or c.name == name_or_id:
            return c
    for c in active:
        if c.id.startswith(name_or_id):
            return c
    return None


def resolve_image(state: EngineContext, ref: str, default_tag: str = "latest") -> Optional[ImageRecord]:
    if not ref:
        return None
    return state.images.get(image_ref_key(ref, default_tag)) or state.images.get(ref)


def image_label(state: EngineContext, image_id: str) -> str:
    """`repo:tag` for an image id, or the id itself when no image matches."""
    for key, img in state.images.items():
        if img.id == image_id:
            return key
    return image_id


def engine_safe(default_return: Any = None) -> Callable:
    """
    Decorator for engine entry points that must never raise.

    Catches exceptions, logs them with traceback, and returns a default
    value. When the default is callable it is invoked with the exception.

    Usage:
        @engine_safe(default_return=lambda e: [])
        def validate(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error(f"Engine operation failed in {func.__name__}: {e}", exc_info=True)
                return default_return(e) if callable(default_return) else default_return
        return wrapper
    return decorator
