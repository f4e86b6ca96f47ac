"""
Canonical engine state and the command worker thread.

The evaluator is pure; this module is the caller side that owns the one
mutable reference to the current EngineContext.

Architecture:
  - StateManager: RLock-guarded holder of the current EngineContext
    - execute(raw): parse -> record pending_command -> evaluate -> merge
      delta -> append events -> set/clear last_error
    - version counter bumped on every change so the UI can detect updates
  - CommandWorker: daemon thread draining a queue of submitted command
    lines, one at a time, and handing each result to a callback

Thread Safety:
  - Evaluation runs with the lock held, so commands never interleave
  - Snapshots are immutable EngineContext values and safe to share
"""

import queue
import logging
import threading
from collections import deque
from typing import Callable, Deque, Optional, Tuple

from .evaluator import Evaluator, WorkspaceInput
from .model import CommandResult, EngineContext
from .parser import parse_command

logger = logging.getLogger(__name__)

# First output lines that mark a command as failed.
ERROR_PREFIXES = (
    "Error",
    "docker:",
    "Unable to find image",
    "failed to solve",
    "error:",
    "OCI runtime exec failed",
    "validating compose file",
    "Usage:",
)


def first_error_line(result: CommandResult) -> Optional[str]:
    """The line to surface as last_error, or None when the command succeeded."""
    for line in result.output:
        if line.startswith(ERROR_PREFIXES) or line.endswith("command not found"):
            return line
    return None


class StateManager:
    """Thread-safe holder of the canonical EngineContext."""

    def __init__(self, initial: Optional[EngineContext] = None, evaluator: Optional[Evaluator] = None):
        self._state = initial or EngineContext()
        self._evaluator = evaluator or Evaluator()
        self._lock = threading.RLock()
        self._version = 0

    def get_version(self) -> int:
        with self._lock:
            return self._version

    def _inc_version(self) -> None:
        # Assumes lock is held
        self._version += 1

    def get_snapshot(self) -> EngineContext:
        with self._lock:
            return self._state

    def apply(self, result: CommandResult) -> EngineContext:
        """Merge a result's delta and append its events."""
        with self._lock:
            self._state = self._state.merge(result.state_delta).with_events(result.events)
            self._inc_version()
            return self._state

    def execute(self, raw: str, workspace_files: Optional[WorkspaceInput] = None) -> CommandResult:
        cmd = parse_command(raw)
        with self._lock:
            self._state = self._state.merge({"pending_command": cmd})
            result = self._evaluator.evaluate(self._state, cmd, workspace_files)
            try:
                merged = self._state.merge(result.state_delta)
            except ValueError as e:
                logger.error(f"Discarding delta for {raw!r}: {e}")
                result = CommandResult.message(f"Error: internal engine error: {e}")
                merged = self._state
            error = first_error_line(result)
            self._state = merged.with_events(result.events).merge({"pending_command": None, "last_error": error})
            self._inc_version()
            logger.debug(f"Executed {raw!r}: {len(result.events)} event(s), version {self._version}")
            return result

    def set_error(self, error_msg: str) -> None:
        with self._lock:
            self._state = self._state.merge({"last_error": error_msg})
            self._inc_version()

    def clear_error(self) -> None:
        with self._lock:
            self._state = self._state.merge({"last_error": None})
            self._inc_version()

    def reset(self, snapshot: Optional[EngineContext] = None) -> None:
        """Replace the whole state, e.g. on session restore or lesson reset."""
        with self._lock:
            self._state = snapshot or EngineContext()
            self._inc_version()


ResultCallback = Callable[[str, CommandResult], None]


class CommandWorker(threading.Thread):
    """Single consumer: one submitted command is evaluated at a time, in order."""

    def __init__(self, state_manager: StateManager, callback: Optional[ResultCallback] = None,
                 poll_interval: float = 0.5, history: int = 100):
        super().__init__(daemon=True)
        self.state_manager = state_manager
        self.callback = callback
        self.poll_interval = poll_interval
        self.running = True
        self._queue: "queue.Queue[Optional[Tuple[str, Optional[WorkspaceInput]]]]" = queue.Queue()
        # most recent (raw, result) pairs, oldest dropped first
        self.results: Deque[Tuple[str, CommandResult]] = deque(maxlen=history)

    def submit(self, raw: str, workspace_files: Optional[WorkspaceInput] = None) -> None:
        self._queue.put((raw, workspace_files))

    def pending(self) -> int:
        return self._queue.qsize()

    def run(self) -> None:
        while self.running:
            try:
                item = self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            try:
                if item is None:
                    break
                raw, files = item
                result = self.state_manager.execute(raw, files)
                self.results.append((raw, result))
                if self.callback is not None:
                    self.callback(raw, result)
            except Exception as e:
                logger.error(f"Command worker failed on {item!r}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def join_queue(self) -> None:
        """Block until every submitted command has been handled."""
        self._queue.join()

    def stop(self) -> None:
        self.running = False
        self._queue.put(None)
