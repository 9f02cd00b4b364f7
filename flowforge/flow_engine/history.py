"""
History Store - Undo/redo over graph snapshots

Snapshots are deep copies of (nodes, edges). A capture is skipped when its
signature (sorted node ids, sorted edge endpoints, per-node data) matches the
entry under the cursor, and bursts of edits are coalesced by a debounce timer.
While an undo/redo is being applied, and for a short settle window after it,
captures are ignored so the restored graph is not recorded again.
"""

import asyncio
import copy
import hashlib
import json
import logging
import time
from contextlib import contextmanager
from dataclasses import asdict
from typing import Callable, List, Optional

from flowforge.config import Config
from flowforge.flow_engine.errors import HistoryError
from flowforge.flow_engine.models import Edge, HistoryState, Node

logger = logging.getLogger(__name__)


def compute_signature(nodes: List[Node], edges: List[Edge]) -> str:
    """Deterministic hash of node ids, edge endpoints and node data."""
    try:
        payload = {
            'nodes': sorted(
                ([node.id, node.plugin_type, asdict(node.data)] for node in nodes),
                key=lambda entry: entry[0],
            ),
            'edges': sorted([edge.source, edge.target] for edge in edges),
        }
        encoded = json.dumps(payload, sort_keys=True, default=str)
    except (TypeError, ValueError, RecursionError) as e:
        raise HistoryError(f"Could not compute history signature: {e}") from e
    return hashlib.sha256(encoded.encode('utf-8')).hexdigest()


class HistoryStore:
    """
    Linear undo/redo stack with a cursor.

    Usage:
        history = HistoryStore(max_size=50)
        history.save_state(nodes, edges)
        state = history.undo()  # HistoryState or None
    """

    def __init__(self, max_size: int = Config.HISTORY_MAX_SIZE,
                 debounce_ms: int = Config.HISTORY_DEBOUNCE_MS,
                 settle_ms: int = Config.HISTORY_SETTLE_MS,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            max_size: Maximum entries kept; the oldest is evicted beyond it
            debounce_ms: Quiet period before a scheduled capture runs
            settle_ms: Window after undo/redo during which captures are ignored
            clock: Monotonic clock in seconds
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.debounce_ms = debounce_ms
        self.settle_ms = settle_ms
        self._clock = clock

        self._stack: List[HistoryState] = []
        self._signatures: List[str] = []
        self._index = -1
        self._restoring = False
        self._settle_until = 0.0
        self._pending: Optional[asyncio.TimerHandle] = None
        self._pending_state: Optional[HistoryState] = None

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def size(self) -> int:
        return len(self._stack)

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._stack) - 1

    @property
    def is_restoring(self) -> bool:
        return self._restoring or self._clock() < self._settle_until

    def save_state(self, nodes: List[Node], edges: List[Edge],
                   selection: Optional[List[str]] = None) -> bool:
        """
        Capture a snapshot now.

        Returns:
            True if a new entry was appended
        """
        if self.is_restoring:
            logger.debug("Undo/redo in progress, skipping history capture")
            return False

        try:
            state = HistoryState(
                nodes=copy.deepcopy(list(nodes)),
                edges=copy.deepcopy(list(edges)),
                timestamp=time.time(),
                selection=list(selection) if selection else None,
            )
        except (TypeError, copy.Error, RecursionError) as e:
            logger.warning(f"History capture skipped, snapshot could not be cloned: {e}")
            return False

        return self._append(state)

    def _append(self, state: HistoryState) -> bool:
        try:
            signature = compute_signature(state.nodes, state.edges)
        except HistoryError as e:
            logger.warning(f"History capture skipped: {e}")
            return False

        if self._index >= 0 and self._signatures[self._index] == signature:
            logger.debug("Graph unchanged, skipping history capture")
            return False

        # Branch-discard: drop the redo tail
        del self._stack[self._index + 1:]
        del self._signatures[self._index + 1:]

        self._stack.append(state)
        self._signatures.append(signature)
        self._index = len(self._stack) - 1

        while len(self._stack) > self.max_size:
            self._stack.pop(0)
            self._signatures.pop(0)
            self._index -= 1

        logger.debug(f"History captured: {self._index + 1}/{len(self._stack)}")
        return True

    def schedule_save(self, nodes: List[Node], edges: List[Edge],
                      selection: Optional[List[str]] = None):
        """
        Debounced capture: the latest snapshot is saved once edits pause for
        debounce_ms. Saves immediately when no event loop is running or the
        debounce is disabled.
        """
        if self.is_restoring:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None or self.debounce_ms <= 0:
            self.save_state(nodes, edges, selection)
            return

        try:
            self._pending_state = HistoryState(
                nodes=copy.deepcopy(list(nodes)),
                edges=copy.deepcopy(list(edges)),
                timestamp=time.time(),
                selection=list(selection) if selection else None,
            )
        except (TypeError, copy.Error, RecursionError) as e:
            logger.warning(f"History capture skipped, snapshot could not be cloned: {e}")
            return

        if self._pending is not None:
            self._pending.cancel()
        self._pending = loop.call_later(self.debounce_ms / 1000, self.flush)

    def flush(self) -> bool:
        """Run a pending debounced capture now."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        state, self._pending_state = self._pending_state, None
        if state is None or self.is_restoring:
            return False
        return self._append(state)

    def undo(self) -> Optional[HistoryState]:
        self.flush()
        if self._index <= 0:
            return None
        return self._restore(self._index - 1)

    def redo(self) -> Optional[HistoryState]:
        self.flush()
        if self._index >= len(self._stack) - 1:
            return None
        return self._restore(self._index + 1)

    def _restore(self, index: int) -> HistoryState:
        self._cancel_pending()
        with self.restoring():
            self._index = index
            entry = self._stack[index]
            return HistoryState(
                nodes=copy.deepcopy(entry.nodes),
                edges=copy.deepcopy(entry.edges),
                timestamp=entry.timestamp,
                selection=list(entry.selection) if entry.selection else None,
            )

    @contextmanager
    def restoring(self):
        """
        Suppress captures while a restored state is written back, and for
        settle_ms afterwards.
        """
        self._restoring = True
        try:
            yield self
        finally:
            self._restoring = False
            self._settle_until = self._clock() + self.settle_ms / 1000

    def clear_history(self):
        self._cancel_pending()
        self._stack.clear()
        self._signatures.clear()
        self._index = -1
        self._restoring = False
        self._settle_until = 0.0

    def _cancel_pending(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._pending_state = None
