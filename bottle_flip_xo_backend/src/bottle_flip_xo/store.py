"""
Document store contract and an in-memory implementation.

The game core only needs a path-addressed JSON tree with write/patch/read/
remove and change subscriptions. InMemoryDocumentStore keeps that tree in
process and encodes values the way the hosted real-time database does:

- None, "" and empty lists/dicts are not stored (a key set to them disappears);
- lists are stored as index-keyed children and are only read back as a list
  when more than half of the indices 0..max are present, otherwise as a
  mapping with string keys ({"0": "X", "4": "O"}).

That lossy round trip is exactly what normalizer.py exists to undo.
"""

import copy
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Optional[Any]], None]
Unsubscribe = Callable[[], None]


class DocumentStore(Protocol):
    """Path-addressed document store the game service runs against.

    Implementations:
    - InMemoryDocumentStore: process-local tree (default, tests, single host)
    - FirebaseRealtimeStore: hosted real-time database over REST/SSE
    """

    async def write(self, path: str, document: Any) -> None:
        """Replace the value at path."""
        ...

    async def patch(self, path: str, fields: Dict[str, Any]) -> None:
        """Replace only the given children of path."""
        ...

    async def read(self, path: str) -> Optional[Any]:
        """Point-in-time value at path, None if nothing is stored there."""
        ...

    async def remove(self, path: str) -> None:
        """Delete the value at path and everything below it."""
        ...

    def subscribe(self, path: str, on_change: ChangeCallback) -> Unsubscribe:
        """Call on_change with the current value now and after every change under path."""
        ...


def split_path(path: str) -> Tuple[str, ...]:
    return tuple(part for part in path.strip("/").split("/") if part)


# PUBLIC_INTERFACE
def encode_value(value: Any) -> Optional[Any]:
    """Storage form of a value; None means 'store nothing'."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = {str(i): item for i, item in enumerate(value)}
    if isinstance(value, dict):
        encoded = {}
        for key, item in value.items():
            item = encode_value(item)
            if item is not None:
                encoded[str(key)] = item
        return encoded or None
    if isinstance(value, str) and value == "":
        return None
    return value


# PUBLIC_INTERFACE
def decode_value(value: Any) -> Any:
    """Read form of a stored value; mostly-dense integer-keyed nodes come back as lists."""
    if not isinstance(value, dict):
        return value
    decoded = {key: decode_value(item) for key, item in value.items()}
    if decoded and all(key.isdecimal() for key in decoded):
        highest = max(int(key) for key in decoded)
        if len(decoded) * 2 > highest + 1:
            items: List[Any] = [None] * (highest + 1)
            for key, item in decoded.items():
                items[int(key)] = item
            return items
    return decoded


class InMemoryDocumentStore:
    """Thread-safe in-process document tree with change subscriptions."""

    def __init__(self):
        self._root: Dict[str, Any] = {}
        self._listeners: Dict[int, Tuple[Tuple[str, ...], ChangeCallback]] = {}
        self._lock = threading.Lock()
        self._listener_counter = 0

    def _get(self, parts: Tuple[str, ...]) -> Optional[Any]:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _set(self, parts: Tuple[str, ...], value: Optional[Any]):
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return
        chain = [self._root]
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[part] = child
            node = child
            chain.append(node)
        if value is None:
            node.pop(parts[-1], None)
            # Parents left empty are not stored either.
            for depth in range(len(chain) - 1, 0, -1):
                if chain[depth]:
                    break
                chain[depth - 1].pop(parts[depth - 1], None)
        else:
            node[parts[-1]] = value

    def _snapshot(self, parts: Tuple[str, ...]) -> Optional[Any]:
        value = self._get(parts)
        return None if value is None else decode_value(copy.deepcopy(value))

    def _affected(self, parts: Tuple[str, ...]) -> List[Tuple[ChangeCallback, Optional[Any]]]:
        """Listeners whose path overlaps parts, with the value they now see."""
        affected = []
        for listen_parts, callback in list(self._listeners.values()):
            length = min(len(parts), len(listen_parts))
            if parts[:length] == listen_parts[:length]:
                affected.append((callback, self._snapshot(listen_parts)))
        return affected

    def _notify(self, affected: List[Tuple[ChangeCallback, Optional[Any]]]):
        for callback, value in affected:
            callback(value)

    # PUBLIC_INTERFACE
    async def write(self, path: str, document: Any) -> None:
        parts = split_path(path)
        with self._lock:
            self._set(parts, encode_value(document))
            affected = self._affected(parts)
        self._notify(affected)

    # PUBLIC_INTERFACE
    async def patch(self, path: str, fields: Dict[str, Any]) -> None:
        parts = split_path(path)
        with self._lock:
            for key, value in fields.items():
                self._set(parts + split_path(str(key)), encode_value(value))
            affected = self._affected(parts)
        self._notify(affected)

    # PUBLIC_INTERFACE
    async def read(self, path: str) -> Optional[Any]:
        with self._lock:
            return self._snapshot(split_path(path))

    # PUBLIC_INTERFACE
    async def remove(self, path: str) -> None:
        parts = split_path(path)
        with self._lock:
            self._set(parts, None)
            affected = self._affected(parts)
        self._notify(affected)

    # PUBLIC_INTERFACE
    def subscribe(self, path: str, on_change: ChangeCallback) -> Unsubscribe:
        parts = split_path(path)
        with self._lock:
            listener_id = self._listener_counter
            self._listener_counter += 1
            self._listeners[listener_id] = (parts, on_change)
            current = self._snapshot(parts)
        logger.debug("Listener %s attached to %s", listener_id, path)
        on_change(current)

        def unsubscribe():
            with self._lock:
                self._listeners.pop(listener_id, None)
            logger.debug("Listener %s detached from %s", listener_id, path)

        return unsubscribe

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)
