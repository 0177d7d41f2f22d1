"""
In-memory document store.

Documents live in a single tree addressed by slash-separated paths
(``users/{uid}/referrals/{referredUid}``). The store offers the primitives the
ledger relies on:

- point reads and writes, multi-path partial updates with an atomic
  ``Increment`` sentinel
- push-generated unique keys
- ``transaction``: optimistic read-modify-write on a single subtree, retried
  when another writer changed the subtree between read and commit
- change subscriptions that deliver the latest value of a subtree
"""

import copy
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RETRIES = 25


class StoreError(Exception):
    pass


class TransactionConflictError(StoreError):
    pass


@dataclass(frozen=True)
class Increment:
    delta: Union[int, float]


@dataclass(frozen=True)
class TransactionResult:
    committed: bool
    value: Any


def split_path(path: str) -> list[str]:
    return [part for part in path.strip("/").split("/") if part]


def _is_related(a: list[str], b: list[str]) -> bool:
    shortest = min(len(a), len(b))
    return a[:shortest] == b[:shortest]


class InMemoryStorage:
    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES):
        self.max_retries = max_retries
        self._root: dict = {}
        self._lock = threading.RLock()
        self._listeners: dict[int, tuple[list[str], Callable[[Any], None]]] = {}
        self._listener_seq = 0

    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._read(split_path(path)))

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        with self._lock:
            self._write(parts, copy.deepcopy(value))
        self._notify([parts])

    def remove(self, path: str) -> None:
        self.set(path, None)

    def update(self, path: str, values: dict[str, Any]) -> None:
        """Apply several child writes atomically.

        Keys are paths relative to ``path`` and may contain slashes. An
        ``Increment`` value adds to the current number (missing counts as 0).
        """
        base = split_path(path)
        changed = []
        with self._lock:
            for relative, value in values.items():
                parts = base + split_path(relative)
                if isinstance(value, Increment):
                    value = (self._read(parts) or 0) + value.delta
                self._write(parts, copy.deepcopy(value))
                changed.append(parts)
        self._notify(changed)

    def push(self, path: str, value: Any = None) -> str:
        key = uuid4().hex
        if value is not None:
            self.set(f"{path}/{key}", value)
        return key

    def transaction(
        self,
        path: str,
        update_fn: Callable[[Any], Any],
        max_retries: Optional[int] = None,
    ) -> TransactionResult:
        """Optimistic read-modify-write on the subtree at ``path``.

        ``update_fn`` receives a private copy of the current value (``None`` if
        absent) and returns the new value, or ``None`` to abort without
        writing. It may run several times and must depend only on its input.
        """
        parts = split_path(path)
        retries = self.max_retries if max_retries is None else max_retries

        for attempt in range(retries + 1):
            with self._lock:
                snapshot = copy.deepcopy(self._read(parts))

            new_value = update_fn(copy.deepcopy(snapshot))
            if new_value is None:
                return TransactionResult(committed=False, value=snapshot)

            with self._lock:
                if self._read(parts) != snapshot:
                    logger.debug("store_transaction_conflict", path=path, attempt=attempt)
                    continue
                self._write(parts, copy.deepcopy(new_value))

            self._notify([parts])
            return TransactionResult(committed=True, value=copy.deepcopy(new_value))

        raise TransactionConflictError(
            f"Transaction on {path} did not commit after {retries + 1} attempts"
        )

    def subscribe(self, path: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Deliver the current value now and after every change under ``path``.

        Rapid successive writes may be observed as a single notification.
        Returns a function that removes the listener.
        """
        parts = split_path(path)
        with self._lock:
            self._listener_seq += 1
            listener_id = self._listener_seq
            self._listeners[listener_id] = (parts, callback)

        callback(self.get(path))

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(listener_id, None)

        return unsubscribe

    def _read(self, parts: list[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _write(self, parts: list[str], value: Any) -> None:
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return

        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[part] = child
            node = child

        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = value

    def _notify(self, changed: list[list[str]]) -> None:
        with self._lock:
            targets = [
                (parts, callback)
                for parts, callback in self._listeners.values()
                if any(_is_related(parts, c) for c in changed)
            ]

        for parts, callback in targets:
            try:
                callback(self.get("/".join(parts)))
            except Exception:
                logger.exception("store_listener_failed", path="/".join(parts))
