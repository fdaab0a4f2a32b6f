"""Reactive records for the client-side board cache.

A Node is an attribute-style record and a ListNode an id-keyed collection
of Nodes. Changing a field notifies the watchers registered for that field,
then the watchers each ancestor registered for the branch the change came
up through, so a watcher on board.containers["P1"] hears P1's children
being rewritten.

hold() defers notifications for a whole tree until the outermost hold
exits. A move rewrites several items and containers; views redraw once
per changed field instead of once per assignment.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator

Callback = Callable[["Node | ListNode", str, Any, Any], None]


class _Tree:
    """Parent link, watcher registry and change delivery shared by Node and ListNode."""

    def _init_tree(self, parent: _Tree | None, key: str | None) -> None:
        object.__setattr__(self, "_parent", parent)
        object.__setattr__(self, "_key", key)
        object.__setattr__(self, "_watchers", {})
        object.__setattr__(self, "_held", None)
        object.__setattr__(self, "_depth", 0)

    def _root(self) -> _Tree:
        node = self
        while node._parent is not None:
            node = node._parent
        return node

    def _attach(self, value: Any, key: str) -> Any:
        """Wrap dicts as Nodes and hang existing nodes under self."""
        if isinstance(value, dict):
            return Node(_parent=self, _key=key, **value)
        if isinstance(value, _Tree):
            object.__setattr__(value, "_parent", self)
            object.__setattr__(value, "_key", key)
        return value

    def _changed(self, key: str, old: Any, new: Any) -> None:
        root = self._root()
        if root._held is None:
            self._deliver(key, old, new)
            return
        # Coalesce: keep the first old value and the latest new one
        earlier = root._held.get((id(self), key))
        if earlier is not None:
            old = earlier[2]
        root._held[(id(self), key)] = (self, key, old, new)

    def _deliver(self, key: str, old: Any, new: Any) -> None:
        for callback in list(self._watchers.get(key, ())):
            callback(self, key, old, new)
        child, parent = self, self._parent
        while parent is not None:
            for callback in list(parent._watchers.get(child._key, ())):
                callback(self, key, old, new)
            child, parent = parent, parent._parent

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Defer change notifications for this node's tree.

        Holds nest. When the outermost one exits, each changed field is
        delivered once, in the order it first changed; fields that ended
        where they started are dropped.
        """
        root = self._root()
        if root._held is None:
            object.__setattr__(root, "_held", {})
        object.__setattr__(root, "_depth", root._depth + 1)
        try:
            yield
        finally:
            object.__setattr__(root, "_depth", root._depth - 1)
            if root._depth == 0:
                held = root._held
                object.__setattr__(root, "_held", None)
                for node, key, old, new in held.values():
                    if old is not new and old != new:
                        node._deliver(key, old, new)

    def watch(self, key: str, callback: Callback) -> Callable[[], None]:
        """Call callback(node, key, old, new) when key changes. Returns an unwatch callable."""
        key = str(key)
        self._watchers.setdefault(key, []).append(callback)

        def unwatch() -> None:
            callbacks = self._watchers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unwatch

    @property
    def path(self) -> str:
        """Dotted keys from the root down to this node."""
        keys: list[str] = []
        node = self
        while node is not None and node._key is not None:
            keys.append(node._key)
            node = node._parent
        return ".".join(reversed(keys))


class Node(_Tree):
    """Attribute-style reactive record. Assigning None removes a field."""

    def __init__(self, _parent: _Tree | None = None, _key: str | None = None, **fields: Any) -> None:
        object.__setattr__(self, "_fields", {})
        # Detached while the initial fields go in, so nothing bubbles
        self._init_tree(None, _key)
        for name, value in fields.items():
            setattr(self, name, value)
        object.__setattr__(self, "_parent", _parent)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._fields.get(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
            return
        old = self._fields.get(name)
        if value is None:
            self._fields.pop(name, None)
        else:
            value = self._attach(value, name)
            self._fields[name] = value
        if old != value:
            self._changed(name, old, value)

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def keys(self) -> list[str]:
        return list(self._fields)

    def assign(self, **fields: Any) -> None:
        """Set several fields; only the ones that change notify."""
        for name, value in fields.items():
            setattr(self, name, value)

    def to_dict(self) -> dict[str, Any]:
        return {name: v.to_dict() if isinstance(v, Node) else v for name, v in self._fields.items()}

    def __repr__(self) -> str:
        where = f"({self.path})" if self.path else ""
        return f"<Node{where} {' '.join(self._fields)}>"


class ListNode(_Tree):
    """Id-keyed Nodes in insertion order. Assigning None removes an id."""

    def __init__(self, _parent: _Tree | None = None, _key: str | None = None) -> None:
        object.__setattr__(self, "_members", {})
        self._init_tree(_parent, _key)

    def __getitem__(self, key: str) -> Any:
        return self._members.get(str(key))

    def __setitem__(self, key: str, value: Any) -> None:
        key = str(key)
        old = self._members.get(key)
        if value is None:
            if old is None:
                return
            del self._members[key]
        else:
            value = self._attach(value, key)
            self._members[key] = value
            if value is old:
                return
        self._changed(key, old, value)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._members.values()))

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, key: str) -> bool:
        return str(key) in self._members

    def keys(self) -> list[str]:
        return list(self._members)

    def items(self) -> list[tuple[str, Any]]:
        return list(self._members.items())

    def __repr__(self) -> str:
        where = f"({self.path})" if self.path else ""
        return f"<ListNode{where} {' '.join(self._members)}>"
