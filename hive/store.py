"""The knode object store: a root directory and path resolution."""

from __future__ import annotations

import errno
from typing import Callable, Iterator, Optional

from .knode import Knode, KnodeError, KType, new_knode

# Size of the buffer a single path component is gathered into.
_PATHBUF_LEN = 128


def new_dir(name: str) -> Knode:
    """Create an empty directory knode."""
    node = new_knode(name, KType.DIR)
    node.data = []
    return node


def _components(path: str) -> Iterator[str]:
    """Split a path on runs of slashes, keeping a trailing empty component."""
    pos = 0
    end_of_path = len(path)
    while pos < end_of_path:
        while pos < end_of_path and path[pos] == "/":
            pos += 1
        end = path.find("/", pos)
        if end < 0:
            end = end_of_path
        yield path[pos:end]
        pos = end


class ObjectStore:
    """Holds the root knode directory and resolves paths beneath it."""

    def __init__(self) -> None:
        self.root = new_dir("/")

    def append(self, node: Knode, directory: Optional[Knode] = None) -> None:
        """Add ``node`` to ``directory``, or to the root if none is given."""
        if node is None:
            raise KnodeError(errno.EINVAL, "no knode to append")
        if directory is None:
            directory = self.root_get("/")
        if directory.type is not KType.DIR:
            raise KnodeError(errno.ENOTSUP, f"{directory.name!r} is not a directory")
        if directory.data is None:
            raise KnodeError(errno.EIO, f"directory {directory.name!r} has no entries list")
        directory.data.append(node)

    def root_get(self, name: str) -> Knode:
        """Return the root itself for ``"/"``, else the root entry ``name``."""
        if not isinstance(name, str):
            raise KnodeError(errno.EINVAL, "name must be a string")
        if name == "/":
            return self.root
        for node in self.root.data:
            if node.name == name:
                return node
        raise KnodeError(errno.ENOENT, f"no entry {name!r} in the root directory")

    def root_foreach(self, ktype: KType, callback: Callable[[Knode], int]) -> int:
        """Call ``callback`` on each root entry of type ``ktype``.

        A negative return value continues the walk; any other value stops
        it. The last value returned is passed back, 0 if none was called.
        """
        result = 0
        for node in self.root.data:
            if node.type != ktype:
                continue
            result = callback(node)
            if result >= 0:
                break
        return result

    def resolve(self, path: str) -> Optional[Knode]:
        """Look up a knode by slash-separated path from the root.

        An empty path resolves to None.
        """
        if not isinstance(path, str):
            raise KnodeError(errno.EINVAL, "path must be a string")
        node: Optional[Knode] = None
        for component in _components(path):
            if len(component) > _PATHBUF_LEN - 1:
                raise KnodeError(errno.ENAMETOOLONG, "path component too long")
            if node is None:
                node = self.root_get(component)
            else:
                node = node.find(component)
        return node