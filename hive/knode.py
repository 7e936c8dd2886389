"""Kernel nodes: named, typed handles for arbitrary system objects."""

from __future__ import annotations

import enum
import errno
from dataclasses import dataclass
from typing import Any

# Size of a knode's name buffer, terminator included.
KNODE_NAME_LEN = 32


class KnodeError(OSError):
    """Raised when a knode cannot be created or looked up.

    The ``errno`` attribute carries the reason, as an ``errno`` code.
    """


class KType(enum.IntEnum):
    """Kinds of kernel node."""

    NONE = 0
    DIR = 1
    CLKDEV = 2


@dataclass(eq=False)
class Knode:
    """An abstract system object.

    A directory node holds its children, in insertion order, as a list
    in ``data``.
    """

    name: str
    type: KType
    data: Any = None
    ref: int = 1

    def find(self, name: str) -> "Knode":
        """Return the child of this directory called ``name``."""
        if not isinstance(name, str):
            raise KnodeError(errno.EINVAL, "name must be a string")
        if self.type is not KType.DIR:
            raise KnodeError(errno.ENOTDIR, f"{self.name!r} is not a directory")
        if self.data is None:
            raise KnodeError(errno.EIO, f"directory {self.name!r} has no entries list")
        for child in self.data:
            if child.name == name:
                return child
        raise KnodeError(errno.ENOENT, f"no entry {name!r} in {self.name!r}")


def new_knode(name: str, ktype: KType) -> Knode:
    """Create a knode with one reference and no backing data."""
    if not isinstance(name, str):
        raise KnodeError(errno.EINVAL, "name must be a string")
    if len(name) >= KNODE_NAME_LEN - 1:
        raise KnodeError(errno.ENAMETOOLONG, f"knode name too long: {name!r}")
    return Knode(name=name, type=KType(ktype))