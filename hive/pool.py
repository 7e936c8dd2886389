"""General-purpose kernel memory pool backed by physical frames."""

from __future__ import annotations

import threading
from typing import Optional

from .pmem import PAGESIZE, PhysicalMemory
from .tlsf import Tlsf, create_with_pool

POOL_SIZE = 0x2000000


class Pool:
    """A TLSF heap placed over frames taken from the physical allocator."""

    def __init__(self, pmem: PhysicalMemory, size: int = POOL_SIZE) -> None:
        try:
            self.physical_base = pmem.alloc(size // PAGESIZE)
        except MemoryError as exc:
            raise MemoryError("pool: could not initialize root pool") from exc
        self.size = size
        self.base = pmem.phys_to_virt(self.physical_base)
        self.tlsf: Tlsf = create_with_pool(self.base, size)
        self._lock = threading.Lock()

    def allocate(self, length: int) -> Optional[int]:
        """Allocate ``length`` bytes; None for a zero request."""
        with self._lock:
            return self.tlsf.malloc(length)

    def free(self, address: Optional[int]) -> None:
        """Release memory obtained from :meth:`allocate`."""
        with self._lock:
            self.tlsf.free(address)