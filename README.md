# hive

This package provides memory-management and object-store building blocks for
a small kernel, written as plain Python models. It never touches real memory.
Addresses are integers, and each allocator keeps its own bookkeeping.

## Modules

### `hive.bits`

This module holds the arithmetic behind the allocator, using 64-bit words and
8-byte alignment:

- `ffs` and `fls` return the lowest or highest set bit of a 32-bit word. They
  return -1 for zero.
- `fls_sizet` does the same as `fls` for a 64-bit size.
- `align_up` and `align_down` round to a power-of-two alignment. Any other
  alignment raises `ValueError`.
- `adjust_request_size` aligns a request and raises it to the minimum block
  size. It returns 0 for a zero request and for a request that is too large.
- `mapping_insert` and `mapping_search` map a size to its first-level and
  second-level free-list indices.

### `hive.tlsf`

This module provides `Tlsf`, a Two-Level Segregated Fit allocator over
simulated address ranges.

- `add_pool(base, size)` adds a pool and `remove_pool(pool)` takes it away.
  The base addresses of the current pools are kept in `Tlsf.pools`.
- `malloc`, `memalign`, `realloc` and `free` behave as follows:
  - A zero-size request returns `None`.
  - A request that cannot be met raises `MemoryError`.
  - `free(None)` and `realloc(ptr, 0)` free the block.
  - `realloc(None, n)` allocates.
- `block_size(ptr)` gives the internal size of a block.
- These methods inspect the allocator:
  - `walk_pool(pool)` yields `(ptr, size, used)` for each block.
  - `check()` checks the free lists and bitmaps.
  - `check_pool(pool)` checks the physical chain of blocks.
  - Both checks return 0 when everything is sound.
- `create_with_pool(base, size)` places the control data at the start of the
  range and makes the rest of the range a pool.
- If the structures are misused, for example by a double free or an unknown
  pointer, the allocator raises `TlsfError`.

### `hive.pmem`

`PhysicalMemory(memory_map, kernel_base)` is a page-frame bitmap allocator
with 4 KiB pages. It is built from `MemEntry(base, length, type)` records,
where each type is a `MemType`.

- Only `MemType.USABLE` ranges start out free.
- `alloc(count)` returns the base address of `count` contiguous free frames.
  If no such run exists it raises `MemoryError`.
- `free(base, count)` releases frames.
- `is_allocated(address)` tells whether a frame is in use.
- `phys_to_virt(phys)` adds the kernel base to a physical address.
- `format_size` renders a byte count as GiB, MiB or bytes.

### `hive.pool`

`Pool(pmem, size=0x2000000)` takes frames from a `PhysicalMemory` and runs a
TLSF heap over their virtual addresses. Its methods are `allocate(length)`
and `free(address)`, and both are guarded by a lock.

### `hive.knode`

This module defines kernel nodes.

- `new_knode(name, ktype)` creates a `Knode` with one reference. A name of 31
  characters or more raises `KnodeError` with `errno.ENAMETOOLONG`.
- `KType` lists the node kinds: `NONE`, `DIR` and `CLKDEV`.
- `Knode.find(name)` looks up a child of a directory node.

### `hive.store`

`ObjectStore` has a root directory named `"/"`.

- `new_dir(name)` creates an empty directory node.
- `append(node, directory)` adds a node to a directory. If `directory` is
  `None`, the node goes into the root.
- `root_get(name)` returns a root entry, or the root itself for `"/"`.
- `root_foreach(ktype, callback)` calls the callback on root entries of
  `ktype`. The walk continues while the callback returns a negative value.
- `resolve(path)` walks a slash-separated path from the root.
- Failures raise `KnodeError`, with an `errno` code giving the reason.

### `hive.vmem`

`map_region(mapper, region, prot)` maps a `VmemRegion(vma, pma, length)` one
4 KiB page at a time. For each page it calls
`mapper(vma, pma, prot, PageSize.PAGE_4K)`, and it returns the number of
pages mapped. An exception raised by the mapper stops the walk.

## What it does not do

The package has no boot-time setup, no page-table code and no hardware
access. Nothing fills in a memory map for you: you pass one to
`PhysicalMemory`. `map_region` only drives a mapper function that you
supply. There is no command-line program.

## Example

```python
from hive.tlsf import create_with_pool

heap = create_with_pool(0x10000, 1 << 20)
a = heap.malloc(100)
b = heap.memalign(256, 64)
assert b % 256 == 0
heap.free(a)
heap.free(b)
assert heap.check() == 0
```

```python
from hive.store import ObjectStore, new_dir

store = ObjectStore()
dev = new_dir("dev")
store.append(dev, None)
assert store.resolve("/dev") is dev
```

## Tests

```
pip install -e .[test]
pytest
```