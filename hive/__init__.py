"""Models of kernel memory allocators, region mapping and a knode object store."""

__version__ = "0.1.0"