"""Disk-based response caching for coursectl.

This package provides :class:`DiskCache`, a file-per-entry store for
response bodies with per-entry expiration, and :func:`make_key`, the
versioned key derivation shared by every writer and reader.

The cache is consumed by :class:`~coursectl.client.APIClient` for GET
requests marked cacheable, and by the ``coursectl cache`` commands for
statistics and pruning.
"""

from coursectl.cache.disk import DiskCache
from coursectl.cache.keys import KEY_VERSION, entry_filename, make_key

__all__ = ["DiskCache", "KEY_VERSION", "entry_filename", "make_key"]
