#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Memoized filesystem metadata lookups shared by concurrent build tasks.
"""

from __future__ import annotations

import os
import threading
from typing import Dict

from loguru import logger

PathKey = str


class StatCache:
    """
    A cache of ``os.stat`` results keyed by path.

    The index is protected by a lock but ``os.stat`` itself is called without
    holding it. Two callers stat'ing the same uncached path at the same time
    will both hit the filesystem; the first result stored is kept. Given the
    paths involved the results are identical, so the only cost is the
    duplicated system call.

    Failed lookups are not cached. Callers must ``invalidate`` a path before
    anything rewrites it, otherwise later lookups return the old time.
    """

    def __init__(self) -> None:
        self._entries: Dict[PathKey, os.stat_result] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def stat(self, path: os.PathLike | str) -> os.stat_result:
        """
        Return the (possibly cached) stat result for a path.

        Raises:
            FileNotFoundError: If the path does not exist
            OSError: For any other stat failure
        """
        key = os.fspath(path)

        with self._lock:
            info = self._entries.get(key)
            if info is not None:
                self.hits += 1
                return info
            self.misses += 1

        info = os.stat(key)

        with self._lock:
            info = self._entries.setdefault(key, info)
        return info

    def invalidate(self, path: os.PathLike | str) -> None:
        """Forget any cached result for a path."""
        key = os.fspath(path)
        with self._lock:
            if self._entries.pop(key, None) is not None:
                logger.trace(f"STAT: invalidated {key}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        with self._lock:
            return os.fspath(path) in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
