#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Up-to-date decisions for compiled and linked targets.

A target is current only if it exists and nothing it was built from (its
source, its options and every dependency) has a strictly later modification
time. Equal times count as up to date.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable, Optional, Sequence

from loguru import logger

from .options import Options
from .stat_cache import StatCache


class StaleReason(StrEnum):
    """Why a target was judged stale (or not)."""

    UP_TO_DATE = "up-to-date"
    TARGET_MISSING = "target-missing"
    SOURCE_NEWER = "source-newer"
    OPTIONS_NEWER = "options-newer"
    DEPENDENCY_MISSING = "dependency-missing"
    DEPENDENCY_NEWER = "dependency-newer"
    INPUT_NEWER = "input-newer"
    OTHER_INPUT_NEWER = "other-input-newer"
    LIBRARY_NEWER = "library-newer"
    STAT_ERROR = "stat-error"
    FORCED = "forced"

    def __str__(self) -> str:
        descriptions = {
            self.UP_TO_DATE: "target up to date",
            self.TARGET_MISSING: "target does not exist",
            self.SOURCE_NEWER: "source newer than target",
            self.OPTIONS_NEWER: "options newer than target",
            self.DEPENDENCY_MISSING: "dependent file does not exist",
            self.DEPENDENCY_NEWER: "dependency newer than target",
            self.INPUT_NEWER: "input newer than target",
            self.OTHER_INPUT_NEWER: "other input newer than target",
            self.LIBRARY_NEWER: "library newer than target",
            self.STAT_ERROR: "stat failed",
            self.FORCED: "dependencies ignored",
        }
        return descriptions.get(self, self.value)


@dataclass(frozen=True, slots=True)
class StalenessVerdict:
    """Outcome of an up-to-date check. Truthy when the target is current."""

    up_to_date: bool
    reason: StaleReason
    path: Optional[str] = None

    def __bool__(self) -> bool:
        return self.up_to_date

    @property
    def caption(self) -> str:
        if self.path:
            return f"{self.path!r}: {self.reason}"
        return str(self.reason)

    @classmethod
    def current(cls) -> StalenessVerdict:
        return cls(True, StaleReason.UP_TO_DATE)

    @classmethod
    def stale(cls, reason: StaleReason, path: Optional[str] = None) -> StalenessVerdict:
        return cls(False, reason, path)


def file_is_newer(a: Optional[os.stat_result], b: Optional[os.stat_result]) -> bool:
    """True if ``a`` was modified strictly after ``b``."""
    if a is None:
        return False
    if b is None:
        return True
    return a.st_mtime_ns > b.st_mtime_ns


class StalenessEngine:
    """Timestamp comparisons backed by a shared ``StatCache``."""

    def __init__(self, stat_cache: Optional[StatCache] = None) -> None:
        self.stat_cache = stat_cache or StatCache()

    def _trace(
        self, subject: str, target: str, verdict: StalenessVerdict
    ) -> StalenessVerdict:
        currency = "up to" if verdict.up_to_date else "out of"
        logger.bind(
            target=target, verdict=verdict.up_to_date, reason=verdict.reason.value
        ).debug(f"DEPS: {subject!r} ({target!r}) -> ({currency} date) - {verdict.caption}")
        return verdict

    def _stat_failed(self, subject: str, target: str, path: str, error: OSError) -> None:
        logger.bind(target=target, reason=StaleReason.STAT_ERROR.value).debug(
            f"DEPS: {subject!r} ({target!r}) -> (out of date, {error}) - {path!r}: stat failed"
        )

    def target_info(self, target: os.PathLike | str) -> Optional[os.stat_result]:
        """Stat a target, returning None if it does not exist."""
        try:
            return self.stat_cache.stat(target)
        except FileNotFoundError:
            return None

    def check(
        self,
        target: os.PathLike | str,
        deps: Iterable[str],
        source_info: Optional[os.stat_result],
        options: Optional[Options] = None,
        source_name: str = "",
    ) -> StalenessVerdict:
        """
        Decide whether a compiled target is up to date.

        Checks run in order and stop at the first stale condition: target
        missing, source newer, options newer, then each dependency in listed
        order (missing or newer).

        Args:
            target: The object file (or other generated file)
            deps: Dependency paths read from the target's dependency record
            source_info: Stat result for the target's source file
            options: Options used to build the target
            source_name: Name used in trace output

        Returns:
            StalenessVerdict describing the decision

        Raises:
            OSError: If stat'ing the target or a dependency fails for any
                reason other than the file not existing
        """
        target = os.fspath(target)
        subject = source_name or target

        try:
            target_info = self.stat_cache.stat(target)
        except FileNotFoundError:
            return self._trace(
                subject, target, StalenessVerdict.stale(StaleReason.TARGET_MISSING)
            )
        except OSError as e:
            self._stat_failed(subject, target, target, e)
            raise

        if file_is_newer(source_info, target_info):
            return self._trace(
                subject, target, StalenessVerdict.stale(StaleReason.SOURCE_NEWER)
            )

        if options is not None and options.mod_time_ns > target_info.st_mtime_ns:
            return self._trace(
                subject, target, StalenessVerdict.stale(StaleReason.OPTIONS_NEWER)
            )

        for path in deps:
            try:
                dep_info = self.stat_cache.stat(path)
            except FileNotFoundError:
                return self._trace(
                    subject,
                    target,
                    StalenessVerdict.stale(StaleReason.DEPENDENCY_MISSING, path),
                )
            except OSError as e:
                self._stat_failed(subject, target, path, e)
                raise
            if file_is_newer(dep_info, target_info):
                return self._trace(
                    subject,
                    target,
                    StalenessVerdict.stale(StaleReason.DEPENDENCY_NEWER, path),
                )

        return self._trace(subject, target, StalenessVerdict.current())

    def is_up_to_date(
        self,
        target: os.PathLike | str,
        deps: Iterable[str],
        source_info: Optional[os.stat_result],
        options: Optional[Options] = None,
    ) -> bool:
        return self.check(target, deps, source_info, options).up_to_date

    def newest_of(self, paths: Sequence[os.PathLike | str]) -> Optional[int]:
        """
        Return the most recent modification time (ns) of the given files.

        Returns None for an empty sequence. Any stat failure, including a
        missing file, is raised.
        """
        newest: Optional[int] = None
        for path in paths:
            mtime = self.stat_cache.stat(path).st_mtime_ns
            if newest is None or mtime > newest:
                newest = mtime
        return newest
