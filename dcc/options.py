#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Compiler and linker option sets.

An ``Options`` is an ordered list of option words plus the modification time
of whatever produced them. The build engine only reads ``values`` and
``mod_time_ns``; the timestamp acts as a dependency of every target built with
those options.
"""

from __future__ import annotations

import os
from enum import StrEnum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .errors import OptionsFileError
from .files import find_file_upwards

OptionFilter = Callable[[str], str]


class Options(BaseModel):
    """An ordered sequence of option words with an associated timestamp."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    values: List[str] = Field(default_factory=list, description="Option words")
    path: Optional[Path] = Field(
        default=None, description="File the options were read from"
    )
    mtime_ns: int = Field(
        default=0, ge=0, description="Freshest input time in nanoseconds, 0 if none"
    )

    @property
    def mod_time_ns(self) -> int:
        return self.mtime_ns

    def set_mod_time(self, mtime_ns: int) -> None:
        self.mtime_ns = mtime_ns

    def set_from(self, other: Options) -> None:
        """Copy values and timestamp from another Options, keeping our path."""
        self.values = list(other.values)
        self.mtime_ns = other.mtime_ns

    def append(self, option: str) -> None:
        # Appending does not change the timestamp.
        self.values.append(option)

    def prepend(self, option: str) -> None:
        self.values.insert(0, option)

    def option_index(self, option: str) -> int:
        """Return the index of an option word, or -1 if absent."""
        try:
            return self.values.index(option)
        except ValueError:
            return -1

    def remove_option_with_value(self, option: str) -> Optional[str]:
        """
        Remove an option and the word following it, returning that word.

        Returns None if the option is not present. Raises ValueError if the
        option is the last word and so has no value.
        """
        index = self.option_index(option)
        if index == -1:
            return None
        if index == len(self.values) - 1:
            raise ValueError(f"{option} requires a value")
        value = self.values[index + 1]
        del self.values[index : index + 2]
        return value

    @property
    def empty(self) -> bool:
        return not self.values

    def __len__(self) -> int:
        return len(self.values)

    def __str__(self) -> str:
        return " ".join(self.values)


def most_recent_mod_time(*options: Options) -> int:
    """Return the most recent timestamp of the given option sets."""
    return max((o.mod_time_ns for o in options), default=0)


class ScanState(StrEnum):
    """State of one level of conditional section."""

    TRUE = "true"
    FALSE = "false"
    # Nested inside a false section; #else leaves it skipped.
    SKIPPED = "skipped"


class ConditionalStack:
    """Tracks nested #ifdef/#ifndef sections while reading an options file."""

    def __init__(self) -> None:
        self._states: List[ScanState] = []

    @property
    def active(self) -> bool:
        return bool(self._states)

    @property
    def skipping(self) -> bool:
        return self.active and self._states[-1] is not ScanState.TRUE

    def push(self, condition: bool) -> None:
        if self.skipping:
            self._states.append(ScanState.SKIPPED)
        else:
            self._states.append(ScanState.TRUE if condition else ScanState.FALSE)

    def toggle(self) -> None:
        state = self._states[-1]
        if state is ScanState.TRUE:
            self._states[-1] = ScanState.FALSE
        elif state is ScanState.FALSE:
            self._states[-1] = ScanState.TRUE

    def pop(self) -> None:
        self._states.pop()

    def __len__(self) -> int:
        return len(self._states)


def _strip_delimiters(name: str) -> str:
    if len(name) >= 2 and (name[0], name[-1]) in (('"', '"'), ("<", ">")):
        return name[1:-1]
    return name


def read_options_file(
    path: os.PathLike | str,
    filter: Optional[OptionFilter] = None,
    into: Optional[Options] = None,
) -> Options:
    """
    Read options from a text file.

    Each non-blank line is split into whitespace separated words. Environment
    variable references are expanded before the words are passed through
    ``filter``; words the filter maps to an empty string are dropped.

    Lines whose first word starts with '#' are comments, apart from these
    directives:

    - ``#ifdef VAR`` and ``#ifndef VAR`` open a section kept only if the
      environment variable is (or is not) set to a non-empty value;
      ``#else`` and ``#endif`` continue and close it.
    - ``#error message`` fails the read unless it is in a skipped section.
    - ``#include "file"`` or ``#include <file>`` reads another file,
      relative to the including file's directory, into the same options.
    - ``#inherit`` reads the file of the same name found by searching
      upwards from the including file's parent directory.

    Args:
        path: Options file to read
        filter: Optional function applied to every option word
        into: Existing Options to extend, a new one is created if omitted

    Returns:
        The Options read, with ``path`` set to the file and ``mtime_ns`` to
        the most recent time of every file read

    Raises:
        FileNotFoundError: If the file does not exist
        OptionsFileError: If a file cannot be read or holds a bad directive
    """
    options = into if into is not None else Options()
    file_path = Path(path)
    _read_into(options, file_path, filter, ())
    options.path = file_path
    logger.debug(f"OPTIONS: read {len(options)} words from {file_path}")
    return options


def _read_into(
    options: Options,
    file_path: Path,
    filter: Optional[OptionFilter],
    including: Tuple[Path, ...],
) -> None:
    try:
        info = file_path.stat()
        text = file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except (OSError, UnicodeDecodeError) as e:
        raise OptionsFileError(
            f"failed to read options: {e}",
            path=str(file_path),
            error_code="OPTIONS_READ_ERROR",
        ) from e

    options.mtime_ns = max(options.mtime_ns, info.st_mtime_ns)
    including = (*including, file_path.resolve())
    conditional = ConditionalStack()

    def error(
        line_number: int, message: str, code: str = "OPTIONS_DIRECTIVE"
    ) -> OptionsFileError:
        return OptionsFileError(
            message, path=str(file_path), line_number=line_number, error_code=code
        )

    def read_nested(line_number: int, nested: Path) -> None:
        if nested.resolve() in including:
            raise error(line_number, f"recursive read of {str(nested)!r}")
        try:
            _read_into(options, nested, filter, including)
        except FileNotFoundError as e:
            raise error(line_number, f"cannot open {str(nested)!r}") from e

    for line_number, line in enumerate(text.splitlines(), start=1):
        fields = line.split()
        if not fields:
            continue
        directive = fields[0]

        if directive == "#error":
            if not conditional.skipping:
                raise error(
                    line_number,
                    " ".join(fields[1:]) or "#error raised without message",
                    code="OPTIONS_ERROR_DIRECTIVE",
                )
            continue

        if directive in ("#ifdef", "#ifndef"):
            if conditional.skipping:
                conditional.push(False)
                continue
            if len(fields) != 2:
                raise error(line_number, f"{directive} requires a single parameter")
            defined = os.environ.get(fields[1], "") != ""
            conditional.push(defined if directive == "#ifdef" else not defined)
            continue

        if directive in ("#else", "#endif"):
            if not conditional.active:
                raise error(line_number, "not within a conditional section")
            if directive == "#else":
                conditional.toggle()
            else:
                conditional.pop()
            continue

        if conditional.skipping:
            continue

        if directive == "#include":
            if len(fields) != 2:
                raise error(line_number, f"malformed #include - {line}")
            nested = file_path.parent / _strip_delimiters(fields[1])
            logger.debug(f"OPTIONS: {str(file_path)!r} including {str(nested)!r}")
            read_nested(line_number, nested)
            continue

        if directive == "#inherit":
            if len(fields) != 1:
                raise error(line_number, f"malformed #inherit - {line}")
            inherited = find_file_upwards(
                file_path.name, file_path.resolve().parent.parent
            )
            if inherited is None:
                raise error(line_number, f"#inherited file {file_path.name!r} not found")
            logger.debug(f"OPTIONS: {str(file_path)!r} inheriting {str(inherited)!r}")
            read_nested(line_number, inherited)
            continue

        if directive.startswith("#"):
            continue

        for field in fields:
            for word in os.path.expandvars(field).split():
                if filter is not None:
                    word = filter(word)
                if word:
                    options.values.append(word)

    if conditional.active:
        raise error(len(text.splitlines()), "missing #endif")
