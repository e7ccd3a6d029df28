#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Exception hierarchy for the dcc build engine.

Every exception carries an optional ``error_code`` and free-form keyword
context so callers (and log sinks) can tell "this unit failed to build" apart
from "this feature is not available for the selected toolchain".
"""

from __future__ import annotations

from typing import Any, List, Optional

from loguru import logger


class DccError(Exception):
    """Base exception for build engine errors."""

    def __init__(
        self, message: str, *, error_code: Optional[str] = None, **kwargs: Any
    ):
        super().__init__(message)
        self.error_code = error_code
        self.context = kwargs

        logger.bind(error_code=error_code, context=kwargs).debug(
            f"{type(self).__name__}: {message}"
        )


class DependencyFileError(DccError):
    """A dependency record could not be parsed."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any):
        super().__init__(message, path=path, **kwargs)
        self.path = path

    def __str__(self) -> str:
        message = super().__str__()
        return f"{self.path}: {message}" if self.path else message


class UnexpectedEOFError(DependencyFileError):
    """The dependency file is empty."""

    def __init__(self, path: Optional[str] = None):
        super().__init__(
            "unexpected end of file", path=path, error_code="UNEXPECTED_EOF"
        )


class NoColonError(DependencyFileError):
    """The first rule of a make-style dependency file has no ':'."""

    def __init__(self, path: Optional[str] = None):
        super().__init__(
            "expected a make-target on line 1 of dependency file, no ':' found",
            path=path,
            error_code="NO_COLON",
        )


class MultipleTargetsError(DependencyFileError):
    """More than one make target was found in a dependency file."""

    def __init__(self, path: Optional[str] = None, token: Optional[str] = None):
        super().__init__(
            "multiple targets found in dependency file",
            path=path,
            error_code="MULTIPLE_TARGETS",
            token=token,
        )


class CommandError(DccError):
    """An external tool failed to start or exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        return_code: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, command=command, return_code=return_code, **kwargs)
        self.command = command
        self.return_code = return_code


class ProtocolNotImplementedError(DccError, NotImplementedError):
    """The selected dependency protocol does not support the operation."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, error_code="NOT_IMPLEMENTED", **kwargs)


class UnsupportedCompilerError(DccError):
    """No dependency protocol is known for the named toolchain."""

    def __init__(self, name: str):
        super().__init__(
            f"{name}: unsupported compiler",
            error_code="UNSUPPORTED_COMPILER",
            compiler=name,
        )
        self.name = name


class ConfigurationError(DccError):
    """Engine configuration is invalid."""

    pass


class OptionsFileError(DccError):
    """An options file could not be read."""

    def __init__(self, message: str, path: str, line_number: int = 0, **kwargs: Any):
        super().__init__(message, path=path, line_number=line_number, **kwargs)
        self.path = path
        self.line_number = line_number

    def __str__(self) -> str:
        if self.line_number:
            return f"error: {self.path}:{self.line_number} {super().__str__()}"
        return f"error: {self.path}: {super().__str__()}"
