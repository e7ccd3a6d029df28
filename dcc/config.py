#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Engine configuration.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .files import DEFAULT_DEPS_DIR
from .utils import default_jobs, getenv, getenv_int, load_json, load_json_async


class EngineConfig(BaseModel):
    """Settings shared by the compilation scheduler and the link stage."""

    model_config = ConfigDict(
        extra="forbid", validate_assignment=True, str_strip_whitespace=True
    )

    jobs: int = Field(
        default_factory=default_jobs, ge=1, description="Concurrent compilations"
    )
    objdir: str = Field(default=".", description="Directory for object files")
    deps_dir: str = Field(
        default=DEFAULT_DEPS_DIR,
        description="Dependency record directory, relative to each object's directory",
    )
    ignore_dependencies: bool = Field(
        default=False, description="Rebuild everything regardless of timestamps"
    )
    quiet: bool = Field(default=False, description="Suppress command echo")
    verbose: bool = Field(default=False, description="Echo full command lines")
    debug: bool = Field(default=False, description="Enable debug tracing")

    @field_validator("objdir", "deps_dir")
    @classmethod
    def validate_directory(cls, v: str) -> str:
        if not v:
            raise ValueError("directory name must not be empty")
        return v

    @classmethod
    def from_env(cls, **overrides: Any) -> EngineConfig:
        """
        Build a configuration from NUMJOBS, OBJDIR, DEPSDIR and DCCDEBUG,
        then apply keyword overrides.
        """
        values: Dict[str, Any] = {
            "jobs": getenv_int("NUMJOBS", default_jobs()),
            "objdir": getenv("OBJDIR", "."),
            "deps_dir": getenv("DEPSDIR", DEFAULT_DEPS_DIR),
            "debug": bool(os.environ.get("DCCDEBUG")),
        }
        if values["jobs"] < 1:
            logger.warning(f"NUMJOBS must be at least 1, using {default_jobs()}")
            values["jobs"] = default_jobs()
        values.update(overrides)
        return cls._validated(values, "environment")

    @classmethod
    def _validated(cls, data: Any, source: str) -> EngineConfig:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"invalid configuration in {source}: {e}",
                error_code="INVALID_CONFIG",
                source=source,
            ) from e

    @classmethod
    def load(cls, path: os.PathLike | str) -> EngineConfig:
        """
        Load configuration from a JSON file.

        Raises:
            ConfigurationError: If the file is not valid JSON or has invalid settings
            OSError: If the file cannot be read
        """
        try:
            data = load_json(path)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"invalid JSON in {path}: {e}", error_code="INVALID_JSON", source=str(path)
            ) from e
        return cls._validated(data, os.fspath(path))

    @classmethod
    async def load_async(cls, path: os.PathLike | str) -> EngineConfig:
        """Asynchronous version of ``load``."""
        try:
            data = await load_json_async(path)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"invalid JSON in {path}: {e}", error_code="INVALID_JSON", source=str(path)
            ) from e
        return cls._validated(data, os.fspath(path))
