"""
Configuration - Execution, cache and validation settings.

Every settings object round-trips through a plain dict so it can be
stored as JSON next to a saved graph.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pixelflow.core.cache import DEFAULT_CAPACITY, DEFAULT_MAX_MEMORY, DEFAULT_TTL
from pixelflow.core.chunked import DEFAULT_MEMORY_LIMIT


class FailurePolicy(Enum):
    """What a node failure does to the rest of the run."""
    AGGREGATE = "aggregate"     # Skip dependents only, keep going
    FAIL_FAST = "fail_fast"     # Start nothing new after the first error


def _default_workers() -> int:
    return min(4, os.cpu_count() or 1)


@dataclass
class ExecutionSettings:
    """
    Settings for one engine run.

    Attributes:
        memory_limit: Bytes a single node's image working set may use
            before it is routed through tiled processing
        auto_chunk: Allow tiled processing at all
        tile_size: (width, height) of tiles
        parallel: Run each depth batch concurrently
        use_cache: Consult and fill the result cache
        max_workers: Concurrency bound within a batch
        failure_policy: aggregate or fail-fast
    """
    memory_limit: int = DEFAULT_MEMORY_LIMIT
    auto_chunk: bool = True
    tile_size: tuple[int, int] = (512, 512)
    parallel: bool = False
    use_cache: bool = True
    max_workers: int = field(default_factory=_default_workers)
    failure_policy: FailurePolicy = FailurePolicy.AGGREGATE

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.tile_size = (int(self.tile_size[0]), int(self.tile_size[1]))

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        return {
            "memory_limit": self.memory_limit,
            "auto_chunk": self.auto_chunk,
            "tile_size": list(self.tile_size),
            "parallel": self.parallel,
            "use_cache": self.use_cache,
            "max_workers": self.max_workers,
            "failure_policy": self.failure_policy.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionSettings:
        """Create settings from dictionary."""
        return cls(
            memory_limit=data.get("memory_limit", DEFAULT_MEMORY_LIMIT),
            auto_chunk=data.get("auto_chunk", True),
            tile_size=tuple(data.get("tile_size", (512, 512))),
            parallel=data.get("parallel", False),
            use_cache=data.get("use_cache", True),
            max_workers=data.get("max_workers", _default_workers()),
            failure_policy=FailurePolicy(data.get("failure_policy", "aggregate")),
        )


@dataclass
class CacheSettings:
    """Bounds for the result cache."""
    capacity: int = DEFAULT_CAPACITY
    max_memory: int = DEFAULT_MAX_MEMORY
    ttl_seconds: float = DEFAULT_TTL

    def to_dict(self) -> dict[str, Any]:
        return {
            "capacity": self.capacity,
            "max_memory": self.max_memory,
            "ttl_seconds": self.ttl_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheSettings:
        return cls(
            capacity=data.get("capacity", DEFAULT_CAPACITY),
            max_memory=data.get("max_memory", DEFAULT_MAX_MEMORY),
            ttl_seconds=data.get("ttl_seconds", DEFAULT_TTL),
        )


@dataclass
class EngineConfig:
    """Top-level configuration: execution, cache and validation mode."""
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    validation_mode: str = "full"

    def __post_init__(self) -> None:
        if self.validation_mode not in ("full", "minimal"):
            raise ValueError(f"Unknown validation mode: {self.validation_mode}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution": self.execution.to_dict(),
            "cache": self.cache.to_dict(),
            "validation_mode": self.validation_mode,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        return cls(
            execution=ExecutionSettings.from_dict(data.get("execution", {})),
            cache=CacheSettings.from_dict(data.get("cache", {})),
            validation_mode=data.get("validation_mode", "full"),
        )


def load_config(path: str | Path) -> EngineConfig:
    """
    Load configuration from a JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not a JSON object
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Invalid config format: {path}")
    return EngineConfig.from_dict(data)


def save_config(config: EngineConfig, path: str | Path) -> Path:
    """Write configuration as JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
    return path
