"""
Environment driven settings.

Every tunable of the proximity core is read from the environment once and
cached; tests build their own ``Settings`` instances directly.
"""

import os
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Optional

from fieldshare.exceptions import ConfigurationError

OVERLAP_SCOPES = ("owner", "all")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number", {"value": raw})


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer", {"value": raw})


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    environment: str = "development"
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    # Fields whose boundaries are at most this many metres apart are adjacent.
    adjacency_threshold_m: float = 100.0
    shared_boundary_tolerance_m: float = 10.0
    adjacency_retry_attempts: int = 2
    overlap_scope: str = "owner"
    restricted_precision: int = 4
    restricted_name: str = "Private Field"
    nearby_radius_m: float = 5000.0
    nearby_max_radius_m: float = 25000.0

    def __post_init__(self):
        if self.adjacency_threshold_m <= 0:
            raise ConfigurationError(
                "adjacency threshold must be positive",
                {"adjacency_threshold_m": self.adjacency_threshold_m},
            )
        if self.shared_boundary_tolerance_m < 0:
            raise ConfigurationError(
                "shared boundary tolerance must not be negative",
                {"shared_boundary_tolerance_m": self.shared_boundary_tolerance_m},
            )
        if self.adjacency_retry_attempts < 1:
            raise ConfigurationError(
                "at least one adjacency attempt is required",
                {"adjacency_retry_attempts": self.adjacency_retry_attempts},
            )
        if self.overlap_scope not in OVERLAP_SCOPES:
            raise ConfigurationError(
                f"overlap scope must be one of {', '.join(OVERLAP_SCOPES)}",
                {"overlap_scope": self.overlap_scope},
            )
        if not 0 <= self.restricted_precision <= 8:
            raise ConfigurationError(
                "restricted precision must be between 0 and 8",
                {"restricted_precision": self.restricted_precision},
            )
        if self.nearby_radius_m <= 0:
            raise ConfigurationError(
                "nearby radius must be positive",
                {"nearby_radius_m": self.nearby_radius_m},
            )
        if self.nearby_max_radius_m < self.nearby_radius_m:
            raise ConfigurationError(
                "nearby radius limit must not be below the default radius",
                {"nearby_radius_m": self.nearby_radius_m, "nearby_max_radius_m": self.nearby_max_radius_m},
            )

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            environment=os.getenv("FIELDSHARE_ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("LOG_DIR") or None,
            adjacency_threshold_m=_env_float("ADJACENCY_THRESHOLD_M", 100.0),
            shared_boundary_tolerance_m=_env_float("SHARED_BOUNDARY_TOLERANCE_M", 10.0),
            adjacency_retry_attempts=_env_int("ADJACENCY_RETRY_ATTEMPTS", 2),
            overlap_scope=os.getenv("OVERLAP_SCOPE", "owner").lower(),
            restricted_precision=_env_int("RESTRICTED_PRECISION", 4),
            restricted_name=os.getenv("RESTRICTED_NAME", "Private Field"),
            nearby_radius_m=_env_float("NEARBY_RADIUS_M", 5000.0),
            nearby_max_radius_m=_env_float("NEARBY_MAX_RADIUS_M", 25000.0),
        )

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
