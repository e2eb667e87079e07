"""Configuration module for the interpretation engine.

Centralizes data paths and engine defaults.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
CATALOG_DIR = DATA_DIR / "catalog"

# Catalog file names (static-file loader)
PROPERTIES_FILE = "properties.json"
EVALUATIONS_FILE = "evaluations.json"
TREES_FILE = "interpretation_trees.json"

# Result cache defaults
DEFAULT_CACHE_MAX_SIZE = 1000
DEFAULT_CACHE_TTL = 30 * 60  # seconds

# Catalog snapshot lifetime before reload
DEFAULT_CATALOG_TTL = 60 * 60  # seconds

# Rating classes: rating <= threshold -> class
DEFAULT_RATING_THRESHOLDS = {
    0.1: "slight",
    0.3: "moderate",
    0.6: "severe",
    1.0: "very severe",
}

# How a leaf with a missing property value behaves
#   propagate: not rated unless a null_or / not_null_and hedge substitutes
#   ignore: dropped by operators; only null_not_rated forces not rated
MISSING_DATA_POLICIES = ("propagate", "ignore")
DEFAULT_MISSING_DATA = "propagate"

DEFAULT_LOG_LEVEL = "INFO"


@dataclass
class EngineConfig:
    """
    Engine settings.

    Attributes:
        cache_enabled: Memoize results per (interpretation, property data)
        cache_max_size: Maximum number of cached results
        cache_ttl: Seconds before a cached result expires
        catalog_ttl: Seconds before the catalog is reloaded (None = never)
        rating_thresholds: {threshold: class} table for the rating classifier
        clamp_spline: Clamp spline curve output to [0, 1]
        missing_data: "propagate" or "ignore"
        max_workers: Default worker threads for batch evaluation (1 = sequential)
    """

    cache_enabled: bool = True
    cache_max_size: int = DEFAULT_CACHE_MAX_SIZE
    cache_ttl: float = DEFAULT_CACHE_TTL
    catalog_ttl: Optional[float] = DEFAULT_CATALOG_TTL
    rating_thresholds: dict[float, str] = field(
        default_factory=lambda: dict(DEFAULT_RATING_THRESHOLDS)
    )
    clamp_spline: bool = True
    missing_data: str = DEFAULT_MISSING_DATA
    max_workers: int = 1

    def __post_init__(self):
        """Validate the configuration."""
        # src.interpretation imports this module at load time
        from src.interpretation.errors import ConfigurationError

        if self.cache_max_size < 1:
            raise ConfigurationError(f"cache_max_size must be >= 1, got {self.cache_max_size}")
        if self.cache_ttl <= 0:
            raise ConfigurationError(f"cache_ttl must be positive, got {self.cache_ttl}")
        if self.catalog_ttl is not None and self.catalog_ttl <= 0:
            raise ConfigurationError(f"catalog_ttl must be positive or None, got {self.catalog_ttl}")
        if self.missing_data not in MISSING_DATA_POLICIES:
            raise ConfigurationError(
                f"Unknown missing_data policy '{self.missing_data}'. "
                f"Available: {list(MISSING_DATA_POLICIES)}"
            )
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "cache_enabled": self.cache_enabled,
            "cache_max_size": self.cache_max_size,
            "cache_ttl": self.cache_ttl,
            "catalog_ttl": self.catalog_ttl,
            "rating_thresholds": dict(self.rating_thresholds),
            "clamp_spline": self.clamp_spline,
            "missing_data": self.missing_data,
            "max_workers": self.max_workers,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        """Deserialize from dictionary. Unknown keys are rejected."""
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            from src.interpretation.errors import ConfigurationError

            raise ConfigurationError(f"Unknown config keys: {sorted(unknown)}")
        values = dict(data)
        if "rating_thresholds" in values:
            # JSON object keys arrive as strings
            values["rating_thresholds"] = {
                float(k): v for k, v in values["rating_thresholds"].items()
            }
        return cls(**values)
