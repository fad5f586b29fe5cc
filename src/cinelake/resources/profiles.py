"""📊 Resource Profiles - Predefined DuckDB settings for different machine sizes."""

from __future__ import annotations

from typing import Literal

ProfileName = Literal["tiny", "small", "medium", "large"]

# Profile descriptions for documentation
PROFILES: dict[ProfileName, str] = {
    "tiny": "4GB RAM - laptops on battery, CI runners",
    "small": "16GB RAM - typical developer machine (default)",
    "medium": "64GB RAM - shared analytics host",
    "large": "128GB+ RAM - full MovieLens 25M rebuilds",
}

_PROFILE_SETTINGS: dict[ProfileName, dict] = {
    "tiny": {
        "duckdb": {"threads": 1, "memory_limit": "1GB"},
        "max_parallel_pipelines": 1,
    },
    "small": {
        "duckdb": {"threads": 2, "memory_limit": "4GB"},
        "max_parallel_pipelines": 2,
    },
    "medium": {
        "duckdb": {"threads": 8, "memory_limit": "24GB"},
        "max_parallel_pipelines": 4,
    },
    "large": {
        "duckdb": {"threads": 16, "memory_limit": "64GB"},
        "max_parallel_pipelines": 8,
    },
}


def load_profile(profile: str) -> dict:
    """Load a profile as a dictionary."""
    if profile not in _PROFILE_SETTINGS:
        raise ValueError(
            f"Profile '{profile}' not found. "
            f"Available profiles: {list(PROFILES.keys())}"
        )
    # Nested dicts are copied so callers can mutate the result
    return {
        key: dict(value) if isinstance(value, dict) else value
        for key, value in _PROFILE_SETTINGS[profile].items()
    }


def list_profiles() -> list[dict]:
    """List all available profiles with their descriptions."""
    return [
        {"name": name, "description": description}
        for name, description in PROFILES.items()
    ]
