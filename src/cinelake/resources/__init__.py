"""⚙️ Resource Management - Configurable DuckDB limits for any machine size.

Profiles:
- tiny: 4GB RAM
- small: 16GB RAM (default)
- medium: 64GB RAM
- large: 128GB+ RAM

Profiles can be overridden per workspace.
"""

from .config import ResourceConfig, Settings, get_resource_config, get_settings
from .profiles import PROFILES, load_profile

__all__ = [
    "ResourceConfig",
    "Settings",
    "get_resource_config",
    "get_settings",
    "load_profile",
    "PROFILES",
]
