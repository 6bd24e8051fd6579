"""Connection profiles and run settings.

Usage:
    from data_migrator.config import load_migration_config, MigrationConfig
"""

from data_migrator.config.loader import load_migration_config
from data_migrator.config.models import (
    DatabaseDescriptor,
    EndpointDescriptor,
    EndpointProfile,
    FileDescriptor,
    LiveDescriptor,
    MigrationConfig,
    RunSettings,
)

__all__ = [
    # Loader
    "load_migration_config",
    # Models
    "EndpointProfile",
    "MigrationConfig",
    "RunSettings",
    # Descriptors
    "LiveDescriptor",
    "DatabaseDescriptor",
    "FileDescriptor",
    "EndpointDescriptor",
]
