"""Load connection profiles from migrate.toml."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from data_migrator.config.models import EndpointProfile, MigrationConfig, RunSettings

DEFAULT_CONFIG_FILENAME = "migrate.toml"


def load_migration_config(config_path: Path | None = None) -> MigrationConfig:
    """Load connection profiles and run settings from a TOML file.

    Args:
        config_path: Path to migrate.toml (default: ./migrate.toml)

    Returns:
        MigrationConfig with all profiles

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid

    Example:
        config = load_migration_config(Path("migrate.toml"))
        config.profiles["prod"].instance_url
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(
            f"Migration config not found: {config_path}\n"
            f"Create {DEFAULT_CONFIG_FILENAME} with a [profiles.<name>] table per endpoint."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        profiles = {
            name: EndpointProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
        settings = RunSettings(**data.get("settings", {}))
    except (ValidationError, TypeError) as e:
        raise ValueError(f"Invalid profile configuration in {config_path}: {e}") from e

    return MigrationConfig(profiles=profiles, settings=settings)
