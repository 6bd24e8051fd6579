"""Endpoint factory.

Resolves a profile name from migrate.toml into connection details and
builds the matching endpoint. The pseudo profile ``csvfile`` always
means "the CSV files next to the plan document".

Usage:
    config = load_migration_config()
    descriptor = resolve_endpoint_descriptor("prod", config, plan_path.parent)
    endpoint = await create_endpoint(descriptor, cache, config.settings)
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from data_migrator.config.models import (
    DatabaseDescriptor,
    EndpointDescriptor,
    EndpointProfile,
    FileDescriptor,
    LiveDescriptor,
    MigrationConfig,
    RunSettings,
)
from data_migrator.constants import CSV_FILE_SOURCE
from data_migrator.endpoints.base import DataEndpoint
from data_migrator.endpoints.database import DatabaseEndpoint
from data_migrator.endpoints.files import FileEndpoint
from data_migrator.endpoints.live import LiveEndpoint
from data_migrator.errors import InitializationError, ProfileNotFoundError
from data_migrator.files.cache import CsvCache

logger = logging.getLogger(__name__)


# ============================================================================
# Profile Resolution
# ============================================================================


def _resolve_url(profile: EndpointProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def _resolve_token(name: str, profile: EndpointProfile) -> str:
    if profile.access_token:
        return profile.access_token
    if profile.access_token_env:
        token = os.environ.get(profile.access_token_env)
        if token:
            return token
    raise InitializationError(
        f"Profile '{name}' has no access token.\n"
        f"Set access_token or export the variable named by access_token_env."
    )


def resolve_endpoint_descriptor(
    name: str, config: MigrationConfig, base_path: Path
) -> EndpointDescriptor:
    """Turn a profile name into endpoint connection details.

    Args:
        name: Profile name, or ``csvfile`` (any case) for CSV files in
            ``base_path``.
        config: Loaded migrate.toml.
        base_path: Directory of the plan document; relative file
            directories are resolved against it.

    Returns:
        ``LiveDescriptor``, ``DatabaseDescriptor`` or ``FileDescriptor``.

    Raises:
        ProfileNotFoundError: If ``name`` is not a configured profile.
        InitializationError: If a live profile has no usable token.
    """
    if name.lower() == CSV_FILE_SOURCE:
        return FileDescriptor(name=CSV_FILE_SOURCE, directory=base_path)

    if name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "none"
        raise ProfileNotFoundError(
            f"Profile '{name}' not found in migrate.toml.\nAvailable profiles: {available}"
        )

    profile = config.profiles[name]
    if profile.kind == "live":
        return LiveDescriptor(
            name=name,
            instance_url=profile.instance_url,
            access_token=_resolve_token(name, profile),
            api_version=profile.api_version,
        )
    if profile.kind == "database":
        return DatabaseDescriptor(name=name, url=_resolve_url(profile))

    directory = Path(profile.directory)
    if not directory.is_absolute():
        directory = base_path / directory
    return FileDescriptor(name=name, directory=directory)


# ============================================================================
# Endpoint Factory
# ============================================================================


async def create_endpoint(
    descriptor: EndpointDescriptor,
    cache: CsvCache,
    settings: RunSettings | None = None,
    polling_interval_ms: int | None = None,
) -> DataEndpoint:
    """Build and open the endpoint described by ``descriptor``.

    Args:
        descriptor: Resolved connection details.
        cache: CSV cache shared by file endpoints of the run.
        settings: Run settings (bulk query poll timeout).
        polling_interval_ms: Bulk query polling interval.

    Returns:
        A ready ``DataEndpoint``.
    """
    settings = settings or RunSettings()

    if isinstance(descriptor, LiveDescriptor):
        kwargs = {"poll_timeout_ms": settings.poll_timeout_ms}
        if polling_interval_ms is not None:
            kwargs["polling_interval_ms"] = polling_interval_ms
        endpoint = LiveEndpoint(
            descriptor.name,
            descriptor.instance_url,
            descriptor.access_token,
            api_version=descriptor.api_version,
            **kwargs,
        )
        await endpoint.open()
        return endpoint

    if isinstance(descriptor, DatabaseDescriptor):
        return DatabaseEndpoint(descriptor.name, descriptor.url)

    return FileEndpoint(descriptor.directory, cache=cache, name=descriptor.name)
