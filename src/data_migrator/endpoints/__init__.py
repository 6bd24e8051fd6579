"""Data endpoints: where records are read from and written to.

Usage:
    from data_migrator.endpoints import DataEndpoint, FileEndpoint
"""

from data_migrator.endpoints.base import DataEndpoint, EndpointKind
from data_migrator.endpoints.database import DatabaseEndpoint
from data_migrator.endpoints.files import FileEndpoint
from data_migrator.endpoints.live import LiveEndpoint

__all__ = [
    "DataEndpoint",
    "EndpointKind",
    "LiveEndpoint",
    "DatabaseEndpoint",
    "FileEndpoint",
]
