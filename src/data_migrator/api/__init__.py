"""Commit engines and engine selection.

Usage:
    from data_migrator.api import EngineOptions, EngineType, resolve_engine_type
"""

from data_migrator.api.base import (
    ApiEngine,
    ApiEngineBase,
    ApiJob,
    EngineOptions,
    JobState,
    ProgressInfo,
)
from data_migrator.api.bulk_v1 import BulkApiV1Engine
from data_migrator.api.bulk_v2 import BulkApiV2Engine
from data_migrator.api.factory import EngineType, resolve_engine_type
from data_migrator.api.rest import RestApiEngine
from data_migrator.api.sql import SqlApiEngine

__all__ = [
    # Contract
    "ApiEngine",
    "ApiEngineBase",
    "ApiJob",
    "EngineOptions",
    "JobState",
    "ProgressInfo",
    # Engines
    "RestApiEngine",
    "BulkApiV1Engine",
    "BulkApiV2Engine",
    "SqlApiEngine",
    # Selection
    "EngineType",
    "resolve_engine_type",
]
