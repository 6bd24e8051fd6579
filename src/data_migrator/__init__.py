"""data-migrator: relationship-preserving record migration.

Moves records of related objects between a live record API, a
PostgreSQL database and a directory of CSV files, remapping every
reference to the target's identifiers by business key.

Usage:
    from data_migrator import run_migration, load_migration_config

    config = load_migration_config()
    result = await run_migration(Path("export.json"), "prod", "csvfile", config)
    print(result.format_report())
"""

__version__ = "0.1.0"

# Configuration
from data_migrator.config import MigrationConfig, load_migration_config

# Errors
from data_migrator.errors import (
    CommitError,
    InitializationError,
    MetadataError,
    MigrationError,
    ProfileNotFoundError,
    QueryError,
    SuccessExit,
    UserAbortError,
)

# Plan
from data_migrator.plan import Operation, PlanDocument, build_plan, load_plan_document

# Endpoints
from data_migrator.factory import create_endpoint, resolve_endpoint_descriptor

# Run
from data_migrator.engine.job import Job, order_tasks
from data_migrator.engine.runner import (
    MigrationResult,
    PlanSummary,
    inspect_plan,
    run_migration,
)

__all__ = [
    "__version__",
    # Configuration
    "MigrationConfig",
    "load_migration_config",
    # Errors
    "MigrationError",
    "InitializationError",
    "ProfileNotFoundError",
    "MetadataError",
    "QueryError",
    "CommitError",
    "UserAbortError",
    "SuccessExit",
    # Plan
    "Operation",
    "PlanDocument",
    "load_plan_document",
    "build_plan",
    # Endpoints
    "create_endpoint",
    "resolve_endpoint_descriptor",
    # Run
    "Job",
    "order_tasks",
    "run_migration",
    "inspect_plan",
    "MigrationResult",
    "PlanSummary",
]
