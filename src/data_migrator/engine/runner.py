"""Top-level entry point for one migration run.

``run_migration`` wires the pieces together: it loads the plan document,
resolves and opens both endpoints, builds the plan, runs the job and
turns the outcome into a ``MigrationResult``. It never raises for
migration failures; they are reported in the result.

Usage:
    result = await run_migration(Path("export.json"), "prod", "csvfile")
    print(result.format_report())
"""

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from data_migrator.config.models import MigrationConfig
from data_migrator.engine.job import Job
from data_migrator.engine.prompts import Prompt
from data_migrator.errors import MigrationError, SuccessExit, UserAbortError
from data_migrator.factory import create_endpoint, resolve_endpoint_descriptor
from data_migrator.files.cache import CsvCache
from data_migrator.plan.builder import build_plan
from data_migrator.plan.models import load_plan_document

logger = logging.getLogger(__name__)

SOURCE_CSV_DIRECTORY_NAME = "source"


# ============================================================================
# Result Model
# ============================================================================


class MigrationResult(BaseModel):
    """Outcome of ``run_migration``."""

    success: bool
    error: str | None = None
    aborted: bool = False
    validated_only: bool = False
    phase: str | None = None
    object_name: str | None = None
    execution_order: list[str] = Field(default_factory=list)
    processed: dict[str, int] = Field(default_factory=dict)
    retrieved: dict[str, tuple[int, int]] = Field(default_factory=dict)
    reports: dict[str, int] = Field(default_factory=dict)

    def format_report(self) -> str:
        """Format the run outcome as a human-readable report."""
        if self.validated_only:
            lines = ["CSV files validated"]
        elif self.success:
            lines = ["Migration completed"]
        elif self.aborted:
            lines = ["Migration aborted by user"]
        else:
            lines = ["Migration failed:"]
            where = ", ".join(
                part
                for part in (
                    f"phase {self.phase}" if self.phase else "",
                    f"object {self.object_name}" if self.object_name else "",
                )
                if part
            )
            lines.append(f"  {self.error}" + (f" ({where})" if where else ""))

        if self.retrieved:
            lines.append(f"\n  Records retrieved ({len(self.retrieved)} objects):")
            for name, (source, target) in self.retrieved.items():
                lines.append(f"    - {name}: {source} source, {target} target")

        if self.processed:
            lines.append(f"\n  Records processed ({sum(self.processed.values())}):")
            for name, count in self.processed.items():
                lines.append(f"    - {name}: {count}")

        if any(self.reports.values()):
            lines.append("\n  Reports:")
            for name, count in self.reports.items():
                if count:
                    lines.append(f"    - {name}: {count} rows")

        return "\n".join(lines)


def _collect(job: Job | None, result: MigrationResult) -> MigrationResult:
    if job is None:
        return result
    result.execution_order = [task.name for task in job.tasks]
    result.retrieved = {
        task.name: (len(task.source), len(task.target))
        for task in job.tasks
        if len(task.source) or len(task.target)
    }
    result.processed = {
        task.name: sum(v for k, v in task.processed.items() if k != "failed")
        for task in job.tasks
        if task.processed
    }
    result.reports = {
        "CSV issues": len(job.csv_issues),
        "Missing parent records": len(job.missing_parent_lookups),
    }
    return result


# ============================================================================
# Run
# ============================================================================


async def run_migration(
    plan_path: Path,
    source_name: str,
    target_name: str,
    config: MigrationConfig | None = None,
    prompt: Prompt | None = None,
    mock_seed: int | None = None,
    validate_only: bool = False,
) -> MigrationResult:
    """Run a complete migration.

    Args:
        plan_path: Path to the plan document (export.json).
        source_name: Source profile name or ``csvfile``.
        target_name: Target profile name or ``csvfile``.
        config: Loaded migrate.toml; an empty config allows only
            ``csvfile`` endpoints.
        prompt: Confirmation prompt; defaults to the console.
        mock_seed: Seed for mock data.
        validate_only: Stop after validating a CSV source, whatever the
            plan says.

    Returns:
        MigrationResult with success status, counts and report sizes.

    Example:
        >>> result = await run_migration(Path("export.json"), "csvfile", "warehouse", config)
        >>> if not result.success:
        ...     print(result.error)
    """
    config = config or MigrationConfig()
    base_path = plan_path.parent
    job: Job | None = None
    source = target = None

    try:
        document = load_plan_document(plan_path)
        if validate_only:
            document.validate_csv_files_only = True
        cache = CsvCache(output_directory=base_path / SOURCE_CSV_DIRECTORY_NAME)

        source_descriptor = resolve_endpoint_descriptor(source_name, config, base_path)
        target_descriptor = resolve_endpoint_descriptor(target_name, config, base_path)
        source = await create_endpoint(
            source_descriptor, cache, config.settings, document.polling_interval_ms
        )
        target = await create_endpoint(
            target_descriptor, cache, config.settings, document.polling_interval_ms
        )

        entries = await build_plan(document, source, target)
        job = Job(
            document,
            source,
            target,
            base_path,
            prompt=prompt,
            cache=cache,
            settings=config.settings,
            mock_seed=mock_seed,
        )
        job.setup(entries)
        await job.run()
        return _collect(job, MigrationResult(success=True))

    except SuccessExit:
        return _collect(job, MigrationResult(success=True, validated_only=True))
    except UserAbortError as e:
        logger.warning(str(e))
        return _collect(
            job,
            MigrationResult(
                success=False,
                aborted=True,
                error=str(e),
                phase=e.phase,
                object_name=e.object_name,
            ),
        )
    except MigrationError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return _collect(
            job,
            MigrationResult(
                success=False, error=str(e), phase=e.phase, object_name=e.object_name
            ),
        )
    except FileNotFoundError as e:
        return MigrationResult(success=False, error=str(e))
    finally:
        for endpoint in (source, target):
            if endpoint is not None:
                await endpoint.close()


# ============================================================================
# Plan Inspection
# ============================================================================


class PlanSummary(BaseModel):
    """Orders and dependencies computed for a plan, without running it."""

    execution_order: list[str] = Field(default_factory=list)
    query_order: list[str] = Field(default_factory=list)
    delete_order: list[str] = Field(default_factory=list)
    operations: dict[str, str] = Field(default_factory=dict)
    parents: dict[str, list[str]] = Field(default_factory=dict)


async def inspect_plan(
    plan_path: Path,
    source_name: str,
    target_name: str,
    config: MigrationConfig | None = None,
) -> PlanSummary:
    """Build the plan and compute its orders.

    Both endpoints are opened and described; nothing is queried or
    written.

    Raises:
        FileNotFoundError: If the plan file does not exist.
        MigrationError: If the plan cannot be built.
    """
    config = config or MigrationConfig()
    base_path = plan_path.parent
    source = target = None

    try:
        document = load_plan_document(plan_path)
        cache = CsvCache(output_directory=base_path / SOURCE_CSV_DIRECTORY_NAME)
        source = await create_endpoint(
            resolve_endpoint_descriptor(source_name, config, base_path),
            cache,
            config.settings,
        )
        target = await create_endpoint(
            resolve_endpoint_descriptor(target_name, config, base_path),
            cache,
            config.settings,
        )
        entries = await build_plan(document, source, target)
        job = Job(document, source, target, base_path, cache=cache, settings=config.settings)
        job.setup(entries)

        return PlanSummary(
            execution_order=[t.name for t in job.tasks],
            query_order=[t.name for t in job.query_tasks],
            delete_order=[t.name for t in job.delete_tasks],
            operations={t.name: t.operation.value for t in job.tasks},
            parents={t.name: sorted(t.entry.parent_lookup_objects) for t in job.tasks},
        )
    finally:
        for endpoint in (source, target):
            if endpoint is not None:
                await endpoint.close()
