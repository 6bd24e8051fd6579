"""Exception hierarchy for migration runs.

Every failure that stops a run derives from ``MigrationError``. The job
attaches the phase and object it was working on before re-raising, so
callers can report where a run stopped.

``SuccessExit`` is not an error: it ends a run early after a requested
validate-only pass.

Usage:
    from data_migrator.errors import MigrationError, UserAbortError

    try:
        await job.run()
    except UserAbortError:
        ...
    except MigrationError as e:
        print(e.phase, e.object_name, e)
"""


class MigrationError(Exception):
    """Base class for fatal migration failures."""

    def __init__(self, message: str = "", object_name: str | None = None) -> None:
        super().__init__(message)
        self.object_name = object_name
        self.phase: str | None = None


class InitializationError(MigrationError):
    """Plan document, profiles or queries are invalid."""

    pass


class ProfileNotFoundError(InitializationError):
    """Raised when a connection profile name is not in migrate.toml."""

    pass


class MetadataError(MigrationError):
    """An object or field required by the plan does not exist."""

    def __init__(
        self,
        message: str,
        object_name: str | None = None,
        field_name: str | None = None,
    ) -> None:
        super().__init__(message, object_name)
        self.field_name = field_name


class QueryError(MigrationError):
    """A read against an endpoint failed."""

    def __init__(
        self, message: str, object_name: str | None = None, query: str = ""
    ) -> None:
        super().__init__(message, object_name)
        self.query = query


class CommitError(MigrationError):
    """A whole batch or job was rejected by the target."""

    def __init__(
        self,
        message: str,
        object_name: str | None = None,
        operation: str = "",
        engine_name: str = "",
    ) -> None:
        super().__init__(message, object_name)
        self.operation = operation
        self.engine_name = engine_name


class UserAbortError(MigrationError):
    """The operator answered no to a confirmation prompt."""

    pass


class SuccessExit(Exception):
    """Run finished early on purpose (validate-only mode)."""

    pass
