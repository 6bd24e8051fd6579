"""Run-time state of a migration.

``Job`` and ``run_migration`` live in ``data_migrator.engine.job`` and
``data_migrator.engine.runner``.
"""

from data_migrator.engine.mock import MockGenerator, MockState
from data_migrator.engine.prompts import ConsolePrompt, Prompt, StaticPrompt
from data_migrator.engine.records import RecordSet, record_id
from data_migrator.engine.reports import CsvIssueRow, MissingParentLookupRow, ReportWriter
from data_migrator.engine.task import Task, TaskField

__all__ = [
    # State
    "Task",
    "TaskField",
    "RecordSet",
    "record_id",
    # Reports
    "CsvIssueRow",
    "MissingParentLookupRow",
    "ReportWriter",
    # Prompts
    "Prompt",
    "ConsolePrompt",
    "StaticPrompt",
    # Mock data
    "MockGenerator",
    "MockState",
]
