"""Plan document, queries and Object Plan Entries.

Usage:
    from data_migrator.plan import load_plan_document, build_plan
"""

from data_migrator.plan.builder import build_plan
from data_migrator.plan.entry import ObjectPlanEntry
from data_migrator.plan.fields import (
    DescribeResult,
    FieldDescriptor,
    Found,
    NotFound,
    ObjectDescribe,
)
from data_migrator.plan.models import (
    MockField,
    ObjectConfig,
    Operation,
    PlanDocument,
    load_plan_document,
)
from data_migrator.plan.query import Query, QueryParseError, parse_query

__all__ = [
    # Document
    "PlanDocument",
    "ObjectConfig",
    "MockField",
    "Operation",
    "load_plan_document",
    # Queries
    "Query",
    "QueryParseError",
    "parse_query",
    # Describe
    "FieldDescriptor",
    "ObjectDescribe",
    "Found",
    "NotFound",
    "DescribeResult",
    # Entries
    "ObjectPlanEntry",
    "build_plan",
]
