"""Shared constants for plan building, retrieval and commit."""

# ============================================================================
# Record identity
# ============================================================================

ID_FIELD = "Id"
TEMP_ID_FIELD = "___Id"
ERRORS_FIELD = "Errors"
DEFAULT_EXTERNAL_ID = "Name"
COMPLEX_FIELD_SEPARATOR = ";"
COMPLEX_FIELD_PREFIX = "$$"
REFERENCE_PATH_SEPARATOR = "."

# ============================================================================
# Objects with special handling
# ============================================================================

RECORD_TYPE_OBJECT = "RecordType"
USER_OBJECT = "User"
GROUP_OBJECT = "Group"
SPECIAL_OBJECTS = (GROUP_OBJECT, USER_OBJECT, RECORD_TYPE_OBJECT)
NOT_SUPPORTED_OBJECTS = ("Profile",)
PERSON_ACCOUNT_OBJECTS = ("Account", "Contact")
PERSON_ACCOUNT_FLAG = "IsPersonAccount"
RECORD_TYPE_SOBJECT_FIELD = "SobjectType"
RECORD_TYPE_DEVELOPER_NAME = "DeveloperName"
RECORD_TYPE_ID_FIELD = "RecordTypeId"

# Pseudo username that routes an endpoint to a CSV directory.
CSV_FILE_SOURCE = "csvfile"

# ============================================================================
# Query limits
# ============================================================================

MAX_WHERE_CLAUSE_LENGTH = 3900
SHORT_QUERY_STRING_MAXLENGTH = 250
QUERY_BULK_API_THRESHOLD = 30000
MAX_PARALLEL_REQUESTS = 10
MASTER_DETAIL_ORDER_ITERATIONS = 10
SOURCE_BACKWARD_PASSES = 2

# ============================================================================
# Engine defaults
# ============================================================================

POLL_TIMEOUT_MS = 3_000_000
DEFAULT_POLLING_INTERVAL_MS = 5000
DEFAULT_BULK_THRESHOLD = 200
DEFAULT_BULK_API_VERSION = "2.0"
DEFAULT_BULK_API_V1_BATCH_SIZE = 9500
DEFAULT_BULK_API_V2_BATCH_SIZE = 100_000
DEFAULT_REST_API_BATCH_SIZE = 200
DEFAULT_API_VERSION = "58.0"
SIMULATED_ID_LENGTH = 18

REST_ENGINE_NAME = "REST API"
BULK_V1_ENGINE_NAME = "Bulk API V1.0"
BULK_V2_ENGINE_NAME = "Bulk API V2.0"
SQL_ENGINE_NAME = "SQL API"

# ============================================================================
# Files
# ============================================================================

CSV_FILE_EXTENSION = ".csv"
USER_AND_GROUP_FILENAME = "UserAndGroup"
VALUE_MAPPING_FILENAME = "ValueMapping.csv"
CSV_ISSUES_REPORT_FILENAME = "CSVIssuesReport.csv"
MISSING_PARENT_REPORT_FILENAME = "MissingParentRecordsReport.csv"
TARGET_DIRECTORY_NAME = "target"
