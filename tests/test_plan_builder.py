"""Tests for plan document loading and Object Plan Entry building."""

import json
from pathlib import Path

import pytest

from fakes import ACCOUNT_CONTACT_DESCRIBES, make_describe, memory_endpoint, plan_document

from data_migrator.endpoints.files import FileEndpoint
from data_migrator.errors import InitializationError, MetadataError
from data_migrator.plan.builder import build_plan
from data_migrator.plan.entry import ObjectPlanEntry
from data_migrator.plan.models import ObjectConfig, Operation, PlanDocument, load_plan_document


def _endpoints(describes=None):
    describes = describes or ACCOUNT_CONTACT_DESCRIBES
    source, _ = memory_endpoint("source", describes)
    target, _ = memory_endpoint("target", describes)
    return source, target


# ==================================================================
# Test Group 1: plan document
# ==================================================================


class TestPlanDocument:
    """export.json is parsed into a PlanDocument."""

    def test_load_camel_case_keys(self, tmp_path: Path) -> None:
        """camelCase keys map to model fields."""
        path = tmp_path / "export.json"
        path.write_text(
            json.dumps(
                {
                    "bulkThreshold": 500,
                    "allOrNone": True,
                    "objects": [
                        {
                            "query": "SELECT Id, Name FROM Account",
                            "operation": "upsert",
                            "externalId": "Name",
                            "deleteOldData": True,
                        }
                    ],
                }
            )
        )
        document = load_plan_document(path)
        assert document.bulk_threshold == 500
        assert document.all_or_none is True
        assert document.objects[0].operation == Operation.UPSERT
        assert document.objects[0].delete_old_data is True

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """A missing plan raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_plan_document(tmp_path / "missing.json")

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        """Malformed JSON is an InitializationError."""
        path = tmp_path / "export.json"
        path.write_text("{not json")
        with pytest.raises(InitializationError):
            load_plan_document(path)

    def test_unknown_operation_raises(self) -> None:
        """Operations outside the known set are rejected."""
        with pytest.raises(InitializationError):
            Operation.parse("Merge")

    def test_blank_external_id_defaults_to_name(self) -> None:
        """An empty externalId falls back to Name."""
        config = ObjectConfig(query="SELECT Id FROM Account", externalId=" ")
        assert config.external_id == "Name"

    def test_bulk_api_major_version(self) -> None:
        """The bulk API version is reduced to its major number."""
        assert PlanDocument(bulkApiVersion="1.0").bulk_api_major_version == 1
        assert PlanDocument().bulk_api_major_version == 2


# ==================================================================
# Test Group 2: entry setup
# ==================================================================


class TestEntrySetup:
    """ObjectPlanEntry.setup normalises the configuration."""

    def test_insert_forces_id_key(self) -> None:
        """Insert uses Id as business key and keeps the declared one."""
        entry = ObjectPlanEntry(
            ObjectConfig(query="SELECT Name FROM Account", operation="Insert", externalId="Name")
        )
        entry.setup()
        assert entry.external_id == "Id"
        assert entry.original_external_id == "Name"
        assert entry.query.fields[0] == "Id"

    def test_key_columns_added_to_query(self) -> None:
        """Composite keys add each part to the query."""
        entry = ObjectPlanEntry(
            ObjectConfig(query="SELECT Id FROM Account", operation="Upsert", externalId="Name;Phone")
        )
        entry.setup()
        assert entry.query.fields == ["Id", "Name", "Phone"]

    def test_delete_selects_only_id(self) -> None:
        """Delete entries query Id and always delete old data."""
        entry = ObjectPlanEntry(
            ObjectConfig(query="SELECT Id, Name FROM Account WHERE Type = 'x'", operation="Delete")
        )
        entry.setup()
        assert entry.query.fields == ["Id"]
        assert entry.delete_old_data is True
        assert entry.delete_query.compose() == "SELECT Id FROM Account WHERE Type = 'x'"

    def test_person_account_contact_delete_query(self) -> None:
        """Person contacts are excluded from Contact deletes."""
        entry = ObjectPlanEntry(
            ObjectConfig(query="SELECT Id FROM Contact", operation="Upsert", deleteOldData=True)
        )
        entry.setup(person_accounts=True)
        assert "IsPersonAccount = false" in entry.delete_query.compose()

    def test_malformed_query_raises(self) -> None:
        """Unparseable queries are InitializationErrors."""
        entry = ObjectPlanEntry(ObjectConfig(query="SELECT FROM"))
        with pytest.raises(InitializationError):
            entry.setup()


# ==================================================================
# Test Group 3: build_plan
# ==================================================================


class TestBuildPlan:
    """build_plan describes entries and resolves their parents."""

    @pytest.mark.asyncio
    async def test_stand_in_created_for_missing_parent(self) -> None:
        """A referenced object outside the plan becomes a Readonly stand-in."""
        source, target = _endpoints()
        document = plan_document(
            {"query": "SELECT Id, LastName, AccountId FROM Contact", "operation": "Insert"}
        )
        entries = await build_plan(document, source, target)

        assert [e.name for e in entries] == ["Contact", "Account"]
        account = entries[1]
        assert account.is_extra_object
        assert account.operation == Operation.READONLY
        assert account.query.compose() == "SELECT Id, Name FROM Account"
        assert "Account.Name" in entries[0].query.fields
        assert entries[0].reference_parents == {"AccountId": "Account"}
        assert account.child_objects == ["Contact"]

    @pytest.mark.asyncio
    async def test_excluded_objects_dropped(self) -> None:
        """Excluded writable objects are removed, excluded Readonly ones kept."""
        source, target = _endpoints()
        document = plan_document(
            {"query": "SELECT Id, Name FROM Account", "operation": "Readonly", "excluded": True},
            {"query": "SELECT Id, LastName FROM Contact", "operation": "Insert", "excluded": True},
        )
        entries = await build_plan(document, source, target)
        assert [e.name for e in entries] == ["Account"]

    @pytest.mark.asyncio
    async def test_nothing_left_raises(self) -> None:
        """A plan with every object excluded cannot run."""
        source, target = _endpoints()
        document = plan_document(
            {"query": "SELECT Id, LastName FROM Contact", "operation": "Insert", "excluded": True}
        )
        with pytest.raises(InitializationError):
            await build_plan(document, source, target)

    @pytest.mark.asyncio
    async def test_unknown_field_removed(self) -> None:
        """Fields missing from the describe are dropped from the query."""
        source, target = _endpoints()
        document = plan_document(
            {"query": "SELECT Id, Name, Bogus__c FROM Account", "operation": "Upsert"}
        )
        entries = await build_plan(document, source, target)
        assert "Bogus__c" not in entries[0].query.fields

    @pytest.mark.asyncio
    async def test_missing_business_key_raises(self) -> None:
        """A business key that is not a field is a MetadataError."""
        source, target = _endpoints()
        document = plan_document(
            {"query": "SELECT Id, Name FROM Account", "operation": "Upsert", "externalId": "Code__c"}
        )
        with pytest.raises(MetadataError):
            await build_plan(document, source, target)

    @pytest.mark.asyncio
    async def test_insert_without_declared_key_field(self) -> None:
        """Insert falls back to Id when the declared key is not a field."""
        source, target = _endpoints()
        document = plan_document(
            {"query": "SELECT Id, LastName FROM Contact", "operation": "Insert"}
        )
        entries = await build_plan(document, source, target)
        assert entries[0].external_id == "Id"
        assert entries[0].original_external_id == "Id"
        assert "Name" not in entries[0].query.fields

    @pytest.mark.asyncio
    async def test_unknown_object_raises(self) -> None:
        """An object unknown to an endpoint is a MetadataError."""
        source, target = _endpoints()
        document = plan_document({"query": "SELECT Id FROM Lead", "operation": "Insert"})
        with pytest.raises(MetadataError):
            await build_plan(document, source, target)

    @pytest.mark.asyncio
    async def test_field_missing_in_target_removed(self) -> None:
        """Writable fields the target lacks are not migrated."""
        source, _ = memory_endpoint("source", ACCOUNT_CONTACT_DESCRIBES)
        target, _ = memory_endpoint(
            "target", {"Account": make_describe("Account", "Name")}
        )
        document = plan_document(
            {"query": "SELECT Id, Name, Type FROM Account", "operation": "Upsert"}
        )
        entries = await build_plan(document, source, target)
        assert "Type" not in entries[0].query.fields

    @pytest.mark.asyncio
    async def test_two_file_endpoints_rejected(self, tmp_path: Path) -> None:
        """CSV to CSV is not a migration."""
        document = plan_document({"query": "SELECT Id FROM Account", "operation": "Insert"})
        with pytest.raises(InitializationError):
            await build_plan(document, FileEndpoint(tmp_path), FileEndpoint(tmp_path / "out"))

    @pytest.mark.asyncio
    async def test_record_type_stand_in(self) -> None:
        """RecordType stand-ins are keyed by developer name per object type."""
        describes = {
            "Account": make_describe("Account", "Name", references={"RecordTypeId": "RecordType"}),
            "RecordType": make_describe("RecordType", "DeveloperName", "SobjectType"),
        }
        source, target = _endpoints(describes)
        document = plan_document(
            {"query": "SELECT Id, Name, RecordTypeId FROM Account", "operation": "Upsert"}
        )
        entries = await build_plan(document, source, target)

        record_type = entries[1]
        assert record_type.name == "RecordType"
        assert record_type.external_id == "DeveloperName"
        assert "SobjectType IN ('Account')" in record_type.query.compose()
        assert "RecordType.DeveloperName" in entries[0].query.fields

    @pytest.mark.asyncio
    async def test_user_and_group_lookups_share_parent(self) -> None:
        """References to Group resolve to the User entry."""
        describes = {
            "Case": make_describe("Case", "Subject", references={"OwnerId": "Group"}),
            "User": make_describe("User", "Name"),
        }
        source, target = _endpoints(describes)
        document = plan_document(
            {"query": "SELECT Id, Subject, OwnerId FROM Case", "operation": "Insert"}
        )
        entries = await build_plan(document, source, target)
        assert entries[0].reference_parents == {"OwnerId": "User"}
