"""Tests for the commit phases of a job.

Each test runs a whole job between two in-memory database endpoints
and checks what reached the target.
"""

import asyncio
from pathlib import Path

import pytest

from fakes import ACCOUNT_CONTACT_DESCRIBES, make_describe, memory_endpoint, plan_document, prepared_job

from data_migrator.api.factory import EngineType
from data_migrator.constants import PERSON_ACCOUNT_FLAG, SIMULATED_ID_LENGTH
from data_migrator.endpoints.files import FileEndpoint
from data_migrator.engine.prompts import StaticPrompt
from data_migrator.errors import CommitError, UserAbortError
from data_migrator.files.codec import read_csv
from data_migrator.plan.fields import FieldDescriptor


ACCOUNTS = [{"id": "A1", "Name": "Acme"}, {"id": "A2", "Name": "Beta"}]
CONTACTS = [
    {"id": "C1", "LastName": "Doe", "AccountId": "A1"},
    {"id": "C2", "LastName": "Roe", "AccountId": "A2"},
]
ACCOUNT_INSERT = {"query": "SELECT Id, Name FROM Account", "operation": "Insert"}
CONTACT_INSERT = {"query": "SELECT Id, LastName, AccountId FROM Contact", "operation": "Insert"}


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


async def _run(
    tmp_path: Path,
    source_tables,
    target_tables,
    *objects,
    describes=None,
    target_describes=None,
    target_options=None,
    prompt=None,
    **settings,
):
    describes = describes or ACCOUNT_CONTACT_DESCRIBES
    source, _ = memory_endpoint("source", describes, source_tables, prefix="S")
    target, target_client = memory_endpoint(
        "target", target_describes or describes, target_tables, **(target_options or {})
    )
    job = await prepared_job(
        plan_document(*objects, **settings), source, target, tmp_path, prompt=prompt
    )
    await job.run()
    return job, target_client


# ==================================================================
# Test Group 1: forward step
# ==================================================================


class TestForwardStep:
    """Rows are committed in execution order with remapped references."""

    @pytest.mark.asyncio
    async def test_insert_remaps_references(self, tmp_path: Path) -> None:
        """Child references point at the parents' new ids."""
        job, client = await _run(
            tmp_path,
            {"Account": ACCOUNTS, "Contact": CONTACTS},
            None,
            ACCOUNT_INSERT,
            CONTACT_INSERT,
        )
        account_ids = [row["id"] for row in client.rows("Account")]
        assert account_ids == ["T1", "T2"]
        assert [row["AccountId"] for row in client.rows("Contact")] == ["T1", "T2"]
        assert job.task_by_name["Account"].processed == {"inserted": 2}
        assert job.task_by_name["Contact"].processed == {"inserted": 2}

    @pytest.mark.asyncio
    async def test_bookkeeping_columns_not_written(self, tmp_path: Path) -> None:
        """Temporary ids and reference paths never reach the target."""
        _, client = await _run(
            tmp_path,
            {"Account": ACCOUNTS, "Contact": CONTACTS},
            None,
            {"query": "SELECT Id, Name FROM Account", "operation": "Upsert"},
            CONTACT_INSERT,
        )
        (payload, _) = client.calls_of("insert", "Contact")
        assert payload == {"LastName": "Doe", "AccountId": "T1"}

    @pytest.mark.asyncio
    async def test_target_result_files(self, tmp_path: Path) -> None:
        """Committed rows are saved under target/."""
        await _run(tmp_path, {"Account": ACCOUNTS}, None, ACCOUNT_INSERT)
        rows = read_csv(tmp_path / "target" / "Account_insert_target.csv")
        assert [row["Id"] for row in rows] == ["T1", "T2"]

    @pytest.mark.asyncio
    async def test_upsert_updates_matching_rows(self, tmp_path: Path) -> None:
        """Rows found in the target are updated, the rest inserted."""
        job, client = await _run(
            tmp_path,
            {
                "Account": [
                    {"id": "A1", "Name": "Acme", "Type": "Partner"},
                    {"id": "A2", "Name": "Beta", "Type": "Customer"},
                ]
            },
            {"Account": [{"id": "T9", "Name": "Acme", "Type": "Prospect"}]},
            {"query": "SELECT Id, Name, Type FROM Account", "operation": "Upsert"},
        )
        assert client.calls_of("update", "Account") == [
            {"id": "T9", "Name": "Acme", "Type": "Partner"}
        ]
        assert client.calls_of("insert", "Account") == [{"Name": "Beta", "Type": "Customer"}]
        assert job.task_by_name["Account"].processed == {"inserted": 1, "updated": 1}

    @pytest.mark.asyncio
    async def test_update_skips_unmatched_rows(self, tmp_path: Path) -> None:
        """Update never inserts."""
        job, client = await _run(
            tmp_path,
            {
                "Account": [
                    {"id": "A1", "Name": "Acme", "Type": "Partner"},
                    {"id": "A2", "Name": "Beta", "Type": "Customer"},
                ]
            },
            {"Account": [{"id": "T9", "Name": "Acme", "Type": "Prospect"}]},
            {"query": "SELECT Id, Name, Type FROM Account", "operation": "Update"},
        )
        assert client.calls_of("insert", "Account") == []
        assert job.task_by_name["Account"].processed == {"updated": 1}

    @pytest.mark.asyncio
    async def test_unchanged_rows_not_updated(self, tmp_path: Path) -> None:
        """Target rows already holding the source values are left alone."""
        job, client = await _run(
            tmp_path,
            {"Account": [{"id": "A1", "Name": "Acme", "Type": "Partner"}]},
            {"Account": [{"id": "T9", "Name": "Acme", "Type": "Partner"}]},
            {"query": "SELECT Id, Name, Type FROM Account", "operation": "Upsert"},
        )
        assert client.calls_of("update", "Account") == []
        assert job.task_by_name["Account"].processed == {}

    @pytest.mark.asyncio
    async def test_skip_records_comparison_forces_update(self, tmp_path: Path) -> None:
        """skipRecordsComparison updates matching rows even when equal."""
        job, client = await _run(
            tmp_path,
            {"Account": [{"id": "A1", "Name": "Acme", "Type": "Partner"}]},
            {"Account": [{"id": "T9", "Name": "Acme", "Type": "Partner"}]},
            {
                "query": "SELECT Id, Name, Type FROM Account",
                "operation": "Upsert",
                "skipRecordsComparison": True,
            },
        )
        assert client.calls_of("update", "Account") == [
            {"id": "T9", "Name": "Acme", "Type": "Partner"}
        ]
        assert job.task_by_name["Account"].processed == {"updated": 1}

    @pytest.mark.asyncio
    async def test_record_type_remapped_by_developer_name(self, tmp_path: Path) -> None:
        """Record types are matched per object type and developer name."""
        describes = {
            "Account": make_describe("Account", "Name", references={"RecordTypeId": "RecordType"}),
            "RecordType": make_describe("RecordType", "DeveloperName", "SobjectType"),
        }
        record_type = {"DeveloperName": "Partner", "SobjectType": "Account"}
        _, client = await _run(
            tmp_path,
            {
                "RecordType": [{"id": "R1", **record_type}],
                "Account": [{"id": "A1", "Name": "Acme", "RecordTypeId": "R1"}],
            },
            {"RecordType": [{"id": "TR1", **record_type}]},
            {"query": "SELECT Id, Name, RecordTypeId FROM Account", "operation": "Upsert"},
            describes=describes,
        )
        assert client.calls_of("insert", "Account") == [{"Name": "Acme", "RecordTypeId": "TR1"}]
        assert client.calls_of("insert", "RecordType") == []


# ==================================================================
# Test Group 2: backward step
# ==================================================================


class TestBackwardStep:
    """References to later or same objects are set after the insert."""

    @pytest.mark.asyncio
    async def test_self_reference_updated_after_insert(self, tmp_path: Path) -> None:
        """A parent link within one object is filled on the backward step."""
        job, client = await _run(
            tmp_path,
            {
                "Account": [
                    {"id": "A1", "Name": "Acme", "ParentId": None},
                    {"id": "A2", "Name": "Beta", "ParentId": "A1"},
                ]
            },
            None,
            {"query": "SELECT Id, Name, ParentId FROM Account", "operation": "Insert"},
        )
        assert client.calls_of("insert", "Account") == [{"Name": "Acme"}, {"Name": "Beta"}]
        assert client.calls_of("update", "Account") == [{"id": "T2", "ParentId": "T1"}]
        assert job.task_by_name["Account"].processed == {"inserted": 2, "updated": 1}


# ==================================================================
# Test Group 3: missing parents
# ==================================================================


class TestMissingParents:
    """Unresolvable references are reported and confirmed once."""

    @pytest.mark.asyncio
    async def test_missing_parent_reported(self, tmp_path: Path) -> None:
        """The reference is left out and a report row is written."""
        prompt = StaticPrompt(True)
        job, client = await _run(
            tmp_path,
            {
                "Account": [{"id": "A1", "Name": "Acme"}],
                "Contact": [
                    {"id": "C1", "LastName": "Doe", "AccountId": "A1"},
                    {"id": "C3", "LastName": "Zed", "AccountId": "A9"},
                ],
            },
            None,
            ACCOUNT_INSERT,
            CONTACT_INSERT,
            prompt=prompt,
        )
        assert client.calls_of("insert", "Contact")[1] == {"LastName": "Zed"}
        assert len(prompt.messages) == 1

        (lookup,) = job.missing_parent_lookups
        assert lookup.child_record_id == "C3"
        assert lookup.child_lookup_field == "AccountId"
        assert lookup.parent_lookup_object == "Account"

        report = read_csv(tmp_path / "MissingParentRecordsReport.csv")
        assert [row["Child record Id"] for row in report] == ["C3"]

    @pytest.mark.asyncio
    async def test_missing_parent_abort(self, tmp_path: Path) -> None:
        """Answering no stops the run in the update phase."""
        with pytest.raises(UserAbortError) as exc_info:
            await _run(
                tmp_path,
                {
                    "Account": [{"id": "A1", "Name": "Acme"}],
                    "Contact": [{"id": "C3", "LastName": "Zed", "AccountId": "A9"}],
                },
                None,
                ACCOUNT_INSERT,
                CONTACT_INSERT,
                prompt=StaticPrompt(False),
            )
        assert exc_info.value.phase == "update"
        assert exc_info.value.object_name == "Contact"
        assert (tmp_path / "MissingParentRecordsReport.csv").exists()

    @pytest.mark.asyncio
    async def test_failed_parent_insert_not_linked_by_id(self, tmp_path: Path) -> None:
        """A source id equal to an unrelated new target id is not a match."""
        prompt = StaticPrompt(True)
        job, client = await _run(
            tmp_path,
            {
                "Account": [
                    {"id": "S7", "Name": "Good"},
                    {"id": "S8", "Name": "Other"},
                    {"id": "T2", "Name": "Bad"},
                ],
                "Contact": [{"id": "C1", "LastName": "Doe", "AccountId": "T2"}],
            },
            None,
            ACCOUNT_INSERT,
            CONTACT_INSERT,
            target_options={"rejected": {"Bad"}},
            prompt=prompt,
        )
        assert [row["Name"] for row in client.rows("Account")] == ["Good", "Other"]
        assert client.rows("Account")[1]["id"] == "T2"
        assert job.task_by_name["Account"].processed == {"inserted": 2, "failed": 1}

        assert client.calls_of("insert", "Contact") == [{"LastName": "Doe"}]
        (lookup,) = job.missing_parent_lookups
        assert lookup.child_record_id == "C1"
        assert lookup.missing_parent_external_id_value == "T2"
        assert len(prompt.messages) == 1


# ==================================================================
# Test Group 4: delete and file targets
# ==================================================================


class TestDeleteAndFiles:
    """Old target data is removed first; file targets get CSV files."""

    @pytest.mark.asyncio
    async def test_delete_old_records(self, tmp_path: Path) -> None:
        """Flagged objects are emptied before the commit."""
        job, client = await _run(
            tmp_path,
            {"Contact": [{"id": "C1", "LastName": "Doe"}]},
            {"Contact": [{"id": "T7", "LastName": "Old"}]},
            {
                "query": "SELECT Id, LastName FROM Contact",
                "operation": "Insert",
                "deleteOldData": True,
            },
        )
        assert client.calls_of("delete", "Contact") == [["T7"]]
        assert [row["LastName"] for row in client.rows("Contact")] == ["Doe"]
        assert job.task_by_name["Contact"].processed == {"deleted": 1, "inserted": 1}

    @pytest.mark.asyncio
    async def test_file_target_written(self, tmp_path: Path) -> None:
        """A CSV target receives one file per object with key columns."""
        source, _ = memory_endpoint(
            "source", ACCOUNT_CONTACT_DESCRIBES, {"Account": ACCOUNTS[:1], "Contact": CONTACTS[:1]}
        )
        target = FileEndpoint(tmp_path / "out")
        job = await prepared_job(
            plan_document(
                {"query": "SELECT Id, Name FROM Account", "operation": "Upsert"},
                CONTACT_INSERT,
            ),
            source,
            target,
            tmp_path,
        )
        await job.run()

        contacts = read_csv(tmp_path / "out" / "Contact.csv")
        assert contacts == [
            {"Id": "C1", "LastName": "Doe", "AccountId": "A1", "Account.Name": "Acme"}
        ]
        assert job.task_by_name["Contact"].processed == {"written": 1}


# ==================================================================
# Test Group 5: reference remapping
# ==================================================================


class TestRemap:
    """Reference values are translated the same way every time."""

    @pytest.mark.asyncio
    async def test_remap_is_idempotent(self, tmp_path: Path) -> None:
        """Remapping a row twice gives the same payload."""
        job, _ = await _run(
            tmp_path,
            {"Account": ACCOUNTS, "Contact": CONTACTS},
            None,
            ACCOUNT_INSERT,
            CONTACT_INSERT,
        )
        contact = job.task_by_name["Contact"]
        payloads = []
        for row in contact.source.main:
            first = await job._remap(contact, row, contact.forward_update_fields)
            second = await job._remap(contact, row, contact.forward_update_fields)
            assert first == second
            payloads.append(first)
        assert payloads == [{"AccountId": "T1"}, {"AccountId": "T2"}]
        assert job.missing_parent_lookups == []


# ==================================================================
# Test Group 6: rejected batches
# ==================================================================


DELETE_CONTACTS = {
    "query": "SELECT Id, LastName FROM Contact",
    "operation": "Insert",
    "deleteOldData": True,
}


class TestBatchErrors:
    """promptOnUpdateError decides whether a rejected batch is fatal."""

    async def _run_failing_delete(self, tmp_path: Path, prompt: StaticPrompt, **settings):
        return await _run(
            tmp_path,
            {"Contact": [{"id": "C1", "LastName": "Doe"}]},
            {"Contact": [{"id": "T7", "LastName": "Old"}]},
            DELETE_CONTACTS,
            target_options={"fail_deletes": True},
            prompt=prompt,
            **settings,
        )

    @pytest.mark.asyncio
    async def test_continue_after_rejected_batch(self, tmp_path: Path) -> None:
        """Answering yes marks the batch failed and the run goes on."""
        prompt = StaticPrompt(True)
        job, client = await self._run_failing_delete(tmp_path, prompt)

        assert len(prompt.messages) == 1
        assert "Permission denied on Contact" in prompt.messages[0]
        assert job.task_by_name["Contact"].processed == {"deleted": 0, "inserted": 1}
        assert [row["LastName"] for row in client.rows("Contact")] == ["Old", "Doe"]

    @pytest.mark.asyncio
    async def test_abort_after_rejected_batch(self, tmp_path: Path) -> None:
        """Answering no stops the run where the batch failed."""
        with pytest.raises(UserAbortError) as exc_info:
            await self._run_failing_delete(tmp_path, StaticPrompt(False))
        assert exc_info.value.phase == "delete"
        assert exc_info.value.object_name == "Contact"

    @pytest.mark.asyncio
    async def test_rejected_batch_fatal_without_prompt(self, tmp_path: Path) -> None:
        """With prompting disabled the CommitError ends the run."""
        prompt = StaticPrompt(True)
        with pytest.raises(CommitError) as exc_info:
            await self._run_failing_delete(tmp_path, prompt, promptOnUpdateError=False)
        assert exc_info.value.phase == "delete"
        assert prompt.messages == []

    @pytest.mark.asyncio
    async def test_parallel_failures_ask_once_after_no(self, tmp_path: Path) -> None:
        """Concurrent failed batches wait for one answer; a no is final."""
        prompt = StaticPrompt(False)
        source, _ = memory_endpoint("source", ACCOUNT_CONTACT_DESCRIBES, {})
        target, _ = memory_endpoint("target", ACCOUNT_CONTACT_DESCRIBES, {})
        job = await prepared_job(
            plan_document(DELETE_CONTACTS), source, target, tmp_path, prompt=prompt
        )
        error = CommitError("batch rejected", object_name="Contact")

        results = await asyncio.gather(
            *(job._on_batch_error(error, [{"Id": str(i)}]) for i in range(3)),
            return_exceptions=True,
        )

        assert all(isinstance(result, UserAbortError) for result in results)
        assert len(prompt.messages) == 1

    @pytest.mark.asyncio
    async def test_parallel_failures_each_confirmed(self, tmp_path: Path) -> None:
        """Every failed batch is confirmed while the answer is yes."""
        prompt = StaticPrompt(True)
        source, _ = memory_endpoint("source", ACCOUNT_CONTACT_DESCRIBES, {})
        target, _ = memory_endpoint("target", ACCOUNT_CONTACT_DESCRIBES, {})
        job = await prepared_job(
            plan_document(DELETE_CONTACTS), source, target, tmp_path, prompt=prompt
        )
        error = CommitError("batch rejected", object_name="Contact")

        results = await asyncio.gather(
            *(job._on_batch_error(error, [{"Id": str(i)}]) for i in range(3))
        )

        assert results == [True, True, True]
        assert len(prompt.messages) == 3


# ==================================================================
# Test Group 7: person accounts
# ==================================================================


def _person_account_describes() -> dict:
    describes = {
        "Account": make_describe("Account", "Name", references={"ParentId": "Account"}),
        "Contact": make_describe("Contact", "LastName", references={"AccountId": "Account"}),
    }
    for name, describe in describes.items():
        describe.fields[PERSON_ACCOUNT_FLAG] = FieldDescriptor(
            name=PERSON_ACCOUNT_FLAG,
            object_name=name,
            type="boolean",
            creatable=False,
            updateable=False,
        )
    return describes


class TestPersonAccounts:
    """Person accounts own their contact; business accounts go first."""

    @pytest.mark.asyncio
    async def test_business_accounts_before_person_accounts(self, tmp_path: Path) -> None:
        """Accounts are split in two batches and person contacts are skipped."""
        job, client = await _run(
            tmp_path,
            {
                "Account": [
                    {"id": "A2", "Name": "Roe", PERSON_ACCOUNT_FLAG: True},
                    {"id": "A1", "Name": "Acme", PERSON_ACCOUNT_FLAG: False},
                ],
                "Contact": [
                    {"id": "C1", "LastName": "Doe", "AccountId": "A1", PERSON_ACCOUNT_FLAG: False},
                    {"id": "C2", "LastName": "Roe", "AccountId": "A2", PERSON_ACCOUNT_FLAG: True},
                ],
            },
            None,
            {"query": "SELECT Id, Name, IsPersonAccount FROM Account", "operation": "Insert"},
            {
                "query": "SELECT Id, LastName, AccountId, IsPersonAccount FROM Contact",
                "operation": "Insert",
            },
            describes=_person_account_describes(),
        )
        assert client.calls_of("insert", "Account") == [{"Name": "Acme"}, {"Name": "Roe"}]
        assert client.calls_of("insert", "Contact") == [{"LastName": "Doe", "AccountId": "T1"}]
        assert job.task_by_name["Contact"].processed == {"inserted": 1}
        assert job.missing_parent_lookups == []


# ==================================================================
# Test Group 8: engine selection
# ==================================================================


class TestEngineRouting:
    """Commit volume and run settings pick the engine per call."""

    async def _engine_types(self, tmp_path: Path, monkeypatch, **settings) -> list[EngineType]:
        contacts = [{"id": f"C{i}", "LastName": f"Doe {i}"} for i in range(500)]
        source, _ = memory_endpoint("source", ACCOUNT_CONTACT_DESCRIBES, {"Contact": contacts})
        target, client = memory_endpoint("target", ACCOUNT_CONTACT_DESCRIBES, None)
        monkeypatch.setattr(target, "supports_bulk", True)

        engine_types: list[EngineType] = []
        create_engine = target.create_engine

        def recording_create_engine(engine_type, object_name, options):
            engine_types.append(engine_type)
            return create_engine(engine_type, object_name, options)

        monkeypatch.setattr(target, "create_engine", recording_create_engine)
        job = await prepared_job(
            plan_document(
                {"query": "SELECT Id, LastName FROM Contact", "operation": "Insert"},
                **settings,
            ),
            source,
            target,
            tmp_path,
        )
        await job.run()
        assert len(client.rows("Contact")) == 500
        return engine_types

    @pytest.mark.asyncio
    async def test_large_volume_uses_bulk(self, tmp_path: Path, monkeypatch) -> None:
        """500 rows go through the bulk engine."""
        assert await self._engine_types(tmp_path, monkeypatch) == [EngineType.BULK_V2]

    @pytest.mark.asyncio
    async def test_always_rest_keeps_direct(self, tmp_path: Path, monkeypatch) -> None:
        """alwaysUseRestApiToUpdateRecords keeps large volumes direct."""
        engine_types = await self._engine_types(
            tmp_path, monkeypatch, alwaysUseRestApiToUpdateRecords=True
        )
        assert engine_types == [EngineType.DIRECT]


# ==================================================================
# Test Group 9: field mapping and simulation
# ==================================================================


COMPANY_DESCRIBES = {"Company": make_describe("Company", "Title", "Type")}


class TestFieldMapping:
    """Mapped objects are read and written under target names."""

    @pytest.mark.asyncio
    async def test_rows_written_under_target_names(self, tmp_path: Path) -> None:
        """Account.Name is matched and written as Company.Title."""
        job, client = await _run(
            tmp_path,
            {
                "Account": [
                    {"id": "A1", "Name": "Acme", "Type": "Partner"},
                    {"id": "A2", "Name": "Beta", "Type": "Customer"},
                ]
            },
            {"Company": [{"id": "T9", "Title": "Acme", "Type": "Prospect"}]},
            {
                "query": "SELECT Id, Name, Type FROM Account",
                "operation": "Upsert",
                "useFieldMapping": True,
                "fieldMapping": [
                    {"targetObject": "Company"},
                    {"sourceField": "Name", "targetField": "Title"},
                ],
            },
            target_describes=COMPANY_DESCRIBES,
        )
        assert client.calls_of("update", "Company") == [
            {"id": "T9", "Title": "Acme", "Type": "Partner"}
        ]
        assert client.calls_of("insert", "Company") == [{"Title": "Beta", "Type": "Customer"}]
        assert client.calls_of("select", "Account") == []

        account = job.task_by_name["Account"]
        assert account.processed == {"inserted": 1, "updated": 1}
        assert account.source_to_target["A2"]["Name"] == "Beta"

    @pytest.mark.asyncio
    async def test_mapping_ignored_unless_enabled(self, tmp_path: Path) -> None:
        """fieldMapping has no effect without useFieldMapping."""
        _, client = await _run(
            tmp_path,
            {"Account": ACCOUNTS},
            None,
            {
                **ACCOUNT_INSERT,
                "fieldMapping": [{"targetObject": "Company"}],
            },
        )
        assert [row["Name"] for row in client.rows("Account")] == ["Acme", "Beta"]
        assert client.rows("Company") == []


class TestSimulation:
    """Simulation mode runs every phase without writing."""

    @pytest.mark.asyncio
    async def test_nothing_written(self, tmp_path: Path) -> None:
        """Rows get generated ids and children are remapped to them."""
        job, client = await _run(
            tmp_path,
            {"Account": ACCOUNTS, "Contact": CONTACTS},
            None,
            ACCOUNT_INSERT,
            CONTACT_INSERT,
            simulationMode=True,
        )
        writes = [call for call in client.calls if call[0] in ("insert", "update", "delete")]
        assert writes == []
        assert client.rows("Account") == []

        account = job.task_by_name["Account"]
        new_ids = [account.source_to_target[row["Id"]]["Id"] for row in account.source.main]
        assert all(len(new_id) == SIMULATED_ID_LENGTH for new_id in new_ids)
        assert account.processed == {"inserted": 2}

        contact = job.task_by_name["Contact"]
        remapped = [
            await job._remap(contact, row, contact.forward_update_fields)
            for row in contact.source.main
        ]
        assert [payload["AccountId"] for payload in remapped] == new_ids
        assert contact.processed == {"inserted": 2}
