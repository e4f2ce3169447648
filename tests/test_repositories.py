"""Tracking tables (JSON file, SQLAlchemy) and the stores over them."""

import json
from datetime import timedelta

import pytest

from ticket_notifier.infrastructure.database import close_database, create_tables, init_database
from ticket_notifier.sla.domain import AlertEntry, AssignmentTrackingRecord
from ticket_notifier.sla.infrastructure import (
    AssignmentTrackingModel,
    AssignmentTrackingStore,
    JSONFileTable,
    SLATrackingModel,
    SLATrackingStore,
    SQLAlchemyKeyValueTable,
)

from tests.factories import T0, InMemoryTable, make_record


class TestJSONFileTable:

    async def test_missing_file_reads_empty(self, tmp_path):
        assert await JSONFileTable(tmp_path / "state.json").load_all() == {}

    async def test_put_and_delete_write_through(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        table = JSONFileTable(path)

        await table.put("1", {"sla_status": "active"})
        await table.put("2", {"sla_status": "hit"})
        await table.delete("1")

        assert json.loads(path.read_text()) == {"2": {"sla_status": "hit"}}
        assert not path.with_name("state.json.tmp").exists()

    async def test_corrupt_file_is_moved_aside(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")

        assert await JSONFileTable(path).load_all() == {}
        assert not path.exists()
        assert path.with_name("state.json.corrupt").read_text() == "{not json"

    async def test_non_object_file_is_moved_aside(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2, 3]")

        assert await JSONFileTable(path).load_all() == {}
        assert path.with_name("state.json.corrupt").exists()

    async def test_non_object_rows_are_dropped(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"1": {"sla_status": "active"}, "2": "garbage"}))

        assert await JSONFileTable(path).load_all() == {"1": {"sla_status": "active"}}


class TestSLATrackingStore:

    async def test_survives_restart(self, tmp_path):
        path = tmp_path / "sla-state.json"
        store = SLATrackingStore(JSONFileTable(path))
        await store.load()

        deadline = T0 + timedelta(seconds=300)
        record = make_record(deadline=deadline, assigned_at=T0)
        record.append_alert(AlertEntry("deadline_violation", T0 + timedelta(seconds=301), deadline, "active"))
        assert await store.save(record) is True

        restarted = SLATrackingStore(JSONFileTable(path))
        assert await restarted.load() == 1
        assert restarted.get("1001") == record

    async def test_unreadable_rows_are_skipped(self):
        table = InMemoryTable({
            "1": make_record("1").to_dict(),
            "2": {"sla_name": "no status"},
            "3": {"sla_status": "active", "deadline": "not a date"},
        })
        store = SLATrackingStore(table)

        assert await store.load() == 1
        assert store.get("1") is not None

    async def test_failed_write_keeps_record_in_memory(self):
        table = InMemoryTable()
        table.fail_writes = True
        store = SLATrackingStore(table)

        assert await store.save(make_record()) is False
        assert store.get("1001") is not None

    async def test_delete(self):
        table = InMemoryTable()
        store = SLATrackingStore(table)
        await store.save(make_record())

        assert await store.delete("1001") is True
        assert await store.delete("1001") is False
        assert table.rows == {}

    async def test_reload_picks_up_external_writes(self):
        table = InMemoryTable()
        store = SLATrackingStore(table)
        await store.load()

        table.rows["77"] = make_record("77").to_dict()
        assert store.get("77") is None
        assert await store.reload() == 1
        assert store.get("77").ticket_id == "77"

    async def test_reload_keeps_unsaved_records(self):
        table = InMemoryTable()
        store = SLATrackingStore(table)
        await store.load()
        table.fail_writes = True

        await store.save(make_record(deadline=T0))
        assert await store.reload() == 1
        assert store.get("1001").deadline == T0
        assert store.pending_writes == 1

        table.fail_writes = False
        await store.reload()
        assert table.rows["1001"]["deadline"] == make_record(deadline=T0).to_dict()["deadline"]
        assert store.pending_writes == 0

    async def test_reload_keeps_failed_deletes(self):
        table = InMemoryTable()
        store = SLATrackingStore(table)
        await store.save(make_record())
        table.fail_writes = True

        assert await store.delete("1001") is True
        assert await store.reload() == 0
        assert store.get("1001") is None

        table.fail_writes = False
        await store.reload()
        assert table.rows == {}
        assert store.pending_writes == 0

    async def test_saved_record_is_not_overridden_by_reload(self):
        table = InMemoryTable()
        store = SLATrackingStore(table)
        await store.save(make_record(deadline=T0))

        table.rows["1001"] = make_record(deadline=T0 + timedelta(hours=1)).to_dict()
        await store.reload()
        assert store.get("1001").deadline == T0 + timedelta(hours=1)


class TestSQLAlchemyTables:

    @pytest.fixture
    async def database(self):
        init_database("sqlite+aiosqlite:///:memory:")
        await create_tables()
        yield
        await close_database()

    async def test_round_trip(self, database):
        store = SLATrackingStore(SQLAlchemyKeyValueTable(SLATrackingModel))
        await store.load()
        record = make_record(deadline=T0 + timedelta(seconds=300), tags=["vip"])

        await store.save(record)
        record.sla_status = "hit"
        await store.save(record)

        restarted = SLATrackingStore(SQLAlchemyKeyValueTable(SLATrackingModel))
        assert await restarted.load() == 1
        assert restarted.get("1001").sla_status == "hit"
        assert restarted.get("1001").tags == ["vip"]

    async def test_delete(self, database):
        table = SQLAlchemyKeyValueTable(SLATrackingModel)
        store = SLATrackingStore(table)
        await store.save(make_record())
        await store.delete("1001")

        assert await table.load_all() == {}

    async def test_assignment_table(self, database):
        store = AssignmentTrackingStore(SQLAlchemyKeyValueTable(AssignmentTrackingModel))
        await store.save(AssignmentTrackingRecord(
            ticket_id="5",
            assigned_at=T0,
            tracked_at=T0,
            assignee_name="Jane Doe",
        ))

        restarted = AssignmentTrackingStore(SQLAlchemyKeyValueTable(AssignmentTrackingModel))
        await restarted.load()
        assert restarted.get("5").assigned_at == T0
        assert restarted.get("5").assignee_name == "Jane Doe"
