"""
Integration tests for the Committer with the in-memory file manager.

Tests cover:
- Fold semantics and the affected-records result
- Preflight errors (nothing persisted, nothing applied)
- Persistence failures (memory untouched)
- Schema validation of tagged tables
"""

import asyncio

import pytest

from tabledb.apply.committer import Committer
from tabledb.errors import (
    DuplicateRecordId,
    InvalidMutation,
    PersistFailure,
    RecordNotFound,
    TableNotFound,
    ValidationError,
)
from tabledb.mutations import create, define, destroy, update
from tabledb.schema.types import enum, num, ref, required, str_
from tabledb.snapshot import Snapshot
from tabledb.storage.base import StorageError
from tabledb.storage.memory import InMemoryFileManager


class TestCommitter:
    """Integration tests for Committer."""

    @pytest.fixture
    def fm(self):
        return InMemoryFileManager()

    @pytest.fixture
    def snapshot(self):
        return Snapshot()

    @pytest.fixture
    def committer(self, snapshot, fm):
        return Committer(snapshot, fm)

    @pytest.fixture
    async def with_actors(self, committer):
        await committer.commit([define("actors"), create("actors", {"a": 1, "b": 2}, "r1")])
        return committer

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self, committer, fm):
        assert await committer.commit([]) == {}
        assert fm.commit_count == 0

    @pytest.mark.asyncio
    async def test_define_and_create(self, committer, snapshot, fm):
        affected = await committer.commit(
            [define("actors"), create("actors", {"cash": 5000}, "r1")]
        )
        assert affected == {"r1": {"cash": 5000}}
        assert snapshot.tables == {"actors": {"r1": {"cash": 5000}}}
        assert fm.commit_count == 1

    @pytest.mark.asyncio
    async def test_update_preserves_untouched_fields(self, with_actors, snapshot):
        affected = await with_actors.commit([update("actors", {"id": "r1", "b": 3})])
        assert affected == {"r1": {"a": 1, "b": 3}}
        assert snapshot.tables["actors"]["r1"] == {"a": 1, "b": 3}

    @pytest.mark.asyncio
    async def test_last_write_wins_within_batch(self, committer, snapshot):
        affected = await committer.commit(
            [
                define("things"),
                create("things", {"x": 1}, "id1"),
                update("things", {"id": "id1", "x": 2}),
            ]
        )
        assert affected == {"id1": {"x": 2}}
        assert snapshot.tables["things"] == {"id1": {"x": 2}}

    @pytest.mark.asyncio
    async def test_destroy_alone_affects_nothing(self, with_actors, snapshot):
        affected = await with_actors.commit([destroy("actors", {"id": "r1"})])
        assert affected == {}
        assert snapshot.tables["actors"] == {}

    @pytest.mark.asyncio
    async def test_destroy_keeps_earlier_writes_in_affected(self, committer, snapshot):
        affected = await committer.commit(
            [
                define("t"),
                create("t", {"x": 1}, "r1"),
                update("t", {"id": "r1", "x": 2}),
                destroy("t", {"id": "r1"}),
            ]
        )
        assert affected == {"r1": {"x": 2}}
        assert snapshot.tables["t"] == {}

    @pytest.mark.asyncio
    async def test_redefine_keeps_earlier_creates_in_affected(self, committer, snapshot):
        affected = await committer.commit(
            [define("t"), create("t", {}, "r1"), define("t"), create("t", {}, "r2")]
        )
        assert affected == {"r1": {}, "r2": {}}
        assert snapshot.tables["t"] == {"r2": {}}

    @pytest.mark.asyncio
    async def test_affected_keeps_fields_as_of_last_write(self, committer):
        affected = await committer.commit(
            [
                define("t"),
                create("t", {"x": 1}, "r1"),
                update("t", {"id": "r1", "y": 2}),
                update("t", {"id": "r1", "x": 3}),
            ]
        )
        assert affected == {"r1": {"x": 3, "y": 2}}

    @pytest.mark.asyncio
    async def test_affected_records_are_copies(self, with_actors, snapshot):
        affected = await with_actors.commit([update("actors", {"id": "r1", "a": 5})])
        affected["r1"]["a"] = 100
        assert snapshot.tables["actors"]["r1"]["a"] == 5

    @pytest.mark.asyncio
    async def test_rejects_non_mutations(self, committer):
        with pytest.raises(InvalidMutation, match="Expected CommitMaterial"):
            await committer.commit([{"table": "actors", "mutation": "define"}])

    # Preflight

    @pytest.mark.asyncio
    async def test_create_in_undefined_table(self, committer, snapshot, fm):
        with pytest.raises(TableNotFound):
            await committer.commit([create("ghosts", {}, "r1")])
        assert snapshot.tables == {}
        assert fm.commit_count == 0

    @pytest.mark.asyncio
    async def test_update_missing_record(self, with_actors, snapshot, fm):
        with pytest.raises(RecordNotFound) as exc_info:
            await with_actors.commit([update("actors", {"id": "nope", "a": 1})])
        assert exc_info.value.record_id == "nope"
        assert fm.commit_count == 1

    @pytest.mark.asyncio
    async def test_destroy_then_update_in_same_batch(self, with_actors, snapshot):
        with pytest.raises(RecordNotFound):
            await with_actors.commit(
                [destroy("actors", {"id": "r1"}), update("actors", {"id": "r1", "a": 2})]
            )
        assert snapshot.tables["actors"]["r1"] == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_failed_batch_applies_nothing(self, with_actors, snapshot, fm):
        """A late error in the batch rolls back the earlier entries too."""
        with pytest.raises(TableNotFound):
            await with_actors.commit(
                [
                    update("actors", {"id": "r1", "a": 100}),
                    create("actors", {"c": 1}, "r2"),
                    destroy("ghosts", {"id": "r1"}),
                ]
            )
        assert snapshot.tables == {"actors": {"r1": {"a": 1, "b": 2}}}
        assert fm.commit_count == 1

    @pytest.mark.asyncio
    async def test_duplicate_id_across_tables(self, with_actors):
        with pytest.raises(DuplicateRecordId) as exc_info:
            await with_actors.commit([define("positions"), create("positions", {}, "r1")])
        assert exc_info.value.existing_table == "actors"

    @pytest.mark.asyncio
    async def test_duplicate_id_within_batch(self, committer):
        cm = create("actors", {}, "r1")
        with pytest.raises(DuplicateRecordId):
            await committer.commit([define("actors"), cm, cm])

    @pytest.mark.asyncio
    async def test_id_reusable_after_destroy(self, with_actors, snapshot):
        await with_actors.commit(
            [destroy("actors", {"id": "r1"}), create("actors", {"new": True}, "r1")]
        )
        assert snapshot.tables["actors"] == {"r1": {"new": True}}

    # Persistence failures

    @pytest.mark.asyncio
    async def test_persist_failure_leaves_memory_untouched(self, with_actors, snapshot, fm):
        before = Snapshot.from_dict(snapshot.to_dict())
        fm.inject_failure(StorageError("disk full"))

        with pytest.raises(PersistFailure, match="disk full") as exc_info:
            await with_actors.commit(
                [update("actors", {"id": "r1", "a": 7}), define("positions")]
            )

        assert exc_info.value.batch_size == 2
        assert isinstance(exc_info.value.__cause__, StorageError)
        assert snapshot == before
        assert with_actors.stats["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_created_ids_leave_reservation(self, committer):
        committer.reserved.add("r1")
        await committer.commit([define("actors"), create("actors", {}, "r1")])
        assert "r1" not in committer.reserved

    @pytest.mark.asyncio
    async def test_rejected_batch_releases_reservations(self, with_actors):
        with_actors.reserved.update({"r2", "r3"})
        with pytest.raises(RecordNotFound):
            await with_actors.commit(
                [create("actors", {}, "r2"), destroy("actors", {"id": "nope"})]
            )
        assert with_actors.reserved == {"r3"}

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_reservations(self, with_actors, fm):
        with_actors.reserved.add("r2")
        fm.inject_failure()
        with pytest.raises(PersistFailure):
            await with_actors.commit([create("actors", {}, "r2")])
        assert "r2" in with_actors.reserved

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fields",
        [
            {"pair": (1, 2)},
            {"lookup": {1: "one"}},
            {"nested": [{"when": object()}]},
            {"tags": {"a", "b"}},
        ],
    )
    async def test_values_must_survive_json(self, with_actors, snapshot, fm, fields):
        with pytest.raises(ValidationError, match="cannot be stored as JSON"):
            await with_actors.commit([create("actors", fields, "r2")])
        with pytest.raises(ValidationError, match="cannot be stored as JSON"):
            await with_actors.commit([update("actors", {"id": "r1", **fields})])
        assert snapshot.tables["actors"] == {"r1": {"a": 1, "b": 2}}
        assert fm.commit_count == 1

    @pytest.mark.asyncio
    async def test_json_native_values_accepted(self, with_actors, snapshot):
        fields = {"n": None, "f": 1.5, "ok": True, "items": [1, "two", {"three": [3.0]}]}
        affected = await with_actors.commit([create("actors", fields, "r2")])
        assert affected == {"r2": fields}
        assert snapshot.tables["actors"]["r2"] == fields

    @pytest.mark.asyncio
    async def test_commits_are_serialized(self, committer, snapshot):
        await committer.commit([define("counters"), create("counters", {"n": 0}, "c")])

        await asyncio.gather(
            *(committer.commit([update("counters", {"id": "c", "n": i})]) for i in range(10))
        )
        assert committer.stats["commit_count"] == 11
        assert snapshot.tables["counters"]["c"]["n"] == 9


class TestCommitterValidation:
    """Schema validation during preflight."""

    @pytest.fixture
    def snapshot(self):
        return Snapshot()

    @pytest.fixture
    async def committer(self, snapshot):
        committer = Committer(snapshot, InMemoryFileManager())
        await committer.commit(
            [
                define("actors", {"cash": required(num)}),
                define(
                    "transactions",
                    {"actorId": ref("actors"), "action": enum("buy", "sell"), "symbol": str_},
                ),
                create("actors", {"cash": 5000}, "a1"),
            ]
        )
        return committer

    @pytest.mark.asyncio
    async def test_valid_create(self, committer, snapshot):
        await committer.commit(
            [create("transactions", {"actorId": "a1", "action": "buy", "symbol": "X"}, "t1")]
        )
        assert "t1" in snapshot.tables["transactions"]

    @pytest.mark.asyncio
    async def test_invalid_create(self, committer, snapshot):
        with pytest.raises(ValidationError) as exc_info:
            await committer.commit([create("transactions", {"action": "hold"}, "t1")])
        assert exc_info.value.table == "transactions"
        assert snapshot.tables["transactions"] == {}

    @pytest.mark.asyncio
    async def test_required_field_on_create(self, committer):
        with pytest.raises(ValidationError, match="'cash' is required"):
            await committer.commit([create("actors", {}, "a2")])

    @pytest.mark.asyncio
    async def test_partial_update(self, committer, snapshot):
        await committer.commit([update("actors", {"id": "a1", "cash": 10})])
        with pytest.raises(ValidationError, match="must be a number"):
            await committer.commit([update("actors", {"id": "a1", "cash": "lots"})])
        assert snapshot.tables["actors"]["a1"] == {"cash": 10}

    @pytest.mark.asyncio
    async def test_reference_to_missing_record(self, committer):
        with pytest.raises(ValidationError, match="references missing record 'nobody'"):
            await committer.commit([create("transactions", {"actorId": "nobody"}, "t1")])

    @pytest.mark.asyncio
    async def test_reference_to_record_created_in_same_batch(self, committer, snapshot):
        await committer.commit(
            [
                create("actors", {"cash": 1}, "a2"),
                create("transactions", {"actorId": "a2"}, "t1"),
            ]
        )
        assert snapshot.tables["transactions"]["t1"] == {"actorId": "a2"}

    @pytest.mark.asyncio
    async def test_redefine_without_tags_disables_validation(self, committer, snapshot):
        await committer.commit([define("actors"), create("actors", {"anything": "goes"}, "a9")])
        assert snapshot.tables["actors"] == {"a9": {"anything": "goes"}}

    @pytest.mark.asyncio
    async def test_validation_can_be_disabled(self, snapshot):
        committer = Committer(snapshot, InMemoryFileManager(), validate_records=False)
        await committer.commit([define("actors", {"cash": num}), create("actors", {"cash": "x"}, "a1")])
        assert snapshot.tables["actors"]["a1"] == {"cash": "x"}
