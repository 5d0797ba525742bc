"""Tests for failures and cancellation in the middle of a write."""

import asyncio

import pytest

from foxtables import Table
from foxtables.errors import IoFailure


@pytest.fixture
async def notes(tmp_path):
    table = await Table.create(tmp_path / "notes.dbf", "ID I AUTOINC, NOTES M")
    await table.append({"NOTES": "old"})
    yield table
    await table.close()


def break_writes(monkeypatch, file, exc, offset=None):
    """Make writes to file raise exc (only writes at offset, when given)."""
    original = file.write_at

    async def write_at(at, data):
        if offset is None or at == offset:
            raise exc
        return await original(at, data)

    monkeypatch.setattr(file, "write_at", write_at)


class TestUpdate:
    async def test_cancelled_record_write_keeps_old_memo(self, notes, tmp_path, monkeypatch):
        old_ref = (await notes.get(0))["NOTES"]
        break_writes(monkeypatch, notes.records.file, asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await notes.update(0, {"NOTES": "new"})

        monkeypatch.undo()
        await notes.close()

        async with await Table.open(tmp_path / "notes.dbf") as table:
            record = await table.get(0)
            assert record["NOTES"] == old_ref
            assert await table.read_memo(record["NOTES"]) == "old"

    async def test_failed_record_write_releases_new_memo(self, notes, monkeypatch):
        old_ref = (await notes.get(0))["NOTES"]
        break_writes(monkeypatch, notes.records.file, IoFailure(5, "disk on fire"))

        with pytest.raises(IoFailure):
            await notes.update(0, {"NOTES": "new"})

        monkeypatch.undo()
        assert (await notes.get(0))["NOTES"] == old_ref
        assert notes.memo.free_runs == [(old_ref.block + 1, 1)]
        assert await notes.read_memo(old_ref) == "old"


class TestAppend:
    async def test_failed_header_write_rolls_back(self, notes, tmp_path, monkeypatch):
        break_writes(monkeypatch, notes.records.file, IoFailure(5, "disk on fire"), offset=0)

        with pytest.raises(IoFailure):
            await notes.append({"NOTES": "lost"})

        monkeypatch.undo()
        assert notes.record_count == 1
        assert notes.fields[0].autoinc_next == 2

        assert await notes.append({"NOTES": "kept"}) == 1
        await notes.close()

        async with await Table.open(tmp_path / "notes.dbf") as table:
            assert table.record_count == 2
            record = await table.with_memos(await table.get(1))
            assert record["ID"] == 2
            assert record["NOTES"] == "kept"

    async def test_failed_record_write_changes_nothing(self, notes, tmp_path, monkeypatch):
        before = (tmp_path / "notes.dbf").read_bytes()
        break_writes(monkeypatch, notes.records.file, IoFailure(5, "disk on fire"))

        with pytest.raises(IoFailure):
            await notes.append({})

        monkeypatch.undo()
        assert notes.record_count == 1
        assert (tmp_path / "notes.dbf").read_bytes() == before
