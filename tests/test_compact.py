"""Tests for compaction."""

import asyncio

import pytest

import foxtables
from foxtables import Table
from foxtables.errors import OutOfRange


@pytest.fixture
async def people(tmp_path):
    table = await Table.create(tmp_path / "people.dbf", "NAME C(10), NOTES M")
    for name in ["Alice", "Bob", "Carol", "Dan"]:
        await table.append({"NAME": name, "NOTES": f"notes about {name}"})
    yield table
    await table.close()


def names(records):
    return [r["NAME"] for r in records]


class TestCompact:
    async def test_removes_tombstones(self, people, tmp_path):
        await people.delete(1)
        await people.delete(3)

        assert await foxtables.compact(people) == 2
        assert people.record_count == 2
        assert names(await foxtables.scan(people).collect()) == ["Alice", "Carol"]

        data = (tmp_path / "people.dbf").read_bytes()
        assert len(data) == people.descriptor.record_offset(2) + 1
        assert data[-1] == 0x1A
        assert not (tmp_path / "people.dbf.tmp").exists()

    async def test_renumbers(self, people):
        await people.delete(0)
        await people.compact()
        record = await people.get(0)
        assert record["NAME"] == "Bob"
        assert record.ordinal == 0
        assert [r.ordinal for r in await foxtables.scan(people).collect()] == [0, 1, 2]

    async def test_survives_reopen(self, people, tmp_path):
        await people.delete(2)
        await people.compact()
        await people.close()

        async with await Table.open(tmp_path / "people.dbf") as table:
            assert table.record_count == 3
            records = [await table.with_memos(r) for r in await foxtables.scan(table).collect()]
            assert [r["NOTES"] for r in records] == [
                "notes about Alice",
                "notes about Bob",
                "notes about Dan",
            ]

    async def test_releases_memo_blocks(self, people):
        removed = await people.get(1)
        await people.delete(1)
        await people.compact()
        assert people.memo.free_runs == [(removed["NOTES"].block, 1)]

        await people.append({"NAME": "Eve", "NOTES": "reuses the freed block"})
        eve = await people.get(3)
        assert eve["NOTES"].block == removed["NOTES"].block

    async def test_nothing_to_remove(self, people, tmp_path):
        before = (tmp_path / "people.dbf").read_bytes()
        assert await people.compact() == 0
        assert (tmp_path / "people.dbf").read_bytes() == before
        assert not (tmp_path / "people.dbf.tmp").exists()
        assert people.record_count == 4

    async def test_everything_removed(self, people):
        for ordinal in range(4):
            await people.delete(ordinal)
        assert await people.compact() == 4
        assert people.record_count == 0
        assert await foxtables.scan(people).collect() == []

        assert await people.append({"NAME": "Fresh"}) == 0

    async def test_scan_stops_quietly(self, people):
        seen = []
        async for record in foxtables.scan(people):
            seen.append(record["NAME"])
            if record.ordinal == 0:
                for ordinal in (1, 2, 3):
                    await people.delete(ordinal)
                await people.compact()
        assert seen == ["Alice"]

    async def test_writes_after_compact(self, people):
        await people.delete(0)
        await people.compact()
        await people.update(0, {"NAME": "Robert"})
        assert (await people.get(0))["NAME"] == "Robert"
        assert await people.append({"NAME": "Zoe"}) == 3

    async def test_delete_queued_behind_compaction(self, people, tmp_path):
        await people.delete(0)
        await people.delete(1)
        removed, error = await asyncio.gather(
            people.compact(), people.delete(3), return_exceptions=True
        )
        assert removed == 2
        assert isinstance(error, OutOfRange)
        assert people.record_count == 2
        assert len((tmp_path / "people.dbf").read_bytes()) == 97 + 2 * 15 + 1
        assert not await people.is_deleted(1)
