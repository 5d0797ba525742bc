"""Tests for nested-loop joins."""

import logging

import pytest

import foxtables
from foxtables import Table


@pytest.fixture
async def parents(tmp_path):
    table = await Table.create(tmp_path / "parents.dbf", "ID N(4,0), NAME C(10)")
    await table.append({"ID": 1, "NAME": "one"})
    await table.append({"ID": 2, "NAME": "two"})
    yield table
    await table.close()


@pytest.fixture
async def children(tmp_path):
    table = await Table.create(tmp_path / "children.dbf", "PARENT_ID N(4,0), LABEL C(10)")
    await table.append({"PARENT_ID": 1, "LABEL": "a"})
    await table.append({"PARENT_ID": 1, "LABEL": "b"})
    await table.append({"PARENT_ID": 3, "LABEL": "c"})
    yield table
    await table.close()


class TestJoin:
    async def test_callable_matcher(self, parents, children):
        pairs = await foxtables.join(
            foxtables.scan(parents),
            foxtables.scan(children),
            lambda left, right: left["ID"] == right["PARENT_ID"],
        ).collect()

        assert len(pairs) == 2
        assert [(left["ID"], right["LABEL"]) for left, right in pairs] == [(1, "a"), (1, "b")]

    async def test_field_pair_matcher(self, parents, children):
        pairs = await foxtables.join(
            foxtables.scan(parents), foxtables.scan(children), ("ID", "PARENT_ID")
        ).collect()
        assert [r.ordinal for _, r in pairs] == [0, 1]

    async def test_left_major_order(self, parents, children):
        await children.append({"PARENT_ID": 2, "LABEL": "d"})
        await children.append({"PARENT_ID": 1, "LABEL": "e"})
        pairs = await foxtables.join(
            foxtables.scan(parents), foxtables.scan(children), ("ID", "PARENT_ID")
        ).collect()
        assert [(left["NAME"], right["LABEL"]) for left, right in pairs] == [
            ("one", "a"),
            ("one", "b"),
            ("one", "e"),
            ("two", "d"),
        ]

    async def test_filtered_sides(self, parents, children):
        pairs = await foxtables.join(
            foxtables.scan(parents, "ID = 1", ["ID"]),
            foxtables.scan(children, "LABEL = 'b'"),
            ("ID", "PARENT_ID"),
        ).collect()
        assert len(pairs) == 1
        assert pairs[0][0].keys() == ["ID"]

    async def test_chained_join(self, parents, children, tmp_path):
        toys = await Table.create(tmp_path / "toys.dbf", "OWNER C(10), TOY C(10)")
        try:
            await toys.append({"OWNER": "b", "TOY": "kite"})
            await toys.append({"OWNER": "a", "TOY": "ball"})
            family = foxtables.join(
                foxtables.scan(parents), foxtables.scan(children), ("ID", "PARENT_ID")
            )
            triples = await foxtables.join(family, foxtables.scan(toys), ("LABEL", "OWNER")).collect()

            assert [len(t) for t in triples] == [3, 3]
            assert [(p["ID"], c["LABEL"], t["TOY"]) for p, c, t in triples] == [
                (1, "a", "ball"),
                (1, "b", "kite"),
            ]
        finally:
            await toys.close()

    async def test_limit_and_count(self, parents, children):
        pairs = foxtables.join(
            foxtables.scan(parents), foxtables.scan(children), ("ID", "PARENT_ID")
        )
        assert await pairs.count() == 2
        assert len(await pairs.limit(1).collect()) == 1

    async def test_null_keys_do_not_match(self, tmp_path):
        left = await Table.create(tmp_path / "l.dbf", "K N(2,0)")
        right = await Table.create(tmp_path / "r.dbf", "K N(2,0)")
        try:
            await left.append({})
            await right.append({})
            assert await foxtables.join(
                foxtables.scan(left), foxtables.scan(right), ("K", "K")
            ).count() == 0
        finally:
            await left.close()
            await right.close()

    async def test_decode_errors_are_skipped(self, parents, children, caplog):
        f = children.descriptor.get_field("PARENT_ID")
        await children.records.file.write_at(children.descriptor.record_offset(0) + f.offset, b"x")

        with caplog.at_level(logging.WARNING, logger="foxtables.join"):
            pairs = await foxtables.join(
                foxtables.scan(parents), foxtables.scan(children), ("ID", "PARENT_ID")
            ).collect()

        assert [r["LABEL"] for _, r in pairs] == ["b"]
        assert "skipped right record 0" in caplog.text

    async def test_unknown_field(self, parents, children):
        with pytest.raises(KeyError):
            await foxtables.join(
                foxtables.scan(parents), foxtables.scan(children), ("ID", "MISSING")
            ).collect()
