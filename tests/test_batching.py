import asyncio

from aixm_ingestor.batching import (PLACEHOLDER_PHASE, ROW_PHASE,
                                    BatchCommitter, BatchData)


class RecordingSink:
    def __init__(self, failing=(), delay=0.0):
        self.calls = []
        self.failing = set(failing)
        self.delay = delay

    async def insert_placeholder_keys(self, table, keys):
        await asyncio.sleep(self.delay)
        self.calls.append((table.name, PLACEHOLDER_PHASE, list(keys)))
        return (table.name, PLACEHOLDER_PHASE) not in self.failing

    async def insert_rows(self, table, entities):
        await asyncio.sleep(self.delay)
        self.calls.append((table.name, ROW_PHASE, [entity.id for entity in entities]))
        return (table.name, ROW_PHASE) not in self.failing


def make(registry, feature, **values):
    return registry.get(feature).mapping.model(**values)


def test_full_rows_replace_placeholders_in_either_order(registry):
    batch = BatchData()
    batch.add_placeholder("things", "THING_1")
    batch.add_feature("things", "THING_1", make(registry, "Thing", id="THING_1"))
    batch.add_feature("things", "THING_2", make(registry, "Thing", id="THING_2"))
    batch.add_placeholder("things", "THING_2")
    batch.add_placeholder("things", "THING_3")
    batch.add_placeholder("things", "THING_3")

    split = batch.split()["things"]
    assert split.placeholders == ["THING_3"]
    assert [row.id for row in split.rows] == ["THING_1", "THING_2"]
    assert batch.size == 2


def test_size_counts_each_full_row_once(registry):
    batch = BatchData()
    assert batch.size == 0

    batch.add_placeholder("things", "THING_1")
    assert batch.size == 0
    batch.add_feature("things", "THING_1", make(registry, "Thing", id="THING_1"))
    batch.add_feature("things", "THING_1", make(registry, "Thing", id="THING_1", name="again"))
    batch.add_placeholder("things", "THING_1")
    assert batch.size == 1

    batch.add_feature("things", None, make(registry, "Thing", id="THING_2"))
    batch.add_feature("things", None, make(registry, "Thing", id="THING_2"))
    batch.add_feature("parts", "PART_1", make(registry, "Part", id="PART_1"))
    assert batch.size == 4
    assert [row.name for row in batch.split()["things"].rows] == ["again", None, None]


def test_commit_runs_tables_in_dependency_order(registry):
    batch = BatchData()
    batch.add_feature("parts", "PART_1", make(registry, "Part", id="PART_1", thingId="THING_1"))
    batch.add_placeholder("things", "THING_1")
    batch.add_feature("things", "THING_9", make(registry, "Thing", id="THING_9"))
    sink = RecordingSink()
    committer = BatchCommitter(sink, registry.get_dependency_order())

    warnings = asyncio.run(committer.commit(batch))

    assert warnings == []
    assert sink.calls == [
        ("things", PLACEHOLDER_PHASE, ["THING_1"]),
        ("things", ROW_PHASE, ["THING_9"]),
        ("parts", ROW_PHASE, ["PART_1"]),
    ]


def test_failed_writes_become_warnings_and_commit_continues(registry):
    batch = BatchData()
    batch.add_feature("things", "THING_1", make(registry, "Thing", id="THING_1"))
    batch.add_feature("parts", "PART_1", make(registry, "Part", id="PART_1"))
    sink = RecordingSink(failing={("things", ROW_PHASE)})
    committer = BatchCommitter(sink, registry.get_dependency_order())

    warnings = asyncio.run(committer.commit(batch))

    assert [(w.table, w.phase, w.count) for w in warnings] == [("things", ROW_PHASE, 1)]
    assert sink.calls[-1] == ("parts", ROW_PHASE, ["PART_1"])
    assert committer.warnings == warnings


def test_timeouts_become_warnings(registry):
    batch = BatchData()
    batch.add_placeholder("things", "THING_1")
    committer = BatchCommitter(
        RecordingSink(delay=0.5), registry.get_dependency_order(), write_timeout=0.01
    )

    warnings = asyncio.run(committer.commit(batch))

    assert len(warnings) == 1
    assert warnings[0].phase == PLACEHOLDER_PHASE
    assert "timed out" in warnings[0].reason


def test_submitted_batches_all_commit(registry):
    sink = RecordingSink(delay=0.01)

    async def scenario():
        committer = BatchCommitter(sink, registry.get_dependency_order(), workers=2)
        for index in range(10):
            batch = BatchData()
            batch.add_feature("things", f"THING_{index}", make(registry, "Thing", id=f"THING_{index}"))
            await committer.submit(batch)
        await committer.submit(BatchData())
        await committer.drain()
        return committer

    committer = asyncio.run(scenario())

    assert committer.batches == 10
    assert committer.pending == 0
    assert sorted(call[2][0] for call in sink.calls) == sorted(f"THING_{i}" for i in range(10))
