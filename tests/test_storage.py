"""Tests for the SQLite session store."""
import pytest

from thought_server.core import ConflictError, SessionStore, StorageError
from thought_server.models import DraftRecord, StepCategory, StepContext


def make_draft(number: int, content: str = "A draft with enough content to be stored.", **kwargs):
    return DraftRecord(
        content=content,
        sequence_number=number,
        total_estimated=3,
        confidence=kwargs.pop("confidence", 0.7),
        category=StepCategory(type="initial", confidence=0.6, metadata={"source": "test"}),
        context=StepContext(problem_scope="storage", assumptions=["single writer"]),
        reasoning_chain=["first", "second"],
        **kwargs,
    )


async def test_round_trip_is_byte_identical(store):
    """Test that a stored draft loads back unchanged."""
    record = make_draft(1, creativity_score=0.25, critique_focus="clarity")
    await store.upsert("s1", record)

    loaded = await store.get_one("s1", 1)
    assert loaded.model_dump_json() == record.model_dump_json()


async def test_resubmission_keeps_single_row(store):
    """Test that writing the same key twice overwrites."""
    assert await store.upsert("s1", make_draft(1, content="first version of the draft")) == 1
    assert await store.upsert("s1", make_draft(1, content="second version of the draft")) == 2

    assert await store.count("s1") == 1
    assert await store.get_version("s1", 1) == 2
    assert (await store.get_one("s1", 1)).content == "second version of the draft"


async def test_version_conflict(store):
    """Test optimistic version checking."""
    await store.upsert("s1", make_draft(1), expected_version=0)

    with pytest.raises(ConflictError) as exc_info:
        await store.upsert("s1", make_draft(1), expected_version=0)
    assert exc_info.value.status_code == 409
    assert await store.get_version("s1", 1) == 1


async def test_missing_rows(store):
    assert await store.get_one("s1", 4) is None
    assert await store.get_version("s1", 4) == 0
    assert await store.get_recent("s1") == []
    assert await store.count("s1") == 0


async def test_recent_is_newest_first(store):
    """Test ordering and limit of recent drafts."""
    for number in (1, 2, 3):
        await store.upsert("s1", make_draft(number))
    await store.upsert("s2", make_draft(4))

    recent = await store.get_recent("s1", limit=2)
    assert [r.draft_number for r in recent] == [3, 2]


async def test_recent_before_a_draft_number(store):
    for number in range(1, 9):
        await store.upsert("s1", make_draft(number))

    recent = await store.get_recent("s1", limit=3, before=3)
    assert [r.draft_number for r in recent] == [2, 1]


async def test_delete_session(store):
    """Test purging a session leaves others alone."""
    await store.upsert("s1", make_draft(1))
    await store.upsert("s1", make_draft(2))
    await store.upsert("s2", make_draft(1))

    assert await store.delete_session("s1") == 2
    assert await store.count("s1") == 0
    assert await store.count("s2") == 1


async def test_creates_parent_directory(tmp_path):
    """Test that the database directory is created on demand."""
    path = tmp_path / "nested" / "dir" / "drafts.sqlite"
    store = SessionStore(str(path))
    await store.initialize()
    try:
        await store.upsert("s1", make_draft(1))
    finally:
        await store.close()
    assert path.exists()


async def test_persists_across_connections(tmp_path):
    path = str(tmp_path / "drafts.sqlite")
    first = SessionStore(path)
    await first.initialize()
    await first.upsert("s1", make_draft(1))
    await first.close()

    second = SessionStore(path)
    await second.initialize()
    try:
        assert (await second.get_one("s1", 1)).draft_number == 1
    finally:
        await second.close()


async def test_uninitialized_store_raises():
    store = SessionStore(":memory:")
    with pytest.raises(StorageError, match="not initialized"):
        await store.get_one("s1", 1)


async def test_corrupt_row_raises(store):
    """Test that undecodable JSON surfaces as a storage error."""
    await store.upsert("s1", make_draft(1))
    await store._db.execute("UPDATE drafts SET json_data = '{\"content\": 1}'")
    await store._db.commit()

    with pytest.raises(StorageError, match="corrupt"):
        await store.get_one("s1", 1)
