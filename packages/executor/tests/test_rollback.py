"""
Tests for history and rollback

Validates:
- Byte-identical restore of the pre-image
- Rollback of a creation deletes the file
- One-shot undo with compensating entries
- rollback_all must run newest first (forward order is shown to be wrong)
- History limit and clear
"""

import asyncio

import pytest

from executor import ActionQueue, HistoryLedger, LocalFileSystem, MemoryFileSystem, RollbackFailure
from protocol import DeleteAction, FileAction, ModifyAction


# ==================== Single Rollback Tests ====================

def test_rollback_restores_byte_identical_content(tmp_path):
    """CRLF, trailing whitespace and unicode survive a round trip on disk."""
    original = "line one\r\nline two  \n\tüñí\n"
    fs = LocalFileSystem(tmp_path)
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.ts").write_bytes(original.encode("utf-8"))
    queue = ActionQueue(fs)

    async def run():
        [entry] = await queue.enqueue_and_wait([ModifyAction(path="src/app.ts", new_content="changed\n")])
        await queue.rollback(entry.id)

    asyncio.run(run())

    assert (tmp_path / "src" / "app.ts").read_bytes() == original.encode("utf-8")


def test_rollback_of_creation_leaves_file_absent():
    fs = MemoryFileSystem()
    queue = ActionQueue(fs)

    async def run():
        [entry] = await queue.enqueue_and_wait([FileAction(path="src/new.ts", content="x")])
        assert "src/new.ts" in fs.files
        return await queue.rollback(entry.id)

    compensating = asyncio.run(run())

    assert "src/new.ts" not in fs.files
    assert compensating.action.type == "delete"


def test_rollback_of_delete_recreates_file():
    fs = MemoryFileSystem({"old.ts": "keep me"})
    queue = ActionQueue(fs)

    async def run():
        [entry] = await queue.enqueue_and_wait([DeleteAction(path="old.ts")])
        await queue.rollback(entry.id)

    asyncio.run(run())

    assert fs.files["old.ts"] == "keep me"


def test_rollback_is_one_shot():
    """A rolled-back entry is replaced, never edited, and cannot be undone twice."""
    fs = MemoryFileSystem({"a.ts": "v0"})
    queue = ActionQueue(fs)

    async def run():
        [entry] = await queue.enqueue_and_wait([ModifyAction(path="a.ts", new_content="v1")])
        compensating = await queue.rollback(entry.id)
        with pytest.raises(RollbackFailure):
            await queue.rollback(entry.id)
        return entry, compensating

    entry, compensating = asyncio.run(run())

    assert entry.can_rollback
    assert queue.ledger.get(entry.id).can_rollback is False
    assert compensating.rollback_of == entry.id
    assert not compensating.can_rollback
    assert [e.id for e in queue.get_history()] == [compensating.id, entry.id]


def test_rollback_unknown_entry_raises():
    queue = ActionQueue(MemoryFileSystem())

    with pytest.raises(RollbackFailure) as exc_info:
        asyncio.run(queue.rollback("act_missing"))

    assert exc_info.value.reason == "unknown action"


def test_failed_action_is_not_rollbackable():
    queue = ActionQueue(MemoryFileSystem())

    async def run():
        [entry] = await queue.enqueue_and_wait([ModifyAction(path="missing.ts", new_content="x")])
        await queue.rollback(entry.id)

    with pytest.raises(RollbackFailure):
        asyncio.run(run())


# ==================== Batch Rollback Tests ====================

def _three_actions():
    return [
        FileAction(path="src/a.ts", content="A"),
        ModifyAction(path="src/shared.ts", new_content="B"),
        ModifyAction(path="src/shared.ts", new_content="C"),
    ]


def test_rollback_all_newest_first_restores_pre_a_state():
    """History [A, B, C] with B and C on the same path rolls back to the original."""
    fs = MemoryFileSystem({"src/shared.ts": "ORIGINAL"})
    queue = ActionQueue(fs)

    async def run():
        await queue.enqueue_and_wait(_three_actions())
        return await queue.rollback_all()

    count = asyncio.run(run())

    assert count == 3
    assert fs.files == {"src/shared.ts": "ORIGINAL"}
    assert queue.ledger.rollbackable() == []


def test_forward_order_replay_leaves_intermediate_state():
    """Regression: replaying the same backups oldest first ends at B's content."""
    fs = MemoryFileSystem({"src/shared.ts": "ORIGINAL"})
    queue = ActionQueue(fs)

    async def run():
        await queue.enqueue_and_wait(_three_actions())
        for entry in queue.ledger.chronological():
            backup = entry.backup
            if backup.existed:
                await fs.write(backup.path, backup.content)
            else:
                await fs.delete(backup.path)

    asyncio.run(run())

    assert fs.files["src/shared.ts"] == "B"
    assert fs.files["src/shared.ts"] != "ORIGINAL"


def test_rollback_actions_scoped_to_ids():
    fs = MemoryFileSystem({"src/shared.ts": "ORIGINAL"})
    queue = ActionQueue(fs)

    async def run():
        entries = await queue.enqueue_and_wait(_three_actions())
        return await queue.rollback_actions([entries[0].id]), entries

    count, entries = asyncio.run(run())

    assert count == 1
    assert "src/a.ts" not in fs.files
    assert fs.files["src/shared.ts"] == "C"
    assert queue.ledger.get(entries[2].id).can_rollback


def test_rollback_all_counts_only_rollbackable():
    fs = MemoryFileSystem()
    queue = ActionQueue(fs)

    async def run():
        await queue.enqueue_and_wait([
            FileAction(path="a.ts", content="a"),
            ModifyAction(path="missing.ts", new_content="x"),
            DeleteAction(path="never-existed.ts"),
        ])
        return await queue.rollback_all()

    assert asyncio.run(run()) == 1
    assert fs.files == {}


# ==================== Ledger Tests ====================

def test_history_grows_until_cleared():
    queue = ActionQueue(MemoryFileSystem())

    asyncio.run(queue.enqueue_and_wait([FileAction(path=f"f{i}.ts", content="x") for i in range(25)]))

    assert len(queue.get_history()) == 25
    assert queue.clear_history() == 25
    assert queue.get_history() == []


def test_history_limit_drops_oldest():
    queue = ActionQueue(MemoryFileSystem(), history_limit=2)

    entries = asyncio.run(queue.enqueue_and_wait([FileAction(path=f"f{i}.ts", content="x") for i in range(3)]))

    assert [e.id for e in queue.ledger.chronological()] == [entries[1].id, entries[2].id]


def test_ledger_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        HistoryLedger(limit=0)


def test_history_entry_to_dict():
    queue = ActionQueue(MemoryFileSystem())

    [entry] = asyncio.run(queue.enqueue_and_wait([FileAction(path="a.ts", content="x")]))
    data = entry.to_dict()

    assert data["id"] == entry.id
    assert data["action"]["type"] == "file"
    assert data["success"] is True
    assert data["backup_existed"] is False
