"""
Action Queue - strictly sequential executor of file and shell actions.

Flow per action:
    1. Capture backup (prior content, or "did not exist")
    2. Apply through the filesystem / process collaborator
    3. Optional per-file verification (fix operations only)
    4. Record a HistoryEntry and notify the observer

Guarantees:
- One drain task per queue; actions apply one at a time in enqueue order
- Every mutating action has its backup captured before it is applied
- Per-action errors land in history; they never escape the drain loop
- Rollback and apply share one mutation lock, so undo never races a write
- Outside writers (checkpoint capture and restore) take the same lock via
  ``exclusive()``
"""

from __future__ import annotations

import asyncio
import difflib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, List, Optional, Protocol, Sequence

from protocol import (
    Action,
    ActionStatus,
    DeleteAction,
    FILE_ACTION_TYPES,
    FileAction,
    ModifyAction,
    ShellAction,
)

from .errors import ActionExecutionError, RollbackFailure
from .filesystem import FileSystem
from .history import ActionResult, Backup, HistoryEntry, HistoryLedger
from .observer import EngineObserver
from .process import ProcessRunner

logger = logging.getLogger(__name__)

TERMINAL_PREFIX = "[Workbench]"
CANCELLED_REASON = "cancelled"
AUTO_ROLLBACK_REASON = "auto-rolled-back"


class FileVerdict(Protocol):
    should_rollback: bool
    reason: str


class FileChecker(Protocol):
    async def verify_file(self, path: str) -> FileVerdict:
        ...


def create_simple_diff(old: str, new: str) -> str:
    """Line-count summary of a change, e.g. ``+3 -1 lines``."""
    added = removed = 0
    matcher = difflib.SequenceMatcher(a=old.splitlines(), b=new.splitlines(), autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag in ("replace", "delete"):
            removed += i2 - i1
        if tag in ("replace", "insert"):
            added += j2 - j1
    return f"+{added} -{removed} lines"


@dataclass
class QueuedAction:
    action: Action
    future: asyncio.Future
    preset_backup: Optional[Backup] = None
    retry_of: Optional[str] = None
    backup: Optional[Backup] = None


@dataclass
class ActionHandle:
    """Returned by ``enqueue``; await ``wait()`` for the action's HistoryEntry."""

    action: Action
    _future: asyncio.Future = field(repr=False)

    @property
    def id(self) -> str:
        return self.action.id

    @property
    def status(self) -> ActionStatus:
        return self.action.status

    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> HistoryEntry:
        return await asyncio.shield(self._future)


class ActionQueue:
    """Single-drain action executor with history and rollback."""

    def __init__(
        self,
        filesystem: FileSystem,
        process: Optional[ProcessRunner] = None,
        observer: Optional[EngineObserver] = None,
        file_checker: Optional[FileChecker] = None,
        per_file_verification: bool = False,
        history_limit: Optional[int] = None,
    ):
        """
        Initialize action queue.

        Args:
            filesystem: Filesystem collaborator used for backups and writes
            process: Process collaborator for shell actions
            observer: Receives progress notifications
            file_checker: Scoped verifier used in per-file verification mode
            per_file_verification: Verify each file action right after applying it
            history_limit: Optional cap on history entries (None = unbounded)
        """
        self.filesystem = filesystem
        self.process = process
        self.observer = observer or EngineObserver()
        self.file_checker = file_checker
        self.per_file_verification = per_file_verification
        self.ledger = HistoryLedger(limit=history_limit)

        self._pending: asyncio.Queue[QueuedAction] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._state_lock = asyncio.Lock()
        self._mutation_lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()
        self._running: Optional[QueuedAction] = None

    # ==================== Enqueue / drain ====================

    async def enqueue(self, actions: Sequence[Action]) -> List[ActionHandle]:
        """Append actions in order and return one handle per action."""
        loop = asyncio.get_running_loop()
        items = [QueuedAction(action=action, future=loop.create_future()) for action in actions]
        return await self._submit(items)

    async def enqueue_and_wait(self, actions: Sequence[Action]) -> List[HistoryEntry]:
        handles = await self.enqueue(actions)
        return [await handle.wait() for handle in handles]

    async def _submit(self, items: List[QueuedAction]) -> List[ActionHandle]:
        async with self._state_lock:
            for item in items:
                if item.action.status != ActionStatus.PENDING:
                    raise ValueError(
                        f"Action {item.action.id} is {item.action.status.value}, expected pending"
                    )
            if items:
                self._idle.clear()
            for item in items:
                self._pending.put_nowait(item)
            if self._worker is None or self._worker.done():
                self._worker = asyncio.create_task(self._drain())
        return [ActionHandle(action=item.action, _future=item.future) for item in items]

    @property
    def is_idle(self) -> bool:
        return self._idle.is_set()

    @property
    def pending_count(self) -> int:
        return self._pending.qsize()

    async def wait_until_idle(self) -> None:
        """Resolves once every queued action has reached a terminal state."""
        await self._idle.wait()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        """
        Hold the mutation lock: no action applies and no rollback runs
        until the block exits. Actions enqueued meanwhile wait their turn.
        Never await ``wait_until_idle`` inside the block.
        """
        async with self._mutation_lock:
            yield

    async def _drain(self) -> None:
        while True:
            item = await self._pending.get()
            self._running = item
            try:
                entry = await self._execute(item)
                if not item.future.done():
                    item.future.set_result(entry)
            except Exception as exc:
                logger.exception(f"Queue drain error on {item.action.id}")
                if not item.future.done():
                    item.future.set_exception(exc)
            finally:
                self._running = None
                self._pending.task_done()
                if self._pending.empty():
                    self._idle.set()

    async def shutdown(self) -> None:
        """Cancel pending work and stop the drain task."""
        await self.cancel_pending()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def cancel_pending(self) -> int:
        """Drop queued actions that have not started. Returns how many were dropped."""
        cancelled = 0
        while True:
            try:
                item = self._pending.get_nowait()
            except asyncio.QueueEmpty:
                break
            item.action.transition(ActionStatus.ERROR, CANCELLED_REASON)
            entry = self.ledger.record(
                HistoryEntry(
                    id=item.action.id,
                    action=item.action.model_copy(),
                    result=ActionResult(success=False, error=CANCELLED_REASON),
                    can_rollback=False,
                    retry_of=item.retry_of,
                )
            )
            self.observer.on_action_error(item.action, CANCELLED_REASON)
            if not item.future.done():
                item.future.set_result(entry)
            self._pending.task_done()
            cancelled += 1

        if cancelled:
            logger.info(f"Cancelled {cancelled} pending action(s)")
        if self._running is None and self._pending.empty():
            self._idle.set()
        return cancelled

    # ==================== Execution ====================

    async def _execute(self, item: QueuedAction) -> HistoryEntry:
        action = item.action
        async with self._mutation_lock:
            action.transition(ActionStatus.EXECUTING)
            self.observer.on_action_start(action)
            self._terminal(action.describe())

            try:
                if isinstance(action, FILE_ACTION_TYPES):
                    item.backup = item.preset_backup or Backup(
                        path=action.path, content=await self.filesystem.read(action.path)
                    )
                    output = await self._apply_file(action, item.backup)
                else:
                    output = await self._run_shell(action)
            except Exception as exc:
                return self._record_failure(item, str(exc) or exc.__class__.__name__)

            if self._should_verify(action):
                reason = await self._verify_applied(action)
                if reason is not None:
                    try:
                        await self._restore(item.backup)
                    except Exception as exc:
                        return self._record_failure(
                            item, f"verification failed ({reason}) and restore failed: {exc}"
                        )
                    return self._record_failure(item, f"{AUTO_ROLLBACK_REASON}: {reason}")

            action.transition(ActionStatus.SUCCESS)
            can_rollback = item.backup is not None and self._changed_something(action, item.backup)
            entry = self.ledger.record(
                HistoryEntry(
                    id=action.id,
                    action=action.model_copy(),
                    result=ActionResult(success=True, output=output),
                    can_rollback=can_rollback,
                    backup=item.backup,
                    retry_of=item.retry_of,
                )
            )
            logger.info(f"Applied {action.type} action {action.id}: {action.target}")
            self.observer.on_action_complete(action)
            return entry

    def _record_failure(self, item: QueuedAction, error: str) -> HistoryEntry:
        action = item.action
        action.transition(ActionStatus.ERROR, error)
        entry = self.ledger.record(
            HistoryEntry(
                id=action.id,
                action=action.model_copy(),
                result=ActionResult(success=False, error=error),
                can_rollback=False,
                backup=item.backup,
                retry_of=item.retry_of,
            )
        )
        logger.error(f"Action {action.id} ({action.type}) failed: {error}")
        self._terminal(f"Error: {error}")
        self.observer.on_action_error(action, error)
        return entry

    async def _apply_file(self, action: Action, backup: Backup) -> str:
        if isinstance(action, FileAction):
            await self.filesystem.write(action.path, action.content)
            change = "modified" if backup.existed else "created"
            diff = create_simple_diff(backup.content or "", action.content)
            self.observer.on_filesystem_change(action.path, change)
            return f"{change} {action.path} ({diff})"

        if isinstance(action, ModifyAction):
            if not backup.existed:
                raise ActionExecutionError(action.id, f"File does not exist: {action.path}")
            await self.filesystem.write(action.path, action.new_content)
            diff = create_simple_diff(backup.content or "", action.new_content)
            self.observer.on_filesystem_change(action.path, "modified")
            return f"modified {action.path} ({diff})"

        if isinstance(action, DeleteAction):
            if not backup.existed:
                return f"{action.path} already absent"
            await self.filesystem.delete(action.path)
            self.observer.on_filesystem_change(action.path, "deleted")
            return f"deleted {action.path}"

        raise ActionExecutionError(action.id, f"Unsupported file action: {action.type}")

    async def _run_shell(self, action: ShellAction) -> str:
        if self.process is None:
            raise ActionExecutionError(action.id, "No process runner configured")
        result = await self.process.run(action.command)
        if result.output:
            self.observer.on_terminal_output(result.output)
        if result.timed_out:
            raise ActionExecutionError(action.id, f"Command timed out: {action.command}")
        if result.exit_code != 0:
            detail = result.tail(5)
            message = f"Exit code {result.exit_code}"
            raise ActionExecutionError(action.id, f"{message}: {detail}" if detail else message)
        return result.output

    @staticmethod
    def _changed_something(action: Action, backup: Backup) -> bool:
        # Deleting an absent file leaves nothing to undo.
        return not (isinstance(action, DeleteAction) and not backup.existed)

    def _should_verify(self, action: Action) -> bool:
        return (
            self.per_file_verification
            and self.file_checker is not None
            and isinstance(action, (FileAction, ModifyAction))
        )

    async def _verify_applied(self, action: Action) -> Optional[str]:
        try:
            verdict = await self.file_checker.verify_file(action.path)
        except Exception as exc:
            # A broken checker is not evidence against the change.
            logger.warning(f"Per-file verification errored for {action.path}: {exc}")
            return None
        if verdict.should_rollback:
            logger.warning(f"Per-file verification failed for {action.path}: {verdict.reason}")
            return verdict.reason
        return None

    async def _restore(self, backup: Backup) -> None:
        if backup.existed:
            await self.filesystem.write(backup.path, backup.content)
            self.observer.on_filesystem_change(backup.path, "restored")
        else:
            await self.filesystem.delete(backup.path)
            self.observer.on_filesystem_change(backup.path, "deleted")

    def _terminal(self, message: str) -> None:
        self.observer.on_terminal_output(f"{TERMINAL_PREFIX} {message}\n")

    # ==================== History / rollback ====================

    def get_history(self) -> List[HistoryEntry]:
        """Newest first."""
        return self.ledger.entries()

    def clear_history(self) -> int:
        return self.ledger.clear()

    async def rollback(self, entry_id: str) -> HistoryEntry:
        """
        Undo one applied action from its backup (one-shot).

        Returns:
            The compensating HistoryEntry

        Raises:
            RollbackFailure: Unknown entry, already rolled back, no backup, or write failed
        """
        async with self._mutation_lock:
            return await self._rollback_locked(entry_id)

    async def _rollback_locked(self, entry_id: str) -> HistoryEntry:
        entry = self.ledger.get(entry_id)
        if entry is None:
            raise RollbackFailure(entry_id, "unknown action")
        if not entry.can_rollback:
            raise RollbackFailure(entry_id, "action is not rollbackable or was already rolled back")
        if entry.backup is None:
            raise RollbackFailure(entry_id, "no backup captured")

        backup = entry.backup
        try:
            await self._restore(backup)
        except Exception as exc:
            logger.error(f"Rollback of {entry_id} failed writing {backup.path}: {exc}")
            raise RollbackFailure(entry_id, f"restore write failed: {exc}") from exc

        self.ledger.mark_rolled_back(entry_id)
        if backup.existed:
            compensating: Action = FileAction(
                path=backup.path, content=backup.content, status=ActionStatus.SUCCESS
            )
            output = f"restored {backup.path}"
        else:
            compensating = DeleteAction(path=backup.path, status=ActionStatus.SUCCESS)
            output = f"deleted {backup.path}"

        rollback_entry = self.ledger.record(
            HistoryEntry(
                id=f"rb_{entry_id}",
                action=compensating,
                result=ActionResult(success=True, output=output),
                can_rollback=False,
                rollback_of=entry_id,
            )
        )
        logger.info(f"Rolled back {entry_id}: {output}")
        self._terminal(f"Rolled back {backup.path}")
        return rollback_entry

    async def rollback_all(self) -> int:
        """Undo every rollbackable entry, newest first. Returns the count rolled back."""
        return await self.rollback_actions(None)

    async def rollback_actions(self, entry_ids: Optional[Iterable[str]]) -> int:
        """
        Undo the given entries (all when None) in reverse chronological order.

        Reverse order matters when several entries touch the same path: each
        undo restores the pre-image of its own action, so only newest-first
        ends at the state before the oldest one.
        """
        rolled_back = 0
        async with self._mutation_lock:
            for entry in self.ledger.rollbackable(entry_ids):
                try:
                    await self._rollback_locked(entry.id)
                except RollbackFailure as exc:
                    self.observer.on_action_error(entry.action, str(exc))
                    continue
                rolled_back += 1
        if rolled_back:
            self.observer.on_progress(f"Rolled back {rolled_back} action(s)")
        return rolled_back

    async def retry_failed_action(self, entry_id: str) -> ActionHandle:
        """
        Re-issue a failed action as a new pending action.

        The stored backup is reused when the target file is unchanged since
        the failure; otherwise a fresh backup is read at execution time.

        Raises:
            ValueError: If the entry is unknown or did not fail
        """
        entry = self.ledger.get(entry_id)
        if entry is None:
            raise ValueError(f"Unknown action: {entry_id}")
        if not entry.failed:
            raise ValueError(f"Action {entry_id} did not fail")

        action = entry.action.fresh_copy()
        preset: Optional[Backup] = None
        if entry.backup is not None and isinstance(action, FILE_ACTION_TYPES):
            current = await self.filesystem.read(action.path)
            if current == entry.backup.content:
                preset = entry.backup

        loop = asyncio.get_running_loop()
        item = QueuedAction(
            action=action, future=loop.create_future(), preset_backup=preset, retry_of=entry_id
        )
        logger.info(f"Retrying {entry_id} as {action.id}")
        return (await self._submit([item]))[0]
