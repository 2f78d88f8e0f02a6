import pytest
from pydantic import ValidationError

from protocol import (
    ActionStatus,
    DeleteAction,
    ErrorCategory,
    ErrorSnapshot,
    FileAction,
    ModifyAction,
    PlanTask,
    ShellAction,
    TaskPlan,
    TaskStatus,
    TaskType,
    VerificationError,
    VerificationResult,
    new_content_of,
    parse_action,
)


# ==================== Action Tests ====================

def test_parse_action_dispatches_on_type():
    """Each wire type maps to its own variant."""
    assert isinstance(parse_action({"type": "file", "path": "a.ts", "content": "x"}), FileAction)
    assert isinstance(parse_action({"type": "modify", "path": "a.ts", "new_content": "y"}), ModifyAction)
    assert isinstance(parse_action({"type": "delete", "path": "a.ts"}), DeleteAction)
    assert isinstance(parse_action('{"type": "shell", "command": "npm install clsx"}'), ShellAction)


def test_parse_action_rejects_bad_shape():
    """Unknown type and missing fields fail validation."""
    with pytest.raises(ValidationError):
        parse_action({"type": "rename", "path": "a.ts"})
    with pytest.raises(ValidationError):
        parse_action({"type": "file", "path": "a.ts"})
    with pytest.raises(ValidationError):
        parse_action({"type": "shell", "command": ""})


def test_action_status_transitions():
    """pending -> executing -> success is allowed; success is final."""
    action = FileAction(path="a.ts", content="x")
    assert action.status == ActionStatus.PENDING

    action.transition(ActionStatus.EXECUTING)
    action.transition(ActionStatus.SUCCESS)
    assert action.is_terminal

    with pytest.raises(ValueError):
        action.transition(ActionStatus.EXECUTING)


def test_pending_action_can_be_cancelled():
    """pending -> error is the cancellation path."""
    action = ShellAction(command="npm test")
    action.transition(ActionStatus.ERROR, "cancelled")

    assert action.status == ActionStatus.ERROR
    assert action.error == "cancelled"


def test_fresh_copy_gets_new_id():
    """A retry copy is the same operation under a new id."""
    action = ModifyAction(path="a.ts", new_content="y")
    action.transition(ActionStatus.ERROR, "boom")

    copy = action.fresh_copy()

    assert copy.id != action.id
    assert copy.status == ActionStatus.PENDING
    assert copy.error is None
    assert copy.new_content == "y"


def test_describe_and_new_content():
    assert FileAction(path="a.ts", content="x").describe() == "Creating a.ts"
    assert ShellAction(command="npm i").describe() == "Running: npm i"
    assert new_content_of(ModifyAction(path="a.ts", new_content="y")) == "y"
    assert new_content_of(DeleteAction(path="a.ts")) is None
    assert not ShellAction(command="ls").is_mutating


# ==================== Plan Tests ====================

def _task(task_id, task_type=TaskType.FILE, target=None, depends_on=None):
    return PlanTask(
        id=task_id,
        type=task_type,
        target=target or f"src/{task_id}.ts",
        depends_on=depends_on or [],
    )


def test_ordered_tasks_runs_shell_first():
    """Shell tasks precede file tasks; file tasks follow dependencies."""
    plan = TaskPlan(
        summary="Button",
        tasks=[
            _task("button", depends_on=["utils"]),
            _task("utils"),
            _task("install", TaskType.SHELL, target="npm install clsx"),
        ],
    )

    assert [t.id for t in plan.ordered_tasks()] == ["install", "utils", "button"]


def test_ordered_tasks_detects_cycle():
    plan = TaskPlan(summary="cycle", tasks=[_task("a", depends_on=["b"]), _task("b", depends_on=["a"])])

    with pytest.raises(ValueError):
        plan.ordered_tasks()


def test_plan_rejects_unknown_dependency():
    with pytest.raises(ValidationError):
        TaskPlan(summary="bad", tasks=[_task("a", depends_on=["missing"])])


def test_plan_rejects_duplicate_task_ids():
    with pytest.raises(ValidationError):
        TaskPlan(summary="bad", tasks=[_task("a"), _task("a")])


def test_task_to_action():
    """Tasks become the matching action variant."""
    shell = _task("install", TaskType.SHELL, target="npm install clsx")
    assert isinstance(shell.to_action(), ShellAction)

    file_task = _task("button")
    assert file_task.needs_content
    action = file_task.to_action("export const Button = () => null;")
    assert isinstance(action, FileAction)
    assert action.path == "src/button.ts"

    with pytest.raises(ValueError):
        file_task.to_action()


def test_status_counts():
    plan = TaskPlan(summary="counts", tasks=[_task("a"), _task("b")])
    plan.tasks[0].status = TaskStatus.COMPLETED

    counts = plan.status_counts()

    assert counts["completed"] == 1
    assert counts["pending"] == 1


# ==================== Verification Model Tests ====================

def test_snapshot_counts_only_errors():
    """Warnings do not count toward the snapshot."""
    errors = [
        VerificationError(category=ErrorCategory.TYPE, message="a"),
        VerificationError(category=ErrorCategory.TYPE, message="b"),
        VerificationError(category=ErrorCategory.LINT, message="c", severity="warning"),
        VerificationError(category=ErrorCategory.MODULE, message="d"),
    ]

    snapshot = ErrorSnapshot.from_errors(errors)

    assert snapshot.type_errors == 2
    assert snapshot.module_errors == 1
    assert snapshot.lint_errors == 0
    assert snapshot.total == 3


def test_verification_result_from_errors():
    """Only error-severity entries make a result fail."""
    warning = VerificationError(category=ErrorCategory.LINT, message="w", severity="warning")
    assert VerificationResult.from_errors([warning]).success

    error = VerificationError(category=ErrorCategory.TYPE, message="e", file="src/a.ts", line=3)
    result = VerificationResult.from_errors([warning, error])
    assert not result.success
    assert result.files_with_errors() == ["src/a.ts"]


def test_error_format():
    error = VerificationError(
        category=ErrorCategory.TYPE, message="Type 'string' is not assignable", file="src/a.ts",
        line=3, column=7, code="TS2322",
    )

    assert error.format() == "src/a.ts:3:7 - TS2322: Type 'string' is not assignable"
