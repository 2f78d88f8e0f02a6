import pytest

from orchestration import ApprovalGates, EngineConfig

ENV_VARS = (
    "WORKBENCH_MAX_ITERATIONS",
    "WORKBENCH_MAX_CHECKPOINTS",
    "WORKBENCH_HISTORY_LIMIT",
    "WORKBENCH_PER_FILE_VERIFICATION",
    "WORKBENCH_VERIFY_TIMEOUT_S",
    "WORKBENCH_STOP_ON_ERROR",
    "WORKBENCH_AUTO_APPROVE",
    "WORKBENCH_GATE_RESEARCH",
    "WORKBENCH_GATE_PRD",
    "WORKBENCH_GATE_ARCHITECTURE",
    "WORKBENCH_GATE_PHASE",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults():
    config = EngineConfig()

    assert config.max_iterations == 3
    assert config.max_checkpoints == 10
    assert config.history_limit is None
    assert config.approval_gates == ApprovalGates(research=False, prd=False, architecture=True, phase=False)


def test_from_dict():
    config = EngineConfig.from_dict({
        "max_iterations": 5,
        "history_limit": 200,
        "approval_gates": {"research": True, "architecture": False},
        "auto_approve": ["fix"],
    })

    assert config.max_iterations == 5
    assert config.history_limit == 200
    assert config.approval_gates.research
    assert not config.approval_gates.architecture
    assert config.auto_approve == frozenset({"fix"})


@pytest.mark.parametrize(
    "kwargs",
    [{"max_iterations": -1}, {"max_checkpoints": 0}, {"auto_approve": frozenset({"deploy"})}],
)
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        EngineConfig(**kwargs)


def test_env_overrides(clean_env):
    clean_env.setenv("WORKBENCH_MAX_ITERATIONS", "1")
    clean_env.setenv("WORKBENCH_HISTORY_LIMIT", "0")
    clean_env.setenv("WORKBENCH_PER_FILE_VERIFICATION", "true")
    clean_env.setenv("WORKBENCH_AUTO_APPROVE", "research, prd")
    clean_env.setenv("WORKBENCH_GATE_PHASE", "yes")

    config = EngineConfig.from_env(EngineConfig(history_limit=50))

    assert config.max_iterations == 1
    assert config.history_limit is None
    assert config.per_file_verification
    assert config.auto_approve == frozenset({"research", "prd"})
    assert config.approval_gates.phase
    assert config.approval_gates.architecture


def test_load_file_then_env(tmp_path, clean_env):
    path = tmp_path / "workbench.yaml"
    path.write_text(
        "engine:\n"
        "  max_checkpoints: 4\n"
        "  stop_on_error: true\n"
        "  approval_gates:\n"
        "    prd: true\n",
        encoding="utf-8",
    )
    clean_env.setenv("WORKBENCH_MAX_CHECKPOINTS", "6")

    config = EngineConfig.load(path)

    assert config.max_checkpoints == 6
    assert config.stop_on_error
    assert config.approval_gates.prd


def test_load_missing_file_uses_defaults(tmp_path, clean_env):
    assert EngineConfig.load(tmp_path / "absent.yaml") == EngineConfig()
