"""
Tests for the tiered PreVerifier

Validates:
- Layers run cheap to expensive and stop at the first failure
- A malformed manifest skips every manifest-dependent layer
- A timed out layer is skipped, never reported as errors
- Script commands follow the detected package manager
- JS-only projects fall back to ESLint for the static layer
"""

import asyncio
import json

from executor import MemoryFileSystem, ProcessResult
from verification import (
    CLEAN_SUMMARY,
    PackageManager,
    PreVerifier,
    PreVerifierConfig,
    VerificationLayer,
    detect_package_manager,
    strip_json_comments,
)

TSC = "npx tsc --noEmit --pretty false"

MANIFEST = json.dumps({"name": "app", "scripts": {"build": "vite build", "lint": "eslint ."}})
TSCONFIG = """{
  // editor comment
  "compilerOptions": {"strict": true, /* inline */ "jsx": "react-jsx",},
}"""


def _project(**overrides):
    files = {"package.json": MANIFEST, "tsconfig.json": TSCONFIG, "src/App.tsx": "export {}"}
    files.update(overrides)
    return MemoryFileSystem(files)


def _layers(result):
    return {layer.layer: layer for layer in result.layers}


def test_clean_project_runs_every_layer(scripted_process):
    process = scripted_process()
    verifier = PreVerifier(_project(), process)

    result = asyncio.run(verifier.run())

    assert result.is_clean
    assert result.summary == CLEAN_SUMMARY
    assert process.commands == [TSC, "npm run build", "npm run lint"]


def test_static_failure_short_circuits(scripted_process):
    process = scripted_process({
        TSC: ProcessResult(
            command=TSC,
            output="src/App.tsx(1,10): error TS2304: Cannot find name 'Foo'.\n"
                   "src/App.tsx(2,1): error TS2322: Type 'string' is not assignable to type 'number'.\n",
            exit_code=2,
        ),
    })
    verifier = PreVerifier(_project(), process)

    result = asyncio.run(verifier.run())

    layers = _layers(result)
    assert not result.is_clean
    assert result.total_errors == 2
    assert result.failed_layer == VerificationLayer.STATIC
    assert layers[VerificationLayer.BUILD].skip_reason == "previous layer failed"
    assert process.commands == [TSC]
    assert result.summary == "Found 2 error(s) - awaiting approval to fix"
    assert "### Type errors (2)" in result.error_details


def test_malformed_manifest_skips_dependent_layers(scripted_process):
    """Build and lint never run against a broken package.json."""
    process = scripted_process()
    verifier = PreVerifier(_project(**{"package.json": '{"name": "app", "scripts": {'}), process)

    result = asyncio.run(verifier.run())

    layers = _layers(result)
    assert not result.manifest_valid
    assert not layers[VerificationLayer.STRUCTURE].passed
    assert layers[VerificationLayer.STRUCTURE].errors[0].code == "MANIFEST_INVALID"
    assert layers[VerificationLayer.BUILD].skip_reason == "package.json is malformed"
    assert layers[VerificationLayer.LINT].skip_reason == "package.json is malformed"
    assert "npm run build" not in process.commands
    assert "npm run lint" not in process.commands


def test_malformed_manifest_without_short_circuit_still_skips_build(scripted_process):
    process = scripted_process()
    config = PreVerifierConfig(short_circuit=False)
    verifier = PreVerifier(_project(**{"package.json": "[1, 2"}), process, config)

    result = asyncio.run(verifier.run())

    assert process.commands == [TSC]
    assert _layers(result)[VerificationLayer.BUILD].skipped


def test_timed_out_layer_is_skipped(scripted_process):
    process = scripted_process({
        "npm run build": ProcessResult(command="npm run build", output="", exit_code=-1, timed_out=True),
    })
    verifier = PreVerifier(_project(), process, PreVerifierConfig(timeout_s=5))

    result = asyncio.run(verifier.run())

    build = _layers(result)[VerificationLayer.BUILD]
    assert build.skipped
    assert "timed out after 5s" in build.skip_reason
    assert result.is_clean
    assert "npm run lint" in process.commands
    assert process.timeouts == [5, 5, 5]


def test_nonzero_exit_without_parsable_errors_fails_layer(scripted_process):
    process = scripted_process({
        "npm run build": ProcessResult(command="npm run build", output="rollup crashed\n", exit_code=1),
    })
    verifier = PreVerifier(_project(), process)

    result = asyncio.run(verifier.run())

    assert result.failed_layer == VerificationLayer.BUILD
    assert "exited with code 1" in result.errors[0].message


def test_js_only_project_skips_static(scripted_process):
    process = scripted_process()
    fs = MemoryFileSystem({"package.json": json.dumps({"scripts": {}})})

    result = asyncio.run(PreVerifier(fs, process).run())

    layers = _layers(result)
    assert layers[VerificationLayer.STATIC].skip_reason == "no type checker config (JS-only project)"
    assert layers[VerificationLayer.BUILD].skip_reason == "no 'build' script"
    assert process.commands == []
    assert result.is_clean


def test_invalid_tsconfig_fails_structure(scripted_process):
    process = scripted_process()
    verifier = PreVerifier(_project(**{"tsconfig.json": '{"compilerOptions": '}), process)

    result = asyncio.run(verifier.run())

    assert result.failed_layer == VerificationLayer.STRUCTURE
    assert result.errors[0].code == "CONFIG_INVALID"
    assert process.commands == []


def test_strip_json_comments_keeps_strings():
    text = '{"url": "http://x//y", /* c */ "a": [1, 2,], // tail\n}'

    assert json.loads(strip_json_comments(text)) == {"url": "http://x//y", "a": [1, 2]}


def test_to_dict_lists_layers(scripted_process):
    result = asyncio.run(PreVerifier(_project(), scripted_process()).run())

    data = result.to_dict()

    assert data["is_clean"] is True
    assert [layer["layer"] for layer in data["layers"]] == ["structure", "static", "build", "lint", "test"]


# ==================== Test layer ====================

def test_test_layer_is_off_by_default(scripted_process):
    manifest = json.dumps({"scripts": {"build": "vite build", "test": "vitest run"}})
    process = scripted_process()

    result = asyncio.run(PreVerifier(_project(**{"package.json": manifest}), process).run())

    assert _layers(result)[VerificationLayer.TEST].skip_reason == "disabled"
    assert "npm run test" not in process.commands


def test_test_layer_runs_when_enabled(scripted_process):
    manifest = json.dumps({"scripts": {"build": "vite build", "test": "vitest run"}})
    process = scripted_process({
        "npm run test": ProcessResult(command="npm run test", output="1 test failed\n", exit_code=1),
    })
    config = PreVerifierConfig(run_test=True)

    result = asyncio.run(PreVerifier(_project(**{"package.json": manifest}), process, config).run())

    assert process.commands[-1] == "npm run test"
    assert result.failed_layer == VerificationLayer.TEST
    assert "exited with code 1" in result.errors[0].message


def test_malformed_manifest_skips_test_layer(scripted_process):
    process = scripted_process()
    config = PreVerifierConfig(run_test=True, short_circuit=False)

    result = asyncio.run(PreVerifier(_project(**{"package.json": "{"}), process, config).run())

    assert _layers(result)[VerificationLayer.TEST].skip_reason == "package.json is malformed"
    assert process.commands == [TSC]


# ==================== ESLint fallback ====================

def test_js_only_project_with_eslint_config_runs_eslint(scripted_process):
    process = scripted_process()
    fs = MemoryFileSystem({
        "package.json": json.dumps({"scripts": {}}),
        "eslint.config.js": "export default []",
        "src/index.js": "console.log(1)",
    })

    result = asyncio.run(PreVerifier(fs, process).run())

    assert process.commands == ["npx eslint ."]
    assert not _layers(result)[VerificationLayer.STATIC].skipped
    assert result.is_clean


def test_eslint_fallback_errors_fail_static_layer(scripted_process):
    process = scripted_process({
        "npx eslint .": ProcessResult(
            command="npx eslint .",
            output="src/index.js:3:1  error  'x' is not defined  no-undef\n",
            exit_code=1,
        ),
    })
    fs = MemoryFileSystem({
        "package.json": json.dumps({"scripts": {"build": "vite build"}, "devDependencies": {"eslint": "^9.0.0"}}),
        "src/index.js": "x",
    })

    result = asyncio.run(PreVerifier(fs, process).run())

    assert result.failed_layer == VerificationLayer.STATIC
    assert result.errors[0].code == "no-undef"
    assert process.commands == ["npx eslint ."]


def test_eslint_fallback_can_be_disabled(scripted_process):
    process = scripted_process()
    fs = MemoryFileSystem({"package.json": json.dumps({"scripts": {}}), ".eslintrc.json": "{}"})

    result = asyncio.run(PreVerifier(fs, process, PreVerifierConfig(eslint_fallback=False)).run())

    assert _layers(result)[VerificationLayer.STATIC].skip_reason == "no type checker config (JS-only project)"
    assert process.commands == []


# ==================== Package manager ====================

def test_yarn_lock_switches_script_commands(scripted_process):
    process = scripted_process()

    result = asyncio.run(PreVerifier(_project(**{"yarn.lock": "# yarn lockfile v1\n"}), process).run())

    assert process.commands == [TSC, "yarn build", "yarn lint"]
    assert result.package_manager == "yarn"
    assert result.to_dict()["package_manager"] == "yarn"


def test_pnpm_lock_switches_script_commands(scripted_process):
    process = scripted_process()

    asyncio.run(PreVerifier(_project(**{"pnpm-lock.yaml": "lockfileVersion: '9.0'\n"}), process).run())

    assert process.commands == [TSC, "pnpm run build", "pnpm run lint"]


def test_configured_package_manager_overrides_lock_file(scripted_process):
    process = scripted_process()
    config = PreVerifierConfig(package_manager="bun")

    asyncio.run(PreVerifier(_project(**{"yarn.lock": ""}), process, config).run())

    assert process.commands == [TSC, "bun run build", "bun run lint"]


def test_detect_package_manager_field_without_lock_file():
    manifest = {"packageManager": "pnpm@9.1.0", "workspaces": ["packages/*"]}
    fs = MemoryFileSystem({"package.json": json.dumps(manifest)})

    info = asyncio.run(detect_package_manager(fs))

    assert info.manager == PackageManager.PNPM
    assert info.version == "9.1.0"
    assert info.uses_workspaces
    assert info.exec("eslint", (".",)) == "pnpm dlx eslint ."


def test_detect_package_manager_lock_file_wins_over_field():
    fs = MemoryFileSystem({
        "package.json": json.dumps({"packageManager": "yarn@4.0.0"}),
        "package-lock.json": "{}",
    })

    info = asyncio.run(detect_package_manager(fs))

    assert info.manager == PackageManager.NPM
    assert info.lock_file == "package-lock.json"
    assert info.version is None


def test_detect_package_manager_defaults_to_npm():
    info = asyncio.run(detect_package_manager(MemoryFileSystem({})))

    assert info.manager == PackageManager.NPM
    assert info.run("build") == "npm run build"
