"""
Tiered PreVerifier - cheap-to-expensive project checks.

Layers, in order:
    1. structure: manifest (package.json) and config files parse
    2. static:    type checker without emit; ESLint for JS-only projects
    3. build:     the manifest's build script
    4. lint:      the manifest's lint script
    5. test:      the manifest's test script (off by default, tests are slow)

The run stops at the first failing layer (later layers are reported as
skipped). Build, lint and test depend on the manifest: if the manifest is
malformed they are skipped outright, because running package scripts
against a broken manifest can hang. A layer that times out is a soft
failure: reported as skipped, never as errors. Script commands use the
package manager detected from the project's lock file.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from executor.errors import VerificationTimeout
from executor.filesystem import FileSystem
from executor.process import ProcessResult, ProcessRunner
from protocol import UNPARSED_FAILURE_CODE, ErrorCategory, VerificationError

from .package_manager import PackageManager, PackageManagerInfo, detect_package_manager
from .parser import ErrorOutputParser

logger = logging.getLogger(__name__)

CLEAN_SUMMARY = "No errors detected - project is clean"


class VerificationLayer(str, Enum):
    STRUCTURE = "structure"
    STATIC = "static"
    BUILD = "build"
    LINT = "lint"
    TEST = "test"


MANIFEST_DEPENDENT = {VerificationLayer.BUILD, VerificationLayer.LINT, VerificationLayer.TEST}
COMMAND_LAYERS = (
    VerificationLayer.STATIC,
    VerificationLayer.BUILD,
    VerificationLayer.LINT,
    VerificationLayer.TEST,
)

ESLINT_CONFIG_FILES = (
    ".eslintrc",
    ".eslintrc.js",
    ".eslintrc.cjs",
    ".eslintrc.json",
    ".eslintrc.yaml",
    ".eslintrc.yml",
    "eslint.config.js",
    "eslint.config.mjs",
    "eslint.config.cjs",
)


@dataclass
class LayerResult:
    layer: VerificationLayer
    passed: bool
    skipped: bool = False
    skip_reason: Optional[str] = None
    errors: List[VerificationError] = field(default_factory=list)
    duration_s: float = 0.0

    @classmethod
    def skip(cls, layer: VerificationLayer, reason: str) -> "LayerResult":
        return cls(layer=layer, passed=True, skipped=True, skip_reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layer": self.layer.value,
            "passed": self.passed,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "errors": [e.model_dump(mode="json") for e in self.errors],
            "duration_s": round(self.duration_s, 3),
        }


@dataclass
class PreVerifierConfig:
    manifest_file: str = "package.json"
    config_files: Tuple[str, ...] = ("tsconfig.json",)
    static_command: str = "npx tsc --noEmit --pretty false"
    # None: detect from lock files
    package_manager: Optional[str] = None
    build_script: str = "build"
    lint_script: str = "lint"
    test_script: str = "test"
    run_static: bool = True
    run_build: bool = True
    run_lint: bool = True
    run_test: bool = False
    eslint_fallback: bool = True
    eslint_args: Tuple[str, ...] = (".",)
    timeout_s: float = 60.0
    short_circuit: bool = True


@dataclass
class PreVerificationResult:
    layers: List[LayerResult]
    duration_s: float = 0.0
    manifest_valid: bool = True
    package_manager: str = PackageManager.NPM.value

    @property
    def errors(self) -> List[VerificationError]:
        return [e for layer in self.layers for e in layer.errors if e.severity == "error"]

    @property
    def total_errors(self) -> int:
        return len(self.errors)

    @property
    def is_clean(self) -> bool:
        return all(layer.passed for layer in self.layers) and self.total_errors == 0

    @property
    def requires_approval(self) -> bool:
        return not self.is_clean

    @property
    def failed_layer(self) -> Optional[VerificationLayer]:
        for layer in self.layers:
            if not layer.passed:
                return layer.layer
        return None

    @property
    def skipped_layers(self) -> List[VerificationLayer]:
        return [layer.layer for layer in self.layers if layer.skipped]

    @property
    def summary(self) -> str:
        if self.is_clean:
            return CLEAN_SUMMARY
        return f"Found {self.total_errors} error(s) - awaiting approval to fix"

    @property
    def error_details(self) -> str:
        """Error list for AI context, grouped by category, capped per category."""
        sections: List[str] = []
        for category in ErrorCategory:
            matching = [e for e in self.errors if e.category == category]
            if not matching:
                continue
            sections.append(f"### {category.value.title()} errors ({len(matching)})")
            sections.extend(f"- {e.format()}" for e in matching[:10])
            if len(matching) > 10:
                sections.append(f"- ... and {len(matching) - 10} more {category.value} errors")
        return "\n".join(sections)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_clean": self.is_clean,
            "total_errors": self.total_errors,
            "summary": self.summary,
            "requires_approval": self.requires_approval,
            "manifest_valid": self.manifest_valid,
            "package_manager": self.package_manager,
            "duration_s": round(self.duration_s, 3),
            "layers": [layer.to_dict() for layer in self.layers],
        }


def strip_json_comments(text: str) -> str:
    """Remove // and /* */ comments and trailing commas (tsconfig is JSONC)."""
    out: List[str] = []
    i, n = 0, len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1

    cleaned = "".join(out)
    result: List[str] = []
    for index, ch in enumerate(cleaned):
        if ch == ",":
            rest = cleaned[index + 1:].lstrip()
            if rest[:1] in ("}", "]"):
                continue
        result.append(ch)
    return "".join(result)


class PreVerifier:
    def __init__(
        self,
        filesystem: FileSystem,
        process: ProcessRunner,
        config: Optional[PreVerifierConfig] = None,
        parser: Optional[ErrorOutputParser] = None,
    ):
        self.filesystem = filesystem
        self.process = process
        self.config = config or PreVerifierConfig()
        self.parser = parser or ErrorOutputParser()

    async def run(self) -> PreVerificationResult:
        started = time.monotonic()
        manifest, manifest_error = await self._load_manifest()
        packages = await self._package_manager(manifest)

        layers: List[LayerResult] = [await self._structure_layer(manifest_error)]
        failed = not layers[0].passed

        for layer in COMMAND_LAYERS:
            if layer in MANIFEST_DEPENDENT and manifest_error is not None:
                layers.append(
                    LayerResult.skip(layer, f"{self.config.manifest_file} is malformed")
                )
                continue
            if failed and self.config.short_circuit:
                layers.append(LayerResult.skip(layer, "previous layer failed"))
                continue
            result = await self._run_layer(layer, manifest, packages)
            layers.append(result)
            failed = failed or not result.passed

        outcome = PreVerificationResult(
            layers=layers,
            duration_s=time.monotonic() - started,
            manifest_valid=manifest_error is None,
            package_manager=packages.manager.value,
        )
        logger.info(f"Pre-verification: {outcome.summary}")
        return outcome

    # ==================== Layers ====================

    async def _load_manifest(self) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        content = await self.filesystem.read(self.config.manifest_file)
        if content is None:
            return None, None
        try:
            manifest = json.loads(content)
        except json.JSONDecodeError as exc:
            return None, f"line {exc.lineno}: {exc.msg}"
        if not isinstance(manifest, dict):
            return None, "top-level value must be an object"
        return manifest, None

    async def _structure_layer(self, manifest_error: Optional[str]) -> LayerResult:
        started = time.monotonic()
        errors: List[VerificationError] = []
        if manifest_error is not None:
            errors.append(
                VerificationError(
                    category=ErrorCategory.MODULE,
                    message=f"Invalid {self.config.manifest_file}: {manifest_error}",
                    file=self.config.manifest_file,
                    code="MANIFEST_INVALID",
                )
            )

        for config_file in self.config.config_files:
            content = await self.filesystem.read(config_file)
            if content is None:
                continue
            try:
                json.loads(strip_json_comments(content))
            except json.JSONDecodeError as exc:
                errors.append(
                    VerificationError(
                        category=ErrorCategory.TYPE,
                        message=f"Invalid {config_file}: {exc.msg}",
                        file=config_file,
                        line=exc.lineno,
                        code="CONFIG_INVALID",
                    )
                )

        return LayerResult(
            layer=VerificationLayer.STRUCTURE,
            passed=not errors,
            errors=errors,
            duration_s=time.monotonic() - started,
        )

    async def _package_manager(self, manifest: Optional[Dict[str, Any]]) -> PackageManagerInfo:
        if self.config.package_manager:
            return PackageManagerInfo(manager=PackageManager(self.config.package_manager))
        return await detect_package_manager(self.filesystem, manifest, self.config.manifest_file)

    async def _run_layer(
        self,
        layer: VerificationLayer,
        manifest: Optional[Dict[str, Any]],
        packages: PackageManagerInfo,
    ) -> LayerResult:
        command, skip_reason, fallback_category = await self._command_for(layer, manifest, packages)
        if command is None:
            return LayerResult.skip(layer, skip_reason or "not configured")

        started = time.monotonic()
        try:
            result = await self._run(layer, command)
        except VerificationTimeout as exc:
            logger.warning(f"Pre-verification layer {layer.value} skipped: {exc}")
            return LayerResult(
                layer=layer,
                passed=True,
                skipped=True,
                skip_reason=str(exc),
                duration_s=time.monotonic() - started,
            )

        errors = self.parser.parse(result.output)
        blocking = [e for e in errors if e.severity == "error"]
        if result.exit_code != 0 and not blocking:
            errors.append(
                VerificationError(
                    category=fallback_category,
                    code=UNPARSED_FAILURE_CODE,
                    message=f"`{command}` exited with code {result.exit_code}: {result.tail(3)}".strip(),
                )
            )
            blocking = errors
        return LayerResult(
            layer=layer,
            passed=not blocking,
            errors=errors,
            duration_s=time.monotonic() - started,
        )

    async def _command_for(
        self,
        layer: VerificationLayer,
        manifest: Optional[Dict[str, Any]],
        packages: PackageManagerInfo,
    ) -> Tuple[Optional[str], Optional[str], ErrorCategory]:
        """Returns (command, skip reason, category for an unparseable failure)."""
        config = self.config
        if layer == VerificationLayer.STATIC:
            if not config.run_static:
                return None, "disabled", ErrorCategory.TYPE
            if await self._any_exists(config.config_files):
                return config.static_command, None, ErrorCategory.TYPE
            if config.eslint_fallback and await self._eslint_available(manifest):
                logger.info("JS-only project - running ESLint instead of the type checker")
                return packages.exec("eslint", config.eslint_args), None, ErrorCategory.LINT
            return None, "no type checker config (JS-only project)", ErrorCategory.TYPE

        enabled, script = {
            VerificationLayer.BUILD: (config.run_build, config.build_script),
            VerificationLayer.LINT: (config.run_lint, config.lint_script),
            VerificationLayer.TEST: (config.run_test, config.test_script),
        }[layer]
        category = _FALLBACK_CATEGORY[layer]
        if not enabled:
            return None, "disabled", category
        if manifest is None:
            return None, f"no {config.manifest_file}", category
        scripts = manifest.get("scripts") or {}
        if not isinstance(scripts, dict) or script not in scripts:
            return None, f"no '{script}' script", category
        return packages.run(script), None, category

    async def _any_exists(self, paths) -> bool:
        for path in paths:
            if await self.filesystem.read(path) is not None:
                return True
        return False

    async def _eslint_available(self, manifest: Optional[Dict[str, Any]]) -> bool:
        if await self._any_exists(ESLINT_CONFIG_FILES):
            return True
        if manifest is None:
            return False
        for section in ("dependencies", "devDependencies"):
            deps = manifest.get(section)
            if isinstance(deps, dict) and "eslint" in deps:
                return True
        return False

    async def _run(self, layer: VerificationLayer, command: str) -> ProcessResult:
        result = await self.process.run(command, timeout=self.config.timeout_s)
        if result.timed_out:
            raise VerificationTimeout(f"{layer.value} check", self.config.timeout_s)
        return result


_FALLBACK_CATEGORY = {
    VerificationLayer.STATIC: ErrorCategory.TYPE,
    VerificationLayer.BUILD: ErrorCategory.RUNTIME,
    VerificationLayer.LINT: ErrorCategory.LINT,
    VerificationLayer.TEST: ErrorCategory.RUNTIME,
}
