"""
Workbench Verification

Error detection for generated code:
- parser:            raw tool output -> categorized errors
- verifier:          Verifier protocol + CommandVerifier
- error_tracker:     baseline vs current comparison (drives auto-rollback)
- pre_verifier:      tiered structure -> static -> build -> lint -> test checks
- package_manager:   npm / yarn / pnpm / bun detection from lock files
- per_file_verifier: scoped check used by the queue during fix operations
- intent:            does a prompt ask for error fixing?
"""

from .parser import ErrorOutputParser, strip_ansi

from .verifier import (
    CommandVerifier,
    DEFAULT_VERIFICATION_PLAN,
    Verifier,
    parse_verification_plan,
    scope_errors,
)

from .error_tracker import ErrorTracker, compare_results

from .package_manager import PackageManager, PackageManagerInfo, detect_package_manager

from .pre_verifier import (
    CLEAN_SUMMARY,
    LayerResult,
    PreVerificationResult,
    PreVerifier,
    PreVerifierConfig,
    VerificationLayer,
    strip_json_comments,
)

from .per_file_verifier import CRITICAL_ERROR_CODES, FileVerificationResult, PerFileVerifier

from .intent import (
    ClarificationRequest,
    clarification_request,
    is_error_fix_intent,
    is_vague_request,
)

__all__ = [
    # Parsing
    "ErrorOutputParser",
    "strip_ansi",

    # Verifiers
    "CommandVerifier",
    "DEFAULT_VERIFICATION_PLAN",
    "Verifier",
    "parse_verification_plan",
    "scope_errors",
    "PerFileVerifier",
    "FileVerificationResult",
    "CRITICAL_ERROR_CODES",

    # Error tracking
    "ErrorTracker",
    "compare_results",

    # Pre-verification
    "PackageManager",
    "PackageManagerInfo",
    "detect_package_manager",
    "CLEAN_SUMMARY",
    "LayerResult",
    "PreVerificationResult",
    "PreVerifier",
    "PreVerifierConfig",
    "VerificationLayer",
    "strip_json_comments",

    # Intent
    "ClarificationRequest",
    "clarification_request",
    "is_error_fix_intent",
    "is_vague_request",
]
