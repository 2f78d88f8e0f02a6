"""
Error output parser.

Turns raw compiler / bundler / linter output into categorized
VerificationErrors:
- type:    TypeScript ``error TSxxxx`` diagnostics
- module:  unresolved imports ("Cannot find module", "Module not found", ...)
- runtime: SyntaxError / ReferenceError / TypeError lines
- lint:    ESLint-style ``file:line:col error message rule`` lines
"""

from __future__ import annotations

import re
from typing import List, Optional, Set

from protocol import ErrorCategory, VerificationError

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

# path(line,col): error TS2304: message   |   path:line:col - error TS2304: message
TS_LOCATED = re.compile(
    r"(?P<file>[^\s:()]+\.[cm]?[jt]sx?)"
    r"(?:\((?P<line>\d+),(?P<col>\d+)\)|:(?P<line2>\d+):(?P<col2>\d+))"
    r"\s*[:\-]\s*error\s+(?P<code>TS\d+):\s*(?P<message>.+)"
)
TS_BARE = re.compile(r"error\s+(?P<code>TS\d+):\s*(?P<message>.+)")

MODULE_PATTERNS = [
    re.compile(r"Module not found:\s*(?:Error:\s*)?(?:Can't resolve\s*)?['\"](?P<module>.+?)['\"]"),
    re.compile(r"Cannot find module\s*['\"](?P<module>.+?)['\"]"),
    re.compile(r"Failed to resolve import\s*['\"](?P<module>.+?)['\"]"),
    re.compile(r"The requested module\s*['\"](?P<module>.+?)['\"]\s*does not provide"),
    re.compile(r"Could not resolve\s*['\"](?P<module>.+?)['\"]"),
]

RUNTIME_PATTERN = re.compile(r"\b(?P<kind>SyntaxError|ReferenceError|TypeError):\s*(?P<message>.+)")

# src/App.tsx:12:5  error  'x' is not defined  no-undef
LINT_PATTERN = re.compile(
    r"(?P<file>[^\s:]+\.[cm]?[jt]sx?):(?P<line>\d+):(?P<col>\d+)\s+"
    r"(?P<severity>error|warning)\s+(?P<message>.+?)\s+(?P<rule>@?[\w/-]+)\s*$"
)
# ESLint "stylish" format: file header line followed by indented "line:col  error  msg  rule"
LINT_STYLISH_ROW = re.compile(
    r"^\s+(?P<line>\d+):(?P<col>\d+)\s+(?P<severity>error|warning)\s+(?P<message>.+?)\s{2,}(?P<rule>@?[\w/-]+)\s*$"
)
FILE_HEADER = re.compile(r"^(?P<file>\S+\.[cm]?[jt]sx?)\s*$")


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)


class ErrorOutputParser:
    """Stateless parser; ``parse`` may be called on any tool's combined output."""

    def parse(self, output: str) -> List[VerificationError]:
        text = strip_ansi(output)
        errors: List[VerificationError] = []
        seen: Set[str] = set()

        def add(error: VerificationError) -> None:
            key = f"{error.category.value}|{error.identity()}|{error.message}"
            if key not in seen:
                seen.add(key)
                errors.append(error)

        current_file: Optional[str] = None
        for raw_line in text.splitlines():
            line = raw_line.rstrip()
            if not line:
                continue

            header = FILE_HEADER.match(line)
            if header:
                current_file = header.group("file")
                continue

            parsed = self._parse_line(line, current_file)
            if parsed is not None:
                add(parsed)

        return errors

    def _parse_line(self, line: str, current_file: Optional[str]) -> Optional[VerificationError]:
        match = TS_LOCATED.search(line)
        if match:
            code = match.group("code")
            return VerificationError(
                category=ErrorCategory.MODULE if code == "TS2307" else ErrorCategory.TYPE,
                message=match.group("message").strip(),
                file=match.group("file"),
                line=int(match.group("line") or match.group("line2")),
                column=int(match.group("col") or match.group("col2")),
                code=code,
            )

        match = TS_BARE.search(line)
        if match:
            code = match.group("code")
            return VerificationError(
                category=ErrorCategory.MODULE if code == "TS2307" else ErrorCategory.TYPE,
                message=match.group("message").strip(),
                code=code,
            )

        for pattern in MODULE_PATTERNS:
            match = pattern.search(line)
            if match:
                return VerificationError(
                    category=ErrorCategory.MODULE,
                    message=f"Cannot resolve module '{match.group('module')}'",
                )

        match = LINT_PATTERN.search(line)
        if match:
            return self._lint_error(match, match.group("file"))

        if current_file:
            match = LINT_STYLISH_ROW.match(line)
            if match:
                return self._lint_error(match, current_file)

        match = RUNTIME_PATTERN.search(line)
        if match:
            return VerificationError(
                category=ErrorCategory.RUNTIME,
                message=f"{match.group('kind')}: {match.group('message').strip()}",
            )

        return None

    @staticmethod
    def _lint_error(match: re.Match, file: str) -> VerificationError:
        return VerificationError(
            category=ErrorCategory.LINT,
            message=match.group("message").strip(),
            file=file,
            line=int(match.group("line")),
            column=int(match.group("col")),
            code=match.group("rule"),
            severity=match.group("severity"),
        )
