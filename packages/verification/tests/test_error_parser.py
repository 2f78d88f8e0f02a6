from protocol import ErrorCategory
from verification import ErrorOutputParser, strip_ansi


def _parse(text):
    return ErrorOutputParser().parse(text)


def test_parse_tsc_paren_format():
    [error] = _parse("src/App.tsx(12,5): error TS2322: Type 'string' is not assignable to type 'number'.")

    assert error.category == ErrorCategory.TYPE
    assert error.file == "src/App.tsx"
    assert (error.line, error.column) == (12, 5)
    assert error.code == "TS2322"


def test_parse_tsc_pretty_format_module_code():
    """TS2307 is an unresolved import, so it counts as a module error."""
    [error] = _parse("src/a.ts:3:1 - error TS2307: Cannot find module 'clsx' or its corresponding type declarations.")

    assert error.category == ErrorCategory.MODULE
    assert error.file == "src/a.ts"
    assert error.line == 3


def test_parse_bundler_module_errors():
    errors = _parse(
        "Module not found: Error: Can't resolve 'react-router' in '/app/src'\n"
        "[vite] Failed to resolve import \"./missing\" from \"src/main.tsx\"\n"
    )

    assert [e.category for e in errors] == [ErrorCategory.MODULE, ErrorCategory.MODULE]
    assert errors[0].message == "Cannot resolve module 'react-router'"
    assert errors[1].message == "Cannot resolve module './missing'"


def test_parse_runtime_errors():
    [error] = _parse("Uncaught ReferenceError: foo is not defined")

    assert error.category == ErrorCategory.RUNTIME
    assert error.message == "ReferenceError: foo is not defined"


def test_parse_lint_inline_format():
    [error] = _parse("src/App.tsx:12:5  error  'x' is not defined  no-undef")

    assert error.category == ErrorCategory.LINT
    assert error.message == "'x' is not defined"
    assert error.code == "no-undef"


def test_parse_eslint_stylish_format():
    """Rows under a file header take the header's path; warnings keep their severity."""
    output = (
        "/home/dev/app/src/App.tsx\n"
        "  12:5  error    'x' is not defined    no-undef\n"
        "  3:1   warning  Unexpected console statement  no-console\n"
        "\n"
        "2 problems (1 error, 1 warning)\n"
    )

    errors = _parse(output)

    assert len(errors) == 2
    assert errors[0].file == "/home/dev/app/src/App.tsx"
    assert errors[0].severity == "error"
    assert errors[1].severity == "warning"
    assert errors[1].code == "no-console"


def test_duplicate_lines_reported_once():
    line = "src/App.tsx(1,1): error TS2304: Cannot find name 'Foo'."

    assert len(_parse(f"{line}\n{line}\n")) == 1


def test_ansi_codes_are_stripped():
    colored = "\x1b[96msrc/App.tsx\x1b[0m:\x1b[93m4\x1b[0m:\x1b[93m2\x1b[0m - \x1b[91merror\x1b[0m TS2304: Cannot find name 'Foo'."

    assert strip_ansi(colored) == "src/App.tsx:4:2 - error TS2304: Cannot find name 'Foo'."
    [error] = _parse(colored)
    assert error.line == 4


def test_clean_output_has_no_errors():
    assert _parse("Found 0 errors. Watching for file changes.\nbuilt in 1.2s\n") == []
