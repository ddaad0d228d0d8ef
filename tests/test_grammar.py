from agentcore.grammar import CommandScanner, find_unterminated, scan
from agentcore.models import CommandKind


INTERLEAVED = (
    "First I'll update the readme.\n"
    "[EDIT_FILE: README.md]\n[FIND]Old title[/FIND]\n[REPLACE]New title[/REPLACE]\n[/EDIT_FILE]\n"
    "Now the new module:\n"
    "[CREATE_FILE: src/app.py]\nprint('hi')\n[/CREATE_FILE]\n"
    "[RUN_COMMAND: pytest -q]\n"
    "[CREATE_FILE: src/util.py]\nVALUE = 1\n[/CREATE_FILE]\n"
)


def test_scan_groups_by_kind_and_keeps_document_order_within_kind() -> None:
    result = scan(INTERLEAVED)

    assert [inv.kind for inv in result] == [
        CommandKind.CREATE_FILE,
        CommandKind.CREATE_FILE,
        CommandKind.EDIT_FILE,
        CommandKind.RUN_COMMAND,
    ]
    assert [inv.target for inv in result] == ["src/app.py", "src/util.py", "README.md", "pytest -q"]


def test_scan_is_idempotent() -> None:
    scanner = CommandScanner()
    first = scanner.scan(INTERLEAVED)
    second = scanner.scan(INTERLEAVED)

    assert first == second
    assert list(scanner.iter_invocations(INTERLEAVED)) == list(first.invocations)


def test_target_and_bodies_are_trimmed() -> None:
    text = "[EDIT_FILE:   notes.txt  ]\n[FIND]  brown fox \n[/FIND]\n[REPLACE]\nred fox\n[/REPLACE]\n[/EDIT_FILE]"
    (edit,) = scan(text)

    assert edit.target == "notes.txt"
    assert edit.find == "brown fox"
    assert edit.replace == "red fox"


def test_create_file_body() -> None:
    (create,) = scan("[CREATE_FILE: test.txt]\nHello World\n[/CREATE_FILE]")

    assert create.kind is CommandKind.CREATE_FILE
    assert create.content == "Hello World"
    assert create.empty_body is False


def test_whitespace_only_create_body_is_flagged_empty() -> None:
    (create,) = scan("[CREATE_FILE: thought_log.txt]\n   \n\t\n[/CREATE_FILE]")

    assert create.empty_body is True
    assert create.content == ""


def test_unterminated_create_yields_no_invocation_and_flags_truncation() -> None:
    result = scan("Sure, here it is:\n[CREATE_FILE: app.py]\nimport os\nprint(os.getcwd())")

    assert len(result) == 0
    assert result.possible_truncation is True
    (warning,) = result.warnings
    assert warning.kind == "CREATE_FILE"
    assert warning.target == "app.py"


def test_unterminated_block_does_not_swallow_following_block() -> None:
    text = "[CREATE_FILE: a.txt]\nfirst\n[CREATE_FILE: b.txt]\nsecond\n[/CREATE_FILE]"
    result = scan(text)

    assert [inv.target for inv in result] == ["b.txt"]
    assert [w.target for w in find_unterminated(text)] == ["a.txt"]


def test_unterminated_edit_does_not_absorb_following_edit() -> None:
    text = (
        "[EDIT_FILE: a.txt]\n[FIND]old a[/FIND]\n[REPLACE]new a[/REPLACE]\n"
        "Oops I forgot the close.\n"
        "[EDIT_FILE: b.txt]\n[FIND]old b[/FIND]\n[REPLACE]new b[/REPLACE]\n[/EDIT_FILE]"
    )
    result = scan(text)

    assert [(inv.target, inv.find, inv.replace) for inv in result] == [("b.txt", "old b", "new b")]
    assert [(w.kind, w.target) for w in result.warnings] == [("EDIT_FILE", "a.txt")]
    assert result.possible_truncation is True


def test_unterminated_replace_code_does_not_absorb_following_blocks() -> None:
    text = (
        "[REPLACE_CODE: src/a.py]\n[FIND]def a():[/FIND]\n[REPLACE]def a2():[/REPLACE]\n"
        "[REPLACE_CODE: src/b.py]\n[FIND]def b():[/FIND]\n[REPLACE]def b2():[/REPLACE]\n[/REPLACE_CODE]\n"
        "[EDIT_FILE: c.txt]\n[FIND]x[/FIND]\n[REPLACE]y[/REPLACE]\n[/EDIT_FILE]\n"
        "[RUN_COMMAND: pytest -q]"
    )
    result = scan(text)

    assert [(inv.kind, inv.target) for inv in result] == [
        (CommandKind.EDIT_FILE, "c.txt"),
        (CommandKind.REPLACE_CODE, "src/b.py"),
        (CommandKind.RUN_COMMAND, "pytest -q"),
    ]
    replace = [inv for inv in result if inv.kind is CommandKind.REPLACE_CODE][0]
    assert replace.find == "def b():"
    assert replace.replace == "def b2():"
    assert [(w.kind, w.target) for w in result.warnings] == [("REPLACE_CODE", "src/a.py")]


def test_inline_commands() -> None:
    text = (
        "[READ_FILE: docs/guide.md]\n"
        "[DELETE_FILE: tmp/old.log]\n"
        "[OPEN_EDITOR: src/app.py]\n"
        "[FORMAT_FILE: src/app.py]\n"
        "[GIT_COMMAND: git status]\n"
        "[GIT_COMMIT: Add guide]\n"
    )
    result = scan(text)

    assert result.counts() == {
        "READ_FILE": 1,
        "DELETE_FILE": 1,
        "OPEN_EDITOR": 1,
        "FORMAT_FILE": 1,
        "GIT_COMMAND": 1,
        "GIT_COMMIT": 1,
    }
    commit = [inv for inv in result if inv.kind is CommandKind.GIT_COMMIT][0]
    assert commit.target == "Add guide"


def test_grep_splits_pattern_and_glob() -> None:
    (grep,) = scan("[GREP: TODO, src/**/*.py]")
    assert grep.target == "TODO"
    assert grep.glob == "src/**/*.py"

    (bare,) = scan("[GREP: FIXME]")
    assert bare.target == "FIXME"
    assert bare.glob == "**/*"


def test_find_files_uses_target_as_glob() -> None:
    (find,) = scan("[FIND_FILES: *.txt]")
    assert find.glob == "*.txt"


def test_insert_code_parses_line_number() -> None:
    (insert,) = scan("[INSERT_CODE: src/app.py:3]\nimport sys\n[/INSERT_CODE]")

    assert insert.target == "src/app.py"
    assert insert.line == 3
    assert insert.content == "import sys"


def test_insert_code_with_invalid_line_is_reported() -> None:
    result = scan("[INSERT_CODE: src/app.py:top]\nimport sys\n[/INSERT_CODE]")

    assert len(result) == 0
    assert [w.reason for w in result.warnings] == ["invalid line number"]
    assert result.possible_truncation is False


def test_replace_code_block() -> None:
    text = (
        "[REPLACE_CODE: src/app.py]\n[FIND]def old():[/FIND]\n[REPLACE]def new():[/REPLACE]\n[/REPLACE_CODE]"
    )
    (replace,) = scan(text)

    assert replace.kind is CommandKind.REPLACE_CODE
    assert replace.find == "def old():"
    assert replace.replace == "def new():"


def test_text_without_commands() -> None:
    result = scan("Just chatting, no commands here. [not a tag]")
    assert len(result) == 0
    assert result.warnings == ()
