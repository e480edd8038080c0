import sys
from pathlib import Path

import pytest

from ephileo.tools import (
    EditFileTool,
    ListDirectoryTool,
    PermissionGroup,
    ReadFileTool,
    SaveLearningTool,
    ShellTool,
    ToolRegistry,
    WriteFileTool,
    register_basic_tools,
)
from ephileo.memory import LearningJournal
from ephileo.tools.read import MAX_FILE_READ_CHARS


def test_register_basic_tools_registers_all_six(tmp_path: Path):
    registry = ToolRegistry()
    register_basic_tools(registry, tmp_path / "memory")

    assert sorted(registry.list_names()) == [
        "edit_file",
        "list_directory",
        "read_file",
        "save_learning",
        "shell",
        "write_file",
    ]
    groups = {name: registry.get(name).permission_group for name in registry.list_names()}
    assert groups == {
        "read_file": PermissionGroup.READ,
        "write_file": PermissionGroup.WRITE,
        "list_directory": PermissionGroup.READ,
        "shell": PermissionGroup.READ,
        "save_learning": PermissionGroup.NONE,
        "edit_file": PermissionGroup.WRITE,
    }


def test_register_basic_tools_passes_shell_timeout(tmp_path: Path):
    registry = ToolRegistry()
    register_basic_tools(registry, tmp_path, shell_timeout=5)

    assert registry.get("shell").timeout == 5.0


@pytest.mark.asyncio
async def test_read_file_caps_content(tmp_path: Path):
    target = tmp_path / "big.txt"
    target.write_text("x" * (MAX_FILE_READ_CHARS + 50), encoding="utf-8")

    result = await ReadFileTool().execute(path=str(target))

    assert len(result) == MAX_FILE_READ_CHARS


@pytest.mark.asyncio
async def test_read_missing_file_reports_error_through_registry(tmp_path: Path):
    registry = ToolRegistry()
    registry.register(ReadFileTool())

    result = await registry.execute("read_file", {"path": str(tmp_path / "missing.txt")})

    assert result.startswith("Error executing read_file:")


@pytest.mark.asyncio
async def test_list_directory_marks_kinds(tmp_path: Path):
    (tmp_path / "b.txt").write_text("b", encoding="utf-8")
    (tmp_path / "a_dir").mkdir()

    result = await ListDirectoryTool().execute(path=str(tmp_path))

    assert result == f"{tmp_path.resolve()}/\n  [dir] a_dir\n  [file] b.txt"


@pytest.mark.asyncio
async def test_list_directory_caps_entries(tmp_path: Path):
    for i in range(120):
        (tmp_path / f"f{i:03d}.txt").write_text("", encoding="utf-8")

    result = await ListDirectoryTool().execute(path=str(tmp_path))

    assert len(result.splitlines()) == 1 + 100


@pytest.mark.asyncio
async def test_write_file_creates_parents(tmp_path: Path):
    target = tmp_path / "nested" / "dir" / "out.txt"

    result = await WriteFileTool().execute(path=str(target), content="hello")

    assert target.read_text(encoding="utf-8") == "hello"
    assert result == f"Written 5 chars to {target.resolve()}"


@pytest.mark.asyncio
async def test_edit_file_replaces_unique_match(tmp_path: Path):
    target = tmp_path / "code.py"
    target.write_text("x = 1\ny = 2\n", encoding="utf-8")

    result = await EditFileTool().execute(path=str(target), old_string="y = 2", new_string="y = 3")

    assert target.read_text(encoding="utf-8") == "x = 1\ny = 3\n"
    assert result == f"Replaced 1 occurrence in {target.resolve()}"


@pytest.mark.asyncio
async def test_edit_file_leaves_file_alone_on_error(tmp_path: Path):
    target = tmp_path / "code.py"
    target.write_text("a a", encoding="utf-8")

    result = await EditFileTool().execute(path=str(target), old_string="a", new_string="b")

    assert result.startswith("Error: old_string matches 2 times.")
    assert target.read_text(encoding="utf-8") == "a a"


@pytest.mark.asyncio
async def test_edit_missing_file_is_error_string(tmp_path: Path):
    result = await EditFileTool().execute(path=str(tmp_path / "nope.txt"), old_string="a", new_string="b")

    assert result.startswith("Error reading file:")


@pytest.mark.asyncio
async def test_save_learning_appends_to_journal(tmp_path: Path):
    journal = LearningJournal(tmp_path)

    result = await SaveLearningTool(journal).execute(topic="ports", content="exo listens on 52415")

    assert result == f"Saved learning about 'ports' to {journal.path}"
    assert "## ports" in journal.load()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
@pytest.mark.asyncio
async def test_shell_returns_stdout():
    assert await ShellTool().execute(command="echo hello") == "hello\n"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
@pytest.mark.asyncio
async def test_shell_reports_no_output():
    assert await ShellTool().execute(command="true") == "(no output)"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
@pytest.mark.asyncio
async def test_shell_failure_returns_stderr():
    result = await ShellTool().execute(command="echo broken >&2; exit 3")

    assert result == "Error: broken"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell")
@pytest.mark.asyncio
async def test_shell_timeout_kills_command():
    result = await ShellTool(timeout=1).execute(command="sleep 5")

    assert result == "Error: command timed out after 1s"
