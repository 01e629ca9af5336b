from __future__ import annotations

from typing import Any, Optional

from conftest import DEFAULT_CAPABILITIES, FakeDocdex
from librarian.budget import TRUNCATION_MARKER
from librarian.bundle import ContextSelection
from librarian.config import ContextAssemblerOptions
from librarian.discovery import Workspace
from librarian.docdex import DocdexGateway
from librarian.loader import FileLoader
from librarian.redaction import ContextRedactor


def _helpers(count: int) -> str:
    return "".join(f"def helper_{index}():\n    return {index}\n\n\n" for index in range(count))


class OpenFileDocdex(FakeDocdex):
    def __init__(self) -> None:
        super().__init__(capabilities=(*DEFAULT_CAPABILITIES, "open_file"))
        self.contents: dict[str, str] = {}

    def open_file(self, path: str, *, head: Optional[int] = None, clamp: bool = True) -> Any:
        self.calls.append(f"open_file:{path}")
        return {"content": self.contents[path]}


def test_small_focus_file_is_loaded_in_full(write_files) -> None:
    root = write_files({"src/app.py": "print('hi')\n"})
    loader = FileLoader(Workspace(root), ContextAssemblerOptions())

    result = loader.load(ContextSelection(focus=("src/app.py",)))

    assert result.warnings == []
    entry = result.files[0]
    assert (entry.path, entry.role, entry.content, entry.truncated) == ("src/app.py", "focus", "print('hi')\n", False)


def test_large_focus_file_uses_head_without_skeletons(write_files) -> None:
    root = write_files({"notes.txt": "x" * 1000})
    options = ContextAssemblerOptions(focus_max_file_bytes=200, skeletonize_large_files=False)

    entry = FileLoader(Workspace(root), options).load(ContextSelection(focus=("notes.txt",))).files[0]

    assert entry.slice_strategy == "head"
    assert entry.truncated
    assert entry.content.endswith(TRUNCATION_MARKER)
    assert len(entry.content.encode("utf-8")) <= 200


def test_large_python_focus_is_sliced_to_matching_definition(write_files) -> None:
    source = _helpers(40) + "def refund_order(order):\n    return order.total\n"
    root = write_files({"src/orders.py": source})
    options = ContextAssemblerOptions(focus_max_file_bytes=400)

    entry = (
        FileLoader(Workspace(root), options)
        .load(ContextSelection(focus=("src/orders.py",)), keywords=["refund"])
        .files[0]
    )

    assert entry.slice_strategy == "ast_slice"
    assert entry.content.startswith("/* ast_slice lines ")
    assert "def refund_order(order):" in entry.content
    assert "helper_0" not in entry.content


def test_large_python_focus_without_match_keeps_head_and_tail(write_files) -> None:
    root = write_files({"src/orders.py": _helpers(40)})
    options = ContextAssemblerOptions(focus_max_file_bytes=400)

    entry = (
        FileLoader(Workspace(root), options)
        .load(ContextSelection(focus=("src/orders.py",)), keywords=["refund"])
        .files[0]
    )

    assert entry.slice_strategy == "head_tail"
    assert TRUNCATION_MARKER in entry.content
    assert entry.content.startswith("def helper_0():")
    assert "/* symbols */" in entry.content
    assert "function def helper_0()" in entry.content


def test_head_tail_slice_never_exceeds_focus_limit(write_files) -> None:
    root = write_files({"src/orders.py": _helpers(40)})
    options = ContextAssemblerOptions(focus_max_file_bytes=30)

    entry = (
        FileLoader(Workspace(root), options)
        .load(ContextSelection(focus=("src/orders.py",)), keywords=["refund"])
        .files[0]
    )

    assert entry.slice_strategy == "head_tail"
    assert entry.content
    assert len(entry.content.encode("utf-8")) <= 30


def test_periphery_prefers_symbols_then_outline_then_head(write_files) -> None:
    root = write_files(
        {
            "lib/given.py": "def given():\n    pass\n",
            "lib/outlined.py": "class Widget:\n    def render(self):\n        pass\n",
            "README.md": "# Project\n",
        }
    )
    selection = ContextSelection(periphery=("lib/given.py", "lib/outlined.py", "README.md"))

    result = FileLoader(Workspace(root), ContextAssemblerOptions()).load(
        selection, symbols={"lib/given.py": "function given()"}
    )

    by_path = {entry.path: entry for entry in result.files}
    assert by_path["lib/given.py"].content == "function given()"
    assert by_path["lib/given.py"].slice_strategy == "symbols"
    assert "class class Widget" in by_path["lib/outlined.py"].content
    assert "method def render(self)" in by_path["lib/outlined.py"].content
    assert by_path["README.md"].slice_strategy == "head"
    assert by_path["README.md"].content == "# Project\n"


def test_periphery_truncates_oversized_summary(write_files) -> None:
    root = write_files({"docs/guide.md": "word " * 500})
    options = ContextAssemblerOptions(periphery_max_bytes=120)

    entry = FileLoader(Workspace(root), options).load(ContextSelection(periphery=("docs/guide.md",))).files[0]

    assert entry.slice_strategy == "head_truncated"
    assert entry.truncated
    assert len(entry.content.encode("utf-8")) <= 120


def test_periphery_symbols_come_from_docdex(write_files, docdex: FakeDocdex) -> None:
    root = write_files({"lib/util.js": "export function helper() {}\n"})
    docdex.symbol_map["lib/util.js"] = [{"kind": "function", "name": "helper", "line": 1}]

    entry = (
        FileLoader(Workspace(root), ContextAssemblerOptions(), gateway=DocdexGateway(docdex))
        .load(ContextSelection(periphery=("lib/util.js",)))
        .files[0]
    )

    assert entry.content == "function helper (line 1)"
    assert "symbols:lib/util.js" in docdex.calls


def test_ignored_and_missing_files_become_warnings(write_files) -> None:
    root = write_files(
        {
            ".librarianignore": "# private\nsecrets/\n",
            "secrets/key.txt": "hunter2",
            "src/config.py": 'API_KEY = "abcdefgh12345"\n',
        }
    )
    redactor = ContextRedactor(root, ignore_files_from=[".librarianignore"])
    loader = FileLoader(Workspace(root), ContextAssemblerOptions(), redactor=redactor)

    result = loader.load(ContextSelection(focus=("secrets/key.txt", "src/config.py", "src/missing.py")))

    assert result.ignored == ["secrets/key.txt"]
    assert "redaction_ignored:secrets/key.txt" in result.warnings
    assert "file_load_failed:src/missing.py" in result.warnings
    assert "redacted" in result.warnings
    assert result.redaction_count == 1
    [entry] = result.files
    assert entry.content == 'API_KEY = "<redacted>"\n'
    assert entry.warnings == ["redacted"]


def test_reads_fall_back_to_filesystem_without_open_file(write_files, docdex: FakeDocdex) -> None:
    root = write_files({"src/app.py": "local = True\n"})

    entry = (
        FileLoader(Workspace(root), ContextAssemblerOptions(), gateway=DocdexGateway(docdex))
        .load(ContextSelection(focus=("src/app.py",)))
        .files[0]
    )

    assert entry.content == "local = True\n"


def test_reads_prefer_docdex_open_file(write_files) -> None:
    root = write_files({"src/app.py": "local = True\n"})
    client = OpenFileDocdex()
    client.contents["src/app.py"] = "indexed = True\n"
    gateway = DocdexGateway(client)

    docdex_entry = FileLoader(Workspace(root), ContextAssemblerOptions(), gateway=gateway).load(
        ContextSelection(focus=("src/app.py",))
    )
    fs_entry = FileLoader(
        Workspace(root), ContextAssemblerOptions(read_strategy="fs"), gateway=gateway
    ).load(ContextSelection(focus=("src/app.py",)))

    assert docdex_entry.files[0].content == "indexed = True\n"
    assert fs_entry.files[0].content == "local = True\n"
    assert client.calls == ["open_file:src/app.py"]
