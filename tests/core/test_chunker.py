from __future__ import annotations

from pathlib import Path

import pytest

from intentchat.contracts.chunk_schema import ChunkKind, make_chunk_id
from intentchat.contracts.command_schema import CommandCatalog
from intentchat.contracts.errors import ChunkSourceError
from intentchat.knowledge.chunker import Chunker, python_units


def _numbered(n: int, prefix: str = "line") -> str:
    return "\n".join(f"{prefix} {i}" for i in range(n)) + "\n"


def test_rechunking_unmodified_source_is_identical(tmp_path: Path) -> None:
    path = tmp_path / "notes.md"
    path.write_text(_numbered(150), encoding="utf-8")
    chunker = Chunker(window_lines=60, overlap_lines=10)

    first = list(chunker.chunk(path))
    second = list(chunker.chunk(path))

    assert [c.chunk_id for c in first] == [c.chunk_id for c in second]
    assert [c.text for c in first] == [c.text for c in second]
    assert first == second


def test_fixed_window_with_overlap(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text(_numbered(150), encoding="utf-8")
    chunks = list(Chunker(window_lines=60, overlap_lines=10).chunk(path))

    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 60), (51, 110), (101, 150)]
    # overlap keeps the boundary lines in both neighbours
    assert "line 55" in chunks[0].text and "line 55" in chunks[1].text
    assert all(c.kind == ChunkKind.CONTENT for c in chunks)
    assert chunks[0].source_ref == path.resolve().as_posix()


def test_chunk_id_derives_from_source_and_offset(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text(_numbered(10), encoding="utf-8")
    (chunk,) = list(Chunker().chunk(path))
    assert chunk.chunk_id == make_chunk_id(ChunkKind.CONTENT, path.resolve().as_posix(), 0)


def test_max_chars_caps_window() -> None:
    text = "\n".join("x" * 99 for _ in range(20))
    chunks = list(Chunker(window_lines=20, overlap_lines=0, max_chars=500).chunk_text(text, source_ref="mem"))
    assert len(chunks) == 4
    assert all(len(c.text) <= 500 for c in chunks)


def _python_source() -> str:
    header = [f"CONST_{i} = {i}" for i in range(44)]
    func = ["def big_function():"] + [f"    x{i} = {i}" for i in range(28)] + ["    return x0"]
    tail = [f"TAIL_{i} = {i}" for i in range(16)]
    return "\n".join(header + func + tail) + "\n"


def test_python_units_are_never_split(tmp_path: Path) -> None:
    path = tmp_path / "module.py"
    path.write_text(_python_source(), encoding="utf-8")
    assert python_units(path.read_text(encoding="utf-8")) == [(44, 74)]

    chunks = list(Chunker(window_lines=60, overlap_lines=10).chunk(path))

    holders = [c for c in chunks if "def big_function" in c.text]
    assert len(holders) == 1
    assert "return x0" in holders[0].text
    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 44), (45, 90)]


def test_text_files_use_fixed_windows_for_same_content(tmp_path: Path) -> None:
    path = tmp_path / "module.txt"
    path.write_text(_python_source(), encoding="utf-8")
    chunks = list(Chunker(window_lines=60, overlap_lines=10).chunk(path))
    holder = next(c for c in chunks if "def big_function" in c.text)
    assert "return x0" not in holder.text


def test_unit_larger_than_window_becomes_its_own_chunk(tmp_path: Path) -> None:
    func = ["def huge():"] + [f"    y{i} = {i}" for i in range(78)] + ["    return y0"]
    tail = [f"AFTER_{i} = {i}" for i in range(20)]
    path = tmp_path / "huge.py"
    path.write_text("\n".join(func + tail) + "\n", encoding="utf-8")

    chunks = list(Chunker(window_lines=60, overlap_lines=10).chunk(path))

    assert (chunks[0].start_line, chunks[0].end_line) == (1, 80)
    assert "return y0" in chunks[0].text
    assert (chunks[1].start_line, chunks[1].end_line) == (81, 100)


def test_form_feed_lines_do_not_shift_python_units(tmp_path: Path) -> None:
    body = [f"    x{i} = {i}" for i in range(8)]
    path = tmp_path / "paged.py"
    path.write_text("\x0c\nimport os\n\ndef f():\n" + "\n".join(body) + "\n    return 1\n", encoding="utf-8")

    chunks = list(Chunker(window_lines=5, overlap_lines=0).chunk(path))

    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 3), (4, 13)]
    holder = next(c for c in chunks if "def f():" in c.text)
    assert "x7 = 7" in holder.text and "return 1" in holder.text


def test_unparseable_python_falls_back_to_windows(tmp_path: Path) -> None:
    path = tmp_path / "broken.py"
    path.write_text("def broken(:\n" + _numbered(100), encoding="utf-8")
    chunks = list(Chunker(window_lines=60, overlap_lines=10).chunk(path))
    assert (chunks[0].start_line, chunks[0].end_line) == (1, 60)


def test_binary_source_raises_chunk_source_error(tmp_path: Path) -> None:
    path = tmp_path / "blob.txt"
    path.write_bytes(b"abc\x00def")
    with pytest.raises(ChunkSourceError) as exc:
        list(Chunker().chunk(path))
    assert "binary" in exc.value.reason


def test_missing_source_raises_chunk_source_error(tmp_path: Path) -> None:
    with pytest.raises(ChunkSourceError):
        list(Chunker().chunk(tmp_path / "nope.txt"))


def test_command_chunks(demo_catalog: CommandCatalog) -> None:
    chunks = list(Chunker().chunk_commands(demo_catalog))
    assert [c.text for c in chunks] == [
        "slash-summarize: summarize the current file",
        "slash-translate: translate text to another language",
    ]
    assert all(c.kind == ChunkKind.COMMAND for c in chunks)
    assert chunks[0].source_ref == "command:slash-summarize"


def test_overlap_must_be_smaller_than_window() -> None:
    with pytest.raises(ValueError):
        Chunker(window_lines=10, overlap_lines=10)
