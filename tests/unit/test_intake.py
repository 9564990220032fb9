from __future__ import annotations

from pathlib import Path

import pytest

from html2exe.detect.html import flatten_single_directory, inspect_document
from html2exe.errors import DisallowedType, InvalidArchive, NoEntryDocument
from html2exe.intake import extract, limits_from_settings
from html2exe.workspace import BuildWorkspace


def _workspace(tmp_path: Path, build_id: str = "b1") -> BuildWorkspace:
    return BuildWorkspace.for_build(build_id, tmp_path / "temp", tmp_path / "dist")


def test_extract_demo_archive(tmp_path: Path, demo_zip: bytes) -> None:
    ws = _workspace(tmp_path)

    result = extract(demo_zip, ws)

    assert result.entry_document == "index.html"
    assert result.entry_copied_from is None
    assert result.flattened is False
    assert result.files == ["index.html", "style.css"]
    assert result.warnings == []
    assert (ws.content / "index.html").is_file()


def test_nested_repository_layout_is_flattened(tmp_path: Path, make_zip) -> None:
    data = make_zip(
        {
            "site-main/index.html": "<html></html>",
            "site-main/site-main/notes.txt": "same name as the parent",
        }
    )
    ws = _workspace(tmp_path)

    result = extract(data, ws)

    assert result.flattened is True
    assert result.files == ["index.html", "site-main/notes.txt"]


def test_single_directory_without_html_is_left_alone(tmp_path: Path) -> None:
    (tmp_path / "assets").mkdir()
    (tmp_path / "assets" / "a.css").write_text("x")

    assert flatten_single_directory(tmp_path) is False
    assert (tmp_path / "assets" / "a.css").exists()


def test_first_html_becomes_entry_document(tmp_path: Path, make_zip) -> None:
    data = make_zip({"pages/main.html": "<html>main</html>", "about.html": "<html>a</html>"})
    ws = _workspace(tmp_path)

    result = extract(data, ws)

    assert result.entry_copied_from == "about.html"
    assert (ws.content / "index.html").read_text() == "<html>a</html>"
    assert "index.html" in result.files


def test_no_html_lists_found_types_and_cleans_up(tmp_path: Path, make_zip) -> None:
    data = make_zip({"readme.txt": "hi", "img/logo.png": b"\x89PNG"})
    ws = _workspace(tmp_path)

    with pytest.raises(NoEntryDocument) as excinfo:
        extract(data, ws)

    assert ".png" in str(excinfo.value) and ".txt" in str(excinfo.value)
    assert not ws.root.exists()


def test_disallowed_type_leaves_no_workspace(tmp_path: Path, make_zip) -> None:
    data = make_zip({"index.html": "<html></html>", "run.bat": "del *"})
    ws = _workspace(tmp_path)

    with pytest.raises(DisallowedType):
        extract(data, ws)

    assert not ws.root.exists()


def test_directory_named_index_html_is_rejected(tmp_path: Path, make_zip) -> None:
    data = make_zip({"index.html/page.html": "<html></html>", "style.css": "x"})
    ws = _workspace(tmp_path)

    with pytest.raises(InvalidArchive) as excinfo:
        extract(data, ws)

    assert "index.html" in str(excinfo.value)
    assert not ws.root.exists()


def test_markup_advisories_do_not_fail(tmp_path: Path, make_zip) -> None:
    data = make_zip(
        {
            "index.html": "<html><script>eval('1+1')</script></html>",
            "frag.html": "<div>no root element</div>",
        }
    )
    ws = _workspace(tmp_path)

    result = extract(data, ws)

    assert any("eval()" in w for w in result.warnings)
    assert any(w.startswith("frag.html") for w in result.warnings)


def test_inspect_document_clean(tmp_path: Path) -> None:
    page = tmp_path / "index.html"
    page.write_text("<!DOCTYPE html><html><body></body></html>")

    assert inspect_document(page, "index.html") == []


def test_limits_follow_settings(settings) -> None:
    limits = limits_from_settings(settings)

    assert limits.max_archive_bytes == settings.max_archive_bytes
    assert limits.max_member_bytes == settings.max_entry_bytes
    assert limits.max_entries == settings.max_entries
