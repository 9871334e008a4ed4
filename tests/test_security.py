from __future__ import annotations

import uuid
from pathlib import Path

import pytest

from zipplay_backend.errors import UnsafeEntryPath
from zipplay_backend.security import (
    is_safe_entry_path,
    is_upload_id,
    normalize_entry_path,
    normalize_upload_id,
    safe_join,
)


class TestNormalizeEntryPath:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("index.html", "index.html"),
            ("sub/page.html", "sub/page.html"),
            ("./sub/./page.html", "sub/page.html"),
            ("sub\\assets\\app.js", "sub/assets/app.js"),
            ("sub//double//slash.txt", "sub/double/slash.txt"),
            ("dir/", "dir"),
            ("..foo/bar..", "..foo/bar.."),
        ],
    )
    def test_accepts_and_normalizes(self, raw: str, expected: str) -> None:
        assert normalize_entry_path(raw) == expected
        assert is_safe_entry_path(raw)

    @pytest.mark.parametrize(
        "raw",
        [
            "../evil.txt",
            "../../etc/passwd",
            "a/../../b",
            "a/b/..",
            "..\\..\\windows\\evil.txt",
            "a\\..\\..\\b",
            "./../x",
            "a/./../../x",
        ],
    )
    def test_rejects_traversal(self, raw: str) -> None:
        with pytest.raises(UnsafeEntryPath):
            normalize_entry_path(raw)

    @pytest.mark.parametrize(
        "raw",
        ["/etc/passwd", "\\evil.txt", "C:/Windows/evil.txt", "c:evil.txt", "D:\\x", "\\\\server\\share\\x", "//server/x"],
    )
    def test_rejects_absolute(self, raw: str) -> None:
        assert not is_safe_entry_path(raw)

    @pytest.mark.parametrize("raw", ["", ".", "./", "//", "./././", "a\x00b"])
    def test_rejects_empty_and_nul(self, raw: str) -> None:
        assert not is_safe_entry_path(raw)

    def test_is_deterministic(self) -> None:
        raw = "x/./y\\z"
        assert {normalize_entry_path(raw) for _ in range(5)} == {"x/y/z"}


class TestUploadIds:
    def test_round_trips_uuid4(self) -> None:
        uid = str(uuid.uuid4())
        assert normalize_upload_id(uid.upper()) == uid
        assert is_upload_id(uid)

    @pytest.mark.parametrize("bad", ["", "abc", "../x", "00000000-0000-0000-0000-000000000000"])
    def test_rejects_non_uuid(self, bad: str) -> None:
        with pytest.raises(ValueError):
            normalize_upload_id(bad)
        assert not is_upload_id(bad)


class TestSafeJoin:
    def test_stays_inside(self, tmp_path: Path) -> None:
        assert safe_join(tmp_path, "a", "b.txt") == (tmp_path / "a" / "b.txt").resolve()

    def test_rejects_escape(self, tmp_path: Path) -> None:
        with pytest.raises(UnsafeEntryPath):
            safe_join(tmp_path, "..", "outside.txt")

    def test_rejects_symlink_escape(self, tmp_path: Path) -> None:
        base = tmp_path / "base"
        base.mkdir()
        (base / "link").symlink_to(tmp_path)
        with pytest.raises(UnsafeEntryPath):
            safe_join(base, "link", "x.txt")
