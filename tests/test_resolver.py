"""Tests for resolving PLAY filenames to local media files."""

from pathlib import Path

import pytest

from syncplayer.resolver import MediaResolver


@pytest.fixture
def resolver(media_root: Path) -> MediaResolver:
    return MediaResolver(media_root)


def test_direct_match(resolver: MediaResolver, media_root: Path) -> None:
    assert resolver.resolve("a.mp3") == media_root / "a.mp3"


def test_nested_match(resolver: MediaResolver, media_root: Path) -> None:
    assert resolver.resolve("sub/dir/track.mp3") == media_root / "sub" / "dir" / "track.mp3"


def test_missing_intermediate_folder(tmp_path: Path) -> None:
    root = tmp_path / "music"
    (root / "sub").mkdir(parents=True)
    (root / "sub" / "track.mp3").write_bytes(b"")

    assert MediaResolver(root).resolve("sub/dir/track.mp3") is None


def test_intermediate_is_a_file(tmp_path: Path) -> None:
    root = tmp_path / "music"
    root.mkdir()
    (root / "sub").write_bytes(b"")

    assert MediaResolver(root).resolve("sub/track.mp3") is None


def test_missing_file(resolver: MediaResolver) -> None:
    assert resolver.resolve("sub/dir/other.mp3") is None


def test_directory_is_not_a_file(resolver: MediaResolver) -> None:
    assert resolver.resolve("sub/dir") is None


def test_case_insensitive_walk(resolver: MediaResolver, media_root: Path) -> None:
    found = resolver.resolve("SUB/Dir/TRACK.mp3")
    assert found is not None
    assert found.samefile(media_root / "sub" / "dir" / "track.mp3")


@pytest.mark.parametrize(
    "filename",
    ["", "/etc/passwd", "../outside.mp3", "sub/../../outside.mp3", "sub\\dir\\track.mp3"],
)
def test_rejected_names(resolver: MediaResolver, media_root: Path, filename: str) -> None:
    (media_root.parent / "outside.mp3").write_bytes(b"")
    assert resolver.resolve(filename) is None


def test_no_media_root() -> None:
    assert MediaResolver(None).resolve("a.mp3") is None


def test_media_root_missing(tmp_path: Path) -> None:
    assert MediaResolver(tmp_path / "nowhere").resolve("a.mp3") is None


def test_search_root_override(tmp_path: Path, media_root: Path) -> None:
    other = tmp_path / "other"
    other.mkdir()
    (other / "c.mp3").write_bytes(b"")

    resolver = MediaResolver(media_root)
    assert resolver.resolve("c.mp3") is None
    assert resolver.resolve("c.mp3", search_root=other) == other / "c.mp3"
