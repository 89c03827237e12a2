"""Resolve server-supplied filenames to local media files.

A PLAY command names a file relative to the configured media root, with
``/`` separating nested folders. Media libraries copied between machines
do not always keep the exact letter case, so after a direct lookup the
path is walked component by component, falling back to a case-insensitive
match within each folder.
"""

import logging
from pathlib import Path, PurePosixPath
from typing import Optional

_LOGGER = logging.getLogger(__name__)


class MediaResolver:
    """Finds media files under a root folder."""

    def __init__(self, media_root: Optional[Path]) -> None:
        self._media_root = media_root

    @property
    def media_root(self) -> Optional[Path]:
        return self._media_root

    def resolve(self, filename: str, search_root: Optional[Path] = None) -> Optional[Path]:
        """Resolve a filename to a playable file.

        Args:
            filename: Path relative to the root, ``/``-separated
            search_root: Folder to search instead of the configured root

        Returns:
            Path of the file, or None if it cannot be found
        """
        root = search_root if search_root is not None else self._media_root
        if root is None:
            _LOGGER.warning("No media root configured, cannot resolve %s", filename)
            return None

        parts = self._split(filename)
        if parts is None:
            _LOGGER.warning("Rejected media filename: %r", filename)
            return None

        try:
            if not root.is_dir():
                _LOGGER.warning("Media root is not a directory: %s", root)
                return None

            direct = root.joinpath(*parts)
            if direct.is_file():
                _LOGGER.debug("Found file directly: %s", direct)
                return direct

            return self._walk(root, parts)
        except OSError as e:
            _LOGGER.warning("Error resolving %s under %s: %s", filename, root, e)
            return None

    @staticmethod
    def _split(filename: str) -> Optional[list]:
        """Split a wire filename into safe path components."""
        if not filename or filename.startswith("/") or "\\" in filename:
            return None
        parts = [p for p in PurePosixPath(filename).parts if p != "."]
        if not parts or ".." in parts:
            return None
        return parts

    def _walk(self, root: Path, parts: list) -> Optional[Path]:
        current = root
        for component in parts[:-1]:
            child = self._find_child(current, component)
            if child is None or not child.is_dir():
                _LOGGER.debug("Subdirectory not found: %s in %s", component, current)
                return None
            current = child

        target = self._find_child(current, parts[-1])
        if target is None or not target.is_file():
            _LOGGER.debug("Target file not found: %s in %s", parts[-1], current)
            return None

        _LOGGER.debug("Found file by walking path: %s", target)
        return target

    @staticmethod
    def _find_child(folder: Path, name: str) -> Optional[Path]:
        """Find an entry by exact name, then case-insensitively."""
        exact = folder / name
        if exact.exists():
            return exact

        folded = name.casefold()
        for entry in sorted(folder.iterdir()):
            if entry.name.casefold() == folded:
                return entry
        return None
