import logging
import os
from collections.abc import Iterable
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Protocol

from error_triage.reporting.models import StackFrame

logger = logging.getLogger(__name__)

# Directories that never hold the application's own sources
DEFAULT_IGNORE_DIRS = frozenset({
    ".git", ".hg", ".svn", "node_modules", "__pycache__",
    ".venv", "venv", ".tox", "site-packages", "dist", "build",
})


class CodeLocator(Protocol):
    def locate(self, frame: StackFrame) -> Path | None:
        ...


def _path_parts(file_path: str) -> list[str]:
    if file_path.startswith("file://"):
        file_path = file_path[len("file://"):]
    if "\\" in file_path:
        parts = PureWindowsPath(file_path).parts
    else:
        parts = PurePosixPath(file_path).parts
    return [p for p in parts if p not in ("/", "\\", ".", "..") and not p.endswith((":\\", ":"))]


class FilesystemLocator:
    """
    Maps stack-frame paths reported by a deployed service onto a local checkout.

    Deployed paths rarely match the checkout (``/app/src/x.js`` vs
    ``./src/x.js``), so the locator tries ever-shorter suffixes of the
    reported path under ``root``. A bare file name falls back to a recursive
    search and only resolves when exactly one file matches. The checkout is
    walked once, on the first such lookup, and the name index is reused after.
    """

    def __init__(self, root: str | Path, ignore_dirs: Iterable[str] = DEFAULT_IGNORE_DIRS) -> None:
        self.root = Path(root)
        self.ignore_dirs = frozenset(ignore_dirs)
        self._by_name: dict[str, list[Path]] | None = None

    def locate(self, frame: StackFrame) -> Path | None:
        parts = _path_parts(frame.file_path)
        if not parts:
            return None

        for start in range(len(parts)):
            candidate = self.root.joinpath(*parts[start:])
            if candidate.is_file():
                return candidate

        matches = self._find_by_name(parts[-1])
        if len(matches) == 1:
            return matches[0]
        if matches:
            logger.debug("Ambiguous match for %s: %d candidates", frame.file_path, len(matches))
        return None

    def _find_by_name(self, name: str) -> list[Path]:
        if self._by_name is None:
            self._by_name = self._index()
        return list(self._by_name.get(name, ()))

    def _index(self) -> dict[str, list[Path]]:
        by_name: dict[str, list[Path]] = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d not in self.ignore_dirs]
            for filename in filenames:
                by_name.setdefault(filename, []).append(Path(dirpath) / filename)
        logger.debug("Indexed %d file names under %s", len(by_name), self.root)
        return by_name


def locate_frames(
    frames: Iterable[StackFrame], locator: CodeLocator
) -> list[tuple[StackFrame, Path | None]]:
    """Pair each frame with its local file, or None when it cannot be found."""
    return [(frame, locator.locate(frame)) for frame in frames]
