"""Per-directory cache of parsed services, invalidated by modification time."""

import logging
from pathlib import Path

from api_doc_index.parser.base import ServiceInfo

logger = logging.getLogger(__name__)


def directory_fingerprint(api_dir: Path) -> int:
    """Newest ``st_mtime_ns`` of the directory and its Markdown files.

    Rewriting a file in place does not touch the directory mtime, so the
    files are stat'ed as well.
    """
    newest = api_dir.stat().st_mtime_ns
    for file_path in api_dir.glob("*.md"):
        try:
            newest = max(newest, file_path.stat().st_mtime_ns)
        except FileNotFoundError:
            continue
    return newest


class DocCache:
    """Maps an absolute directory path to ``(fingerprint, services)``.

    Construct one per application and pass it to the lookup engine.
    """

    def __init__(self):
        self._entries: dict[str, tuple[int, list[ServiceInfo]]] = {}

    @staticmethod
    def _key(api_dir: Path) -> str:
        return str(Path(api_dir).resolve())

    def get(self, api_dir: Path) -> list[ServiceInfo] | None:
        """Cached services, or None when missing or stale."""
        key = self._key(api_dir)
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Doc cache miss for %s", key)
            return None
        try:
            current = directory_fingerprint(Path(key))
        except FileNotFoundError:
            return None
        if current != entry[0]:
            logger.debug("Doc cache stale for %s", key)
            return None
        logger.debug("Doc cache hit for %s", key)
        return entry[1]

    def set(self, api_dir: Path, services: list[ServiceInfo]) -> None:
        key = self._key(api_dir)
        self._entries[key] = (directory_fingerprint(Path(key)), services)

    def clear(self) -> None:
        self._entries.clear()
