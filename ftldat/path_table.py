"""
ftldat: Virtual path validation and the in-memory entry index.

Virtual paths are '/'-delimited, case-sensitive and relative:
  - backslashes are folded to '/' before comparison or storage
  - no leading '/', no drive prefix ('C:'), no trailing '/'
  - no empty, '.' or '..' segments
  - no NUL or other control characters
"""

from typing import Any, Iterator, NamedTuple, Optional

from .errors import DuplicatePath, InvalidPath


class EntryMeta(NamedTuple):
    """Location and encoding of one entry inside an archive."""
    offset: int          # absolute offset of the stored bytes
    stored_size: int
    unpacked_size: int
    flag: int


def normalize_path(path: str) -> str:
    """
    Return the canonical form of a virtual path.

    Args:
        path: Path as given by the caller or read from an index

    Returns:
        Path with '/' separators

    Raises:
        InvalidPath: If the path is empty, absolute, escapes its root
            or contains illegal characters
    """
    if not isinstance(path, str) or not path:
        raise InvalidPath("Empty path", path=path if isinstance(path, str) else None)

    normalized = path.replace('\\', '/')

    if normalized.startswith('/'):
        raise InvalidPath("Absolute paths are not allowed", path=path)
    if len(normalized) >= 2 and normalized[1] == ':' and normalized[0].isalpha():
        raise InvalidPath("Drive-qualified paths are not allowed", path=path)
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in normalized):
        raise InvalidPath("Path contains control characters", path=path)

    for segment in normalized.split('/'):
        if segment == '..':
            raise InvalidPath("Parent directory segments are not allowed", path=path)
        if segment in ('', '.'):
            raise InvalidPath("Empty or '.' path segment", path=path)

    return normalized


class PathTable:
    """
    Ordered mapping from virtual path to entry metadata.

    Iteration follows insertion order; ``replace`` keeps an entry's position.
    The metadata value is opaque to the table.
    """

    def __init__(self):
        self._entries = {}

    def insert(self, path: str, metadata: Any) -> str:
        """Add a new entry and return its normalized path."""
        key = normalize_path(path)
        if key in self._entries:
            raise DuplicatePath("Path already present", path=key)
        self._entries[key] = metadata
        return key

    def replace(self, path: str, metadata: Any) -> str:
        key = normalize_path(path)
        if key not in self._entries:
            raise KeyError(key)
        self._entries[key] = metadata
        return key

    def remove(self, path: str) -> Any:
        key = normalize_path(path)
        return self._entries.pop(key)

    def lookup(self, path: str) -> Optional[Any]:
        try:
            key = normalize_path(path)
        except InvalidPath:
            return None
        return self._entries.get(key)

    def iter(self) -> Iterator[tuple]:
        """Yield (path, metadata) pairs in insertion order."""
        return iter(list(self._entries.items()))

    def paths(self) -> list:
        return list(self._entries)

    def clear(self):
        self._entries.clear()

    def __iter__(self):
        return self.iter()

    def __contains__(self, path) -> bool:
        try:
            return normalize_path(path) in self._entries
        except InvalidPath:
            return False

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"PathTable({len(self._entries)} entries)"
