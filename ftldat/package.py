"""
ftldat: Host-facing package API.

This is the surface an embedding host (the game's scripting layer) binds to.
It deals only in ``str`` paths and ``bytes``/``str`` content:

  - build a new archive from virtual-path/content pairs
  - open an archive and read back named entries

plus the editing conveniences mod scripts use on top of those. Host paths for
file sources and extraction targets always go through a
SandboxedPathResolver.
"""

import logging
import os
import posixpath
from typing import Optional

from .compression import EntryCodec
from .editor import WRITERS, ArchiveEditor, EditSession
from .errors import CorruptEntry, NotFound
from .fs import SandboxedFile
from .legacy import LegacyArchiveWriter
from .reader import ArchiveReader, open_archive
from .sandbox import SandboxedPathResolver

logger = logging.getLogger(__name__)


class Package:
    """An archive's entry set, loaded from disk or built from scratch."""

    def __init__(self, session: EditSession, reader: Optional[ArchiveReader] = None):
        self._session = session
        self._reader = reader

    def close(self):
        if self._reader is not None:
            self._reader.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self) -> str:
        return f"Package({len(self._session)} entries)"

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def to_bytes(self) -> bytes:
        return self._session.finish()

    def to_file(self, resolver: SandboxedPathResolver, root, path: str) -> str:
        """
        Write the package as an archive, atomically replacing ``path``.

        Args:
            resolver: Sandbox the target must lie in
            root: Allowed root ``path`` is relative to
            path: Target path below ``root``

        Returns:
            Host path written
        """
        return self._session.finish_to(resolver.resolve(root, path))

    # =========================================================================
    # ADD / PUT
    # =========================================================================

    def add_entry_from_bytes(self, path: str, content: bytes):
        """Add a new entry; raises DuplicatePath if ``path`` exists."""
        self._session.add(path, content)

    def add_entry_from_string(self, path: str, content: str):
        self._session.add(path, content.encode('utf-8'))

    def add_entry_from_file(self, resolver: SandboxedPathResolver, path: str, source_path: str):
        self._session.add(path, SandboxedFile.open(resolver, source_path).read_bytes())

    def put_entry_from_bytes(self, path: str, content: bytes):
        """Add an entry, replacing any existing one."""
        self._session.put(path, content)

    def put_entry_from_string(self, path: str, content: str):
        self._session.put(path, content.encode('utf-8'))

    def put_entry_from_file(self, resolver: SandboxedPathResolver, path: str, source_path: str):
        self._session.put(path, SandboxedFile.open(resolver, source_path).read_bytes())

    # =========================================================================
    # READ
    # =========================================================================

    def read_content_as_bytes(self, path: str) -> Optional[bytes]:
        """Entry content, or None if there is no such entry."""
        if not self._session.exists(path):
            return None
        return self._session.read(path)

    def read_content_as_string(self, path: str) -> Optional[str]:
        content = self.read_content_as_bytes(path)
        if content is None:
            return None
        try:
            return content.decode('utf-8')
        except UnicodeDecodeError as e:
            raise CorruptEntry(f"Entry is not valid UTF-8 text: {e}", path=path) from e

    def exists(self, path: str) -> bool:
        return self._session.exists(path)

    def inner_paths(self) -> list:
        return self._session.paths()

    def entry_count(self) -> int:
        return len(self._session)

    def __len__(self) -> int:
        return len(self._session)

    # =========================================================================
    # REMOVE
    # =========================================================================

    def remove(self, path: str) -> bool:
        """Remove an entry; returns False if it did not exist."""
        try:
            self._session.remove(path)
        except NotFound:
            return False
        return True

    def clear(self):
        self._session.clear()

    # =========================================================================
    # EXTRACT
    # =========================================================================

    def extract(self, resolver: SandboxedPathResolver, root, directory: str = '') -> list:
        """
        Write every entry to disk below ``directory`` inside ``root``.

        Each target is resolved once through ``resolver`` before it is
        opened, so entries can never land outside the sandbox.

        Returns:
            Host paths written, in entry order
        """
        written = []
        for path in self._session.paths():
            target = resolver.resolve(root, posixpath.join(directory, path) if directory else path)
            content = self._session.read(path)
            SandboxedFile(resolver, target).write_bytes(content)
            written.append(target)
        logger.info(f"Extracted {len(written)} entries to {os.fspath(root)}")
        return written


# =============================================================================
# CONSTRUCTORS
# =============================================================================

def new_package(codec: Optional[EntryCodec] = None,
                archive_format: str = LegacyArchiveWriter.FORMAT) -> Package:
    """
    Start an empty package.

    Args:
        codec: Encoding policy for the packed format
        archive_format: 'dat' (classic, what the game loads) or 'pkg'
    """
    if archive_format not in WRITERS:
        raise ValueError(f"Unknown archive format: {archive_format!r}")
    return Package(ArchiveEditor.new_session(WRITERS[archive_format](codec)))


def read_package(resolver: SandboxedPathResolver, root, path: str,
                 codec: Optional[EntryCodec] = None) -> Package:
    """
    Load an archive (packed or classic) as a package.

    ``path`` is resolved below ``root`` once, before the file is opened.
    The archive file stays open until the package is closed.
    """
    reader = open_archive(resolver.resolve(root, path), codec)
    writer = WRITERS[reader.FORMAT](codec)
    return Package(ArchiveEditor.open_for_edit(reader, writer), reader)
