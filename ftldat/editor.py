"""
ftldat: Repacking an existing archive with modifications.

An edit session keeps a working PathTable seeded from the source archive's
index. Entries the session never touches are carried into the new archive as
their original stored bytes, so they are neither decoded nor re-encoded. A
session with no changes returns its source file byte-for-byte.

Order of the output:
  - original entries keep their relative order, replaced ones in place
  - new entries (including rename targets) follow, in the order added

The source archive is never written to. ``finish`` returns bytes and
``finish_to`` commits them through a staged file.
"""

import logging
from typing import NamedTuple, Optional

from .compression import EntryCodec, StoredPayload
from .errors import DuplicatePath, NotFound
from .legacy import LegacyArchiveWriter
from .path_table import PathTable, normalize_path
from .reader import ArchiveReader
from .writer import ArchiveWriter, persist

logger = logging.getLogger(__name__)

WRITERS = {
    ArchiveWriter.FORMAT: ArchiveWriter,
    LegacyArchiveWriter.FORMAT: LegacyArchiveWriter,
}


class _Unchanged(NamedTuple):
    """Reference to an entry still held by the source archive."""
    source_path: str


class EditSession:
    """Working copy of an archive's entry set."""

    def __init__(self, reader: Optional[ArchiveReader] = None, writer=None):
        self._reader = reader
        self._writer = writer or ArchiveWriter()
        self._codec = EntryCodec()
        self._table = PathTable()
        self._modified = False
        if reader is not None:
            for path in reader.list():
                self._table.insert(path, _Unchanged(path))

    @property
    def writer(self):
        return self._writer

    @property
    def modified(self) -> bool:
        return self._modified

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def put(self, path: str, raw) -> str:
        """
        Store a payload under ``path``, replacing any existing entry in place.

        Returns:
            The normalized path
        """
        _check_payload(raw)
        key = normalize_path(path)
        payload = raw if isinstance(raw, StoredPayload) else bytes(raw)
        if key in self._table:
            self._table.replace(key, payload)
            logger.debug(f"Replaced {key}")
        else:
            self._table.insert(key, payload)
            logger.debug(f"Added {key}")
        self._modified = True
        return key

    def add(self, path: str, raw) -> str:
        """Like ``put``, but refuses to replace an existing entry."""
        _check_payload(raw)
        key = normalize_path(path)
        if key in self._table:
            raise DuplicatePath("Entry already exists", path=key)
        return self.put(key, raw)

    def remove(self, path: str):
        key = normalize_path(path)
        if key not in self._table:
            raise NotFound("No such entry", path=key)
        self._table.remove(key)
        self._modified = True
        logger.debug(f"Removed {key}")

    def rename(self, old_path: str, new_path: str) -> str:
        """
        Move an entry to a new path, keeping its payload.

        The renamed entry is placed after all other entries. Renaming a path
        onto itself is a no-op.

        Raises:
            NotFound: ``old_path`` does not exist
            DuplicatePath: ``new_path`` names a different existing entry
        """
        old_key = normalize_path(old_path)
        new_key = normalize_path(new_path)
        if old_key not in self._table:
            raise NotFound("No such entry", path=old_key)
        if new_key == old_key:
            return new_key
        if new_key in self._table:
            raise DuplicatePath("Rename target already exists", path=new_key)

        payload = self._table.remove(old_key)
        self._table.insert(new_key, payload)
        self._modified = True
        logger.debug(f"Renamed {old_key} -> {new_key}")
        return new_key

    def clear(self):
        if len(self._table):
            self._modified = True
        self._table.clear()

    # =========================================================================
    # QUERIES
    # =========================================================================

    def read(self, path: str) -> bytes:
        ref = self._table.lookup(path)
        if ref is None:
            raise NotFound("No such entry", path=path)
        if isinstance(ref, _Unchanged):
            return self._reader.read(ref.source_path)
        if isinstance(ref, StoredPayload):
            return self._codec.decode_payload(ref, path=path)
        return ref

    def exists(self, path: str) -> bool:
        return path in self._table

    def paths(self) -> list:
        return self._table.paths()

    def __contains__(self, path) -> bool:
        return path in self._table

    def __len__(self) -> int:
        return len(self._table)

    # =========================================================================
    # FINISH
    # =========================================================================

    def entries(self) -> list:
        """Resolve the working table into the ordered (path, payload) list."""
        resolved = []
        for path, ref in self._table:
            if isinstance(ref, _Unchanged):
                ref = self._reader.stored(ref.source_path)
            resolved.append((path, ref))
        return resolved

    def finish(self) -> bytes:
        """
        Build the edited archive; the source is left untouched.

        A session with no changes whose writer targets the source's format
        returns the source bytes unchanged, whatever layout produced them.
        """
        if (not self._modified and self._reader is not None
                and self._writer.FORMAT == self._reader.FORMAT):
            logger.info(f"Edit session finished: {len(self._table)} entries (unmodified)")
            return self._reader.raw_bytes()
        data = self._writer.build(self.entries())
        logger.info(f"Edit session finished: {len(self._table)} entries"
                    f"{'' if self._modified else ' (unmodified)'}")
        return data

    def finish_to(self, target) -> str:
        """Build the edited archive and atomically replace ``target`` with it."""
        return persist(self.finish(), target)


class ArchiveEditor:
    """Entry points for edit sessions."""

    @staticmethod
    def open_for_edit(reader: ArchiveReader, writer=None) -> EditSession:
        """
        Start an edit session over an open archive.

        Args:
            reader: Source archive; must stay open until the session finishes
            writer: Output writer (default: one matching the reader's format)
        """
        if writer is None:
            writer = WRITERS[reader.FORMAT]()
        return EditSession(reader, writer)

    @staticmethod
    def new_session(writer=None) -> EditSession:
        """Start an edit session with no source archive."""
        return EditSession(None, writer)


def _check_payload(raw):
    if not isinstance(raw, (bytes, bytearray, memoryview, StoredPayload)):
        raise TypeError(f"Entry payload must be bytes, got {type(raw).__name__}")
