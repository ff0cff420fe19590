"""
ftldat: Packed archive reader.

Packed (PKG) archive layout, all integers big-endian:

  Header (16 bytes):
    - char[4]:  signature "PKG\\n"
    - uint16:   header size (16)
    - uint16:   index record size (20)
    - uint32:   entry count
    - uint32:   path region size

  Index (20 bytes per entry):
    - uint32:   path hash (case-insensitive, informational)
    - uint32:   path offset into the path region (low 24 bits) | flags << 24
    - uint32:   data offset (absolute, from start of archive)
    - uint32:   stored size
    - uint32:   unpacked size

  Path region:
    - NUL-terminated UTF-8 paths, zero-padded to a multiple of 4

  Data:
    - Stored entry bytes in index order

Opening an archive parses the header and index only. Entry payloads are
fetched one at a time with a seek and a bounded read.
"""

import logging
import os
import threading
from typing import BinaryIO, Optional

from .compression import EntryCodec, StoredPayload
from .constants import (
    FLAG_SHIFT, KNOWN_FLAGS, PATH_OFFSET_MASK, PKG_ENTRY, PKG_ENTRY_SIZE,
    PKG_HEADER, PKG_HEADER_SIZE, PKG_SIGNATURE,
)
from .errors import (
    BadMagic, DuplicatePath, InvalidPath, IoFailure, Malformed,
    NotFound, Truncated,
)
from .path_table import EntryMeta, PathTable

logger = logging.getLogger(__name__)


def file_size(fileobj: BinaryIO) -> int:
    """Return the length of a seekable file object."""
    try:
        fileobj.seek(0, os.SEEK_END)
        return fileobj.tell()
    except OSError as e:
        raise IoFailure(f"Cannot determine archive size: {e}") from e


def read_exact(fileobj: BinaryIO, offset: int, size: int, what: str) -> bytes:
    """Read exactly ``size`` bytes at ``offset`` or raise Truncated."""
    try:
        fileobj.seek(offset)
        data = fileobj.read(size)
    except OSError as e:
        raise IoFailure(f"Reading {what} failed: {e}", offset=offset) from e
    if len(data) != size:
        raise Truncated(f"{what} ends after {len(data)} of {size} bytes", offset=offset)
    return data


def check_spans(spans: list):
    """
    Reject entries whose bytes overlap.

    Args:
        spans: (offset, size, path) for every entry; each span must already
            lie within the data area, so disjoint spans can never add up to
            more than the file holds

    Raises:
        Malformed: Two spans share at least one byte
    """
    prev_end, prev_path = 0, None
    for offset, size, path in sorted(spans):
        if offset < prev_end:
            raise Malformed(f"Entry data overlaps {prev_path!r}", path=path, offset=offset)
        prev_end, prev_path = offset + size, path


class ArchiveReader:
    """
    Read-only view of an archive file.

    Instances are created with ``open`` or ``open_path``. The index is
    immutable for the lifetime of the reader. A reader never writes to its
    file; independent readers on the same file do not interact.
    """

    FORMAT = 'pkg'

    def __init__(self, fileobj: BinaryIO, table: PathTable, size: int,
                 codec: Optional[EntryCodec] = None, name: Optional[str] = None):
        self._file = fileobj
        self._table = table
        self._size = size
        self._codec = codec or EntryCodec()
        self._lock = threading.Lock()
        self._owns_file = False
        self.name = name

    # =========================================================================
    # OPEN / CLOSE
    # =========================================================================

    @classmethod
    def open(cls, fileobj: BinaryIO, codec: Optional[EntryCodec] = None,
             name: Optional[str] = None) -> 'ArchiveReader':
        """
        Parse the header and index of an open binary file.

        Args:
            fileobj: Seekable binary file object positioned anywhere
            codec: Codec used to decode entries (default: EntryCodec())
            name: Label for log messages and errors

        Returns:
            ArchiveReader over ``fileobj``

        Raises:
            BadMagic: Signature mismatch
            Truncated: Declared sections extend past the end of the file
            Malformed: The index is inconsistent
            IoFailure: The file cannot be read
        """
        size = file_size(fileobj)
        table = cls._parse_index(fileobj, size)
        logger.info(f"Opened {cls.FORMAT} archive {name or '<stream>'}: "
                    f"{len(table)} entries, {size:,} bytes")
        return cls(fileobj, table, size, codec=codec, name=name)

    @classmethod
    def open_path(cls, path, codec: Optional[EntryCodec] = None) -> 'ArchiveReader':
        """Open an archive by host path; the reader owns and closes the file."""
        try:
            fileobj = open(path, 'rb')
        except OSError as e:
            raise IoFailure(f"Cannot open archive: {e}", path=os.fspath(path)) from e
        try:
            reader = cls.open(fileobj, codec=codec, name=os.fspath(path))
        except BaseException:
            fileobj.close()
            raise
        reader._owns_file = True
        return reader

    def close(self):
        if self._owns_file and not self._file.closed:
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # =========================================================================
    # INDEX PARSING
    # =========================================================================

    @classmethod
    def _parse_index(cls, fileobj: BinaryIO, size: int) -> PathTable:
        try:
            fileobj.seek(0)
            header = fileobj.read(PKG_HEADER_SIZE)
        except OSError as e:
            raise IoFailure(f"Reading header failed: {e}", offset=0) from e

        if header[:len(PKG_SIGNATURE)] != PKG_SIGNATURE:
            raise BadMagic(f"Not a packed archive: signature {header[:4]!r}", offset=0)
        if len(header) < PKG_HEADER_SIZE:
            raise Truncated(f"Header ends after {len(header)} bytes", offset=0)

        _, header_size, entry_size, count, path_region_size = PKG_HEADER.unpack(header)
        if header_size != PKG_HEADER_SIZE or entry_size != PKG_ENTRY_SIZE:
            raise Malformed(f"Unsupported header/record size {header_size}/{entry_size}", offset=4)

        index_end = header_size + count * entry_size
        data_start = index_end + path_region_size
        if data_start > size:
            raise Truncated(
                f"Index of {count} entries and {path_region_size:,}-byte path region "
                f"need {data_start:,} bytes, file has {size:,}", offset=size)

        index = read_exact(fileobj, header_size, count * entry_size, "index")
        region = read_exact(fileobj, index_end, path_region_size, "path region")

        spans = []
        table = PathTable()
        for i in range(count):
            record_offset = header_size + i * entry_size
            _hash, path_word, data_offset, stored_size, unpacked_size = \
                PKG_ENTRY.unpack_from(index, i * entry_size)
            flag = path_word >> FLAG_SHIFT
            path = cls._path_at(region, path_word & PATH_OFFSET_MASK, record_offset)

            if flag not in KNOWN_FLAGS:
                raise Malformed(f"Unknown entry flag 0x{flag:02X}", path=path, offset=record_offset)
            if data_offset < data_start:
                raise Malformed(f"Entry data at 0x{data_offset:08X} overlaps the index",
                                path=path, offset=record_offset)
            if data_offset + stored_size > size:
                raise Truncated(f"Entry data ({stored_size:,} bytes) runs past end of file",
                                path=path, offset=data_offset)

            meta = EntryMeta(data_offset, stored_size, unpacked_size, flag)
            try:
                table.insert(path, meta)
            except (DuplicatePath, InvalidPath) as e:
                raise Malformed(f"Bad index entry: {e.message}", path=path,
                                offset=record_offset) from e
            spans.append((data_offset, stored_size, path))

        check_spans(spans)
        return table

    @staticmethod
    def _path_at(region: bytes, path_offset: int, record_offset: int) -> str:
        if path_offset >= len(region):
            raise Malformed(f"Path offset {path_offset} outside path region", offset=record_offset)
        end = region.find(b'\x00', path_offset)
        if end < 0:
            raise Malformed("Path is not NUL-terminated", offset=record_offset)
        try:
            return region[path_offset:end].decode('utf-8')
        except UnicodeDecodeError as e:
            raise Malformed(f"Path is not valid UTF-8: {e}", offset=record_offset) from e

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def size(self) -> int:
        return self._size

    def list(self) -> list:
        """Virtual paths in index order."""
        return self._table.paths()

    def entries(self):
        """Yield (path, EntryMeta) in index order."""
        return self._table.iter()

    def metadata(self, path: str) -> EntryMeta:
        meta = self._table.lookup(path)
        if meta is None:
            raise NotFound("No such entry", path=path)
        return meta

    def stored(self, path: str) -> StoredPayload:
        """Return an entry's bytes exactly as stored, without decoding."""
        meta = self.metadata(path)
        with self._lock:
            data = read_exact(self._file, meta.offset, meta.stored_size, f"entry {path!r}")
        return StoredPayload(data, meta.flag, meta.unpacked_size)

    def raw_bytes(self) -> bytes:
        """Return the whole archive file exactly as it is on disk."""
        with self._lock:
            return read_exact(self._file, 0, self._size, "archive")

    def read(self, path: str) -> bytes:
        """
        Read and decode one entry.

        Raises:
            NotFound: No entry with this path
            CorruptEntry: Decoding does not reproduce the declared size
            IoFailure: The underlying read failed
        """
        payload = self.stored(path)
        return self._codec.decode_payload(payload, path=path)

    def __contains__(self, path) -> bool:
        return path in self._table

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name or '<stream>'}, {len(self._table)} entries)"


# =============================================================================
# FORMAT DETECTION
# =============================================================================

def open_archive(source, codec: Optional[EntryCodec] = None) -> ArchiveReader:
    """
    Open a packed or classic archive, choosing the reader by signature.

    Args:
        source: Host path or seekable binary file object

    Returns:
        ArchiveReader or LegacyArchiveReader
    """
    from .legacy import LegacyArchiveReader

    if hasattr(source, 'read'):
        signature = read_exact(source, 0, min(len(PKG_SIGNATURE), file_size(source)), "signature")
        cls = ArchiveReader if signature == PKG_SIGNATURE else LegacyArchiveReader
        return cls.open(source, codec=codec)

    try:
        with open(source, 'rb') as f:
            signature = f.read(len(PKG_SIGNATURE))
    except OSError as e:
        raise IoFailure(f"Cannot open archive: {e}", path=os.fspath(source)) from e
    cls = ArchiveReader if signature == PKG_SIGNATURE else LegacyArchiveReader
    return cls.open_path(source, codec=codec)
