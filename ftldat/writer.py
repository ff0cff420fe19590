"""
ftldat: Packed archive writer and staged persistence.

An archive is built completely in memory: header, index and path region
sizes are known before any payload is encoded, so offsets are assigned in a
single pass over the entries. The result is committed to disk with
``persist``, which writes a temporary file next to the target and renames it
over the target only once the data is fully on disk.

Building is deterministic: the same ordered entries and codec settings give
byte-identical output.
"""

import logging
import os
import stat
import tempfile
from typing import Iterable, Optional

from .compression import EntryCodec, StoredPayload
from .constants import (
    FLAG_SHIFT, KNOWN_FLAGS, MAX_U32, PATH_OFFSET_MASK, PATH_REGION_ALIGN,
    PKG_ENTRY, PKG_ENTRY_SIZE, PKG_HEADER, PKG_HEADER_SIZE, PKG_SIGNATURE,
)
from .errors import IoFailure, Malformed
from .path_table import PathTable

logger = logging.getLogger(__name__)


def path_hash(path: str) -> int:
    """
    32-bit case-insensitive hash stored in each index record.

    Rotates the accumulator right by 5 bits, then xors in the next
    character of the lowercased path.
    """
    h = 0
    for c in path.lower():
        h = ((h >> 5) | (h << 27)) & 0xFFFFFFFF
        h ^= ord(c)
    return h & 0xFFFFFFFF


def encode_entries(entries: Iterable[tuple], codec: EntryCodec) -> list:
    """
    Validate an ordered entry set and encode every payload.

    Args:
        entries: (path, payload) pairs; payload is raw bytes, or a
            StoredPayload that is passed through unchanged
        codec: Codec for raw payloads

    Returns:
        List of (normalized_path, StoredPayload)

    Raises:
        DuplicatePath, InvalidPath: From the PathTable
        Malformed: An entry cannot be represented in the index
    """
    table = PathTable()
    for path, payload in entries:
        if not isinstance(payload, (bytes, bytearray, memoryview, StoredPayload)):
            raise TypeError(f"Entry payload must be bytes, got {type(payload).__name__}")
        table.insert(path, payload)

    records = []
    for path, payload in table:
        if isinstance(payload, StoredPayload):
            stored = payload
            if stored.flag not in KNOWN_FLAGS:
                raise Malformed(f"Unknown entry flag 0x{stored.flag:02X}", path=path)
        else:
            stored = codec.encode_payload(payload)
        EntryCodec.validate(path, len(stored.stored), stored.unpacked_size)
        records.append((path, stored))
    return records


class ArchiveWriter:
    """
    Build packed (PKG) archives.

    Args:
        codec: Encoding policy for raw payloads (default: verbatim)
    """

    FORMAT = 'pkg'

    def __init__(self, codec: Optional[EntryCodec] = None):
        self.codec = codec or EntryCodec()

    def build(self, entries: Iterable[tuple]) -> bytes:
        """
        Serialize an ordered set of entries into archive bytes.

        Args:
            entries: (path, bytes | StoredPayload) pairs in archive order

        Returns:
            Complete archive contents

        Raises:
            DuplicatePath, InvalidPath, Malformed: Nothing is produced
        """
        records = encode_entries(entries, self.codec)
        count = len(records)

        # Path region: NUL-terminated paths, padded to PATH_REGION_ALIGN
        region = bytearray()
        path_offsets = []
        for path, _ in records:
            if len(region) > PATH_OFFSET_MASK:
                raise Malformed("Path region exceeds 24-bit offsets", path=path)
            path_offsets.append(len(region))
            region += path.encode('utf-8') + b'\x00'
        region += b'\x00' * (-len(region) % PATH_REGION_ALIGN)

        data_start = PKG_HEADER_SIZE + count * PKG_ENTRY_SIZE + len(region)
        out = bytearray(data_start)
        PKG_HEADER.pack_into(out, 0, PKG_SIGNATURE, PKG_HEADER_SIZE, PKG_ENTRY_SIZE,
                             count, len(region))

        offset = data_start
        for i, (path, stored) in enumerate(records):
            if offset + len(stored.stored) > MAX_U32:
                raise Malformed("Archive exceeds 4 GiB", path=path, offset=offset)
            PKG_ENTRY.pack_into(
                out, PKG_HEADER_SIZE + i * PKG_ENTRY_SIZE,
                path_hash(path),
                path_offsets[i] | (stored.flag << FLAG_SHIFT),
                offset,
                len(stored.stored),
                stored.unpacked_size,
            )
            logger.debug(f"  {path}: 0x{offset:08X} +{len(stored.stored):,} "
                         f"(unpacked {stored.unpacked_size:,}, flag {stored.flag})")
            offset += len(stored.stored)

        out[PKG_HEADER_SIZE + count * PKG_ENTRY_SIZE:data_start] = region
        for _, stored in records:
            out += stored.stored

        logger.info(f"Built pkg archive: {count} entries, {len(out):,} bytes")
        return bytes(out)


# =============================================================================
# STAGED PERSISTENCE
# =============================================================================

def persist(data: bytes, target) -> str:
    """
    Atomically replace ``target`` with ``data``.

    The bytes go to a temporary file in the target's directory, are flushed
    and fsynced, and the file is renamed over the target. On any failure the
    temporary file is removed and the target is left as it was.

    Returns:
        Absolute path of the written file

    Raises:
        IoFailure: If staging or the final rename fails
    """
    target = os.path.abspath(os.fspath(target))
    directory = os.path.dirname(target)

    try:
        fd, staged = tempfile.mkstemp(prefix=f".{os.path.basename(target)}.",
                                      suffix='.tmp', dir=directory)
    except OSError as e:
        raise IoFailure(f"Cannot stage archive: {e}", path=target) from e

    committed = False
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        mode = stat.S_IMODE(os.stat(target).st_mode) if os.path.exists(target) else 0o644
        os.chmod(staged, mode)
        os.replace(staged, target)
        committed = True
    except OSError as e:
        raise IoFailure(f"Writing archive failed: {e}", path=target) from e
    finally:
        if not committed and os.path.exists(staged):
            os.unlink(staged)

    _fsync_directory(directory)
    logger.info(f"Wrote {target} ({len(data):,} bytes)")
    return target


def _fsync_directory(directory: str):
    """Make the rename durable where the platform allows it."""
    if os.name == 'nt':
        return
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError as e:
        logger.warning(f"Cannot open {directory} to sync the rename: {e}")
        return
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def write_archive(entries: Iterable[tuple], target, codec: Optional[EntryCodec] = None,
                  writer=None) -> str:
    """Build an archive from (path, bytes) pairs and persist it to ``target``."""
    writer = writer or ArchiveWriter(codec)
    return persist(writer.build(entries), target)
