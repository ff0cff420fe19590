"""
ftldat: Classic .dat archive support (FTL and Into the Breach before 1.6).

Classic layout, all integers little-endian:

  Index:
    - uint32:   slot count
    - uint32[]: entry offsets, one per slot (0 = empty slot)

  Entry (at its offset):
    - uint32:   data size
    - uint32:   path length
    - path bytes (UTF-8, not terminated)
    - data bytes

There is no signature and no per-entry compression, so every entry is
verbatim. The reader and writer share the packed classes' interface and can
be handed to ArchiveEditor unchanged.
"""

import logging
import struct
from typing import BinaryIO, Iterable, Optional

from .compression import EntryCodec, StoredPayload
from .constants import DAT_ENTRY_HEADER, DAT_U32, FLAG_VERBATIM, MAX_U32
from .errors import DuplicatePath, InvalidPath, Malformed, Truncated
from .path_table import EntryMeta, PathTable
from .reader import ArchiveReader, check_spans, read_exact
from .writer import encode_entries

logger = logging.getLogger(__name__)


class LegacyArchiveReader(ArchiveReader):
    """Reader for classic slot-indexed .dat archives."""

    FORMAT = 'dat'

    @classmethod
    def _parse_index(cls, fileobj: BinaryIO, size: int) -> PathTable:
        (slot_count,) = DAT_U32.unpack(read_exact(fileobj, 0, DAT_U32.size, "slot count"))
        index_end = DAT_U32.size * (slot_count + 1)
        if index_end > size:
            raise Truncated(f"Index of {slot_count} slots needs {index_end:,} bytes, "
                            f"file has {size:,}", offset=size)

        offsets = struct.unpack(f'<{slot_count}I',
                                read_exact(fileobj, DAT_U32.size, slot_count * DAT_U32.size, "index"))

        spans = []
        table = PathTable()
        for slot, entry_offset in enumerate(offsets):
            if entry_offset == 0:
                logger.debug(f"Slot {slot} is empty")
                continue
            if entry_offset < index_end:
                raise Malformed(f"Slot {slot} points into the index",
                                offset=DAT_U32.size * (slot + 1))

            data_size, path_len = DAT_ENTRY_HEADER.unpack(
                read_exact(fileobj, entry_offset, DAT_ENTRY_HEADER.size, f"entry header (slot {slot})"))
            path_start = entry_offset + DAT_ENTRY_HEADER.size
            data_offset = path_start + path_len
            if data_offset + data_size > size:
                raise Truncated(f"Entry in slot {slot} ({path_len} + {data_size:,} bytes) "
                                f"runs past end of file", offset=entry_offset)

            raw_path = read_exact(fileobj, path_start, path_len, f"path (slot {slot})")
            try:
                path = raw_path.decode('utf-8')
            except UnicodeDecodeError as e:
                raise Malformed(f"Path is not valid UTF-8: {e}", offset=path_start) from e

            meta = EntryMeta(data_offset, data_size, data_size, FLAG_VERBATIM)
            try:
                table.insert(path, meta)
            except (DuplicatePath, InvalidPath) as e:
                raise Malformed(f"Bad index entry: {e.message}", path=path,
                                offset=entry_offset) from e
            spans.append((entry_offset, data_offset + data_size - entry_offset, path))

        check_spans(spans)
        return table


class LegacyArchiveWriter:
    """
    Build classic .dat archives.

    Deflated StoredPayloads (e.g. entries carried over from a packed archive)
    are decoded first, since the classic format cannot flag them.
    """

    FORMAT = 'dat'

    def __init__(self, codec: Optional[EntryCodec] = None):
        self.codec = codec or EntryCodec()

    def _verbatim(self, path: str, payload):
        if isinstance(payload, StoredPayload) and payload.flag != FLAG_VERBATIM:
            return self.codec.decode_payload(payload, path=path)
        return payload

    def build(self, entries: Iterable[tuple]) -> bytes:
        """
        Serialize entries into a classic archive, one slot per entry.

        Args:
            entries: (path, bytes | StoredPayload) pairs in archive order

        Returns:
            Complete archive contents
        """
        records = encode_entries(((path, self._verbatim(path, payload)) for path, payload in entries),
                                 EntryCodec(compress=False))
        count = len(records)

        out = bytearray(DAT_U32.size * (count + 1))
        DAT_U32.pack_into(out, 0, count)

        for i, (path, stored) in enumerate(records):
            entry_offset = len(out)
            encoded_path = path.encode('utf-8')
            if entry_offset + DAT_ENTRY_HEADER.size + len(encoded_path) + len(stored.stored) > MAX_U32:
                raise Malformed("Archive exceeds 4 GiB", path=path, offset=entry_offset)
            DAT_U32.pack_into(out, DAT_U32.size * (i + 1), entry_offset)
            out += DAT_ENTRY_HEADER.pack(len(stored.stored), len(encoded_path))
            out += encoded_path
            out += stored.stored

        logger.info(f"Built dat archive: {count} entries, {len(out):,} bytes")
        return bytes(out)
