"""
ftldat: Per-entry payload encoding.

Implements:
  - verbatim storage (flag 0x00): stored bytes are the raw bytes
  - deflate storage (flag 0x01): stored bytes are a zlib stream whose
    inflated length must equal the entry's unpacked size

The encoding decision depends only on the input bytes and the codec
settings, so encoding the same payload twice yields the same stored bytes.
"""

import zlib
from typing import NamedTuple

from .constants import DEFAULT_DEFLATE_LEVEL, FLAG_DEFLATED, FLAG_VERBATIM, KNOWN_FLAGS, MAX_U32
from .errors import CorruptEntry, Malformed


class StoredPayload(NamedTuple):
    """An entry payload that is already encoded and is written as-is."""
    stored: bytes
    flag: int
    unpacked_size: int


class EntryCodec:
    """
    Encode and decode single entry payloads.

    Args:
        compress: Deflate payloads when it makes them strictly smaller
        level: zlib compression level (0-9)
    """

    def __init__(self, compress: bool = False, level: int = DEFAULT_DEFLATE_LEVEL):
        if not 0 <= level <= 9:
            raise ValueError(f"Deflate level out of range: {level}")
        self.compress = compress
        self.level = level

    def __repr__(self) -> str:
        return f"EntryCodec(compress={self.compress}, level={self.level})"

    # =========================================================================
    # ENCODE
    # =========================================================================

    def encode(self, raw: bytes) -> tuple:
        """
        Encode a raw payload.

        Returns:
            (stored_bytes, flag, unpacked_size)
        """
        raw = bytes(raw)
        if self.compress and raw:
            deflated = zlib.compress(raw, self.level)
            if len(deflated) < len(raw):
                return (deflated, FLAG_DEFLATED, len(raw))
        return (raw, FLAG_VERBATIM, len(raw))

    def encode_payload(self, raw: bytes) -> StoredPayload:
        return StoredPayload(*self.encode(raw))

    # =========================================================================
    # DECODE
    # =========================================================================

    def decode(self, stored: bytes, flag: int, unpacked_size: int, path: str = None) -> bytes:
        """
        Decode stored bytes back into the raw payload.

        Args:
            stored: Bytes as stored in the archive
            flag: Encoding flag from the index
            unpacked_size: Declared raw length
            path: Entry path, used in error reports only

        Returns:
            Exactly ``unpacked_size`` raw bytes

        Raises:
            CorruptEntry: If the flag is unknown, the stream is damaged, or
                the decoded length differs from ``unpacked_size``
        """
        if flag == FLAG_VERBATIM:
            raw = bytes(stored)
        elif flag == FLAG_DEFLATED:
            raw = self._inflate(stored, unpacked_size, path)
        else:
            raise CorruptEntry(f"Unknown encoding flag 0x{flag:02X}", path=path)

        if len(raw) != unpacked_size:
            raise CorruptEntry(
                f"Decoded {len(raw)} bytes, expected {unpacked_size} "
                f"({KNOWN_FLAGS[flag]})", path=path)
        return raw

    def decode_payload(self, payload: StoredPayload, path: str = None) -> bytes:
        return self.decode(payload.stored, payload.flag, payload.unpacked_size, path=path)

    @staticmethod
    def _inflate(stored: bytes, unpacked_size: int, path: str) -> bytes:
        inflater = zlib.decompressobj()
        try:
            # Ask for one byte more than declared so overlong streams are caught
            raw = inflater.decompress(stored, unpacked_size + 1)
        except zlib.error as e:
            raise CorruptEntry(f"Deflate stream is damaged: {e}", path=path) from e
        if not inflater.eof:
            raise CorruptEntry("Deflate stream ends early or is longer than declared", path=path)
        if inflater.unused_data:
            raise CorruptEntry(
                f"{len(inflater.unused_data)} trailing bytes after deflate stream", path=path)
        return raw

    # =========================================================================
    # VALIDATION
    # =========================================================================

    @staticmethod
    def validate(path: str, stored_size: int, unpacked_size: int):
        """Check that an entry fits the index record fields."""
        if stored_size > MAX_U32 or unpacked_size > MAX_U32:
            raise Malformed(
                f"Entry too large for the archive index: {unpacked_size:,} bytes", path=path)
