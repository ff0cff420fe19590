"""
Unit tests for the classic .dat format.

Tests cover:
- Slot table layout
- Empty slots and truncation
- Editing classic archives
- Converting packed archives to classic output
"""

import io
import struct

import pytest

from ftldat.compression import EntryCodec
from ftldat.editor import ArchiveEditor
from ftldat.errors import BadMagic, Malformed, Truncated
from ftldat.legacy import LegacyArchiveReader, LegacyArchiveWriter
from ftldat.reader import ArchiveReader
from ftldat.writer import ArchiveWriter

from .conftest import SAMPLE_ENTRIES


@pytest.fixture
def classic_bytes():
    return LegacyArchiveWriter().build(SAMPLE_ENTRIES)


def _open(data: bytes) -> LegacyArchiveReader:
    return LegacyArchiveReader.open(io.BytesIO(data))


class TestLayout:
    """Tests for LegacyArchiveWriter output."""

    def test_slot_table(self, classic_bytes):
        """Count followed by one offset per entry."""
        assert struct.unpack_from("<III", classic_bytes) == (2, 12, 32)
        assert len(classic_bytes) == 50

    def test_entry_records(self, classic_bytes):
        """Each entry is data size, path length, path, data."""
        assert classic_bytes[12:32] == struct.pack("<II", 5, 7) + b"a/b.txt" + b"hello"
        assert classic_bytes[32:] == struct.pack("<II", 5, 5) + b"c.txt" + b"world"

    def test_empty(self):
        assert LegacyArchiveWriter().build([]) == b"\x00\x00\x00\x00"


class TestReader:
    """Tests for LegacyArchiveReader."""

    def test_round_trip(self, classic_bytes):
        reader = _open(classic_bytes)
        assert reader.list() == ["a/b.txt", "c.txt"]
        assert reader.read("a/b.txt") == b"hello"
        assert reader.read("c.txt") == b"world"
        assert reader.FORMAT == "dat"

    def test_empty_slots_skipped(self):
        data = struct.pack("<III", 2, 0, 12) + struct.pack("<II", 1, 1) + b"ab"
        reader = _open(data)
        assert reader.list() == ["a"]
        assert reader.read("a") == b"b"

    def test_slot_into_index(self):
        data = struct.pack("<II", 1, 4) + struct.pack("<II", 0, 0)
        with pytest.raises(Malformed):
            _open(data)

    def test_slot_count_past_end(self):
        with pytest.raises(Truncated):
            _open(struct.pack("<I", 1000))

    def test_entry_past_end(self, classic_bytes):
        with pytest.raises(Truncated):
            _open(classic_bytes[:-1])

    def test_duplicate_paths(self):
        entry = struct.pack("<II", 1, 1) + b"ab"
        data = struct.pack("<III", 2, 12, 22) + entry + entry
        with pytest.raises(Malformed):
            _open(data)

    def test_overlapping_entries(self):
        """A slot pointing inside another entry's data is Malformed."""
        # entry a occupies 12..31; slot 2 points at 22, inside a's data
        a_data = b"X" + struct.pack("<II", 0, 1) + b"b"
        data = struct.pack("<III", 2, 12, 22) + struct.pack("<II", len(a_data), 1) + b"a" + a_data
        with pytest.raises(Malformed):
            _open(data)

    def test_packed_reader_refuses_classic(self, classic_bytes):
        """Classic archives have no signature."""
        with pytest.raises(BadMagic):
            ArchiveReader.open(io.BytesIO(classic_bytes))


class TestEditing:
    """Tests for edit sessions over classic archives."""

    def test_unmodified_with_empty_slot_is_identical(self):
        """Empty slots survive a repack with no edits."""
        original = (struct.pack("<IIII", 3, 16, 0, 26)
                    + struct.pack("<II", 1, 1) + b"ab"
                    + struct.pack("<II", 1, 1) + b"cd")
        reader = _open(original)
        assert reader.list() == ["a", "c"]
        assert ArchiveEditor.open_for_edit(reader).finish() == original

    def test_unmodified_session_is_identical(self, classic_bytes):
        session = ArchiveEditor.open_for_edit(_open(classic_bytes))
        assert session.finish() == classic_bytes

    def test_edit_keeps_format(self, classic_bytes):
        session = ArchiveEditor.open_for_edit(_open(classic_bytes))
        session.put("c.txt", b"WORLD")
        edited = _open(session.finish())
        assert edited.read("c.txt") == b"WORLD"
        assert edited.read("a/b.txt") == b"hello"

    def test_convert_deflated_packed_archive(self):
        """Deflated entries are inflated when written in the classic format."""
        raw = b"<event name='x'/>\n" * 100
        packed = ArchiveWriter(EntryCodec(compress=True)).build([("data/events.xml", raw)])
        session = ArchiveEditor.open_for_edit(ArchiveReader.open(io.BytesIO(packed)),
                                              LegacyArchiveWriter())
        classic = _open(session.finish())
        assert classic.read("data/events.xml") == raw
        assert classic.metadata("data/events.xml").stored_size == len(raw)
