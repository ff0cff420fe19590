"""
Unit tests for the host-facing Package API.

Tests cover:
- Building new packages from bytes, strings and files
- Loading packed and classic archives through the sandbox
- Writing and extraction through the sandbox
"""

import io
import os

import pytest

from ftldat.compression import EntryCodec
from ftldat.constants import FLAG_DEFLATED, PKG_SIGNATURE
from ftldat.errors import CorruptEntry, DuplicatePath, InvalidPath, IoFailure, OutsideSandbox
from ftldat.legacy import LegacyArchiveReader, LegacyArchiveWriter
from ftldat.package import new_package, read_package
from ftldat.reader import ArchiveReader
from ftldat.sandbox import SandboxedPathResolver

from .conftest import SAMPLE_ENTRIES


class CountingCodec(EntryCodec):
    """EntryCodec that counts decode calls."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.decoded = 0

    def decode(self, stored, flag, unpacked_size, path=None):
        self.decoded += 1
        return super().decode(stored, flag, unpacked_size, path=path)


@pytest.fixture
def game_dir(tmp_path):
    path = tmp_path / "game"
    path.mkdir()
    return path


@pytest.fixture
def resolver(game_dir):
    return SandboxedPathResolver([game_dir])


@pytest.fixture
def archive(game_dir, sample_bytes):
    """The packed sample archive inside the game directory."""
    path = game_dir / "resource.dat"
    path.write_bytes(sample_bytes)
    return path


class TestNewPackage:
    """Tests for packages built from scratch."""

    def test_default_format_is_classic(self):
        """New packages are written in the format the game loads."""
        package = new_package()
        package.add_entry_from_string("a.txt", "1")
        data = package.to_bytes()
        assert not data.startswith(PKG_SIGNATURE)
        assert LegacyArchiveReader.open(io.BytesIO(data)).read("a.txt") == b"1"

    def test_packed_format(self):
        package = new_package(archive_format="pkg")
        package.add_entry_from_string("a.txt", "1")
        assert package.to_bytes().startswith(PKG_SIGNATURE)

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            new_package(archive_format="zip")

    def test_build_and_read_back(self, resolver, game_dir):
        package = new_package()
        package.add_entry_from_bytes("img/a.png", b"\x89PNG")
        package.add_entry_from_string("data/text.xml", "<text id='x'>é</text>")
        written = package.to_file(resolver, game_dir, "resource.dat")

        assert written == os.path.join(os.path.realpath(str(game_dir)), "resource.dat")
        with LegacyArchiveReader.open_path(written) as reader:
            assert reader.list() == ["img/a.png", "data/text.xml"]
            assert reader.read("data/text.xml").decode("utf-8") == "<text id='x'>é</text>"

    def test_to_file_outside_sandbox(self, resolver, game_dir, tmp_path):
        package = new_package()
        package.add_entry_from_string("a.txt", "1")
        with pytest.raises(OutsideSandbox):
            package.to_file(resolver, game_dir, "../resource.dat")
        assert not (tmp_path / "resource.dat").exists()

    def test_add_duplicate(self):
        package = new_package()
        package.add_entry_from_string("a.txt", "1")
        with pytest.raises(DuplicatePath):
            package.add_entry_from_string("a.txt", "2")

    def test_put_replaces(self):
        package = new_package()
        package.put_entry_from_string("a.txt", "1")
        package.put_entry_from_string("a.txt", "2")
        assert package.read_content_as_string("a.txt") == "2"
        assert package.entry_count() == 1

    def test_entry_from_file(self, resolver, game_dir):
        (game_dir / "mod.lua").write_text("print('hi')")
        package = new_package()
        package.add_entry_from_file(resolver, "scripts/mod.lua", "mod.lua")
        assert package.read_content_as_bytes("scripts/mod.lua") == b"print('hi')"

    def test_entry_from_file_outside(self, resolver, tmp_path):
        (tmp_path / "secret.txt").write_text("x")
        with pytest.raises(OutsideSandbox):
            new_package().put_entry_from_file(resolver, "s.txt", str(tmp_path / "secret.txt"))

    def test_compressed_package(self):
        package = new_package(EntryCodec(compress=True), archive_format="pkg")
        package.add_entry_from_bytes("big.xml", b"<row/>" * 300)
        reader = ArchiveReader.open(io.BytesIO(package.to_bytes()))
        assert reader.metadata("big.xml").flag == FLAG_DEFLATED
        assert reader.read("big.xml") == b"<row/>" * 300

    def test_missing_entry_reads_none(self):
        package = new_package()
        assert package.read_content_as_bytes("nope") is None
        assert package.read_content_as_string("nope") is None

    def test_non_utf8_string_read(self):
        package = new_package()
        package.add_entry_from_bytes("bin", b"\xff\xfe")
        with pytest.raises(CorruptEntry):
            package.read_content_as_string("bin")

    def test_remove_and_clear(self):
        package = new_package()
        package.add_entry_from_bytes("a", b"1")
        package.add_entry_from_bytes("b", b"2")
        assert package.remove("a")
        assert not package.remove("a")
        assert package.inner_paths() == ["b"]
        package.clear()
        assert len(package) == 0


class TestReadPackage:
    """Tests for packages loaded from disk."""

    def test_read_packed(self, resolver, game_dir, archive):
        with read_package(resolver, game_dir, "resource.dat") as package:
            assert package.inner_paths() == ["a/b.txt", "c.txt"]
            assert package.read_content_as_string("c.txt") == "world"
            assert package.exists("a/b.txt")

    def test_edit_in_place(self, resolver, game_dir, archive):
        with read_package(resolver, game_dir, "resource.dat") as package:
            package.put_entry_from_string("c.txt", "changed")
            package.to_file(resolver, game_dir, "resource.dat")
        with read_package(resolver, game_dir, "resource.dat") as package:
            assert package.read_content_as_string("a/b.txt") == "hello"
            assert package.read_content_as_string("c.txt") == "changed"
        assert archive.read_bytes().startswith(PKG_SIGNATURE)

    def test_unmodified_round_trip(self, resolver, game_dir, archive):
        original = archive.read_bytes()
        with read_package(resolver, game_dir, "resource.dat") as package:
            assert package.to_bytes() == original

    def test_read_classic_keeps_format(self, resolver, game_dir):
        path = game_dir / "classic.dat"
        path.write_bytes(LegacyArchiveWriter().build(SAMPLE_ENTRIES))
        with read_package(resolver, game_dir, "classic.dat") as package:
            package.add_entry_from_string("d.txt", "new")
            package.to_file(resolver, game_dir, "classic.dat")
        with LegacyArchiveReader.open_path(path) as reader:
            assert reader.list() == ["a/b.txt", "c.txt", "d.txt"]

    def test_codec_applies_to_output(self, resolver, game_dir, archive):
        with read_package(resolver, game_dir, "resource.dat", EntryCodec(compress=True)) as package:
            package.add_entry_from_bytes("big.xml", b"<row/>" * 300)
            package.to_file(resolver, game_dir, "packed.dat")
        with ArchiveReader.open_path(game_dir / "packed.dat") as reader:
            assert reader.metadata("big.xml").flag == FLAG_DEFLATED
            assert reader.read("a/b.txt") == b"hello"

    def test_codec_decodes_source_entries(self, resolver, game_dir, archive):
        """Entries still in the source archive are decoded with the given codec."""
        codec = CountingCodec()
        with read_package(resolver, game_dir, "resource.dat", codec) as package:
            assert package.read_content_as_bytes("a/b.txt") == b"hello"
        assert codec.decoded == 1

    def test_missing_file(self, resolver, game_dir):
        with pytest.raises(IoFailure):
            read_package(resolver, game_dir, "missing.dat")

    def test_outside_sandbox(self, resolver, game_dir, tmp_path, sample_bytes):
        (tmp_path / "resource.dat").write_bytes(sample_bytes)
        with pytest.raises(OutsideSandbox):
            read_package(resolver, game_dir, "../resource.dat")
        with pytest.raises(OutsideSandbox):
            read_package(resolver, tmp_path, "resource.dat")

    def test_non_string_path(self, resolver, game_dir):
        with pytest.raises(InvalidPath):
            read_package(resolver, game_dir, 42)


class TestExtract:
    """Tests for Package.extract."""

    def test_extract_into_root(self, resolver, game_dir, archive):
        with read_package(resolver, game_dir, "resource.dat") as package:
            written = package.extract(resolver, game_dir)
        real_game = os.path.realpath(str(game_dir))
        assert written == [os.path.join(real_game, "a", "b.txt"), os.path.join(real_game, "c.txt")]
        assert (game_dir / "a" / "b.txt").read_bytes() == b"hello"
        assert (game_dir / "c.txt").read_bytes() == b"world"

    def test_extract_into_subdirectory(self, resolver, game_dir, archive):
        with read_package(resolver, game_dir, "resource.dat") as package:
            package.extract(resolver, game_dir, "unpacked")
        assert (game_dir / "unpacked" / "c.txt").read_bytes() == b"world"

    def test_extract_directory_escape(self, resolver, game_dir, archive, tmp_path):
        with read_package(resolver, game_dir, "resource.dat") as package:
            with pytest.raises(OutsideSandbox):
                package.extract(resolver, game_dir, "../elsewhere")
        assert not (tmp_path / "elsewhere").exists()

    def test_extract_unknown_root(self, resolver, game_dir, archive, tmp_path):
        with read_package(resolver, game_dir, "resource.dat") as package:
            with pytest.raises(OutsideSandbox):
                package.extract(resolver, tmp_path)
