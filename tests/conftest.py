"""Shared fixtures for ftldat tests."""

import pytest

from ftldat.writer import ArchiveWriter

SAMPLE_ENTRIES = [
    ("a/b.txt", b"hello"),
    ("c.txt", b"world"),
]


@pytest.fixture
def sample_bytes():
    """Packed archive holding a/b.txt and c.txt."""
    return ArchiveWriter().build(SAMPLE_ENTRIES)


@pytest.fixture
def sample_file(tmp_path, sample_bytes):
    """The sample archive written to disk."""
    path = tmp_path / "resource.dat"
    path.write_bytes(sample_bytes)
    return path
