"""ftldat: FTL / Into the Breach .dat archive engine and mod sandbox."""
from .compression import EntryCodec, StoredPayload  # noqa: F401
from .editor import ArchiveEditor, EditSession  # noqa: F401
from .errors import (  # noqa: F401
    ArchiveError, BadMagic, Truncated, Malformed, DuplicatePath, InvalidPath,
    NotFound, CorruptEntry, IoFailure, OutsideSandbox,
)
from .fs import SandboxedDirectory, SandboxedFile  # noqa: F401
from .legacy import LegacyArchiveReader, LegacyArchiveWriter  # noqa: F401
from .package import Package, new_package, read_package  # noqa: F401
from .path_table import EntryMeta, PathTable, normalize_path  # noqa: F401
from .reader import ArchiveReader, open_archive  # noqa: F401
from .sandbox import SandboxedPathResolver, find_save_data_directory  # noqa: F401
from .writer import ArchiveWriter, persist, write_archive  # noqa: F401

__version__ = '0.1.0'
