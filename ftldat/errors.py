"""
ftldat: Error taxonomy.

Every failure the archive engine and the sandbox report is an ArchiveError
subclass. The host surfaces ``kind`` together with the offending ``path``
and ``offset`` (when known) to the caller.
"""

from typing import Optional


class ArchiveError(ValueError):
    """Base class for archive and sandbox errors."""

    def __init__(self, message: str, path: Optional[str] = None,
                 offset: Optional[int] = None):
        self.message = message
        self.path = path
        self.offset = offset
        super().__init__(self._format())

    @property
    def kind(self) -> str:
        return type(self).__name__

    def _format(self) -> str:
        details = []
        if self.path is not None:
            details.append(f"path={self.path!r}")
        if self.offset is not None:
            details.append(f"offset=0x{self.offset:08X}")
        if details:
            return f"{self.message} ({', '.join(details)})"
        return self.message

    def __str__(self) -> str:
        return self._format()


class BadMagic(ArchiveError):
    """Header signature does not match the expected format."""


class Truncated(ArchiveError):
    """A declared section or payload extends past the end of the file."""


class Malformed(ArchiveError):
    """The index cannot be parsed into a consistent PathTable."""


class DuplicatePath(ArchiveError):
    """A virtual path is already present."""


class InvalidPath(ArchiveError):
    """A virtual or host path is not acceptable."""


class NotFound(ArchiveError, KeyError):
    """Lookup miss."""


class CorruptEntry(ArchiveError):
    """Stored content does not decode as declared (wrong length or bad text)."""


class IoFailure(ArchiveError, OSError):
    """Underlying read or write error."""


class OutsideSandbox(ArchiveError):
    """A host path resolves outside every allowed root."""
