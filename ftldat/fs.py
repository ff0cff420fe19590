"""
ftldat: Sandboxed file and directory handles for mod scripts.

Handles are only ever created for paths the resolver accepts, and every
operation that names a second path (copy, move, child lookup) resolves it
through the same resolver before touching disk. Paths are reported with '/'
separators; directories report a trailing '/'.
"""

import contextlib
import logging
import os
import shutil
from typing import Optional

from .errors import ArchiveError, CorruptEntry, InvalidPath, IoFailure, NotFound
from .sandbox import SandboxedPathResolver, canonical, is_within

logger = logging.getLogger(__name__)


def _slashes(path: str) -> str:
    return path.replace('\\', '/')


@contextlib.contextmanager
def _io(what: str, path: str):
    try:
        yield
    except ArchiveError:
        raise
    except OSError as e:
        raise IoFailure(f"{what} failed: {e.strerror or e}", path=path) from e


class _Handle:
    def __init__(self, resolver: SandboxedPathResolver, path: str):
        self._resolver = resolver
        self._path = path

    @property
    def host_path(self) -> str:
        return self._path

    @property
    def name(self) -> str:
        return os.path.basename(self._path.rstrip(os.sep))

    def exists(self) -> bool:
        return os.path.exists(self._path)

    def parent(self) -> 'SandboxedDirectory':
        parent = os.path.dirname(self._path)
        return SandboxedDirectory(self._resolver, self._resolver.resolve_host(parent))

    def root(self) -> 'SandboxedDirectory':
        return SandboxedDirectory(self._resolver, self._resolver.root_of(self._path))

    def __eq__(self, other):
        return type(self) is type(other) and self._path == other._path

    def __hash__(self):
        return hash((type(self), self._path))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"


class SandboxedFile(_Handle):
    """A file under one of the resolver's roots."""

    @classmethod
    def open(cls, resolver: SandboxedPathResolver, path, base: Optional[str] = None) -> 'SandboxedFile':
        return cls(resolver, resolver.resolve_host(path, base))

    @property
    def path(self) -> str:
        return _slashes(self._path)

    @property
    def relative_path(self) -> str:
        root = self._resolver.root_of(self._path)
        return _slashes(os.path.relpath(self._path, root))

    @property
    def name_without_extension(self) -> str:
        return os.path.splitext(self.name)[0]

    @property
    def extension(self) -> Optional[str]:
        ext = os.path.splitext(self.name)[1]
        return ext[1:] if ext else None

    # =========================================================================
    # READ / WRITE
    # =========================================================================

    def read_bytes(self) -> bytes:
        if not os.path.isfile(self._path):
            raise NotFound("File doesn't exist", path=self.path)
        with _io("Read", self.path), open(self._path, 'rb') as f:
            return f.read()

    def read_text(self, encoding: str = 'utf-8') -> str:
        data = self.read_bytes()
        try:
            return data.decode(encoding)
        except UnicodeDecodeError as e:
            raise CorruptEntry(f"File is not valid {encoding} text: {e}", path=self.path) from e

    def write_bytes(self, content: bytes):
        with _io("Write", self.path):
            os.makedirs(os.path.dirname(self._path), exist_ok=True)
            with open(self._path, 'wb') as f:
                f.write(content)

    def write_text(self, content: str, encoding: str = 'utf-8'):
        self.write_bytes(content.encode(encoding))

    def append_text(self, content: str, encoding: str = 'utf-8'):
        with _io("Append", self.path):
            os.makedirs(os.path.dirname(self._path), exist_ok=True)
            with open(self._path, 'ab') as f:
                f.write(content.encode(encoding))

    # =========================================================================
    # COPY / MOVE / DELETE
    # =========================================================================

    def copy(self, destination) -> 'SandboxedFile':
        target = self._resolver.resolve_host(destination)
        with _io("Copy", self.path):
            os.makedirs(os.path.dirname(target), exist_ok=True)
            shutil.copyfile(self._path, target)
        return SandboxedFile(self._resolver, target)

    def move(self, destination) -> 'SandboxedFile':
        target = self._resolver.resolve_host(destination)
        with _io("Move", self.path):
            os.makedirs(os.path.dirname(target), exist_ok=True)
            os.replace(self._path, target)
        logger.debug(f"Moved {self._path} -> {target}")
        return SandboxedFile(self._resolver, target)

    def delete(self):
        if self.exists():
            with _io("Delete", self.path):
                os.remove(self._path)


class SandboxedDirectory(_Handle):
    """A directory under one of the resolver's roots."""

    @classmethod
    def open(cls, resolver: SandboxedPathResolver, path, base: Optional[str] = None) -> 'SandboxedDirectory':
        return cls(resolver, resolver.resolve_host(path, base))

    @property
    def path(self) -> str:
        return _slashes(self._path).rstrip('/') + '/'

    @property
    def relative_path(self) -> str:
        root = self._resolver.root_of(self._path)
        if self._path == root:
            return ''
        return _slashes(os.path.relpath(self._path, root)) + '/'

    def relativize(self, path) -> Optional[str]:
        """
        Express ``path`` relative to this directory, with '..' as needed.

        Returns None when ``path`` is relative or on another drive. Existing
        directories get a trailing '/'.
        """
        path = os.fspath(path)
        if not os.path.isabs(path):
            return None
        try:
            relative = os.path.relpath(canonical(path), self._path)
        except ValueError:
            return None
        relative = _slashes(relative)
        if os.path.isdir(path) and relative != '.':
            relative += '/'
        return relative

    def is_ancestor(self, path) -> bool:
        path = os.fspath(path)
        if not os.path.isabs(path):
            raise InvalidPath("Not an absolute path", path=path)
        return is_within(canonical(path), self._path)

    # =========================================================================
    # CHILDREN
    # =========================================================================

    def file(self, *parts: str) -> SandboxedFile:
        return SandboxedFile(self._resolver, self._resolver.resolve_host(os.path.join(self._path, *parts)))

    def directory(self, *parts: str) -> 'SandboxedDirectory':
        return SandboxedDirectory(self._resolver, self._resolver.resolve_host(os.path.join(self._path, *parts)))

    def _children(self, want_dirs: bool) -> list:
        if not os.path.isdir(self._path):
            raise NotFound("Directory doesn't exist", path=self.path)
        with _io("List", self.path):
            names = sorted(os.listdir(self._path))
        children = []
        for name in names:
            child = os.path.join(self._path, name)
            if not (os.path.isdir(child) if want_dirs else os.path.isfile(child)):
                continue
            if not self._resolver.is_whitelisted(child):
                logger.warning(f"Skipping {child}: links outside the sandbox")
                continue
            cls = SandboxedDirectory if want_dirs else SandboxedFile
            children.append(cls(self._resolver, canonical(child)))
        return children

    def files(self) -> list:
        return self._children(want_dirs=False)

    def directories(self) -> list:
        return self._children(want_dirs=True)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def make_directories(self):
        with _io("Create directory", self.path):
            os.makedirs(self._path, exist_ok=True)

    def delete(self):
        if self._path in self._resolver.roots:
            raise InvalidPath("Refusing to delete a sandbox root", path=self.path)
        if self.exists():
            with _io("Delete", self.path):
                shutil.rmtree(self._path)
