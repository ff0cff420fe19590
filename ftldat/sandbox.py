"""
ftldat: Host path resolution restricted to allowed roots.

Mod scripts may only touch files under the game directory and the save data
directory. Every host path is resolved here before anything opens it:

  - absolute requests (POSIX '/', Windows drive or UNC prefixes) are refused
  - '..' segments are allowed only while the result stays under the root
  - symlinks are resolved, and a link pointing outside the root is refused

The allowed roots are passed in explicitly; nothing is read from process-wide
state, so tests can point a resolver at a temporary directory.
"""

import logging
import os
import re
from pathlib import Path
from typing import Iterable, Optional

from .constants import SAVE_DATA_DOCUMENTS_SUBDIR, SAVE_DATA_MARKER, SAVE_DATA_RELATIVE_CANDIDATES
from .errors import InvalidPath, IoFailure, OutsideSandbox

logger = logging.getLogger(__name__)

_DRIVE_PREFIX = re.compile(r'^[A-Za-z]:')


def canonical(path) -> str:
    """Absolute, symlink-resolved form of a host path."""
    return os.path.realpath(os.path.abspath(os.fspath(path)))


def is_within(path: str, root: str) -> bool:
    """True if canonical ``path`` is ``root`` or lies below it."""
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        # different drives on Windows
        return False


class SandboxedPathResolver:
    """
    Resolve host paths against a fixed set of allowed roots.

    Args:
        roots: Directories that may be accessed; the first one is the base
            for relative host paths (normally the game directory)
    """

    def __init__(self, roots: Iterable):
        self._roots = tuple(dict.fromkeys(canonical(r) for r in roots))
        if not self._roots:
            raise ValueError("At least one sandbox root is required")

    @classmethod
    def for_game(cls, game_directory, save_data_directory=None) -> 'SandboxedPathResolver':
        roots = [game_directory]
        if save_data_directory is not None:
            roots.append(save_data_directory)
        return cls(roots)

    @property
    def roots(self) -> tuple:
        return self._roots

    @property
    def base(self) -> str:
        return self._roots[0]

    def __repr__(self) -> str:
        return f"SandboxedPathResolver({list(self._roots)!r})"

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def resolve(self, root, requested: str) -> str:
        """
        Resolve ``requested`` relative to ``root``.

        Args:
            root: One of the allowed roots
            requested: Relative path, '/' or '\\' separated

        Returns:
            Absolute canonical host path under ``root``

        Raises:
            OutsideSandbox: Unknown root, absolute request, or the resolved
                path escapes ``root``
            InvalidPath: The request is not a usable path string
        """
        root_path = canonical(root)
        if root_path not in self._roots:
            raise OutsideSandbox("Not an allowed sandbox root", path=os.fspath(root))

        if not isinstance(requested, str):
            raise InvalidPath(f"Path must be a string, got {type(requested).__name__}")
        if '\x00' in requested:
            raise InvalidPath("Path contains NUL", path=requested)

        relative = requested.replace('\\', '/')
        if relative.startswith('/') or _DRIVE_PREFIX.match(relative) or os.path.isabs(requested):
            raise OutsideSandbox("Absolute paths are not allowed", path=requested)

        parts = [p for p in relative.split('/') if p]
        candidate = canonical(os.path.join(root_path, *parts))
        if not is_within(candidate, root_path):
            raise OutsideSandbox("Path escapes the sandbox root", path=requested)

        logger.debug(f"Resolved {requested!r} -> {candidate}")
        return candidate

    def resolve_host(self, path, base: Optional[str] = None) -> str:
        """
        Resolve a host path given absolutely or relative to ``base``.

        Relative paths default to the first root. The result must lie under
        one of the allowed roots.
        """
        path = os.fspath(path)
        if '\x00' in path:
            raise InvalidPath("Path contains NUL", path=path)
        joined = path if os.path.isabs(path) else os.path.join(base or self.base, path)
        candidate = canonical(joined)
        if not self.is_whitelisted(candidate):
            raise OutsideSandbox("Path is not within an allowed directory", path=path)
        return candidate

    def is_whitelisted(self, path) -> bool:
        candidate = canonical(path)
        return any(is_within(candidate, root) for root in self._roots)

    def root_of(self, path) -> str:
        """Return the allowed root containing ``path`` (the deepest one if nested)."""
        candidate = canonical(path)
        matches = [root for root in self._roots if is_within(candidate, root)]
        if not matches:
            raise OutsideSandbox("Path is not within an allowed directory", path=os.fspath(path))
        return max(matches, key=len)


# =============================================================================
# SAVE DATA DISCOVERY
# =============================================================================

def default_save_data_candidates(game_directory, home=None) -> list:
    """
    Save data locations in lookup order.

    Windows keeps save data under Documents; Proton keeps it inside the
    compatdata prefix next to the game; the installation's ``user``
    directory is the fallback.
    """
    home = Path(home) if home is not None else Path.home()
    candidates = [home / 'Documents' / SAVE_DATA_DOCUMENTS_SUBDIR]
    candidates += [Path(game_directory) / rel for rel in SAVE_DATA_RELATIVE_CANDIDATES]
    return candidates


def is_save_data_location(path) -> bool:
    return os.path.isfile(os.path.join(os.fspath(path), SAVE_DATA_MARKER))


def find_save_data_directory(candidates: Iterable) -> str:
    """
    Return the first candidate directory that holds the save data marker.

    Raises:
        IoFailure: No candidate qualifies
    """
    checked = []
    for candidate in candidates:
        checked.append(os.fspath(candidate))
        if is_save_data_location(candidate):
            found = canonical(candidate)
            logger.info(f"Save data directory: {found}")
            return found
    raise IoFailure(f"Could not find a valid save data location (checked {len(checked)})",
                    path=checked[0] if checked else None)
