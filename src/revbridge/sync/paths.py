"""Path helpers shared by the analyzer, builder and engine.

Two path flavours flow through the bridge:

* **Relative paths** -- ``/``-separated, no leading slash, ``""`` for the
  root.  Used for tree entries and operations.
* **Server paths** -- absolute target paths such as ``$/Project/Main``.
  The working-folder mapping joins and splits them against relative paths.

All helpers are pure string functions over ``posixpath``.
"""

from __future__ import annotations

import posixpath

SERVER_ROOT = "$/"
SEPARATOR = "/"


# ------------------------------------------------------------------
# Relative paths
# ------------------------------------------------------------------


def join(parent: str, name: str) -> str:
    """Join *name* below *parent*; the root is ``""``."""
    if not parent:
        return name
    return f"{parent}{SEPARATOR}{name}"


def parent_of(path: str) -> str:
    """Return the containing folder of *path* (``""`` for top-level)."""
    return posixpath.dirname(path)


def file_name(path: str) -> str:
    """Return the last component of *path*."""
    return posixpath.basename(path)


def depth(path: str) -> int:
    """Number of components in *path*; the root has depth 0."""
    if not path:
        return 0
    return path.count(SEPARATOR) + 1


def ancestors(path: str) -> list[str]:
    """Return every proper ancestor of *path*, nearest first, root excluded."""
    result: list[str] = []
    current = parent_of(path)
    while current:
        result.append(current)
        current = parent_of(current)
    return result


def is_under(path: str, folder: str) -> bool:
    """Return ``True`` if *path* is *folder* itself or lies beneath it."""
    if not folder:
        return True
    return path == folder or path.startswith(folder + SEPARATOR)


def equals_ignore_case(a: str, b: str) -> bool:
    """Case-insensitive path comparison (as the target system compares)."""
    return a.casefold() == b.casefold()


def case_key(path: str) -> str:
    """Key used to detect paths that collide case-insensitively."""
    return path.casefold()


# ------------------------------------------------------------------
# Server paths
# ------------------------------------------------------------------


def combine_server_path(server_root: str, relative: str) -> str:
    """Append a relative path to a server path."""
    root = server_root.rstrip(SEPARATOR)
    if not relative:
        return root
    return f"{root}{SEPARATOR}{relative}"


def make_relative(server_path: str, server_root: str) -> str:
    """Strip *server_root* from *server_path*.

    Raises:
        ValueError: If *server_path* is not under *server_root*.
    """
    root = server_root.rstrip(SEPARATOR)
    if equals_ignore_case(server_path.rstrip(SEPARATOR), root):
        return ""
    prefix = root + SEPARATOR
    if not server_path.casefold().startswith(prefix.casefold()):
        raise ValueError(
            f"Server path {server_path!r} is not under {server_root!r}"
        )
    return server_path[len(prefix):]
