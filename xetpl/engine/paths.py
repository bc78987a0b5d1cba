"""
xetpl Path Resolution
=====================

Resolves the paths that directives and asset attributes declare.

All resolved paths are posix paths relative to the application root, so
they can be embedded in generated code and served URLs alike.
"""

from __future__ import annotations

import os
import posixpath
import re
from pathlib import Path
from typing import Tuple, Union

from xetpl.engine.errors import UnresolvedPathError

PathLike = Union[str, Path]

_LEADING_DOT_SLASH = re.compile(r"^(\./)+")
_REPEATED_SEGMENTS = re.compile(r"((?:[\w-]+/)+)\1")
_PARENT_SEGMENT = re.compile(r"[^/]+/\.\./")


def split_target(target: str) -> Tuple[str, str, str]:
    """
    Split a directive target into (dirname, basename, extension).

    ``header.html`` has dirname ``.``; the extension is lower-cased and
    has no dot.
    """
    dirname, basename = posixpath.split(target)
    _, ext = posixpath.splitext(basename)
    return dirname or ".", basename, ext[1:].lower()


def to_root_relative(path: PathLike, root: PathLike) -> str:
    """Strip the application root from an absolute path."""
    root_dir = Path(os.path.realpath(root))
    try:
        relative = Path(path).relative_to(root_dir).as_posix()
    except ValueError:
        raise UnresolvedPathError(f"'{path}' is outside the application root '{root_dir}'")
    return relative or "."


def resolve_relative_dir(path: str, current_file: PathLike, root: PathLike) -> str:
    """
    Resolve a declared directory against the current template.

    Args:
        path: Directory part of a directive target
        current_file: Template file containing the directive
        root: Application root

    Returns:
        Directory relative to the root, ``.`` for the root itself

    Raises:
        UnresolvedPathError: If neither the direct resolution nor the
            segment-overlap fallback finds an existing directory
    """
    root_dir = os.path.realpath(root)
    file_dir = os.path.realpath(os.path.dirname(current_file))

    if path.startswith("/"):
        # Absolute paths are taken relative to the application root
        if not (path + "/").startswith(root_dir + "/"):
            path = posixpath.join(root_dir, path.lstrip("/"))
        return to_root_relative(os.path.normpath(path), root_dir)

    resolved = os.path.realpath(os.path.join(file_dir, path))
    if not os.path.isdir(resolved):
        resolved = _overlap_fallback(path, file_dir)

    return to_root_relative(resolved, root_dir)


def _overlap_fallback(path: str, file_dir: str) -> str:
    """
    Best-effort resolution for legacy relative paths.

    Older templates declared paths that repeat the tail of their own
    directory (``skins/default/css`` from inside ``.../skins/default``).
    Leading declared segments overlapping the template directory are
    dropped and the rest is resolved again. This is a heuristic, not a
    guarantee.
    """
    dirs = Path(file_dir).as_posix().split("/")
    paths = path.split("/")

    if paths[0] in dirs:
        idx = dirs.index(paths[0])
        while paths and idx < len(dirs) and dirs[idx] == paths[0]:
            del dirs[idx]
            paths.pop(0)

        candidate = os.path.realpath(os.path.join(file_dir, *paths))
        if os.path.isdir(candidate):
            return candidate

    raise UnresolvedPathError(f"cannot resolve '{path}' from '{file_dir}'")


def web_path_for(template_dir: PathLike, root: PathLike, web_root: str = "") -> str:
    """
    URL prefix of a template directory.

    ``modules/board/skins/default`` under web root ``/xe`` becomes
    ``/xe/modules/board/skins/default/``.
    """
    try:
        relative = to_root_relative(os.path.realpath(template_dir), root)
    except UnresolvedPathError:
        relative = Path(template_dir).as_posix()
    relative = relative.replace("./", "").strip("/")
    if relative in ("", "."):
        return web_root.rstrip("/") + "/"
    return f"{web_root.rstrip('/')}/{relative}/"


def rewrite_src(src: str, web_path: str) -> str:
    """
    Rewrite a relative asset ``src`` against the template web path.

    Collapses ``./`` and ``seg/../`` and, for older templates that spelled
    out part of their own directory, de-duplicates a repeated run of
    segments (``a/b/a/b/x.png`` becomes ``a/b/x.png``).
    """
    src = _LEADING_DOT_SLASH.sub("", src.strip())
    src = (web_path + src).replace("/./", "/")
    src = _REPEATED_SEGMENTS.sub(r"\1", src)

    while True:
        collapsed = _PARENT_SEGMENT.sub("", src)
        if collapsed == src:
            return src
        src = collapsed
