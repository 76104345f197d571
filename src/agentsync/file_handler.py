"""File handler module: encoding-aware reads, atomic writes, content hashing.

Provides the file I/O infrastructure shared by the source catalogs, the
default writers and the managed-output manifest.  Every function here is
synchronous and touches only the paths it is given.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

# =============================================================================
# File Read
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Decode *path*, returning ``(text, encoding)``.

    UTF-8 is tried first.  Other
    bytes go through charset-normalizer; if it cannot decide, the bytes are
    decoded as UTF-8 with replacement characters.  An empty file is
    ``("", "utf-8")``.
    """
    data = path.read_bytes()
    if not data:
        return ("", "utf-8")
    try:
        return (data.decode("utf-8"), "utf-8")
    except UnicodeDecodeError:
        pass

    match = from_bytes(data).best()
    if match is None:
        logger.debug("Could not detect encoding of %s, using utf-8", path)
        return (data.decode("utf-8", errors="replace"), "utf-8")
    # ascii is reported for plain text; it is a subset of utf-8
    encoding = "utf-8" if match.encoding == "ascii" else match.encoding
    return (str(match), encoding)


def read_text(path: Path) -> str:
    """Return the decoded text of *path* (see ``read_file_with_encoding``)."""
    return read_file_with_encoding(path)[0]


def read_tree(root: Path) -> dict[str, bytes]:
    """Return ``{relative_posix_path: bytes}`` for every file under *root*."""
    files: dict[str, bytes] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            full = Path(dirpath) / name
            rel = full.relative_to(root).as_posix()
            files[rel] = full.read_bytes()
    return files


# =============================================================================
# File Write
# =============================================================================


def write_bytes_atomic(path: Path, data: bytes) -> int:
    """Write *data* to *path* atomically, creating parent directories.

    Writes to a temporary file in the destination directory and then
    ``os.replace()``s it over the target so readers never observe a
    partially written file.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return len(data)


def remove_path(path: Path) -> None:
    """Delete a file or a whole directory tree."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


# =============================================================================
# Hashing
# =============================================================================


def checksum_bytes(data: bytes) -> str:
    """SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def checksum_tree(files: Mapping[str, bytes]) -> str:
    """Digest of a directory-shaped output given as ``{relpath: bytes}``.

    Each entry contributes its relative path, a NUL separator and the
    SHA-256 of its bytes, in sorted path order, so the digest is stable
    regardless of filesystem iteration order.
    """
    digest = hashlib.sha256()
    for rel in sorted(files):
        digest.update(rel.encode("utf-8"))
        digest.update(b"\0")
        digest.update(hashlib.sha256(files[rel]).digest())
        digest.update(b"\n")
    return digest.hexdigest()


def checksum_path(path: Path) -> str | None:
    """Checksum of whatever currently exists at *path*.

    Returns:
        The file digest, the tree digest for a directory, or ``None``
        when nothing exists at *path*.
    """
    if path.is_file():
        return checksum_bytes(path.read_bytes())
    if path.is_dir():
        return checksum_tree(read_tree(path))
    return None
