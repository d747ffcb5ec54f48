"""Small string helpers shared by services."""
from __future__ import annotations

import hashlib
import re
from pathlib import Path

_SPACES = re.compile(r"\s+")
_UNSAFE_SLUG = re.compile(r"[^A-Za-z0-9._+-]")
_PROJECT_NAME = re.compile(r"^[A-Za-z0-9 ._-]+$")
_CHUNK = 64 * 1024


def compact(value: str) -> str:
    """Trim *value* and collapse runs of whitespace to a single space."""
    return _SPACES.sub(" ", value.strip())


def slugify(value: str) -> str:
    """Turn a display name into a URL slug (``"My Plugin"`` → ``"My-Plugin"``).

    Characters other than letters, digits and ``._+-`` are dropped, as are
    leading dots, so a slug is always usable as a single path component.
    """
    return _UNSAFE_SLUG.sub("", compact(value).replace(" ", "-")).lstrip(".")


def is_valid_project_name(value: str) -> bool:
    """Letters, digits, spaces, ``.``, ``_`` and ``-`` only, with at least one letter or digit."""
    name = compact(value)
    return bool(_PROJECT_NAME.match(name)) and any(ch.isalnum() for ch in name)


def md5_file(path: Path) -> str:
    """Return the hex MD5 digest of the file at *path*, read in chunks."""
    digest = hashlib.md5()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()
