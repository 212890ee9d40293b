"""
Helpers for naming downloaded artifacts and preparing output directories.
"""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import quote

# Anything other than word characters (non-ASCII letters included), dots and hyphens
_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.-]+")


def sanitize_label(label: str, fallback: str) -> str:
    """
    Turn an album title into a filename stem.

    Case is kept; runs of unsafe characters collapse to a single hyphen.

    Example:
        >>> sanitize_label("Summer Trip / 2024", "album-7")
        'Summer-Trip-2024'
        >>> sanitize_label("@#$", "album-7")
        'album-7'
    """
    cleaned = _UNSAFE_FILENAME_CHARS.sub("-", (label or "").strip()).strip("-_.")
    return cleaned or fallback


def content_disposition(filename: str, fallback: str = "export.pdf") -> str:
    """
    Build an ``attachment`` header carrying both an ASCII ``filename`` and the
    RFC 5987 ``filename*`` form for titles outside ASCII.
    """
    ascii_name = filename.encode("ascii", "ignore").decode()
    if not ascii_name or ascii_name.startswith("."):
        ascii_name = fallback
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path
