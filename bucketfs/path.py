from __future__ import annotations

import posixpath
import re
from urllib.parse import parse_qsl, urlsplit

# Windows volume identifier, eg "C:".
_VOLUME_PREFIX = re.compile(r"^[A-Za-z]:")


def _clean(path: str) -> str:
    path = posixpath.normpath(_VOLUME_PREFIX.sub("", path, count=1))
    # posixpath keeps a leading "//" (implementation defined in POSIX).
    if path.startswith("//"):
        path = "/" + path.lstrip("/")
    return path


def normalize_path(path: str) -> str:
    """Return ``path`` as a clean, forward slash path.

    Volume prefixes are dropped, backslashes become slashes, ``.``/``..`` and
    duplicate separators are collapsed. A trailing slash is kept because it
    marks a directory. Empty and whitespace-only input is returned as is.
    """
    if not path.strip():
        return path

    path = path.replace("\\", "/")
    has_trailing_sep = path.endswith("/")

    path = _clean(path)
    # Cleaning can surface a new volume prefix ("./C:x" -> "C:x").
    while _VOLUME_PREFIX.match(path):
        path = _clean(path)

    if has_trailing_sep and not path.endswith("/"):
        path += "/"
    return path


def path_to_key(path: str) -> str:
    """Map a normalized path onto an object key."""
    key = path.lstrip("/")
    if key in (".", "./"):
        return ""
    return key


def dir_prefix(key: str) -> str:
    """Listing prefix for the children of ``key``; empty for the root."""
    key = key.rstrip("/")
    return key + "/" if key else ""


def split_url(url: str) -> tuple[str | None, str | None, str, dict[str, str]]:
    """Split ``scheme://bucket/key?query`` into its parts.

    Plain paths come back with no scheme and no bucket.
    """
    if "://" not in url:
        return None, None, url, {}

    parsed = urlsplit(url)
    scheme = parsed.scheme or None
    host = parsed.hostname or parsed.netloc or None
    key = (parsed.path or "").lstrip("/")
    query = {k: v for k, v in parse_qsl(parsed.query, keep_blank_values=True)}
    return scheme, host, key, query
