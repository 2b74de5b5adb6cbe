"""
Path canonicalisation and content-type helpers shared by the sitemap and the
request pipeline.
"""

import mimetypes
import posixpath
import urllib.parse
from typing import Optional

DEFAULT_INDEX_FILE = "index.html"

# Project-wide extension -> content type table. Seeded with the overrides the
# dev server needs; `register_mime_type` extends it at startup.
MIME_TYPES = mimetypes.MimeTypes()

# Application types that are still rendered as text.
TEXT_APPLICATION_TYPES = {
    "application/javascript",
    "application/json",
    "application/ld+json",
    "application/manifest+json",
    "application/rss+xml",
    "application/atom+xml",
    "application/xml",
    "application/xhtml+xml",
    "image/svg+xml",
}

BINARY_SNIFF_BYTES = 1024


def register_mime_type(ext: str, value: str) -> None:
    """Add or replace the content type served for files ending in `ext`."""
    if not ext.startswith("."):
        ext = f".{ext}"
    ext = ext.lower()
    # MimeTypes keeps the first registration for an extension, so drop any
    # existing entry before adding ours.
    for table in MIME_TYPES.types_map:
        table.pop(ext, None)
    MIME_TYPES.add_type(value, ext)


def mime_type(path: str) -> Optional[str]:
    ext = posixpath.splitext(path)[1].lower()
    if not ext:
        return None
    for table in reversed(MIME_TYPES.types_map):
        if ext in table:
            return table[ext]
    return None


register_mime_type(".htc", "text/x-component")
register_mime_type(".html", "text/html; charset=utf-8")
register_mime_type(".htm", "text/html; charset=utf-8")


def normalize_path(path: str, index_file: str = DEFAULT_INDEX_FILE, unquote: bool = True) -> str:
    """
    Return the canonical sitemap form of `path`.

    The result is percent-decoded (unless `unquote` is false, for paths that
    are already decoded), uses single forward slashes, has `.` and
    `..` segments resolved, carries no leading slash, and names the index file
    when `path` points at a directory (`/about/` -> `about/index.html`).
    """
    path = path or ""
    if unquote:
        path = urllib.parse.unquote(path)
    path = path.replace("\\", "/")
    is_dir = path == "" or path.endswith("/")

    parts = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)

    if is_dir or not parts:
        parts.append(index_file)
    return "/".join(parts)


def lookup_key(path: str) -> str:
    """Key under which a destination path is indexed and looked up."""
    return path.replace(" ", "%20")


def full_path(path: str, store, index_file: str = DEFAULT_INDEX_FILE, snapshot=None) -> str:
    """
    Canonicalise a decoded request path against the current sitemap.

    A path that does not match a destination directly is retried as a
    directory, so `/about` is served from `about/index.html`.
    """
    resource_path = normalize_path(path, index_file, unquote=False)
    if store.find_resource_by_destination_path(resource_path, snapshot, unquote=False):
        return resource_path

    if posixpath.basename(resource_path) != index_file:
        indexed_path = normalize_path(f"{resource_path}/", index_file, unquote=False)
        if store.find_resource_by_destination_path(indexed_path, snapshot, unquote=False):
            return indexed_path
    return resource_path


def is_binary(path: str) -> bool:
    """
    Decide whether the file at `path` is streamed as-is rather than rendered.

    The MIME table decides for known extensions; unknown files are sniffed for
    NUL bytes.
    """
    content_type = mime_type(path)
    if content_type:
        base_type = content_type.split(";", 1)[0].strip()
        if base_type.startswith("text/") or base_type in TEXT_APPLICATION_TYPES:
            return False
        return True

    try:
        with open(path, "rb") as f:
            head = f.read(BINARY_SNIFF_BYTES)
    except OSError:
        return False
    return b"\0" in head
