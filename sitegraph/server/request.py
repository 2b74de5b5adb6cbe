"""
Request resolution and response building for the dev server.

A request is resolved against one sitemap snapshot into exactly one of three
outcomes (`NotFound`, `BinaryPassthrough`, `Render`), and `ResponseBuilder`
turns that outcome into the single `Response` for the request.
"""

import datetime
import html
import logging
import os
import urllib.parse
from email.utils import formatdate, parsedate_to_datetime
from typing import Dict, Iterable, Iterator, NamedTuple, Optional, Union

from jinja2 import TemplateNotFound

from sitegraph.util.paths import DEFAULT_INDEX_FILE, full_path, mime_type

log = logging.getLogger(f"mkdocs.plugins.{__name__}")

GZIP_EXTENSIONS = (".svgz", ".gz")
# Statuses that must not carry a Content-Type header.
NO_CONTENT_TYPE_STATUSES = {204, 205, 304}
CHUNK_SIZE = 64 * 1024


class Request(NamedTuple):
    """Per-request state. Built fresh for every call and never shared."""

    path_info: str
    method: str = "GET"
    headers: Optional[Dict[str, str]] = None
    environ: Optional[dict] = None

    @classmethod
    def from_environ(cls, environ: dict) -> "Request":
        # PEP 3333 hands PATH_INFO over as latin-1; recover the UTF-8 text.
        raw_path = environ.get("PATH_INFO", "") or "/"
        path_info = raw_path.encode("latin-1").decode("utf-8", "replace")
        headers = {}
        for key, value in environ.items():
            if key.startswith("HTTP_"):
                headers[key[5:].replace("_", "-").title()] = value
        return cls(
            path_info=path_info,
            method=environ.get("REQUEST_METHOD", "GET").upper(),
            headers=headers,
            environ=environ,
        )


class Response:
    def __init__(self, status: int = 200, headers: Optional[Dict[str, str]] = None, body: Iterable[bytes] = ()):
        self.status = status
        self.headers: Dict[str, str] = dict(headers or {})
        self.body = body

    def __repr__(self):
        return f"<Response {self.status} {self.headers.get('Content-Type')!r}>"

    def get_data(self) -> bytes:
        """Join the body into bytes. Streaming bodies can only be read once."""
        return b"".join(self.body)


class NotFound(NamedTuple):
    path: str


class BinaryPassthrough(NamedTuple):
    resource: object


class Render(NamedTuple):
    resource: object


Resolution = Union[NotFound, BinaryPassthrough, Render]


class RequestResolver:
    """Map a request onto the sitemap."""

    def __init__(self, store, index_file: str = DEFAULT_INDEX_FILE):
        self.store = store
        self.index_file = index_file

    @staticmethod
    def decode(path_info: str) -> str:
        path = urllib.parse.unquote(path_info, encoding="utf-8", errors="replace")
        if not path.startswith("/"):
            path = "/" + path
        return path

    def resolve(self, request: Request) -> Resolution:
        snapshot = self.store.snapshot()
        request_path = self.decode(request.path_info)
        # `request_path` is decoded once here; later lookups must not unquote it again.
        destination = full_path(request_path, self.store, self.index_file, snapshot)
        resource = self.store.find_resource_by_destination_path(destination, snapshot, unquote=False)

        if resource is None or resource.ignored:
            return NotFound(request_path)
        if resource.binary:
            return BinaryPassthrough(resource)
        return Render(resource)


def iter_file(path: str) -> Iterator[bytes]:
    with open(path, "rb") as f:
        while True:
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


class StaticFile:
    """Serve one file from local disk, honouring If-Modified-Since."""

    def serving(self, path: Optional[str], request: Request) -> Response:
        if not path or not os.path.isfile(path):
            body = f"File not found: {request.path_info}\n".encode("utf-8")
            return Response(
                404,
                {"Content-Type": "text/plain", "Content-Length": str(len(body))},
                [body],
            )

        stat = os.stat(path)
        last_modified = formatdate(stat.st_mtime, usegmt=True)

        if self._not_modified((request.headers or {}).get("If-Modified-Since"), stat.st_mtime):
            return Response(304, {"Last-Modified": last_modified}, [])

        headers = {
            "Last-Modified": last_modified,
            "Content-Type": mime_type(path) or "application/octet-stream",
            "Content-Length": str(stat.st_size),
        }
        return Response(200, headers, iter_file(path))

    @staticmethod
    def _not_modified(header: Optional[str], mtime: float) -> bool:
        if not header:
            return False
        try:
            since = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            return False
        if since is None:
            return False
        if since.tzinfo is None:
            since = since.replace(tzinfo=datetime.timezone.utc)
        modified = datetime.datetime.fromtimestamp(int(mtime), tz=datetime.timezone.utc)
        return since >= modified


def allows_content_type(status: int) -> bool:
    return not (100 <= status <= 199) and status not in NO_CONTENT_TYPE_STATUSES


class ResponseBuilder:
    """Turn a resolution into the response for the request."""

    def __init__(self, renderer, static_file: Optional[StaticFile] = None):
        self.renderer = renderer
        self.static_file = static_file or StaticFile()

    def build(self, resolution: Resolution, request: Request) -> Response:
        if isinstance(resolution, NotFound):
            return self.not_found(resolution.path)
        if isinstance(resolution, BinaryPassthrough):
            return self.send_file(resolution.resource, request)
        if isinstance(resolution, Render):
            return self.render(resolution.resource)
        raise TypeError(f"Unknown resolution: {resolution!r}")

    @staticmethod
    def not_found(path: str) -> Response:
        body = f"<html><body><h1>File Not Found</h1><p>{html.escape(path)}</p></body>".encode("utf-8")
        return Response(404, {"Content-Type": "text/html; charset=utf-8"}, [body])

    def send_file(self, resource, request: Request) -> Response:
        response = self.static_file.serving(resource.source_file, request)
        if resource.ext in GZIP_EXTENSIONS:
            response.headers["Content-Encoding"] = "gzip"
        if allows_content_type(response.status):
            response.headers["Content-Type"] = resource.content_type or "application/octet-stream"
        else:
            response.headers.pop("Content-Type", None)
        return response

    def render(self, resource) -> Response:
        headers = {"Content-Type": resource.content_type or "text/plain"}
        try:
            body = resource.render(self.renderer)
        except TemplateNotFound as e:
            log.error(f"[server] cannot render {resource.destination_path}: {e.message or e.name}")
            message = f"Error: {e.message or e.name}".encode("utf-8")
            return Response(500, {"Content-Type": "text/plain; charset=utf-8"}, [message])
        return Response(200, headers, [body])
