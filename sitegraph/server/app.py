"""
Dev server application: a site (sitemap, ignores, proxies, renderer) plus the
request pipeline, exposed as a WSGI callable.
"""

import http
import logging
import time
from typing import Any, Callable, Dict, List, Optional
from wsgiref.simple_server import make_server

from sitegraph.proxies.proxies import ProxyRegistry
from sitegraph.render.renderer import TemplateRenderer
from sitegraph.server.request import (
    Request,
    RequestResolver,
    Response,
    ResponseBuilder,
    StaticFile,
)
from sitegraph.sitemap.store import IgnoreManager, Store, scan_directory
from sitegraph.util.paths import DEFAULT_INDEX_FILE, register_mime_type

log = logging.getLogger(f"mkdocs.plugins.{__name__}")


class Site:
    """Everything the server knows about one site."""

    def __init__(self, store: Store, ignore_manager: IgnoreManager, registry: ProxyRegistry, renderer):
        self.store = store
        self.ignore_manager = ignore_manager
        self.registry = registry
        self.renderer = renderer

    @property
    def index_file(self) -> str:
        return self.store.index_file

    def declare_proxy(self, path: str, target: str, opts: Optional[Dict[str, Any]] = None) -> None:
        self.registry.declare_proxy(path, target, opts)

    def ignore(self, pattern) -> None:
        self.ignore_manager.ignore(pattern)

    def find_resource_by_path(self, path: str):
        return self.store.find_resource_by_path(path)

    def find_resource_by_destination_path(self, path: str):
        return self.store.find_resource_by_destination_path(path)


def create_site(
    source_dir: Optional[str] = None,
    scanner=None,
    renderer=None,
    layouts_dir: Optional[str] = None,
    index_file: str = DEFAULT_INDEX_FILE,
    mime_types: Optional[Dict[str, str]] = None,
) -> Site:
    """
    Build a new, independent site.

    Base resources come from `scanner` when given, else from scanning
    `source_dir` (skipping `layouts_dir`). With neither, the site starts with
    no base resources until a scanner is attached.
    """
    for ext, value in (mime_types or {}).items():
        register_mime_type(ext, value)

    if scanner is None and source_dir:
        skip = [layouts_dir] if layouts_dir else []
        scanner = scan_directory(source_dir, skip_dirs=skip)

    ignore_manager = IgnoreManager()
    store = Store(scanner=scanner, index_file=index_file, ignore_manager=ignore_manager)
    registry = ProxyRegistry(store, ignore_manager)
    if renderer is None:
        renderer = TemplateRenderer(layouts_dir=layouts_dir)

    site = Site(store, ignore_manager, registry, renderer)
    store.rebuild_resource_list("initial")
    return site


class Application:
    """
    Serve a site. `handle` is the request entry point; calling the
    application makes it a WSGI app.
    """

    def __init__(self, site: Site, static_file: Optional[StaticFile] = None):
        self.site = site
        self.resolver = RequestResolver(site.store, site.index_file)
        self.builder = ResponseBuilder(site.renderer, static_file)
        self._before: List[Callable[[Request], Optional[Response]]] = []

    def before(self, callback: Callable[[Request], Optional[Response]]):
        """Run `callback(request)` before resolving; a returned Response ends the request."""
        self._before.append(callback)
        return callback

    def handle(self, request: Request) -> Response:
        start_time = time.monotonic()
        log.debug(f"== Request: {request.path_info}")

        response = None
        for callback in self._before:
            response = callback(request)
            if response is not None:
                break

        if response is None:
            resolution = self.resolver.resolve(request)
            response = self.builder.build(resolution, request)

        if request.method == "HEAD":
            response.body = []

        log.debug(
            f"== Finishing Request: {request.path_info} ({time.monotonic() - start_time:.2f}s)"
        )
        return response

    def __call__(self, environ, start_response):
        response = self.handle(Request.from_environ(environ))
        try:
            phrase = http.HTTPStatus(response.status).phrase
        except ValueError:
            phrase = "Unknown"
        start_response(f"{response.status} {phrase}", list(response.headers.items()))
        return response.body


def create_server(
    source_dir: Optional[str] = None,
    proxies: Optional[List[Dict[str, Any]]] = None,
    ignore: Optional[List[str]] = None,
    **site_options,
) -> Application:
    """
    Return a freshly constructed application around a freshly constructed site.

    `proxies` items are mappings with `path`, `target` and any proxy options.
    """
    site = create_site(source_dir=source_dir, **site_options)
    for pattern in ignore or []:
        site.ignore(pattern)
    for item in proxies or []:
        item = dict(item)
        site.declare_proxy(item.pop("path"), item.pop("target"), item)
    return Application(site)


def serve(app: Application, host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run `app` until interrupted. Development use only."""
    with make_server(host, port, app) as server:
        log.info(f"[server] serving on http://{host}:{port}/")
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            log.info("[server] stopped")
