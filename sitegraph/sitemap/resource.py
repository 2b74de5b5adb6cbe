"""
Sitemap resources.

A resource is either a `PlainResource`, which owns its source file, or a
`ProxyResource`, which serves another resource's content at its own address
with its own metadata overlay.
"""

import copy
import posixpath
from typing import Any, Dict, Optional

from mkdocs.exceptions import PluginError

from sitegraph.util.paths import is_binary, mime_type, normalize_path


class ProxyError(PluginError):
    """Base class for invalid proxy configurations."""


class SelfProxyError(ProxyError):
    pass


class ChainedProxyError(ProxyError):
    pass


class UnknownProxyTargetError(ProxyError):
    pass


def ensure_not_self_proxy(path: str, target: str) -> None:
    if target == path:
        raise SelfProxyError(f"You can't proxy {path} to itself!")


def empty_metadata() -> Dict[str, Dict[str, Any]]:
    return {"options": {}, "locals": {}, "page": {}}


class Resource:
    """Fields and behaviour shared by every resource variant."""

    is_proxy = False

    def __init__(self, store, path: str, unquote: bool = True):
        self.store = store
        self.path = normalize_path(path, store.index_file, unquote=unquote)
        self.metadata = empty_metadata()
        # The sitemap snapshot this resource was built into, set by the store.
        self.snapshot = None

    def __repr__(self):
        return f"<{type(self).__name__} {self.path!r}>"

    # -------------------------------
    # Metadata
    # -------------------------------

    def add_metadata(self, meta: Optional[Dict[str, Any]]) -> None:
        """Merge `meta` (`options`, `locals`, `page`) into this resource's metadata."""
        if not meta:
            return
        for key in ("options", "locals", "page"):
            values = meta.get(key)
            if values:
                self.metadata[key].update(copy.deepcopy(values))

    @property
    def options(self) -> Dict[str, Any]:
        return self.metadata["options"]

    @property
    def locals(self) -> Dict[str, Any]:
        return self.metadata["locals"]

    # -------------------------------
    # Addressing
    # -------------------------------

    @property
    def destination_path(self) -> str:
        destination = self.options.get("destination_path")
        if destination:
            return normalize_path(destination, self.store.index_file)
        return self.path

    @property
    def url(self) -> str:
        url = "/" + self.destination_path
        if posixpath.basename(url) == self.store.index_file:
            url = url[: -len(self.store.index_file)]
        return url

    @property
    def ext(self) -> str:
        return posixpath.splitext(self.destination_path)[1].lower()

    @property
    def ignored(self) -> bool:
        """True when the ignore registry hides this resource from serving."""
        manager = self.store.ignore_manager
        if manager is None:
            return False
        return manager.is_ignored(self.path) or manager.is_ignored(self.destination_path)

    # -------------------------------
    # Content
    # -------------------------------

    @property
    def local_source_file(self) -> Optional[str]:
        return None

    @property
    def source_file(self) -> Optional[str]:
        return self.local_source_file

    @property
    def local_content_type(self) -> Optional[str]:
        return self.options.get("content_type") or mime_type(self.destination_path)

    @property
    def content_type(self) -> Optional[str]:
        return self.local_content_type

    @property
    def binary(self) -> bool:
        source = self.source_file
        if not source:
            return False
        return is_binary(source)

    def render(self, renderer) -> bytes:
        return renderer.render(self)


class PlainResource(Resource):
    """A resource backed by its own file (or by nothing, for generated pages)."""

    def __init__(self, store, path: str, source_file: Optional[str] = None, unquote: bool = True):
        super().__init__(store, path, unquote=unquote)
        self._source_file = source_file

    @property
    def local_source_file(self) -> Optional[str]:
        return self._source_file


class ProxyResource(Resource):
    """A resource that serves the content of `proxied_to` at its own path."""

    is_proxy = True

    def __init__(self, store, path: str, target: str):
        super().__init__(store, path)
        self.proxied_to: Optional[str] = None
        self.proxy_to(target)

    def proxy_to(self, target: str) -> None:
        """Point this proxy at `target`. A resource cannot proxy to itself."""
        target = normalize_path(target, self.store.index_file)
        ensure_not_self_proxy(self.path, target)
        self.proxied_to = target

    @property
    def proxy_target(self) -> Optional[str]:
        return self.proxied_to

    def resolve_proxy_target(self, store=None) -> Resource:
        """
        Look up the resource this proxy serves in `store` (default: its own).

        Against its own store the lookup uses the snapshot this proxy was built
        into, so a request keeps seeing one consistent sitemap across rebuilds.

        Raises:
            UnknownProxyTargetError: the target is not in the sitemap.
            ChainedProxyError: the target is itself a proxy.
        """
        store = store or self.store
        snapshot = self.snapshot if store is self.store else None
        snapshot = snapshot or store.snapshot()
        proxy_resource = store.find_resource_by_path(self.proxied_to, snapshot)

        if proxy_resource is None:
            known = [r.path for r in snapshot.resources]
            raise UnknownProxyTargetError(
                f"Path {self.path} proxies to unknown file {self.proxied_to}: {known}"
            )

        if proxy_resource.is_proxy:
            raise ChainedProxyError(
                f"You can't proxy {self.path} to {self.proxied_to} which is itself a proxy."
            )

        return proxy_resource

    @property
    def proxied_to_resource(self) -> Resource:
        return self.resolve_proxy_target()

    @property
    def source_file(self) -> Optional[str]:
        return self.proxied_to_resource.source_file

    @property
    def content_type(self) -> Optional[str]:
        own = self.local_content_type
        if own:
            return own
        return self.proxied_to_resource.content_type
