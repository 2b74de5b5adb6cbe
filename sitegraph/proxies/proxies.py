"""
Proxy configurations and the registry that turns them into sitemap resources.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from sitegraph.sitemap.resource import ProxyResource, Resource, ensure_not_self_proxy
from sitegraph.util.paths import DEFAULT_INDEX_FILE, normalize_path

log = logging.getLogger(f"mkdocs.plugins.{__name__}")


class ProxyConfiguration:
    """A request to serve `target` at `path`, with extra metadata for the proxy."""

    def __init__(
        self,
        path: str,
        target: str,
        metadata: Optional[Dict[str, Dict[str, Any]]] = None,
        index_file: str = DEFAULT_INDEX_FILE,
    ):
        # The path this proxy will appear at in the sitemap
        self.path = normalize_path(path, index_file)
        # The existing sitemap path that this will proxy to
        self.target = normalize_path(target, index_file)
        self.metadata = metadata or {"options": {}, "locals": {}}

    # Two configurations are the same entry if they reference the same path.
    def __eq__(self, other):
        if not isinstance(other, ProxyConfiguration):
            return NotImplemented
        return other.path == self.path

    def __hash__(self):
        return hash(self.path)

    def __repr__(self):
        return f"<ProxyConfiguration {self.path!r} -> {self.target!r}>"


class ProxyRegistry:
    """
    Holds the proxy configurations of a site and keeps the sitemap in sync.

    Registered with the store as the `proxies` manipulator, so every rebuild
    appends one `ProxyResource` per configuration to the scanned resources.
    """

    def __init__(self, store, ignore_manager=None):
        self.store = store
        self.ignore_manager = ignore_manager
        self._configs: Dict[str, ProxyConfiguration] = {}
        store.register_resource_list_manipulator("proxies", self)

    @property
    def configs(self) -> List[ProxyConfiguration]:
        return list(self._configs.values())

    def declare_proxy(self, path: str, target: str, opts: Optional[Dict[str, Any]] = None) -> None:
        """
        Serve `target` at `path`.

        Args:
            path: The address the proxy occupies.
            target: The existing sitemap path to serve. It does not need to
                exist yet; it is looked up when the proxy is served.
            opts: Options for the proxy. `locals` become render-time locals,
                a truthy `ignore` hides `target` itself, everything else is
                stored as render options (e.g. `layout`).
        """
        options = copy.deepcopy(dict(opts or {}))
        metadata = {"options": {}, "locals": {}}
        metadata["locals"] = options.pop("locals", None) or {}
        ignore_target = options.pop("ignore", False)
        metadata["options"] = options

        config = ProxyConfiguration(path, target, metadata, index_file=self.store.index_file)
        ensure_not_self_proxy(config.path, config.target)

        # Redeclaring a path replaces the old entry and moves it to the end.
        previous = self._configs.pop(config.path, None)
        if previous is not None:
            log.debug(f"[proxies] replacing proxy {previous.path} -> {previous.target}")
        self._configs[config.path] = config

        try:
            self.store.rebuild_resource_list("added_proxy")
        except Exception:
            del self._configs[config.path]
            if previous is not None:
                self._configs[previous.path] = previous
            raise

        # Hide the target only once the proxy is in place.
        if ignore_target:
            if self.ignore_manager is None:
                log.warning(f"[proxies] cannot ignore {config.target}: no ignore registry")
            else:
                self.ignore_manager.ignore(config.target)

        log.debug(f"[proxies] {config.path} -> {config.target}")

    def remove_proxy(self, path: str) -> None:
        key = normalize_path(path, self.store.index_file)
        if self._configs.pop(key, None) is None:
            return
        self.store.rebuild_resource_list("removed_proxy")

    def synthesize(self, configs: List[ProxyConfiguration]) -> List[Resource]:
        resources = []
        for config in configs:
            proxy = ProxyResource(self.store, config.path, config.target)
            proxy.add_metadata(config.metadata)
            resources.append(proxy)
        return resources

    def manipulate_resource_list(self, resources: List[Resource]) -> List[Resource]:
        return list(resources) + self.synthesize(self.configs)
