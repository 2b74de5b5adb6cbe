"""
The sitemap: the rebuildable, path-indexed list of every resource in the site.
"""

import fnmatch
import logging
import os
import re
import threading
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from sitegraph.sitemap.resource import PlainResource, Resource
from sitegraph.util.paths import DEFAULT_INDEX_FILE, lookup_key, normalize_path

log = logging.getLogger(f"mkdocs.plugins.{__name__}")

# Source extensions that are rendered into a page with the extension removed.
TEMPLATE_EXTENSIONS = {".j2", ".jinja", ".jinja2"}
# Source extensions that render to HTML.
MARKDOWN_EXTENSIONS = {".md", ".markdown"}


class IgnoreManager:
    """Registry of paths that stay in the sitemap but are never served."""

    def __init__(self):
        self._matchers: List[Callable[[str], bool]] = []

    def ignore(self, pattern) -> None:
        """
        Hide every resource matching `pattern`.

        `pattern` may be an exact path, a glob, a compiled regex or a callable
        taking the normalized path.
        """
        if callable(pattern):
            matcher = pattern
        elif isinstance(pattern, re.Pattern):
            matcher = lambda path, rx=pattern: bool(rx.search(path))
        else:
            normalized = normalize_path(pattern)
            raw = str(pattern).lstrip("/")
            matcher = lambda path, n=normalized, g=raw: (
                path == n or fnmatch.fnmatchcase(path, g)
            )
        self._matchers.append(matcher)

    def is_ignored(self, path: str) -> bool:
        candidate = normalize_path(path)
        return any(matcher(candidate) for matcher in self._matchers)

    def __len__(self):
        return len(self._matchers)


class Snapshot(NamedTuple):
    """One complete, immutable state of the sitemap."""

    resources: Tuple[Resource, ...]
    by_path: Dict[str, Resource]
    by_destination: Dict[str, Resource]

    @classmethod
    def build(cls, resources: Iterable[Resource]) -> "Snapshot":
        resources = tuple(resources)
        by_path: Dict[str, Resource] = {}
        by_destination: Dict[str, Resource] = {}
        # Walk from the end so the entry appended last is the one found.
        for resource in reversed(resources):
            by_path.setdefault(resource.path, resource)
            by_destination.setdefault(lookup_key(resource.destination_path), resource)
        snapshot = cls(resources, by_path, by_destination)
        # Resources are built fresh on every rebuild, so each belongs to one snapshot.
        for resource in resources:
            resource.snapshot = snapshot
        return snapshot


EMPTY_SNAPSHOT = Snapshot.build(())


class Store:
    """
    Owns the sitemap and rebuilds it from scratch whenever its inputs change.

    The base list comes from `scanner(store)`; each registered manipulator then
    receives the list and returns a new one. A rebuild swaps in a complete
    `Snapshot`, so readers never observe a half-built list.
    """

    def __init__(
        self,
        scanner: Optional[Callable[["Store"], List[Resource]]] = None,
        index_file: str = DEFAULT_INDEX_FILE,
        ignore_manager: Optional[IgnoreManager] = None,
    ):
        self.scanner = scanner
        self.index_file = index_file
        self.ignore_manager = ignore_manager
        self._manipulators: List[Tuple[str, object]] = []
        self._rebuild_lock = threading.RLock()
        self._snapshot = EMPTY_SNAPSHOT

    def register_resource_list_manipulator(self, name: str, manipulator) -> None:
        self._manipulators.append((name, manipulator))
        log.debug(f"[sitemap] registered manipulator '{name}'")

    def rebuild_resource_list(self, reason: str = "unknown") -> None:
        with self._rebuild_lock:
            log.debug(f"[sitemap] rebuilding resource list ({reason})")
            resources = list(self.scanner(self)) if self.scanner else []
            for name, manipulator in self._manipulators:
                resources = list(manipulator.manipulate_resource_list(resources))
            snapshot = Snapshot.build(resources)
            self._snapshot = snapshot
        log.debug(f"[sitemap] {len(snapshot.resources)} resources after rebuild ({reason})")

    def file_scan_changed(self) -> None:
        self.rebuild_resource_list("file_scan")

    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def resources(self) -> Tuple[Resource, ...]:
        return self._snapshot.resources

    def live_resources(self) -> List[Resource]:
        return [r for r in self._snapshot.resources if not r.ignored]

    def find_resource_by_path(self, path: str, snapshot: Optional[Snapshot] = None) -> Optional[Resource]:
        snapshot = snapshot or self._snapshot
        return snapshot.by_path.get(normalize_path(path, self.index_file))

    def find_resource_by_destination_path(
        self, path: str, snapshot: Optional[Snapshot] = None, unquote: bool = True
    ) -> Optional[Resource]:
        """Find the resource served at `path`. Pass `unquote=False` for already-decoded request paths."""
        snapshot = snapshot or self._snapshot
        key = lookup_key(normalize_path(path, self.index_file, unquote=unquote))
        return snapshot.by_destination.get(key)


def sitemap_path_for(rel_path: str) -> str:
    """Map a source file name to the path it is served at."""
    root, ext = os.path.splitext(rel_path)
    ext = ext.lower()
    if ext in TEMPLATE_EXTENSIONS:
        return root
    if ext in MARKDOWN_EXTENSIONS:
        return f"{root}.html"
    return rel_path


def scan_directory(source_dir: str, skip_dirs: Iterable[str] = ()) -> Callable[[Store], List[Resource]]:
    """Return a scanner that lists every visible file under `source_dir`."""
    source_dir = os.path.abspath(source_dir)
    skip = {os.path.abspath(d) for d in skip_dirs}

    def scanner(store: Store) -> List[Resource]:
        results = []
        for root, dirs, files in os.walk(source_dir):
            dirs[:] = sorted(
                d for d in dirs
                if not d.startswith(".") and os.path.join(root, d) not in skip
            )
            for file in files:
                if file.startswith("."):
                    continue
                abs_path = os.path.join(root, file)
                rel_path = os.path.relpath(abs_path, source_dir).replace(os.sep, "/")
                results.append(
                    PlainResource(store, sitemap_path_for(rel_path), abs_path, unquote=False)
                )
        results.sort(key=lambda r: r.path)
        return results

    return scanner
