"""
An MkDocs plugin that declares proxy pages from mkdocs.yml and writes them
into the built site.
"""

import logging
import os
from pathlib import Path
from typing import List

from mkdocs.config import config_options as c
from mkdocs.exceptions import PluginError
from mkdocs.plugins import BasePlugin
from mkdocs.structure.files import Files

from sitegraph.server.app import Application, Site, create_site
from sitegraph.server.request import Request
from sitegraph.sitemap.resource import PlainResource, Resource

log = logging.getLogger(f"mkdocs.plugins.{__name__}")


def files_scanner(files: Files):
    """Base resources for a MkDocs build: every file, addressed by its output path."""

    def scanner(store) -> List[Resource]:
        return [PlainResource(store, f.dest_uri, f.abs_dest_path, unquote=False) for f in files]

    return scanner


class ProxiesPlugin(BasePlugin):
    """Serve existing pages at extra addresses.

    Configuration options (all optional):
    - proxies (list): items with `path`, `target` and optional `locals`,
      `ignore` (hide the target), `layout` and other render options.
    - ignore (list): paths or glob patterns to leave out of the site.
    - mime_types (dict): extra extension -> content type entries.
    - index_file (str): file name served for directory paths.
    - layouts_dir (str): directory holding Jinja2 layouts for proxy pages.
    - debug (bool): extra debug logging (visible with `--verbose`).
    """

    config_scheme = (
        ("proxies", c.Type(list, default=[])),
        ("ignore", c.Type(list, default=[])),
        ("mime_types", c.Type(dict, default={})),
        ("index_file", c.Type(str, default="index.html")),
        ("layouts_dir", c.Type(str, default="")),
        ("debug", c.Type(bool, default=False)),
    )

    def __init__(self):
        super().__init__()
        self.site: Site = None

    def _dbg(self, msg: str) -> None:
        if self.config.get("debug", False):
            log.debug(f"[proxies] {msg}")

    def on_config(self, config, **kwargs):
        layouts_dir = self.config.get("layouts_dir") or None
        if layouts_dir and not os.path.isabs(layouts_dir):
            config_file = config.get("config_file_path") or ""
            layouts_dir = os.path.join(os.path.dirname(os.path.abspath(config_file)), layouts_dir)

        self.site = create_site(
            layouts_dir=layouts_dir,
            index_file=self.config.get("index_file", "index.html"),
            mime_types=self.config.get("mime_types") or {},
        )

        for pattern in self.config.get("ignore") or []:
            self.site.ignore(pattern)

        for item in self.config.get("proxies") or []:
            if not isinstance(item, dict) or not item.get("path") or not item.get("target"):
                raise PluginError(f"[proxies] each proxy needs a 'path' and a 'target', got: {item!r}")
            opts = dict(item)
            path = opts.pop("path")
            target = opts.pop("target")
            self.site.declare_proxy(path, target, opts)
            self._dbg(f"declared {path} -> {target}")

        log.info(f"[proxies] declared {len(self.site.registry.configs)} proxies")
        return config

    def on_files(self, files: Files, config, **kwargs):
        self.site.store.scanner = files_scanner(files)
        self.site.store.file_scan_changed()
        return files

    def on_post_build(self, config, **kwargs):
        site_dir = Path(config["site_dir"])
        app = Application(self.site)

        written = 0
        for resource in self.site.store.live_resources():
            if not resource.is_proxy:
                continue
            response = app.handle(Request("/" + resource.destination_path))
            if response.status != 200:
                log.error(
                    f"[proxies] skipping {resource.destination_path}: "
                    f"{response.status} {response.get_data().decode('utf-8', 'replace')}"
                )
                continue
            output = site_dir / resource.destination_path
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(response.get_data())
            written += 1
            self._dbg(f"wrote {output}")

        for resource in self.site.store.resources:
            if resource.is_proxy or not resource.ignored:
                continue
            source = resource.source_file
            if source and os.path.exists(source):
                os.remove(source)
                self._dbg(f"removed ignored output {source}")

        log.info(f"[proxies] wrote {written} proxy pages to {site_dir}")
