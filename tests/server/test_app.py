import gzip

import pytest
from jinja2 import TemplateNotFound

from sitegraph.server.app import Application, create_server, create_site
from sitegraph.server.request import Request, Response
from sitegraph.sitemap.resource import ChainedProxyError, UnknownProxyTargetError


class RaisingRenderer:
    def __init__(self, error):
        self.error = error

    def render(self, resource):
        raise self.error


@pytest.fixture
def source(tmp_path):
    root = tmp_path / "source"
    (root / "about-us").mkdir(parents=True)
    (root / "layouts").mkdir()
    (root / "index.html").write_text("<h1>Home</h1>", encoding="utf8")
    (root / "about-us" / "index.html.j2").write_text(
        "<h1>{{ title | default('About us') }}</h1>", encoding="utf8"
    )
    (root / "person.html.j2").write_text("<h1>{{ name }}</h1>", encoding="utf8")
    (root / "logo.svgz").write_bytes(gzip.compress(b"<svg/>"))
    (root / "layouts" / "base.html").write_text("<main>{{ content }}</main>", encoding="utf8")
    return root


def make_app(source, **kwargs):
    return create_server(
        source_dir=str(source),
        layouts_dir=str(source / "layouts"),
        **kwargs,
    )


class TestHandle:
    def test_missing_page_is_404(self, source):
        """Test: an unknown path is a 404 naming the path."""
        app = make_app(source)
        response = app.handle(Request("/missing.html"))
        assert response.status == 404
        assert b"/missing.html" in response.get_data()

    def test_svgz_is_gzip_encoded(self, source):
        """Test: `.svgz` files are streamed with gzip encoding."""
        app = make_app(source)
        response = app.handle(Request("/logo.svgz"))
        assert response.status == 200
        assert response.headers["Content-Encoding"] == "gzip"
        assert gzip.decompress(response.get_data()) == b"<svg/>"

    def test_proxy_serves_target_content(self, source):
        """Test: a proxy renders exactly what its target renders."""
        app = make_app(source, proxies=[{"path": "/about/", "target": "/about-us/index.html"}])
        via_proxy = app.handle(Request("/about/"))
        direct = app.handle(Request("/about-us/index.html"))
        assert via_proxy.status == 200
        assert via_proxy.get_data() == direct.get_data() == b"<h1>About us</h1>"
        assert via_proxy.headers["Content-Type"] == "text/html; charset=utf-8"

    def test_proxy_locals_reach_the_renderer(self, source):
        """Test: each proxy renders its target with its own locals."""
        app = make_app(
            source,
            proxies=[
                {"path": "/about/", "target": "/about-us/index.html", "locals": {"title": "About"}},
                {"path": "/people/alice.html", "target": "person.html", "locals": {"name": "Alice"}},
            ],
        )
        assert app.handle(Request("/about/")).get_data() == b"<h1>About</h1>"
        assert app.handle(Request("/about-us/")).get_data() == b"<h1>About us</h1>"
        assert app.handle(Request("/people/alice.html")).get_data() == b"<h1>Alice</h1>"

    def test_proxy_layout_option(self, source):
        """Test: a proxy's `layout` option only applies to the proxy."""
        app = make_app(
            source,
            proxies=[{"path": "/welcome.html", "target": "index.html", "layout": "base.html"}],
        )
        assert app.handle(Request("/welcome.html")).get_data() == b"<main><h1>Home</h1></main>"
        assert app.handle(Request("/index.html")).get_data() == b"<h1>Home</h1>"

    def test_missing_layout_is_a_500(self, source):
        """Test: an unknown layout is a 500 naming the layout."""
        app = make_app(
            source,
            proxies=[{"path": "/welcome.html", "target": "index.html", "layout": "nope.html"}],
        )
        response = app.handle(Request("/welcome.html"))
        assert response.status == 500
        assert b"nope.html" in response.get_data()

    def test_template_not_found_message_in_body(self, source):
        """Test: the 500 body carries the missing template's name."""
        app = Application(
            create_site(source_dir=str(source), renderer=RaisingRenderer(TemplateNotFound("partials/nav.html")))
        )
        response = app.handle(Request("/index.html"))
        assert response.status == 500
        assert response.get_data() == b"Error: partials/nav.html"

    def test_ignored_target_is_hidden_but_proxy_works(self, source):
        """Test: an ignored target is a 404 while its proxy still serves it."""
        app = make_app(
            source,
            proxies=[{"path": "/people/alice.html", "target": "person.html", "locals": {"name": "Alice"}, "ignore": True}],
        )
        assert app.handle(Request("/person.html")).status == 404
        assert app.handle(Request("/people/alice.html")).status == 200

    def test_ignore_patterns(self, source):
        """Test: glob ignores hide matching pages."""
        app = make_app(source, ignore=["about-us/*"])
        assert app.handle(Request("/about-us/")).status == 404

    def test_dangling_proxy_is_fatal(self, source):
        """Test: a proxy to an unknown page raises instead of answering."""
        app = make_app(source, proxies=[{"path": "/ghost.html", "target": "/nowhere.html"}])
        with pytest.raises(UnknownProxyTargetError):
            app.handle(Request("/ghost.html"))

    def test_chained_proxy_is_fatal(self, source):
        """Test: a proxy to a proxy raises instead of answering."""
        app = make_app(
            source,
            proxies=[
                {"path": "/a.html", "target": "index.html"},
                {"path": "/b.html", "target": "a.html"},
            ],
        )
        assert app.handle(Request("/a.html")).status == 200
        with pytest.raises(ChainedProxyError):
            app.handle(Request("/b.html"))

    def test_head_has_no_body(self, source):
        """Test: HEAD requests keep the headers but drop the body."""
        app = make_app(source)
        response = app.handle(Request("/index.html", method="HEAD"))
        assert response.status == 200
        assert response.headers["Content-Type"] == "text/html; charset=utf-8"
        assert response.get_data() == b""

    def test_before_hook_short_circuits(self, source):
        """Test: a hook returning a response ends the request."""
        app = make_app(source)
        seen = []

        @app.before
        def record(request):
            seen.append(request.path_info)

        @app.before
        def maintenance(request):
            if request.path_info.startswith("/admin"):
                return Response(503, {"Content-Type": "text/plain"}, [b"down"])

        assert app.handle(Request("/admin/")).status == 503
        assert app.handle(Request("/index.html")).status == 200
        assert seen == ["/admin/", "/index.html"]

    def test_proxy_declared_after_start_is_served(self, source):
        """Test: proxies declared while serving are picked up."""
        app = make_app(source)
        assert app.handle(Request("/home.html")).status == 404
        app.site.declare_proxy("/home.html", "/index.html")
        assert app.handle(Request("/home.html")).get_data() == b"<h1>Home</h1>"

    def test_rebuild_during_request_keeps_its_snapshot(self, source):
        """Test: a proxy request resolved before a rebuild is answered from its own snapshot."""
        app = make_app(source, proxies=[{"path": "/about/", "target": "/about-us/index.html"}])
        request = Request("/about/")
        resolution = app.resolver.resolve(request)

        app.site.store.scanner = lambda store: []
        app.site.store.file_scan_changed()

        response = app.builder.build(resolution, request)
        assert response.status == 200
        assert response.get_data() == b"<h1>About us</h1>"


class TestFactories:
    def test_servers_are_independent(self, source):
        """Test: each factory call builds an unrelated server."""
        first = make_app(source)
        second = make_app(source)
        first.site.declare_proxy("/home.html", "/index.html")
        assert first.site is not second.site
        assert first.handle(Request("/home.html")).status == 200
        assert second.handle(Request("/home.html")).status == 404

    def test_site_lookups(self, source):
        """Test: the site looks resources up by path and destination."""
        site = create_site(source_dir=str(source), layouts_dir=str(source / "layouts"))
        assert site.find_resource_by_path("about-us/index.html") is not None
        assert site.find_resource_by_destination_path("/about-us/") is not None
        assert site.find_resource_by_path("layouts/base.html") is None

    def test_custom_mime_types(self, source):
        """Test: extra MIME types are used for Content-Type."""
        (source / "component.widget").write_text("<x/>", encoding="utf8")
        app = make_app(source, mime_types={"widget": "text/x-widget"})
        response = app.handle(Request("/component.widget"))
        assert response.headers["Content-Type"] == "text/x-widget"


class TestWsgi:
    def call(self, app, path, method="GET", **extra):
        captured = {}

        def start_response(status, headers):
            captured["status"] = status
            captured["headers"] = dict(headers)

        environ = {"PATH_INFO": path, "REQUEST_METHOD": method}
        environ.update(extra)
        body = b"".join(app(environ, start_response))
        return captured["status"], captured["headers"], body

    def test_ok(self, source):
        """Test: a WSGI request for a page answers 200 with its content."""
        status, headers, body = self.call(make_app(source), "/index.html")
        assert status == "200 OK"
        assert headers["Content-Type"] == "text/html; charset=utf-8"
        assert body == b"<h1>Home</h1>"

    def test_not_found(self, source):
        """Test: a WSGI request for an unknown page answers 404."""
        status, _, body = self.call(make_app(source), "/missing.html")
        assert status == "404 Not Found"
        assert b"/missing.html" in body

    def test_utf8_path(self, source):
        """Test: UTF-8 paths survive the WSGI latin-1 round trip."""
        (source / "café.html").write_text("<p>café</p>", encoding="utf8")
        app = make_app(source)
        app.site.store.file_scan_changed()
        wsgi_path = "/café.html".encode("utf-8").decode("latin-1")
        status, _, body = self.call(app, wsgi_path)
        assert status == "200 OK"
        assert body == "<p>café</p>".encode("utf-8")

    def test_if_modified_since_header(self, source):
        """Test: a fresh If-Modified-Since answers 304 without Content-Type."""
        status, headers, body = self.call(
            make_app(source),
            "/logo.svgz",
            HTTP_IF_MODIFIED_SINCE="Fri, 01 Jan 2100 00:00:00 GMT",
        )
        assert status == "304 Not Modified"
        assert "Content-Type" not in headers
        assert headers["Content-Encoding"] == "gzip"
        assert body == b""
