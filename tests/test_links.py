"""Tests for link extraction."""

from siteharvest.services.links import extract_links
from siteharvest.urls import CanonicalOptions

OPTIONS = CanonicalOptions(base_url="https://example.com/")
PAGE = "https://example.com/docs/guide"


class TestExtractLinks:
    """Tests for extract_links function."""

    def test_dom_references(self):
        """Test anchors, areas, forms, navigation links, meta refresh and data attributes."""
        html = """
        <html><head>
          <link rel="canonical" href="https://www.example.com/">
          <link rel="stylesheet" href="/theme">
          <link rel="next" href="/page/2">
          <meta http-equiv="refresh" content="5; url=/moved">
        </head><body>
          <a href="/about">About</a>
          <a href="/about/">About again</a>
          <a href="https://other.com/x">Other site</a>
          <a href="mailto:team@example.com">Mail</a>
          <a href="/brochure.pdf">Brochure</a>
          <a href="#top">Top</a>
          <map><area href="/map-target"></map>
          <form action="/search"></form>
          <div data-href="/cards/1"></div>
          <button data-route="/settings">Settings</button>
        </body></html>
        """
        links = extract_links(html, PAGE, "example.com", OPTIONS)

        assert links == [
            "https://example.com/",
            "https://example.com/page/2",
            "https://example.com/moved",
            "https://example.com/about",
            "https://example.com/map-target",
            "https://example.com/search",
            "https://example.com/cards/1",
            "https://example.com/settings",
        ]

    def test_relative_links_resolve_against_page(self):
        """Test document-relative hrefs."""
        html = '<a href="install">Install</a><a href="../api/">API</a>'
        links = extract_links(html, PAGE, "example.com", OPTIONS)

        assert links == ["https://example.com/docs/install", "https://example.com/api"]

    def test_base_href(self):
        """Test that <base href> changes the resolution base."""
        html = '<head><base href="https://example.com/v2/"></head><body><a href="intro">Intro</a></body>'
        links = extract_links(html, PAGE, "example.com", OPTIONS)

        assert links == ["https://example.com/v2/intro"]

    def test_off_site_base_href(self):
        """Test that a base pointing elsewhere makes relative links off-site."""
        html = '<head><base href="https://cdn.other.com/"></head><body><a href="intro">Intro</a></body>'
        assert extract_links(html, PAGE, "example.com", OPTIONS) == []

    def test_www_variants_collapse(self):
        """Test that www and bare links to the same page dedupe."""
        html = '<a href="http://www.example.com/a/">A</a><a href="https://example.com/a">A</a>'
        assert extract_links(html, PAGE, "example.com", OPTIONS) == ["https://example.com/a"]

    def test_script_route_literals(self):
        """Test route literals found in inline scripts."""
        html = """
        <script src="/bundle"></script>
        <script>
          router.push("/spa-route");
          const routes = [{"path": "/docs/reference"}];
          var label = "hello";
          location.href = 'https://example.com/redirected';
          navigate({ to: "/checkout" });
        </script>
        """
        links = extract_links(html, PAGE, "example.com", OPTIONS)

        assert set(links) == {
            "https://example.com/spa-route",
            "https://example.com/docs/reference",
            "https://example.com/redirected",
            "https://example.com/checkout",
        }

    def test_script_scan_disabled(self):
        """Test that rendered HTML skips the script sweep."""
        html = '<a href="/visible">Visible</a><script>router.push("/spa-route");</script>'
        links = extract_links(html, PAGE, "example.com", OPTIONS, scan_scripts=False)

        assert links == ["https://example.com/visible"]

    def test_private_and_invalid_links_dropped(self):
        """Test that unusable references never reach the result."""
        html = """
        <a href="javascript:void(0)">JS</a>
        <a href="tel:+61400000000">Call</a>
        <a href="http://169.254.169.254/latest">Metadata</a>
        <a href="  ">Blank</a>
        <a>No href</a>
        """
        assert extract_links(html, PAGE, "example.com", OPTIONS) == []

    def test_empty_document(self):
        """Test empty input."""
        assert extract_links("", PAGE, "example.com", OPTIONS) == []
