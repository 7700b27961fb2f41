"""Tests for ideup.marketplace.resolver module."""

import pytest

from ideup.marketplace.resolver import (
    DownloadResolver,
    ResolutionError,
    guess_version,
    plugin_manager_url,
    rewrite_host,
    version_download_url,
)
from ideup.marketplace.transport import TransportError

BUILD = "RM-252.23892.415"
LOOKUP_URL = (
    "https://plugins.jetbrains.com/pluginManager"
    "?action=download&id=com.example.foo&build=RM-252.23892.415"
)
ARTIFACT_URL = "https://plugins.jetbrains.com/files/1234/567890/foo-2.0.1.zip"


class TestUrlBuilders:
    """Tests for marketplace URL builders."""

    def test_plugin_manager_url(self):
        assert plugin_manager_url("com.example.foo", BUILD) == LOOKUP_URL

    def test_version_download_url(self):
        assert version_download_url("com.example.foo", "1.2.3") == (
            "https://plugins.jetbrains.com/plugin/download"
            "?pluginId=com.example.foo&version=1.2.3"
        )

    def test_ids_are_escaped(self):
        url = plugin_manager_url("Plugin With Spaces", BUILD)
        assert "id=Plugin+With+Spaces" in url


class TestGuessVersion:
    """Tests for guess_version()."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            (ARTIFACT_URL, "2.0.1"),
            ("https://example.com/dl/plugin-1.0.jar", "1.0"),
            ("https://example.com/files/foo-2.0.zip?updateId=9", "2.0"),
        ],
    )
    def test_from_file_name(self, url, expected):
        assert guess_version(url) == expected

    def test_no_file_name(self):
        assert guess_version("https://example.com/") is None

    def test_lookup_endpoint_has_no_version(self):
        """A lookup URL that served the artifact directly names no version."""
        assert guess_version(LOOKUP_URL) is None
        assert guess_version("https://example.com/download?id=foo-1.0") is None


class TestRewriteHost:
    """Tests for rewrite_host()."""

    def test_rewrites_marketplace_artifact(self):
        result = rewrite_host(ARTIFACT_URL, "downloads.marketplace.jetbrains.com")

        assert result == (
            "https://downloads.marketplace.jetbrains.com/files/1234/567890/foo-2.0.1.zip"
        )

    def test_keeps_query_string(self):
        result = rewrite_host(ARTIFACT_URL + "?updateId=1", "mirror.example.com")

        assert result == "https://mirror.example.com/files/1234/567890/foo-2.0.1.zip?updateId=1"

    def test_no_host_returns_unchanged(self):
        assert rewrite_host(ARTIFACT_URL, None) == ARTIFACT_URL
        assert rewrite_host(ARTIFACT_URL, "") == ARTIFACT_URL

    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/files/foo.zip",
            "https://plugins.jetbrains.com/plugin/download?pluginId=foo",
            "https://sub.plugins.jetbrains.com/files/foo.zip",
        ],
    )
    def test_other_urls_unchanged(self, url):
        assert rewrite_host(url, "mirror.example.com") == url


class TestDownloadResolver:
    """Tests for DownloadResolver."""

    def test_strategy_priority(self, transport):
        resolver = DownloadResolver(
            transport,
            pins={"both": "1.0", "pinned": "1.0"},
            direct_urls={"both": "https://example.com/both.zip"},
        )

        assert resolver.strategy_for("both") == "direct"
        assert resolver.strategy_for("pinned") == "pinned"
        assert resolver.strategy_for("other") == "build"

    def test_build_lookup_redirect(self, transport):
        transport.redirect(LOOKUP_URL, "/files/1234/567890/foo-2.0.1.zip")
        resolver = DownloadResolver(transport)

        artifact = resolver.resolve("com.example.foo", BUILD)

        assert artifact.url == ARTIFACT_URL
        assert artifact.strategy == "build"
        assert artifact.version == "2.0.1"
        assert transport.requests == [LOOKUP_URL]

    def test_absolute_location_is_kept(self, transport):
        transport.redirect(LOOKUP_URL, "https://cdn.example.com/foo-3.0.zip", status=301)

        artifact = DownloadResolver(transport).resolve("com.example.foo", BUILD)

        assert artifact.url == "https://cdn.example.com/foo-3.0.zip"

    def test_success_means_request_url_is_artifact(self, transport):
        transport.add(LOOKUP_URL, status=200, body=b"PK")

        artifact = DownloadResolver(transport).resolve("com.example.foo", BUILD)

        assert artifact.url == LOOKUP_URL
        assert artifact.version is None

    def test_not_found_raises(self, transport):
        with pytest.raises(ResolutionError, match="HTTP 404") as exc_info:
            DownloadResolver(transport).resolve("com.example.foo", BUILD)

        assert exc_info.value.plugin_id == "com.example.foo"
        assert exc_info.value.status_code == 404

    def test_redirect_without_location_raises(self, transport):
        transport.add(LOOKUP_URL, status=302)

        with pytest.raises(ResolutionError, match="Missing Location"):
            DownloadResolver(transport).resolve("com.example.foo", BUILD)

    def test_pinned_version(self, transport):
        pinned_url = version_download_url("com.example.foo", "1.2.3")
        transport.redirect(pinned_url, "/files/1/2/foo-1.2.3.zip")
        resolver = DownloadResolver(transport, pins={"com.example.foo": "1.2.3"})

        artifact = resolver.resolve("com.example.foo", BUILD)

        assert artifact.strategy == "pinned"
        assert artifact.version == "1.2.3"
        assert artifact.url == "https://plugins.jetbrains.com/files/1/2/foo-1.2.3.zip"
        assert transport.requests == [pinned_url]

    def test_direct_url_makes_no_request(self, transport):
        resolver = DownloadResolver(
            transport, direct_urls={"com.example.foo": "https://example.com/foo-9.9.zip"}
        )

        artifact = resolver.resolve("com.example.foo", BUILD)

        assert artifact.strategy == "direct"
        assert artifact.url == "https://example.com/foo-9.9.zip"
        assert artifact.version == "9.9"
        assert transport.requests == []

    def test_transport_errors_propagate(self, transport):
        transport.fail(LOOKUP_URL)

        with pytest.raises(TransportError):
            DownloadResolver(transport).resolve("com.example.foo", BUILD)

    def test_timeout_is_passed(self, transport):
        transport.redirect(LOOKUP_URL, "/files/a/foo-1.zip")

        DownloadResolver(transport).resolve("com.example.foo", BUILD, timeout=7.5)

        assert transport.timeouts == [7.5]
