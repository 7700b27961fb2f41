"""Shared fixtures for ideup tests."""

import io
import shutil
import tempfile
import zipfile
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from ideup.marketplace.transport import HttpResponse, TransportError


def make_plugin_xml(
    plugin_id: str | None = "com.example.foo",
    version: str | None = "1.2.3",
    since: str | None = "240.0",
    until: str | None = "260.*",
    legacy_attributes: bool = False,
    name: str | None = None,
) -> str:
    """Render a minimal plugin.xml."""
    parts = ["<idea-plugin>"]
    if plugin_id is not None:
        parts.append(f"  <id>{plugin_id}</id>")
    if name is not None:
        parts.append(f"  <name>{name}</name>")
    if version is not None:
        parts.append(f"  <version>{version}</version>")
    since_attr, until_attr = (
        ("sinceBuild", "untilBuild") if legacy_attributes else ("since-build", "until-build")
    )
    attrs = ""
    if since is not None:
        attrs += f' {since_attr}="{since}"'
    if until is not None:
        attrs += f' {until_attr}="{until}"'
    if attrs:
        parts.append(f"  <idea-version{attrs}/>")
    parts.append("</idea-plugin>")
    return "\n".join(parts)


def write_jar(path: Path, files: dict[str, str]) -> Path:
    """Write a zip/jar archive with the given text entries."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return path


class FakeTransport:
    """Transport that serves scripted responses and records requested URLs."""

    def __init__(self) -> None:
        self.routes: dict[str, list[tuple[int, bytes, dict[str, str]]]] = {}
        self.failures: dict[str, Exception] = {}
        self.requests: list[str] = []
        self.timeouts: list[float | None] = []

    def add(
        self,
        url: str,
        status: int = 200,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.routes.setdefault(url, []).append((status, body, headers or {}))

    def redirect(self, url: str, location: str, status: int = 302) -> None:
        self.add(url, status=status, headers={"Location": location})

    def fail(self, url: str, error: Exception | None = None) -> None:
        self.failures[url] = error or TransportError(f"Failed to connect to {url}", url=url)

    def get(self, url: str, timeout: float | None = None) -> HttpResponse:
        self.requests.append(url)
        self.timeouts.append(timeout)
        if url in self.failures:
            raise self.failures[url]
        responses = self.routes.get(url)
        if not responses:
            return HttpResponse(url=url, status=404, reason="Not Found", body=io.BytesIO(b""))
        status, body, headers = responses.pop(0) if len(responses) > 1 else responses[0]
        return HttpResponse(
            url=url, status=status, reason="", headers=headers, body=io.BytesIO(body)
        )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="ideup_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def plugins_dir(temp_dir: Path) -> Path:
    """Create an empty plugins directory."""
    path = temp_dir / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def transport() -> FakeTransport:
    """Get a scripted HTTP transport."""
    return FakeTransport()


@pytest.fixture
def add_plugin(plugins_dir: Path) -> Callable[..., Path]:
    """Factory that installs a plugin folder into plugins_dir.

    With ``packed=True`` the manifest goes into ``lib/<folder>.jar`` instead of
    an unpacked ``META-INF/plugin.xml``.
    """

    def _add(folder: str, xml: str | None = None, packed: bool = False, **xml_args: str) -> Path:
        content = xml if xml is not None else make_plugin_xml(**xml_args)
        plugin_dir = plugins_dir / folder
        if packed:
            write_jar(plugin_dir / "lib" / f"{folder}.jar", {"META-INF/plugin.xml": content})
        else:
            manifest = plugin_dir / "META-INF" / "plugin.xml"
            manifest.parent.mkdir(parents=True)
            manifest.write_text(content, encoding="utf-8")
        return plugin_dir

    return _add


@pytest.fixture
def plugin_zip_bytes() -> Callable[..., bytes]:
    """Factory for the bytes of a marketplace-style plugin zip.

    The zip holds ``<folder>/lib/<folder>.jar`` with the manifest inside, the
    layout marketplace artifacts use.
    """

    def _build(folder: str = "foo", **xml_args: str) -> bytes:
        jar_buffer = io.BytesIO()
        with zipfile.ZipFile(jar_buffer, "w") as jar:
            jar.writestr("META-INF/plugin.xml", make_plugin_xml(**xml_args))
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr(f"{folder}/lib/{folder}.jar", jar_buffer.getvalue())
        return buffer.getvalue()

    return _build
