"""Pydantic schemas for ideup configuration.

This module defines the data models for:
- ideup.yaml (updater configuration)
- the product table used to locate IDE installations
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from ideup.utils.filesystem import ExtractorName

# =============================================================================
# Common Types
# =============================================================================

DEFAULT_TIMEOUT = 30.0  # seconds, per HTTP request
DEFAULT_PLUGIN_DEADLINE = 600.0  # seconds, per plugin
DEFAULT_MAX_REDIRECTS = 5


# =============================================================================
# Product Table
# =============================================================================


class ProductInfo(BaseModel):
    """How to find one IDE product on disk."""

    code: str
    binary: str
    app_name: str

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        if len(v) < 2 or not v.isalpha() or not v.isupper():
            raise ValueError(f"Product code must be two or more uppercase letters: {v!r}")
        return v


class ProductTable(BaseModel):
    """Product code to binary/app name lookup.

    Passed explicitly to the build probes so tests can substitute their own.
    """

    products: dict[str, ProductInfo] = Field(default_factory=dict)

    def get(self, code: str) -> ProductInfo | None:
        return self.products.get(code.upper())

    def codes(self) -> list[str]:
        return sorted(self.products)


DEFAULT_PRODUCTS = ProductTable(
    products={
        info.code: info
        for info in (
            ProductInfo(code="IC", binary="idea", app_name="IntelliJ IDEA CE"),
            ProductInfo(code="IU", binary="idea", app_name="IntelliJ IDEA"),
            ProductInfo(code="RM", binary="rubymine", app_name="RubyMine"),
            ProductInfo(code="PY", binary="pycharm", app_name="PyCharm"),
            ProductInfo(code="PC", binary="pycharm", app_name="PyCharm CE"),
            ProductInfo(code="WS", binary="webstorm", app_name="WebStorm"),
            ProductInfo(code="GO", binary="goland", app_name="GoLand"),
            ProductInfo(code="CL", binary="clion", app_name="CLion"),
            ProductInfo(code="PS", binary="phpstorm", app_name="PhpStorm"),
            ProductInfo(code="RD", binary="rider", app_name="Rider"),
            ProductInfo(code="DB", binary="datagrip", app_name="DataGrip"),
        )
    }
)


# =============================================================================
# Updater Configuration (ideup.yaml)
# =============================================================================


class UpdaterConfig(BaseModel):
    """Updater configuration (ideup.yaml) schema.

    Every field can also be set from the command line; CLI values win.
    """

    model_config = {"extra": "forbid"}

    plugins_dir: Path | None = None
    build: str | None = None
    product: str = "RM"
    only: list[str] = Field(default_factory=list)
    only_incompatible: bool = False
    downloads_host: str | None = None
    pins: dict[str, str] = Field(default_factory=dict)
    direct_urls: dict[str, str] = Field(default_factory=dict)
    dry_run: bool = False
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    plugin_deadline: float = Field(default=DEFAULT_PLUGIN_DEADLINE, gt=0)
    max_redirects: int = Field(default=DEFAULT_MAX_REDIRECTS, ge=0)
    extractor: ExtractorName = "zipfile"

    @field_validator("product")
    @classmethod
    def validate_product(cls, v: str) -> str:
        return v.upper()

    @field_validator("downloads_host")
    @classmethod
    def validate_downloads_host(cls, v: str | None) -> str | None:
        """Accept a bare host name; strip a scheme or trailing slash if given."""
        if v is None:
            return None
        v = v.strip()
        for prefix in ("https://", "http://"):
            if v.startswith(prefix):
                v = v[len(prefix) :]
        v = v.rstrip("/")
        if not v or "/" in v:
            raise ValueError(f"downloads_host must be a host name: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_direct_urls(self) -> "UpdaterConfig":
        """Validate that direct URLs are absolute http(s) URLs."""
        for plugin_id, url in self.direct_urls.items():
            if not url.startswith(("https://", "http://")):
                raise ValueError(f"direct URL for '{plugin_id}' must be http(s): {url}")
        return self
