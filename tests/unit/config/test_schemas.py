"""Tests for ideup.config.schemas module."""

import pytest
from pydantic import ValidationError

from ideup.config.schemas import (
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_PLUGIN_DEADLINE,
    DEFAULT_PRODUCTS,
    ProductInfo,
    ProductTable,
    UpdaterConfig,
)


class TestProductInfo:
    """Tests for ProductInfo schema."""

    def test_valid_product(self):
        """Test a normal product entry."""
        info = ProductInfo(code="RM", binary="rubymine", app_name="RubyMine")
        assert info.code == "RM"

    @pytest.mark.parametrize("code", ["R", "rm", "R1", ""])
    def test_invalid_code(self, code):
        """Test that product codes must be two or more uppercase letters."""
        with pytest.raises(ValidationError):
            ProductInfo(code=code, binary="x", app_name="X")


class TestProductTable:
    """Tests for ProductTable."""

    def test_default_table_has_rubymine(self):
        """Test that the default table knows RubyMine."""
        info = DEFAULT_PRODUCTS.get("RM")
        assert info is not None
        assert info.binary == "rubymine"
        assert info.app_name == "RubyMine"

    def test_lookup_is_case_insensitive(self):
        """Test lowercase codes resolve."""
        assert DEFAULT_PRODUCTS.get("iu") == DEFAULT_PRODUCTS.get("IU")

    def test_unknown_code(self):
        """Test unknown codes return None."""
        assert DEFAULT_PRODUCTS.get("ZZ") is None

    def test_custom_table(self):
        """Test building a substitute table."""
        table = ProductTable(
            products={"XX": ProductInfo(code="XX", binary="xide", app_name="X IDE")}
        )
        assert table.codes() == ["XX"]


class TestUpdaterConfig:
    """Tests for UpdaterConfig schema."""

    def test_defaults(self):
        """Test default values."""
        config = UpdaterConfig()

        assert config.plugins_dir is None
        assert config.product == "RM"
        assert config.only == []
        assert config.dry_run is False
        assert config.plugin_deadline == DEFAULT_PLUGIN_DEADLINE
        assert config.max_redirects == DEFAULT_MAX_REDIRECTS
        assert config.extractor == "zipfile"

    def test_product_upper_cased(self):
        """Test product codes are normalized."""
        assert UpdaterConfig(product="iu").product == "IU"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("mirror.example.com", "mirror.example.com"),
            ("https://mirror.example.com/", "mirror.example.com"),
            ("http://mirror.example.com", "mirror.example.com"),
        ],
    )
    def test_downloads_host_normalized(self, value, expected):
        """Test that a scheme or trailing slash is stripped."""
        assert UpdaterConfig(downloads_host=value).downloads_host == expected

    @pytest.mark.parametrize("value", ["", "https://", "mirror.example.com/files"])
    def test_downloads_host_invalid(self, value):
        """Test that downloads_host must be a bare host."""
        with pytest.raises(ValidationError):
            UpdaterConfig(downloads_host=value)

    def test_direct_urls_must_be_http(self):
        """Test direct URLs are checked."""
        with pytest.raises(ValidationError, match="must be http"):
            UpdaterConfig(direct_urls={"foo": "/local/path.zip"})

    @pytest.mark.parametrize("field", ["timeout", "plugin_deadline"])
    def test_positive_durations(self, field):
        """Test timeouts must be positive."""
        with pytest.raises(ValidationError):
            UpdaterConfig(**{field: 0})

    def test_negative_redirects_rejected(self):
        """Test max_redirects can't be negative."""
        with pytest.raises(ValidationError):
            UpdaterConfig(max_redirects=-1)

    def test_unknown_extractor_rejected(self):
        """Test extractor must be a known name."""
        with pytest.raises(ValidationError):
            UpdaterConfig(extractor="7z")

    def test_extra_fields_forbidden(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ValidationError):
            UpdaterConfig(unknown_key=True)
