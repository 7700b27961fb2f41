"""IDE build detection.

Each probe is a small function that returns a build string or None. They are
tried in order and the first answer wins.
"""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
from collections.abc import Callable, Iterable, Mapping
from functools import partial
from pathlib import Path

from ideup.config.schemas import DEFAULT_PRODUCTS, ProductInfo, ProductTable
from ideup.utils.build import parse_build
from ideup.utils.platform import is_macos

logger = logging.getLogger(__name__)

BuildProbe = Callable[[], str | None]

BUILD_ENV_VAR = "IDEUP_BUILD"

# "Build #RM-252.23892.415, built on ..."
_VERSION_OUTPUT = re.compile(r"Build\s+#(?P<code>[A-Z]{2,})-(?P<build>\d+\.\d+\.\d+)")
_VERSION_OUTPUT_LOOSE = re.compile(r"Build\s+#(?P<build>[A-Z]{2,}-\S+)")


def detect_build(probes: Iterable[BuildProbe]) -> str | None:
    """Run probes in order and return the first build they find."""
    for probe in probes:
        build = probe()
        if build:
            logger.info("Detected build %s", build)
            return build
    return None


def probe_env(env: Mapping[str, str], name: str = BUILD_ENV_VAR) -> str | None:
    """Read the build from an environment variable."""
    value = env.get(name, "").strip()
    if value and parse_build(value) is not None:
        return value
    if value:
        logger.debug("Ignoring unparseable %s=%s", name, value)
    return None


def parse_version_output(output: str) -> str | None:
    """Extract the build from ``<ide> --version`` output."""
    match = _VERSION_OUTPUT.search(output)
    if match:
        return f"{match.group('code')}-{match.group('build')}"
    match = _VERSION_OUTPUT_LOOSE.search(output)
    if match:
        return match.group("build").rstrip(",")
    return None


def probe_binary(binary: Path | None, timeout: float = 30.0) -> str | None:
    """Run the IDE launcher with ``--version`` and parse its output."""
    if binary is None or not binary.is_file() or not os.access(binary, os.X_OK):
        return None
    try:
        result = subprocess.run(
            [str(binary), "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Running %s --version failed: %s", binary, e)
        return None
    return parse_version_output(result.stdout + result.stderr)


def probe_install_home(home: Path | None) -> str | None:
    """Read the build from ``product-info.json`` or ``build.txt`` in an IDE home."""
    if home is None or not home.is_dir():
        return None

    product_info = home / "product-info.json"
    if product_info.is_file():
        try:
            data = json.loads(product_info.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.debug("Cannot read %s: %s", product_info, e)
        else:
            code = data.get("productCode")
            number = data.get("buildNumber")
            if code and number:
                return f"{code}-{number}"

    build_txt = home / "build.txt"
    if build_txt.is_file():
        try:
            value = build_txt.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.debug("Cannot read %s: %s", build_txt, e)
            return None
        if parse_build(value) is not None:
            return value

    return None


def _env_name(product: ProductInfo, suffix: str) -> str:
    return f"{product.binary.upper()}_{suffix}"


def _app_bundle(product: ProductInfo) -> Path:
    return Path("/Applications") / f"{product.app_name}.app" / "Contents"


def binary_candidates(product: ProductInfo, env: Mapping[str, str]) -> list[Path]:
    candidates = []
    if env.get(_env_name(product, "BIN")):
        candidates.append(Path(env[_env_name(product, "BIN")]))
    if is_macos():
        candidates.append(_app_bundle(product) / "MacOS" / product.binary)
    return candidates


def home_candidates(product: ProductInfo, env: Mapping[str, str]) -> list[Path]:
    candidates = []
    if env.get(_env_name(product, "HOME")):
        candidates.append(Path(env[_env_name(product, "HOME")]))
    if is_macos():
        candidates.append(_app_bundle(product) / "Resources")
    return candidates


def default_probes(
    product_code: str,
    table: ProductTable = DEFAULT_PRODUCTS,
    env: Mapping[str, str] | None = None,
) -> list[BuildProbe]:
    """Build the standard probe list for a product.

    Args:
        product_code: Product code such as "RM" or "IU"
        table: Product lookup table
        env: Environment to read (default: os.environ)

    Returns:
        Probes in priority order
    """
    env = os.environ if env is None else env
    probes: list[BuildProbe] = [partial(probe_env, env)]

    product = table.get(product_code)
    if product is None:
        logger.debug("Unknown product %s; only %s is checked", product_code, BUILD_ENV_VAR)
        return probes

    probes.extend(partial(probe_binary, path) for path in binary_candidates(product, env))
    probes.extend(partial(probe_install_home, path) for path in home_candidates(product, env))
    return probes
