"""
Asset manifest: the ordered list of paths cached at install time.

Loaded from YAML when configured, otherwise the built-in app shell is used.
Relative paths resolve against the application's origin.

Example ``assets.yml``::

    assets:
      - ./
      - ./index.html
      - https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css
    root_document: ./index.html
    offline_page: ./offline.html
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin

import yaml

from fxc.exceptions import ConfigurationError

DEFAULT_ASSETS: tuple[str, ...] = (
    "./",
    "./index.html",
    "./styles.css",
    "./script.js",
    "./manifest.json",
    "./assets/favicon.ico",
    "./assets/icon-192.png",
    "./assets/icon-512.png",
    "./assets/icon-512-maskable.png",
    "./assets/apple-touch-icon.png",
    "https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css",
)


@dataclass(frozen=True)
class AssetManifest:
    """Declared assets for one deployment."""

    assets: tuple[str, ...] = DEFAULT_ASSETS
    root_document: str = "./index.html"
    offline_page: str | None = None

    @classmethod
    def load(cls, path: Path | str | None = None) -> AssetManifest:
        """Load a manifest from YAML, or return the default when ``path`` is None.

        Raises:
            ConfigurationError: If the file is missing or malformed.
        """
        if path is None:
            return cls()

        path = Path(path)
        if not path.exists():
            raise ConfigurationError(
                "Asset manifest not found", context={"path": str(path)}
            )

        with open(path) as f:
            config = yaml.safe_load(f) or {}

        assets = config.get("assets") if isinstance(config, dict) else None
        if not isinstance(assets, list) or not all(isinstance(a, str) for a in assets):
            raise ConfigurationError(
                "Asset manifest must declare 'assets' as a list of paths",
                context={"path": str(path)},
            )

        return cls(
            assets=tuple(assets),
            root_document=config.get("root_document", "./index.html"),
            offline_page=config.get("offline_page"),
        )

    def resolve(self, origin: str) -> list[str]:
        """Absolute URLs of every declared asset, in declaration order."""
        return [resolve_url(origin, path) for path in self.assets]

    def navigation_fallbacks(self, origin: str) -> list[str]:
        """Root document candidates, most specific first."""
        candidates = [resolve_url(origin, self.root_document), resolve_url(origin, "./")]
        return list(dict.fromkeys(candidates))


def resolve_url(origin: str, path: str) -> str:
    """Resolve a manifest path against the origin."""
    return urljoin(origin.rstrip("/") + "/", path)
