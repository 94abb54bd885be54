from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from flowsentry.errors import ConfigurationError


@dataclass(frozen=True)
class UrlTarget:
    name: str
    path: str


@dataclass(frozen=True)
class SyntheticSelectors:
    product_link: str | None = None
    add_to_cart: str | None = None
    proceed_checkout: str | None = None


@dataclass(frozen=True)
class SyntheticSettings:
    enabled: bool = False
    selectors: SyntheticSelectors = field(default_factory=SyntheticSelectors)


@dataclass(frozen=True)
class SiteDescriptor:
    client: str
    domain: str
    urls: tuple[UrlTarget, ...] = ()
    synthetic: SyntheticSettings | None = None

    @property
    def synthetic_enabled(self) -> bool:
        return bool(self.synthetic and self.synthetic.enabled)

    def url_for(self, path: str) -> str:
        return f"https://{self.domain}{path}"


def _require_str(raw: dict[str, Any], key: str, where: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{where}.{key} must be a non-empty string")
    return value.strip()


def _optional_selector(raw: dict[str, Any], key: str, where: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"{where}.{key} must be a string")
    return value.strip() or None


def _parse_urls(raw_urls: Any, where: str) -> tuple[UrlTarget, ...]:
    if not isinstance(raw_urls, list):
        raise ConfigurationError(f"{where}.urls must be a list")

    urls: list[UrlTarget] = []
    seen: set[str] = set()
    for idx, entry in enumerate(raw_urls):
        entry_where = f"{where}.urls[{idx}]"
        if not isinstance(entry, dict):
            raise ConfigurationError(f"{entry_where} must be a mapping, got {type(entry).__name__}")
        name = _require_str(entry, "name", entry_where)
        path = _require_str(entry, "path", entry_where)
        if not path.startswith("/"):
            raise ConfigurationError(f"{entry_where}.path must start with '/': {path!r}")
        if name in seen:
            raise ConfigurationError(f"{entry_where}.name duplicates an earlier URL name: {name!r}")
        seen.add(name)
        urls.append(UrlTarget(name=name, path=path))
    return tuple(urls)


def _parse_synthetic(raw: Any, where: str) -> SyntheticSettings | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where}.synthetic must be a mapping")

    raw_selectors = raw.get("selectors") or {}
    if not isinstance(raw_selectors, dict):
        raise ConfigurationError(f"{where}.synthetic.selectors must be a mapping")

    sel_where = f"{where}.synthetic.selectors"
    return SyntheticSettings(
        enabled=bool(raw.get("enabled")),
        selectors=SyntheticSelectors(
            product_link=_optional_selector(raw_selectors, "product_link", sel_where),
            add_to_cart=_optional_selector(raw_selectors, "add_to_cart", sel_where),
            proceed_checkout=_optional_selector(raw_selectors, "proceed_checkout", sel_where),
        ),
    )


def parse_sites(data: Any) -> tuple[SiteDescriptor, ...]:
    """Validate a decoded site list and return descriptors in file order."""
    if not isinstance(data, dict) or not isinstance(data.get("sites"), list):
        raise ConfigurationError("Site list must be an object with a 'sites' list")

    sites: list[SiteDescriptor] = []
    for idx, entry in enumerate(data["sites"]):
        where = f"sites[{idx}]"
        if not isinstance(entry, dict):
            raise ConfigurationError(f"{where} must be a mapping, got {type(entry).__name__}")

        domain = _require_str(entry, "domain", where).lower()
        if "/" in domain or "://" in domain:
            raise ConfigurationError(f"{where}.domain must be a bare hostname: {domain!r}")

        sites.append(
            SiteDescriptor(
                client=_require_str(entry, "client", where),
                domain=domain,
                urls=_parse_urls(entry.get("urls", []), where),
                synthetic=_parse_synthetic(entry.get("synthetic"), where),
            )
        )

    seen: set[str] = set()
    for site in sites:
        if site.client in seen:
            raise ConfigurationError(f"Duplicate client entry: {site.client}")
        seen.add(site.client)

    return tuple(sites)


def load_sites(path: Path | str) -> tuple[SiteDescriptor, ...]:
    p = Path(path)
    try:
        raw = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Cannot read site list {p}: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Site list {p} is not valid JSON: {exc}") from exc
    return parse_sites(data)
