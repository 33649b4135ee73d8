"""Root.io patch feed as a vulnerability source."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

from .store import GetParams, Store, StoreError
from .types import Advisory, DataSource, Severity
from .ubuntu import Ubuntu
from .vulnerability import ALPINE, DEBIAN, ROOTIO, UBUNTU

logger = logging.getLogger(__name__)

ROOTIO_DIR = "rootio"
FEED_FILE_NAME = "cve_feed.json"

SOURCE = DataSource(
    id=ROOTIO,
    name="Root.io Security Patches",
    url="https://api.root.io/external/patch_feed",
)

SUPPORTED_OSES = (ALPINE, DEBIAN, UBUNTU)


class _Getter(Protocol):
    def get(self, params: GetParams) -> list[Advisory]: ...


def _platform_name(base_os: str, version: str) -> str:
    return f"root.io {base_os} {version}"


@dataclass
class Feed:
    """One patched package for one vulnerability on one platform."""

    vulnerability_id: str
    pkg_name: str
    patch: Advisory


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return value


def _list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a JSON array")
    return value


def _strings(value: Any, what: str) -> list[str]:
    items = _list(value, what)
    if not all(isinstance(item, str) for item in items):
        raise ValueError(f"{what} must hold strings")
    return list(items)


def _parse_severity(cve_id: str, value: str) -> Severity:
    if not value:
        return Severity.UNKNOWN
    try:
        return Severity.parse(value)
    except ValueError as exc:
        logger.warning("Invalid severity value for %s: %r (%s)", cve_id, value, exc)
        return Severity.UNKNOWN


def _feeds_for(base_os: str, distros: Any) -> dict[str, list[Feed]]:
    feeds: dict[str, list[Feed]] = {}
    for distro in _list(distros, "distro list"):
        distro = _mapping(distro, "distro")
        platform = _platform_name(base_os.lower(), str(distro.get("distroversion", "")))
        for package in _list(distro.get("packages"), "packages"):
            pkg = _mapping(_mapping(package, "package").get("pkg"), "pkg")
            pkg_name = pkg.get("name", "")
            for cve_id, info in _mapping(pkg.get("cves"), "cves").items():
                info = _mapping(info, "cve")
                patch = Advisory(
                    vulnerable_versions=_strings(info.get("vulnerable_ranges"), "vulnerable_ranges"),
                    patched_versions=_strings(info.get("fixed_versions"), "fixed_versions"),
                    severity=_parse_severity(cve_id, info.get("severity") or ""),
                )
                feeds.setdefault(platform, []).append(Feed(cve_id, pkg_name, patch))
    return feeds


class RootIO:
    """Loads the Root.io patch feed into a store."""

    def __init__(self, store: Store | None = None, supported_oses: Sequence[str] | None = None) -> None:
        self._store = store if store is not None else Store()
        self._supported_oses = tuple(supported_oses) if supported_oses is not None else SUPPORTED_OSES

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | Path) -> None:
        feed_path = Path(directory, "vuln-list", ROOTIO_DIR, FEED_FILE_NAME)
        with feed_path.open(encoding="utf-8") as handle:
            try:
                raw_feed = json.load(handle)
            except ValueError as exc:
                raise ValueError(f"rootio: json decode error in {feed_path}: {exc}") from exc

        try:
            raw_feed = _mapping(raw_feed, "feed")
            parsed = []
            for base_os, distros in raw_feed.items():
                if base_os not in self._supported_oses:
                    logger.warning("Unsupported base OS: %s", base_os)
                    continue
                parsed.append((base_os, _feeds_for(base_os, distros)))
        except (TypeError, ValueError, AttributeError) as exc:
            raise ValueError(f"rootio: json decode error in {feed_path}: {exc}") from exc

        for base_os, feeds in parsed:
            self._save(base_os, feeds)

    def _save(self, base_os: str, feeds: Mapping[str, list[Feed]]) -> None:
        logger.info("Saving Root.io DB for %s", base_os)
        data_source = replace(SOURCE, name=f"{SOURCE.name} ({base_os})", base_id=base_os)
        with self._store.batch_update():
            for platform, platform_feeds in feeds.items():
                self._store.put_data_source(platform, data_source)
                for feed in platform_feeds:
                    self._store.put_advisory_detail(
                        feed.vulnerability_id, feed.pkg_name, [platform], feed.patch
                    )
                    self._store.put_vulnerability_id(feed.vulnerability_id)


class _BucketGetter:
    def __init__(self, store: Store, prefix: str) -> None:
        self._store = store
        self._prefix = prefix

    def get(self, params: GetParams) -> list[Advisory]:
        return self._store.get_advisories(f"{self._prefix} {params.release}", params.pkg_name)


class RootIOGetter:
    """Merges a base distribution's advisories with Root.io's patches."""

    def __init__(self, base_os: str, store: Store | None = None, base_getter: _Getter | None = None) -> None:
        self._base_os = base_os
        self._store = store if store is not None else Store()
        self._base_getter = base_getter if base_getter is not None else self._default_base_getter()

    def _default_base_getter(self) -> _Getter:
        if self._base_os == UBUNTU:
            return Ubuntu(self._store)
        if self._base_os in (DEBIAN, ALPINE):
            return _BucketGetter(self._store, self._base_os)
        raise ValueError(f"rootio: unsupported base OS: {self._base_os}")

    def get(self, params: GetParams) -> list[Advisory]:
        """Return advisories sorted by ID; Root.io's win where both sources know a vulnerability."""
        try:
            base_advisories = self._base_getter.get(params)
        except StoreError as exc:
            raise StoreError(f"rootio: failed to get advisories for base OS: {exc}") from exc

        merged: dict[str, Advisory] = {}
        for adv in base_advisories:
            if adv.fixed_version:
                adv = replace(
                    adv,
                    vulnerable_versions=[f"<{adv.fixed_version}"],
                    patched_versions=[adv.fixed_version],
                    fixed_version="",
                )
            merged[adv.vulnerability_id] = adv

        platform = _platform_name(self._base_os, params.release)
        try:
            root_advisories = self._store.get_advisories(platform, params.pkg_name)
        except StoreError as exc:
            raise StoreError(f"rootio: failed to get advisories: {exc}") from exc
        merged.update((adv.vulnerability_id, adv) for adv in root_advisories)

        return [merged[vuln_id] for vuln_id in sorted(merged)]