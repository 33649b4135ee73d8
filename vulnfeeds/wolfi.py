"""Wolfi security database as a vulnerability source."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping

from .store import GetParams, Store
from .types import Advisory, DataSource
from .vulnerability import WOLFI

WOLFI_DIR = "wolfi"
PLATFORM_NAME = "wolfi"
SOURCE = DataSource(
    id=WOLFI,
    name="Wolfi Secdb",
    url="https://packages.wolfi.dev/os/security.json",
)


@dataclass
class _WolfiAdvisory:
    pkg_name: str = ""
    secfixes: dict[str, list[str]] = field(default_factory=dict)
    apkurl: str = ""
    archs: list[str] = field(default_factory=list)
    urlprefix: str = ""
    reponame: str = ""
    distroversion: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "_WolfiAdvisory":
        if not isinstance(data, Mapping):
            raise ValueError("advisory must be a JSON object")
        secfixes = data.get("secfixes") or {}
        if not isinstance(secfixes, Mapping):
            raise ValueError("secfixes must be a JSON object")
        return cls(
            pkg_name=data.get("name", ""),
            secfixes={version: list(ids or []) for version, ids in secfixes.items()},
            apkurl=data.get("apkurl", ""),
            archs=list(data.get("archs") or []),
            urlprefix=data.get("urlprefix", ""),
            reponame=data.get("reponame", ""),
            distroversion=data.get("distroversion", ""),
        )


def _iter_json_files(root: Path) -> Iterator[tuple[Path, Any]]:
    if not root.is_dir():
        raise FileNotFoundError(2, "no such file or directory", str(root))
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        with path.open(encoding="utf-8") as handle:
            try:
                data = json.load(handle)
            except ValueError as exc:
                raise ValueError(f"json decode error in {path}: {exc}") from exc
        yield path, data


def _cve_ids(entry: str) -> Iterator[str]:
    # entries may carry notes, e.g. "CVE-2017-2616 (+ regression fix)"
    for token in entry.split():
        cve_id = token.replace("CVE_", "CVE-")
        if cve_id.startswith("CVE-"):
            yield cve_id


class Wolfi:
    """Loads Wolfi secfixes into a store and answers lookups."""

    def __init__(self, store: Store | None = None) -> None:
        self._store = store if store is not None else Store()

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | Path) -> None:
        root = Path(directory, "vuln-list", WOLFI_DIR)
        advisories = []
        for path, data in _iter_json_files(root):
            try:
                advisories.append(_WolfiAdvisory.from_dict(data))
            except (TypeError, ValueError, AttributeError) as exc:
                raise ValueError(f"wolfi: json decode error in {path}: {exc}") from exc

        with self._store.batch_update():
            for adv in advisories:
                self._store.put_data_source(PLATFORM_NAME, SOURCE)
                self._save_secfixes(adv.pkg_name, adv.secfixes)

    def _save_secfixes(self, pkg_name: str, secfixes: Mapping[str, list[str]]) -> None:
        for fixed, vuln_ids in secfixes.items():
            advisory = Advisory(fixed_version=fixed)
            for entry in vuln_ids:
                for cve_id in _cve_ids(entry):
                    self._store.put_advisory_detail(cve_id, pkg_name, [PLATFORM_NAME], advisory)
                    self._store.put_vulnerability_id(cve_id)

    def get(self, params: GetParams) -> list[Advisory]:
        return self._store.get_advisories(PLATFORM_NAME, params.pkg_name)