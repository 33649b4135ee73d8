"""Rocky Linux updateinfo errata as a vulnerability source."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterator, Mapping

from .store import GetParams, Store, StoreError
from .types import Advisories, Advisory, DataSource, Severity, VulnerabilityDetail
from .vulnerability import ROCKY

logger = logging.getLogger(__name__)

ROCKY_DIR = "rocky"
TARGET_REPOS = ("BaseOS", "AppStream", "extras")
TARGET_ARCHES = ("x86_64", "aarch64")
SOURCE = DataSource(
    id=ROCKY,
    name="Rocky Linux updateinfo",
    url="https://download.rockylinux.org/pub/rocky/",
)

_MODULAR_MARKER = ".module+el"
_LEGACY_FIXED_VERSION = "0.0.0"


def _platform_name(major_version: str) -> str:
    return f"rocky {major_version}"


def _construct_version(epoch: str, version: str, release: str) -> str:
    text = f"{epoch}:" if epoch not in ("", "0") else ""
    text += version
    if release:
        text += f"-{release}"
    return text


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


@dataclass
class RockyPackage:
    """A package fixed by an erratum."""

    name: str = ""
    epoch: str = ""
    version: str = ""
    release: str = ""
    arch: str = ""
    filename: str = ""


@dataclass
class RockyReference:
    """A reference attached to an erratum."""

    href: str = ""
    id: str = ""
    title: str = ""
    type: str = ""


@dataclass
class RLSA:
    """A Rocky Linux security advisory."""

    id: str = ""
    title: str = ""
    severity: str = ""
    description: str = ""
    packages: list[RockyPackage] = field(default_factory=list)
    references: list[RockyReference] = field(default_factory=list)
    cve_ids: list[str] = field(default_factory=list)
    issued_date: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RLSA":
        if not isinstance(data, Mapping):
            raise ValueError("erratum must be a JSON object")
        issued = data.get("issued") or {}
        return cls(
            id=data.get("id", ""),
            title=data.get("title", ""),
            severity=data.get("severity", ""),
            description=data.get("description", ""),
            packages=[
                RockyPackage(
                    name=pkg.get("name", ""),
                    epoch=pkg.get("epoch", ""),
                    version=pkg.get("version", ""),
                    release=pkg.get("release", ""),
                    arch=pkg.get("arch", ""),
                    filename=pkg.get("filename", ""),
                )
                for pkg in data.get("packages") or []
            ],
            references=[
                RockyReference(
                    href=ref.get("href", ""),
                    id=ref.get("id", ""),
                    title=ref.get("title", ""),
                    type=ref.get("type", ""),
                )
                for ref in data.get("references") or []
            ],
            cve_ids=list(data.get("cveids") or []),
            issued_date=issued.get("date", ""),
        )


@dataclass
class _PutInput:
    platform_name: str
    cve_id: str
    vuln: VulnerabilityDetail
    advisories: dict[str, Advisories]
    erratum: RLSA


def generalize_severity(severity: str) -> Severity:
    """Map a Rocky severity word to a severity level."""
    return {
        "low": Severity.LOW,
        "moderate": Severity.MEDIUM,
        "important": Severity.HIGH,
        "critical": Severity.CRITICAL,
    }.get(severity.lower(), Severity.UNKNOWN)


def fixed_version(prev_version: str, new_version: str, arch: str) -> str:
    """Take the new version only for x86_64 and noarch packages."""
    if arch in ("x86_64", "noarch"):
        return new_version
    return prev_version


class Rocky:
    """Loads Rocky Linux errata into a store and answers lookups."""

    def __init__(self, store: Store | None = None) -> None:
        self._store = store if store is not None else Store()

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | Path) -> None:
        root = Path(directory, "vuln-list", ROCKY_DIR)
        try:
            errata = self._parse(root)
        except ValueError as exc:
            raise ValueError(f"rocky: parse error: {exc}") from exc
        with self._store.batch_update():
            for major_version, version_errata in errata.items():
                platform = _platform_name(major_version)
                self._store.put_data_source(platform, SOURCE)
                self._commit(platform, version_errata)

    def _parse(self, root: Path) -> dict[str, list[RLSA]]:
        errata: dict[str, list[RLSA]] = {}
        for path, data in _iter_json_files(root):
            try:
                erratum = RLSA.from_dict(data)
            except (TypeError, ValueError, AttributeError) as exc:
                raise ValueError(f"json decode error in {path}: {exc}") from exc

            dirs = path.relative_to(root).parts
            if len(dirs) != 5:
                logger.warning("Invalid path: %s", path)
                continue
            # errata live in directories named by minor version, like 8.5
            major_version = dirs[0].split(".", 1)[0]
            repo, arch = dirs[1], dirs[2]
            if repo not in TARGET_REPOS:
                logger.warning("Unsupported Rocky repo: %s", repo)
                continue
            if arch not in TARGET_ARCHES:
                logger.warning("Unsupported Rocky arch: %s", arch)
                continue
            errata.setdefault(major_version, []).append(erratum)
        return errata

    def _commit(self, platform: str, errata: list[RLSA]) -> None:
        saved: dict[str, _PutInput] = {}
        for erratum in errata:
            for cve_id in erratum.cve_ids:
                previous = saved.get(cve_id)
                advisories = previous.advisories if previous else {}
                for pkg in erratum.packages:
                    # modular packages are skipped because their errata are incomplete
                    if _MODULAR_MARKER in pkg.release:
                        continue
                    version = _construct_version(pkg.epoch, pkg.version, pkg.release)
                    adv = advisories.get(pkg.name)
                    if adv is None:
                        advisories[pkg.name] = Advisories(
                            fixed_version=fixed_version(_LEGACY_FIXED_VERSION, version, pkg.arch),
                            entries=[
                                Advisory(fixed_version=version, arches=[pkg.arch], vendor_ids=[erratum.id])
                            ],
                        )
                        continue
                    adv.fixed_version = fixed_version(adv.fixed_version, version, pkg.arch)
                    existing = next((e for e in adv.entries if e.fixed_version == version), None)
                    if existing is None:
                        adv.entries.append(
                            Advisory(fixed_version=version, arches=[pkg.arch], vendor_ids=[erratum.id])
                        )
                        continue
                    if pkg.arch not in existing.arches:
                        existing.arches.append(pkg.arch)
                    if erratum.id not in existing.vendor_ids:
                        existing.vendor_ids.append(erratum.id)

                if not advisories:
                    continue

                vuln = VulnerabilityDetail(
                    severity=generalize_severity(erratum.severity),
                    references=[ref.href for ref in erratum.references],
                    title=erratum.title,
                    description=erratum.description,
                )
                saved[cve_id] = _PutInput(platform, cve_id, vuln, advisories, erratum)

        for put_input in saved.values():
            self._put(put_input)

    def _put(self, put_input: _PutInput) -> None:
        self._store.put_vulnerability_detail(put_input.cve_id, SOURCE.id, put_input.vuln)
        self._store.put_vulnerability_id(put_input.cve_id)
        for pkg_name, advisory in put_input.advisories.items():
            for entry in advisory.entries:
                entry.arches.sort()
                entry.vendor_ids.sort()
            self._store.put_advisory_detail(put_input.cve_id, pkg_name, [put_input.platform_name], advisory)

    def get(self, params: GetParams) -> list[Advisory]:
        """Return the advisories of a package that apply to the requested architecture."""
        platform = _platform_name(params.release)
        raw_advisories = self._store.for_each_advisory([platform], params.pkg_name)

        advisories: list[Advisory] = []
        for vuln_id, raw in sorted(raw_advisories.items()):
            try:
                adv = Advisories.from_dict(json.loads(raw.content))
            except (TypeError, ValueError) as exc:
                raise StoreError(f"rocky: json unmarshal error for {vuln_id}: {exc}") from exc

            # older databases have no entries, only a fixed version
            if not adv.entries:
                advisories.append(
                    Advisory(
                        vulnerability_id=vuln_id,
                        fixed_version=adv.fixed_version,
                        data_source=raw.source,
                        custom=adv.custom,
                    )
                )
                continue

            advisories.extend(
                replace(entry, vulnerability_id=vuln_id, data_source=raw.source)
                for entry in adv.entries
                if params.arch in entry.arches
            )
        return advisories