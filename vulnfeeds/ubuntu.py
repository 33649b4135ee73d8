"""Ubuntu CVE Tracker as a vulnerability source."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping

from .store import GetParams, Store
from .types import Advisory, DataSource, Severity, VulnerabilityDetail
from .vulnerability import UBUNTU

logger = logging.getLogger(__name__)

UBUNTU_DIR = "ubuntu"
TARGET_STATUSES = ("needed", "deferred", "released")

RELEASES_MAPPING = {
    "precise": "12.04",
    "quantal": "12.10",
    "raring": "13.04",
    "saucy": "13.10",
    "trusty": "14.04",
    "utopic": "14.10",
    "vivid": "15.04",
    "wily": "15.10",
    "xenial": "16.04",
    "yakkety": "16.10",
    "zesty": "17.04",
    "artful": "17.10",
    "bionic": "18.04",
    "cosmic": "18.10",
    "disco": "19.04",
    "eoan": "19.10",
    "focal": "20.04",
    "groovy": "20.10",
    "hirsute": "21.04",
    "impish": "21.10",
    "jammy": "22.04",
    "kinetic": "22.10",
    "lunar": "23.04",
    "mantic": "23.10",
    "noble": "24.04",
    "oracular": "24.10",
    "plucky": "25.04",
    # ESM releases
    "precise/esm": "12.04-ESM",
    "trusty/esm": "14.04-ESM",
    # several tracker releases share one ESM version
    "esm-infra/xenial": "16.04-ESM",
    "esm-apps/xenial": "16.04-ESM",
    "esm-infra/bionic": "18.04-ESM",
    "esm-apps/bionic": "18.04-ESM",
    "esm-infra/focal": "20.04-ESM",
    "esm-apps/focal": "20.04-ESM",
}

SOURCE = DataSource(
    id=UBUNTU,
    name="Ubuntu CVE Tracker",
    url="https://git.launchpad.net/ubuntu-cve-tracker",
)

PutFunc = Callable[[Store, Any], None]


def _platform_name(version: str) -> str:
    return f"ubuntu {version}"


def _field(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Look a key up case-insensitively, as JSON objects are matched to fields."""
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return default


def _text(data: Mapping[str, Any], key: str) -> str:
    value = _field(data, key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return value


@dataclass(frozen=True)
class PatchStatus:
    """The state of a package in one release."""

    status: str = ""
    note: str = ""


@dataclass
class UbuntuCVE:
    """One CVE entry of the Ubuntu CVE Tracker."""

    description: str = ""
    candidate: str = ""
    priority: str = ""
    patches: dict[str, dict[str, PatchStatus]] = field(default_factory=dict)
    references: list[str] = field(default_factory=list)
    public_date: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UbuntuCVE":
        data = _mapping(data, "CVE entry")
        patches = {}
        for pkg_name, releases in _mapping(_field(data, "Patches"), "Patches").items():
            patches[pkg_name] = {
                release: PatchStatus(status=_text(status, "Status"), note=_text(status, "Note"))
                for release, status in (
                    (r, _mapping(s, "Status")) for r, s in _mapping(releases, "Patch").items()
                )
            }
        references = _field(data, "References") or []
        if not isinstance(references, list):
            raise ValueError("References must be a JSON array")
        return cls(
            description=_text(data, "Description"),
            candidate=_text(data, "Candidate"),
            priority=_text(data, "Priority"),
            patches=patches,
            references=[str(ref) for ref in references],
            public_date=_text(data, "PublicDate"),
        )


def severity_from_priority(priority: str) -> Severity:
    """Convert an Ubuntu priority into a severity level."""
    return {
        "untriaged": Severity.UNKNOWN,
        "negligible": Severity.LOW,
        "low": Severity.LOW,
        "medium": Severity.MEDIUM,
        "high": Severity.HIGH,
        "critical": Severity.CRITICAL,
    }.get(priority, Severity.UNKNOWN)


def _default_put(store: Store, advisory: Any) -> None:
    if not isinstance(advisory, UbuntuCVE):
        raise TypeError("unknown type")
    cve = advisory
    for pkg_name, patch in cve.patches.items():
        for release, status in patch.items():
            if status.status not in TARGET_STATUSES:
                continue
            os_version = RELEASES_MAPPING.get(release)
            if os_version is None:
                continue
            platform = _platform_name(os_version)
            store.put_data_source(platform, SOURCE)

            adv = Advisory(fixed_version=status.note if status.status == "released" else "")
            store.put_advisory_detail(cve.candidate, pkg_name, [platform], adv)

            detail = VulnerabilityDetail(
                severity=severity_from_priority(cve.priority),
                references=list(cve.references),
                description=cve.description,
            )
            store.put_vulnerability_detail(cve.candidate, SOURCE.id, detail)
            store.put_vulnerability_id(cve.candidate)


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


class Ubuntu:
    """Loads Ubuntu CVE Tracker entries into a store and answers lookups."""

    def __init__(self, store: Store | None = None, put: PutFunc | None = None) -> None:
        self._store = store if store is not None else Store()
        self._put = put if put is not None else _default_put

    def name(self) -> str:
        return SOURCE.id

    def update(self, directory: str | Path) -> None:
        root = Path(directory, "vuln-list", UBUNTU_DIR)
        cves = []
        for path, data in _iter_json_files(root):
            try:
                cves.append(UbuntuCVE.from_dict(data))
            except (TypeError, ValueError, AttributeError) as exc:
                raise ValueError(f"ubuntu: json decode error in {path}: {exc}") from exc

        logger.info("Saving DB")
        with self._store.batch_update():
            for cve in cves:
                self._put(self._store, cve)

    def get(self, params: GetParams) -> list[Advisory]:
        return self._store.get_advisories(_platform_name(params.release), params.pkg_name)