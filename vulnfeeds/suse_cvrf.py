"""SUSE and openSUSE CVRF documents as a vulnerability source."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from .store import GetParams, Store
from .types import Advisory, DataSource, Severity, VulnerabilityDetail
from .vulnerability import SUSE_CVRF

logger = logging.getLogger(__name__)

SUSE_DIR = Path("cvrf", "suse")
SOURCE = DataSource(
    id=SUSE_CVRF,
    name="SUSE CVRF",
    url="https://ftp.suse.com/pub/projects/security/cvrf/",
)

_VERSION_RE = re.compile(
    r"^v?\d+(\.\d+)*"
    r"(-?[0-9A-Za-z\-~]+(\.[0-9A-Za-z\-~]+)*)?"
    r"(\+[0-9A-Za-z\-~]+(\.[0-9A-Za-z\-~]+)*)?$"
)
_INTEGER_RE = re.compile(r"^[+-]?\d+$")


class Distribution(IntEnum):
    """The SUSE family member a source reads."""

    SUSE_ENTERPRISE_LINUX = 0
    SUSE_ENTERPRISE_LINUX_MICRO = 1
    OPENSUSE = 2
    OPENSUSE_TUMBLEWEED = 3


def _opensuse_leap(version: str) -> str:
    return f"openSUSE Leap {version}"


def _opensuse_leap_micro(version: str) -> str:
    return f"openSUSE Leap Micro {version}"


def _opensuse_tumbleweed() -> str:
    return "openSUSE Tumbleweed"


def _sle(version: str) -> str:
    return f"SUSE Linux Enterprise {version}"


def _sle_micro(version: str) -> str:
    return f"SUSE Linux Enterprise Micro {version}"


def _is_version(text: str) -> bool:
    return bool(_VERSION_RE.match(text))


def _field(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Look a key up the way JSON objects are matched to fields: case-insensitively."""
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return default


def _obj(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return value


def _objs(value: Any, what: str) -> list[Mapping[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a JSON array")
    return [_obj(item, what) for item in value]


def _text(data: Mapping[str, Any], key: str) -> str:
    value = _field(data, key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


@dataclass
class _Revision:
    number: str = ""
    date: str = ""
    description: str = ""


@dataclass
class _DocumentTracking:
    id: str = ""
    status: str = ""
    version: str = ""
    initial_release_date: str = ""
    current_release_date: str = ""
    revision_history: list[_Revision] = field(default_factory=list)


@dataclass
class _DocumentNote:
    text: str = ""
    title: str = ""
    type: str = ""


@dataclass
class _Relationship:
    product_reference: str = ""
    relates_to_product_reference: str = ""
    relation_type: str = ""


@dataclass
class _Reference:
    url: str = ""
    description: str = ""


@dataclass
class _Threat:
    type: str = ""
    severity: str = ""


@dataclass
class _Status:
    type: str = ""
    product_ids: list[str] = field(default_factory=list)


@dataclass
class _Vulnerability:
    cve: str = ""
    description: str = ""
    threats: list[_Threat] = field(default_factory=list)
    references: list[_Reference] = field(default_factory=list)
    product_statuses: list[_Status] = field(default_factory=list)
    base_score: str = ""
    vector: str = ""


def _reference(data: Mapping[str, Any]) -> _Reference:
    return _Reference(url=_text(data, "URL"), description=_text(data, "Description"))


def _vulnerability(data: Mapping[str, Any]) -> _Vulnerability:
    scores = _obj(_field(data, "CVSSScoreSets"), "CVSSScoreSets")
    return _Vulnerability(
        cve=_text(data, "CVE"),
        description=_text(data, "Description"),
        threats=[
            _Threat(type=_text(t, "Type"), severity=_text(t, "Severity"))
            for t in _objs(_field(data, "Threats"), "Threats")
        ],
        references=[_reference(r) for r in _objs(_field(data, "References"), "References")],
        product_statuses=[
            _Status(type=_text(s, "Type"), product_ids=list(_field(s, "ProductID") or []))
            for s in _objs(_field(data, "ProductStatuses"), "ProductStatuses")
        ],
        base_score=_text(scores, "BaseScore"),
        vector=_text(scores, "Vector"),
    )


@dataclass
class SuseCvrf:
    """One CVRF security announcement."""

    title: str = ""
    tracking: _DocumentTracking = field(default_factory=_DocumentTracking)
    notes: list[_DocumentNote] = field(default_factory=list)
    relationships: list[_Relationship] = field(default_factory=list)
    references: list[_Reference] = field(default_factory=list)
    vulnerabilities: list[_Vulnerability] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SuseCvrf":
        data = _obj(data, "CVRF document")
        tracking = _obj(_field(data, "Tracking"), "Tracking")
        product_tree = _obj(_field(data, "ProductTree"), "ProductTree")
        return cls(
            title=_text(data, "Title"),
            tracking=_DocumentTracking(
                id=_text(tracking, "ID"),
                status=_text(tracking, "Status"),
                version=_text(tracking, "Version"),
                initial_release_date=_text(tracking, "InitialReleaseDate"),
                current_release_date=_text(tracking, "CurrentReleaseDate"),
                revision_history=[
                    _Revision(
                        number=_text(r, "Number"),
                        date=_text(r, "Date"),
                        description=_text(r, "Description"),
                    )
                    for r in _objs(_field(tracking, "RevisionHistory"), "RevisionHistory")
                ],
            ),
            notes=[
                _DocumentNote(text=_text(n, "Text"), title=_text(n, "Title"), type=_text(n, "Type"))
                for n in _objs(_field(data, "Notes"), "Notes")
            ],
            relationships=[
                _Relationship(
                    product_reference=_text(r, "ProductReference"),
                    relates_to_product_reference=_text(r, "RelatesToProductReference"),
                    relation_type=_text(r, "RelationType"),
                )
                for r in _objs(_field(product_tree, "Relationships"), "Relationships")
            ],
            references=[_reference(r) for r in _objs(_field(data, "References"), "References")],
            vulnerabilities=[
                _vulnerability(v) for v in _objs(_field(data, "Vulnerabilities"), "Vulnerabilities")
            ],
        )


@dataclass(frozen=True)
class AffectedPackage:
    """A package fixed on one OS version."""

    os_ver: str
    name: str
    fixed_version: str


def severity_from_threat(severity: str) -> Severity:
    """Map a CVRF threat description to a severity level."""
    return {
        "low": Severity.LOW,
        "moderate": Severity.MEDIUM,
        "important": Severity.HIGH,
        "critical": Severity.CRITICAL,
    }.get(severity, Severity.UNKNOWN)


def split_pkg_name(pkg_name: str) -> tuple[str, str]:
    """Split ``name-version-release`` into the name and ``version-release``."""
    name, sep, release = pkg_name.rpartition("-")
    if not sep:
        return "", ""
    name, sep, version = name.rpartition("-")
    if not sep:
        return "", ""
    return name, f"{version}-{release}"


def _detail(notes: Sequence[_DocumentNote]) -> str:
    return next((n.text for n in notes if n.type == "General" and n.title == "Details"), "")


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


class SuseCVRF:
    """Loads SUSE CVRF documents into a store and answers lookups."""

    def __init__(self, dist: Distribution | int, store: Store | None = None) -> None:
        self._dist = Distribution(dist)
        self._store = store if store is not None else Store()

    def name(self) -> str:
        if self._dist == Distribution.OPENSUSE:
            return "opensuse-cvrf"
        if self._dist == Distribution.OPENSUSE_TUMBLEWEED:
            return "opensuse-tumbleweed-cvrf"
        return SOURCE.id

    def update(self, directory: str | Path) -> None:
        logger.info("Saving SUSE CVRF")
        root = Path(directory, "vuln-list", SUSE_DIR)
        if self._dist in (Distribution.SUSE_ENTERPRISE_LINUX, Distribution.SUSE_ENTERPRISE_LINUX_MICRO):
            root /= "suse"
        elif self._dist in (Distribution.OPENSUSE, Distribution.OPENSUSE_TUMBLEWEED):
            root /= "opensuse"
        else:
            raise ValueError("suse cvrf: unknown distribution")

        cvrfs = []
        for path, data in _iter_json_files(root):
            try:
                cvrfs.append(SuseCvrf.from_dict(data))
            except (TypeError, ValueError, AttributeError) as exc:
                raise ValueError(f"suse cvrf: json decode error in {path}: {exc}") from exc

        with self._store.batch_update():
            self._commit(cvrfs)

    def _commit(self, cvrfs: Sequence[SuseCvrf]) -> None:
        saved_sources: set[str] = set()
        for cvrf in cvrfs:
            affected = self._affected_packages(cvrf.relationships)
            if not affected:
                continue

            for pkg in affected:
                if pkg.os_ver not in saved_sources:
                    self._store.put_data_source(pkg.os_ver, SOURCE)
                    saved_sources.add(pkg.os_ver)

            severity = max(
                (
                    severity_from_threat(threat.severity)
                    for vuln in cvrf.vulnerabilities
                    for threat in vuln.threats
                ),
                default=Severity.UNKNOWN,
            )
            detail = VulnerabilityDetail(
                references=[ref.url for ref in cvrf.references],
                title=cvrf.title,
                description=_detail(cvrf.notes),
                severity=severity,
            )
            self._put(cvrf, detail, affected)

    def _put(self, cvrf: SuseCvrf, detail: VulnerabilityDetail, affected: Sequence[AffectedPackage]) -> None:
        tracking_id = cvrf.tracking.id
        for pkg in affected:
            self._store.put_advisory_detail(
                tracking_id, pkg.name, [pkg.os_ver], Advisory(fixed_version=pkg.fixed_version)
            )
        self._store.put_vulnerability_detail(tracking_id, SOURCE.id, detail)
        self._store.put_vulnerability_id(tracking_id)

    def _affected_packages(self, relationships: Sequence[_Relationship]) -> list[AffectedPackage]:
        packages = []
        for relationship in relationships:
            os_ver = self.os_version(relationship.relates_to_product_reference)
            if not os_ver:
                continue
            name, version = split_pkg_name(relationship.product_reference)
            packages.append(AffectedPackage(os_ver=os_ver, name=name, fixed_version=version))
        return packages

    def os_version(self, platform_name: str) -> str:
        """Return the bucket name of a CVRF product, or an empty string if it is not tracked."""
        if "SUSE Manager" in platform_name:
            return ""
        if platform_name.startswith("openSUSE Tumbleweed"):
            return _opensuse_tumbleweed()
        if platform_name.startswith("openSUSE Leap Micro"):
            return self._versioned(platform_name, platform_name.split(), 3, _opensuse_leap_micro)
        if platform_name.startswith("openSUSE Leap"):
            return self._versioned(platform_name, platform_name.split(" "), 2, _opensuse_leap)
        if platform_name.startswith("SUSE Linux Enterprise Micro"):
            return self._versioned(platform_name, platform_name.split(" "), 4, _sle_micro)
        if "SUSE Linux Enterprise" in platform_name:
            if platform_name.startswith("SUSE Linux Enterprise Storage"):
                return ""
            return self._sle_version(platform_name)
        return ""

    @staticmethod
    def _versioned(platform_name: str, words: list[str], index: int, bucket) -> str:
        if len(words) <= index:
            logger.warning("Invalid version: %s", platform_name)
            return ""
        if not _is_version(words[index]):
            logger.warning("Invalid version: %s", platform_name)
            return ""
        return bucket(words[index])

    @staticmethod
    def _sle_version(platform_name: str) -> str:
        # handles both "15 SP7" and "16.0"
        words = platform_name.replace("-", " ").replace(".", " ").split()
        versions: list[str] = []
        for word in reversed(words[1:]):
            number = word.removeprefix("SP")
            if not _INTEGER_RE.match(number):
                continue
            versions.append(str(int(number)))
            if len(versions) == 2:
                break
        if not versions:
            logger.warning("Failed to detect version: %s", platform_name)
            return ""
        if len(versions) == 1:
            return _sle(versions[0])
        return _sle(f"{versions[1]}.{versions[0]}")

    def get(self, params: GetParams) -> list[Advisory]:
        if self._dist == Distribution.SUSE_ENTERPRISE_LINUX_MICRO:
            bucket = _sle_micro(params.release)
        elif self._dist == Distribution.SUSE_ENTERPRISE_LINUX:
            bucket = _sle(params.release)
        elif self._dist == Distribution.OPENSUSE:
            bucket = _opensuse_leap(params.release)
        elif self._dist == Distribution.OPENSUSE_TUMBLEWEED:
            bucket = _opensuse_tumbleweed()
        else:
            raise ValueError("suse cvrf: unknown distribution")
        return self._store.get_advisories(bucket, params.pkg_name)