"""Core data types shared by every vulnerability source."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Any, Mapping


class Severity(IntEnum):
    """Severity levels, ordered from least to most severe."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, value: str) -> "Severity":
        """Return the severity whose name is exactly ``value``."""
        try:
            return cls[value]
        except (KeyError, TypeError):
            raise ValueError(f"unknown severity: {value}") from None


class Status(IntEnum):
    """Fix status of a package with respect to a vulnerability."""

    UNKNOWN = 0
    NOT_AFFECTED = 1
    AFFECTED = 2
    FIXED = 3
    UNDER_INVESTIGATION = 4
    WILL_NOT_FIX = 5
    FIX_DEFERRED = 6
    END_OF_LIFE = 7

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> "Status":
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ValueError(f"unknown status: {value}") from None


class Ecosystem(str, Enum):
    """Package ecosystems known to the sources."""

    NPM = "npm"
    COMPOSER = "composer"
    PIP = "pip"
    RUBYGEMS = "rubygems"
    CARGO = "cargo"
    NUGET = "nuget"
    MAVEN = "maven"
    GO = "go"
    CONAN = "conan"
    ERLANG = "erlang"
    PUB = "pub"
    SWIFT = "swift"
    COCOAPODS = "cocoapods"
    BITNAMI = "bitnami"
    KUBERNETES = "k8s"
    JULIA = "julia"
    ALPINE = "alpine"
    DEBIAN = "debian"
    REDHAT = "redhat"
    SEAL = "seal"

    def __str__(self) -> str:
        return self.value


_JSON_KINDS = {str: "string", list: "array", bool: "bool", int: "number", float: "number"}
_FRACTION = re.compile(r"\.(\d+)")


def _require_mapping(data: Any, type_name: str) -> Mapping[str, Any]:
    if isinstance(data, Mapping):
        return data
    kind = _JSON_KINDS.get(type(data), type(data).__name__)
    raise ValueError(f"json: cannot unmarshal {kind} into {type_name}")


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    """Drop empty values, as JSON ``omitempty`` does."""
    return {k: v for k, v in values.items() if v not in (None, "", 0, [], {})}


def _parse_time(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    text = str(value).strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"cannot parse time {value!r}") from exc


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    text = value.isoformat()
    if value.utcoffset() == timedelta(0):
        text = text.replace("+00:00", "Z")
    return text


@dataclass(frozen=True)
class DataSource:
    """Where a set of advisories came from."""

    id: str = ""
    name: str = ""
    url: str = ""
    base_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _compact({"ID": self.id, "Name": self.name, "URL": self.url, "BaseID": self.base_id})

    @classmethod
    def from_dict(cls, data: Any) -> "DataSource":
        if data is None:
            return cls()
        data = _require_mapping(data, "DataSource")
        return cls(
            id=data.get("ID", ""),
            name=data.get("Name", ""),
            url=data.get("URL", ""),
            base_id=data.get("BaseID", ""),
        )


@dataclass
class Advisory:
    """A single advisory for one package."""

    vulnerability_id: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    arches: list[str] = field(default_factory=list)
    status: Status = Status.UNKNOWN
    severity: Severity = Severity.UNKNOWN
    fixed_version: str = ""
    affected_version: str = ""
    vulnerable_versions: list[str] = field(default_factory=list)
    patched_versions: list[str] = field(default_factory=list)
    unaffected_versions: list[str] = field(default_factory=list)
    data_source: DataSource | None = None
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "VulnerabilityID": self.vulnerability_id,
                "VendorIDs": list(self.vendor_ids),
                "Arches": list(self.arches),
                "Status": str(self.status) if self.status else None,
                "Severity": int(self.severity),
                "FixedVersion": self.fixed_version,
                "AffectedVersion": self.affected_version,
                "VulnerableVersions": list(self.vulnerable_versions),
                "PatchedVersions": list(self.patched_versions),
                "UnaffectedVersions": list(self.unaffected_versions),
                "DataSource": self.data_source.to_dict() if self.data_source else None,
                "Custom": self.custom,
            }
        )

    @classmethod
    def from_dict(cls, data: Any) -> "Advisory":
        if data is None:
            return cls()
        data = _require_mapping(data, "Advisory")
        source = data.get("DataSource")
        return cls(
            vulnerability_id=data.get("VulnerabilityID", ""),
            vendor_ids=list(data.get("VendorIDs") or []),
            arches=list(data.get("Arches") or []),
            status=Status.parse(data.get("Status") or 0),
            severity=Severity(data.get("Severity", 0)),
            fixed_version=data.get("FixedVersion", ""),
            affected_version=data.get("AffectedVersion", ""),
            vulnerable_versions=list(data.get("VulnerableVersions") or []),
            patched_versions=list(data.get("PatchedVersions") or []),
            unaffected_versions=list(data.get("UnaffectedVersions") or []),
            data_source=DataSource.from_dict(source) if source else None,
            custom=data.get("Custom"),
        )


@dataclass
class Advisories:
    """Per-architecture advisory entries plus a legacy fixed version."""

    fixed_version: str = ""
    entries: list[Advisory] = field(default_factory=list)
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "FixedVersion": self.fixed_version,
                "Entries": [entry.to_dict() for entry in self.entries],
                "Custom": self.custom,
            }
        )

    @classmethod
    def from_dict(cls, data: Any) -> "Advisories":
        if data is None:
            return cls()
        data = _require_mapping(data, "Advisories")
        return cls(
            fixed_version=data.get("FixedVersion", ""),
            entries=[Advisory.from_dict(entry) for entry in data.get("Entries") or []],
            custom=data.get("Custom"),
        )


@dataclass
class VulnerabilityDetail:
    """What one source says about a vulnerability."""

    id: str = ""
    cvss_score: float = 0.0
    cvss_vector: str = ""
    cvss_score_v3: float = 0.0
    cvss_vector_v3: str = ""
    cvss_score_v40: float = 0.0
    cvss_vector_v40: str = ""
    severity: Severity = Severity.UNKNOWN
    severity_v3: Severity = Severity.UNKNOWN
    severity_v40: Severity = Severity.UNKNOWN
    cwe_ids: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    title: str = ""
    description: str = ""
    published_date: datetime | None = None
    last_modified_date: datetime | None = None
    status: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "ID": self.id,
                "CvssScore": self.cvss_score,
                "CvssVector": self.cvss_vector,
                "CvssScoreV3": self.cvss_score_v3,
                "CvssVectorV3": self.cvss_vector_v3,
                "CvssScoreV40": self.cvss_score_v40,
                "CvssVectorV40": self.cvss_vector_v40,
                "Severity": int(self.severity),
                "SeverityV3": int(self.severity_v3),
                "SeverityV40": int(self.severity_v40),
                "CweIDs": list(self.cwe_ids),
                "References": list(self.references),
                "Title": self.title,
                "Description": self.description,
                "PublishedDate": _format_time(self.published_date),
                "LastModifiedDate": _format_time(self.last_modified_date),
                "Status": self.status,
            }
        )

    @classmethod
    def from_dict(cls, data: Any) -> "VulnerabilityDetail":
        if data is None:
            return cls()
        data = _require_mapping(data, "VulnerabilityDetail")
        return cls(
            id=data.get("ID", ""),
            cvss_score=float(data.get("CvssScore", 0.0)),
            cvss_vector=data.get("CvssVector", ""),
            cvss_score_v3=float(data.get("CvssScoreV3", 0.0)),
            cvss_vector_v3=data.get("CvssVectorV3", ""),
            cvss_score_v40=float(data.get("CvssScoreV40", 0.0)),
            cvss_vector_v40=data.get("CvssVectorV40", ""),
            severity=Severity(data.get("Severity", 0)),
            severity_v3=Severity(data.get("SeverityV3", 0)),
            severity_v40=Severity(data.get("SeverityV40", 0)),
            cwe_ids=list(data.get("CweIDs") or []),
            references=list(data.get("References") or []),
            title=data.get("Title", ""),
            description=data.get("Description", ""),
            published_date=_parse_time(data.get("PublishedDate")),
            last_modified_date=_parse_time(data.get("LastModifiedDate")),
            status=data.get("Status", ""),
        )


@dataclass
class CVSS:
    """CVSS vectors and scores reported by one vendor."""

    v2_vector: str = ""
    v3_vector: str = ""
    v40_vector: str = ""
    v2_score: float = 0.0
    v3_score: float = 0.0
    v40_score: float = 0.0


@dataclass
class Vulnerability:
    """A vulnerability merged from the details of every source."""

    title: str = ""
    description: str = ""
    severity: str = ""
    cwe_ids: list[str] = field(default_factory=list)
    vendor_severity: dict[str, Severity] = field(default_factory=dict)
    cvss: dict[str, CVSS] = field(default_factory=dict)
    references: list[str] = field(default_factory=list)
    published_date: datetime | None = None
    last_modified_date: datetime | None = None