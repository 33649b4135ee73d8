"""Source identifiers and merging of vulnerability details across sources."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping

from .store import Store, StoreError
from .types import CVSS, Ecosystem, Severity, Vulnerability, VulnerabilityDetail

logger = logging.getLogger(__name__)

NVD = "nvd"
RED_HAT = "redhat"
RED_HAT_OVAL = "redhat-oval"
DEBIAN = "debian"
UBUNTU = "ubuntu"
CENTOS = "centos"
ROCKY = "rocky"
FEDORA = "fedora"
AMAZON = "amazon"
ORACLE_OVAL = "oracle-oval"
SUSE_CVRF = "suse-cvrf"
ALPINE = "alpine"
ARCH_LINUX = "arch-linux"
ALMA = "alma"
AZURE_LINUX = "azure"
CBL_MARINER = "cbl-mariner"
PHOTON = "photon"
RUBY_SEC = "ruby-advisory-db"
PHP_SECURITY_ADVISORIES = "php-security-advisories"
NODEJS_SECURITY_WG = "nodejs-security-wg"
GHSA = "ghsa"
GLAD = "glad"
OSV = "osv"
WOLFI = "wolfi"
CHAINGUARD = "chainguard"
BITNAMI_VULNDB = "bitnami"
K8S_VULNDB = "k8s"
GO_VULNDB = "govulndb"
JULIA = "julia"
SEAL = "seal"
AQUA = "aqua"
ECHO = "echo"
MINIMOS = "minimos"
ROOTIO = "rootio"

# Order of precedence when choosing title, description, severity and CWE IDs.
ALL_SOURCE_IDS = (
    NVD, RED_HAT, RED_HAT_OVAL, DEBIAN, UBUNTU, ALPINE, AMAZON, ORACLE_OVAL,
    SUSE_CVRF, PHOTON, ARCH_LINUX, ALMA, ROCKY, CBL_MARINER, AZURE_LINUX,
    RUBY_SEC, PHP_SECURITY_ADVISORIES, NODEJS_SECURITY_WG, GHSA, GLAD, AQUA,
    OSV, K8S_VULNDB, WOLFI, CHAINGUARD, BITNAMI_VULNDB, GO_VULNDB, JULIA,
    ECHO, MINIMOS, ROOTIO,
)

_REJECTED_STATUS = "REJECTED"
_REJECT_KEYWORD = "** REJECT **"
_REJECTED_REASON = "Rejected reason:"
_REJECTED_DO_NOT_USE = "DO NOT USE THIS CANDIDATE NUMBER"

Details = Mapping[str, VulnerabilityDetail]


def _in_precedence(details: Details):
    for source in ALL_SOURCE_IDS:
        detail = details.get(source)
        if detail is not None:
            yield source, detail


def score_to_severity(score: float) -> Severity:
    if score >= 9.0:
        return Severity.CRITICAL
    if score >= 7.0:
        return Severity.HIGH
    if score >= 4.0:
        return Severity.MEDIUM
    if score > 0.0:
        return Severity.LOW
    return Severity.UNKNOWN


def normalize_pkg_name(eco_type: str, pkg_name: str) -> str:
    """Normalize a package name the way its ecosystem compares names."""
    if eco_type == Ecosystem.PIP:
        return pkg_name.lower().replace("_", "-")
    if eco_type == Ecosystem.SWIFT:
        return pkg_name.removeprefix("https://").removesuffix(".git")
    if eco_type in (Ecosystem.GO, Ecosystem.COCOAPODS, Ecosystem.JULIA):
        return pkg_name
    return pkg_name.lower()


def _cvss(details: Details) -> dict[str, CVSS]:
    result = {}
    for vendor, d in details.items():
        if (
            (not d.cvss_vector or d.cvss_score == 0)
            and (not d.cvss_vector_v3 or d.cvss_score_v3 == 0)
            and (not d.cvss_vector_v40 or d.cvss_score_v40 == 0)
        ):
            continue
        result[vendor] = CVSS(
            v2_vector=d.cvss_vector,
            v3_vector=d.cvss_vector_v3,
            v40_vector=d.cvss_vector_v40,
            v2_score=d.cvss_score,
            v3_score=d.cvss_score_v3,
            v40_score=d.cvss_score_v40,
        )
    return result


def _vendor_severity(details: Details) -> dict[str, Severity]:
    result = {}
    for vendor, d in details.items():
        if d.severity_v40 != Severity.UNKNOWN:
            result[vendor] = d.severity_v40
        elif d.severity_v3 != Severity.UNKNOWN:
            result[vendor] = d.severity_v3
        elif d.severity != Severity.UNKNOWN:
            result[vendor] = d.severity
        elif d.cvss_score_v40 > 0:
            result[vendor] = score_to_severity(d.cvss_score_v40)
        elif d.cvss_score_v3 > 0:
            result[vendor] = score_to_severity(d.cvss_score_v3)
        elif d.cvss_score > 0:
            result[vendor] = score_to_severity(d.cvss_score)
    return result


def _severity(details: Details) -> Severity:
    for _, d in _in_precedence(details):
        for score in (d.cvss_score_v40, d.cvss_score_v3, d.cvss_score):
            if score > 0:
                return score_to_severity(score)
        for severity in (d.severity_v40, d.severity_v3, d.severity):
            if severity != Severity.UNKNOWN:
                return Severity(severity)
    return Severity.UNKNOWN


def _references(details: Details) -> list[str]:
    references = set()
    for source, d in _in_precedence(details):
        if source == AMAZON:  # Amazon lists unrelated references
            continue
        for ref in d.references:
            references.update(ref.strip().split("\n"))
    return sorted(references)


def _date_for(vuln_id: str, details: Details, attribute: str) -> datetime | None:
    if vuln_id.startswith("CVE-"):
        detail = details.get(NVD)
    elif vuln_id.startswith("GHSA-"):
        detail = details.get(GHSA)
    else:
        return None
    return getattr(detail, attribute) if detail is not None else None


class DetailResolver:
    """Reads vulnerability details and merges them into one vulnerability."""

    def __init__(self, store: Store | None = None) -> None:
        self._store = store if store is not None else Store()

    def get_details(self, vuln_id: str) -> dict[str, VulnerabilityDetail] | None:
        """Return the details per source, or None when there are none or they cannot be read."""
        try:
            details = self._store.get_vulnerability_detail(vuln_id)
        except StoreError as exc:
            logger.warning("Failed to get vulnerability detail: %s", exc)
            return None
        return details or None

    def is_rejected(self, details: Details) -> bool:
        for _, d in _in_precedence(details):
            if (
                d.status.casefold() == _REJECTED_STATUS.casefold()
                or _REJECT_KEYWORD in d.description
                or _REJECTED_DO_NOT_USE in d.description
                or d.description.startswith(_REJECTED_REASON)
            ):
                return True
        return False

    def normalize(self, vuln_id: str, details: Details) -> Vulnerability:
        return Vulnerability(
            title=next((d.title for _, d in _in_precedence(details) if d.title), ""),
            description=next((d.description for _, d in _in_precedence(details) if d.description), ""),
            severity=str(_severity(details)),
            cwe_ids=next((list(d.cwe_ids) for _, d in _in_precedence(details) if d.cwe_ids), []),
            vendor_severity=_vendor_severity(details),
            cvss=_cvss(details),
            references=_references(details),
            published_date=_date_for(vuln_id, details, "published_date"),
            last_modified_date=_date_for(vuln_id, details, "last_modified_date"),
        )