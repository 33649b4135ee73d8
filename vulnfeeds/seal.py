"""Seal Security patched packages, stored per base distribution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from .store import GetParams, Store, StoreError
from .types import Advisory, DataSource, Ecosystem
from .vulnerability import ALPINE, DEBIAN, RED_HAT, SEAL

logger = logging.getLogger(__name__)

SOURCE = DataSource(
    id=SEAL,
    name="Seal Security Database",
    url="http://vulnfeed.sealsecurity.io/v1/osv/renamed/vulnerabilities.zip",
)

_BASE_ECOSYSTEMS = {
    "alpine": (Ecosystem.ALPINE, ALPINE),
    "debian": (Ecosystem.DEBIAN, DEBIAN),
    "red hat": (Ecosystem.REDHAT, RED_HAT),
}


def _with_version(name: str, version: str) -> str:
    return f"{name} {version}" if version else name


@dataclass(frozen=True)
class SealBucket:
    """A bucket of Seal advisories laid over a base distribution's bucket."""

    base_name: str
    ecosystem: Ecosystem
    data_source: DataSource

    def name(self) -> str:
        return f"seal {self.base_name}"


def new_bucket(base_ecosystem: Ecosystem, base_version: str, data_source: DataSource) -> SealBucket:
    """Create the Seal bucket for a base ecosystem; Alpine and Debian ignore the version."""
    if base_ecosystem == Ecosystem.ALPINE:
        base_name = "alpine"
    elif base_ecosystem == Ecosystem.DEBIAN:
        base_name = "debian"
    elif base_ecosystem == Ecosystem.REDHAT:
        base_name = _with_version("Red Hat", base_version)
    else:
        raise ValueError(f"seal: unsupported base ecosystem for Seal bucket: {base_ecosystem}")
    return SealBucket(base_name=base_name, ecosystem=Ecosystem(base_ecosystem), data_source=data_source)


def resolve_bucket(suffix: str) -> SealBucket:
    """Resolve an ecosystem suffix such as ``alpine`` or ``red hat:8`` to a Seal bucket."""
    base, _, version = suffix.partition(":")
    try:
        ecosystem, base_id = _BASE_ECOSYSTEMS[base]
    except KeyError:
        raise ValueError(f"seal: unsupported base ecosystem: {suffix}") from None
    return new_bucket(ecosystem, version, replace(SOURCE, base_id=base_id))


def split_advisories_by_ranges(advisory: Advisory) -> list[Advisory]:
    """Split an advisory with several vulnerable ranges into one advisory per range.

    Vulnerable and patched versions are paired by position, and each range
    must mention its patched version.
    """
    if len(advisory.vulnerable_versions) == 1:
        return [advisory]

    if len(advisory.patched_versions) < len(advisory.vulnerable_versions):
        raise ValueError("seal: fewer patched versions than vulnerable version ranges")

    result = []
    for vulnerable, patched in zip(advisory.vulnerable_versions, advisory.patched_versions):
        if patched not in vulnerable:
            raise ValueError(
                "vulnerable version range should contain the patched version "
                f"(vulnerable version: {vulnerable!r}, patched version: {patched!r})"
            )
        result.append(replace(advisory, vulnerable_versions=[vulnerable], patched_versions=[patched]))
    return result


class SealGetter:
    """Answers lookups for Seal packages built on one base ecosystem."""

    def __init__(self, base_ecosystem: Ecosystem, store: Store | None = None) -> None:
        self._base_ecosystem = base_ecosystem
        self._store = store if store is not None else Store()

    def get(self, params: GetParams) -> list[Advisory]:
        bucket = new_bucket(self._base_ecosystem, params.release, DataSource())
        try:
            advisories = self._store.get_advisories(bucket.name(), params.pkg_name)
        except StoreError as exc:
            raise StoreError(f"seal: failed to get advisories for base OS: {exc}") from exc

        result: list[Advisory] = []
        for advisory in advisories:
            try:
                result.extend(split_advisories_by_ranges(advisory))
            except ValueError as exc:
                raise ValueError(f"seal: failed to split advisories by ranges: {exc}") from exc
        return result