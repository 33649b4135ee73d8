import json

import pytest

from vulnfeeds.rootio import RootIO, RootIOGetter
from vulnfeeds.store import GetParams, Store, StoreError
from vulnfeeds.types import Advisory, DataSource, Severity, Status

ROOT_URL = "https://api.root.io/external/patch_feed"
DEBIAN_SOURCE = DataSource(
    id="debian",
    name="Debian Security Tracker",
    url="https://salsa.debian.org/security-tracker-team/security-tracker",
)


def _root_source(base):
    return DataSource(id="rootio", name=f"Root.io Security Patches ({base})", url=ROOT_URL, base_id=base)


def _write_feed(root, content):
    directory = root / "vuln-list" / "rootio"
    directory.mkdir(parents=True)
    (directory / "cve_feed.json").write_text(content, encoding="utf-8")


HAPPY_FEED = {
    "debian": [
        {
            "distroversion": "12",
            "packages": [
                {
                    "pkg": {
                        "name": "sqlite3",
                        "cves": {
                            "CVE-2025-29088": {
                                "vulnerable_ranges": ["<3.40.1-2+deb12u1.root.io.2"],
                                "fixed_versions": ["3.40.1-2+deb12u1.root.io.2"],
                                "severity": "MEDIUM",
                            }
                        },
                    }
                }
            ],
        }
    ],
    "alpine": [
        {
            "distroversion": "3.17",
            "packages": [
                {
                    "pkg": {
                        "name": "memcached",
                        "cves": {
                            "CVE-2023-46853": {
                                "vulnerable_ranges": ["<1.6.17-r00071"],
                                "fixed_versions": ["1.6.17-r00071"],
                                "severity": "HIGH",
                            }
                        },
                    }
                }
            ],
        }
    ],
    "ubuntu": [
        {
            "distroversion": "22.04",
            "packages": [
                {
                    "pkg": {
                        "name": "shadow",
                        "cves": {
                            "CVE-2023-29383": {
                                "vulnerable_ranges": ["<1:4.8.1-2ubuntu2.2.root.io.2"],
                                "fixed_versions": ["1:4.8.1-2ubuntu2.2.root.io.2"],
                                "severity": "CRITICAL",
                            }
                        },
                    }
                }
            ],
        }
    ],
}


@pytest.fixture
def updated(tmp_path):
    _write_feed(tmp_path, json.dumps(HAPPY_FEED))
    store = Store()
    RootIO(store).update(tmp_path)
    return store


@pytest.mark.parametrize(
    ("platform", "base"),
    [("root.io debian 12", "debian"), ("root.io alpine 3.17", "alpine"), ("root.io ubuntu 22.04", "ubuntu")],
)
def test_update_data_sources(updated, platform, base):
    assert DataSource.from_dict(updated.get(["data-source", platform])) == _root_source(base)


@pytest.mark.parametrize(
    ("cve", "platform", "pkg", "version", "severity"),
    [
        ("CVE-2025-29088", "root.io debian 12", "sqlite3", "3.40.1-2+deb12u1.root.io.2", Severity.MEDIUM),
        ("CVE-2023-46853", "root.io alpine 3.17", "memcached", "1.6.17-r00071", Severity.HIGH),
        ("CVE-2023-29383", "root.io ubuntu 22.04", "shadow", "1:4.8.1-2ubuntu2.2.root.io.2", Severity.CRITICAL),
    ],
)
def test_update_advisories(updated, cve, platform, pkg, version, severity):
    value = updated.get(["advisory-detail", cve, platform, pkg])
    assert Advisory.from_dict(value) == Advisory(
        vulnerable_versions=[f"<{version}"], patched_versions=[version], severity=severity
    )
    assert updated.get(["vulnerability-id", cve]) == {}


def test_update_unsupported_os(tmp_path):
    feed = {"centos": HAPPY_FEED["debian"]}
    _write_feed(tmp_path, json.dumps(feed))
    store = Store()
    RootIO(store).update(tmp_path)
    assert not store.has_bucket(["advisory-detail"])
    assert not store.has_bucket(["vulnerability-id"])
    assert not store.has_bucket(["vulnerability-detail"])


def test_update_sad_path(tmp_path):
    _write_feed(tmp_path, "{broken")
    with pytest.raises(ValueError, match="json decode error"):
        RootIO(Store()).update(tmp_path)


def test_update_invalid_severity_is_unknown(tmp_path):
    feed = {
        "debian": [
            {
                "distroversion": "11",
                "packages": [
                    {"pkg": {"name": "zlib", "cves": {"CVE-1": {"fixed_versions": ["1"], "severity": "bad"}}}}
                ],
            }
        ]
    }
    _write_feed(tmp_path, json.dumps(feed))
    store = Store()
    RootIO(store).update(tmp_path)
    assert store.get(["advisory-detail", "CVE-1", "root.io debian 11", "zlib"]) == {"PatchedVersions": ["1"]}


def test_name():
    assert RootIO(Store()).name() == "rootio"


@pytest.fixture
def fixture_store():
    store = Store()
    with store.batch_update():
        for base in ("debian", "ubuntu", "alpine"):
            for version in ("11", "12", "20.04", "3.19"):
                store.put_data_source(f"root.io {base} {version}", _root_source(base))
        store.put_data_source("debian 10", DEBIAN_SOURCE)
        store.put_data_source("debian 11", DEBIAN_SOURCE)

        store.put_advisory_detail(
            "CVE-2023-0464", "openssl", ["root.io debian 11"],
            Advisory(vulnerable_versions=[">=1.1.1, <1.1.1t"], patched_versions=["1.1.1t-1+deb11u2"]),
        )
        store.put_advisory_detail(
            "CVE-2024-13176", "openssl", ["root.io debian 12"],
            Advisory(
                vulnerable_versions=["<3.0.15-1~deb12u1.root.io.1", ">3.0.15-1~deb12u1.root.io.1 <3.0.16-1~deb12u1"],
                patched_versions=["3.0.15-1~deb12u1.root.io.1", "3.0.16-1~deb12u1"],
            ),
        )
        store.put_advisory_detail(
            "CVE-2023-44487", "nginx", ["root.io ubuntu 20.04"],
            Advisory(vulnerable_versions=["<1.22.1-9+deb12u2.root.io.1"], patched_versions=["1.22.1-9+deb12u2.root.io.1"]),
        )
        store.put_advisory_detail(
            "CVE-2024-32487", "less", ["root.io alpine 3.19"],
            Advisory(vulnerable_versions=["<643-r00072"], patched_versions=["643-r00072"]),
        )
        for cve in ("CVE-2024-10041", "CVE-2024-22365"):
            store.put_advisory_detail(
                cve, "pam", ["root.io debian 11"],
                Advisory(
                    vulnerable_versions=["<1.5.2-6+deb12u1.root.io.3"],
                    patched_versions=["1.5.2-6+deb12u1.root.io.3"],
                    severity=Severity.MEDIUM if cve == "CVE-2024-10041" else Severity.UNKNOWN,
                ),
            )
        for release in ("10", "11"):
            store.put_advisory_detail(
                "CVE-2024-10041", "pam", [f"debian {release}"],
                Advisory(status=Status.AFFECTED, severity=Severity.LOW),
            )
            store.put_advisory_detail(
                "CVE-2024-22365", "pam", [f"debian {release}"], Advisory(fixed_version="1.5.2-6+deb12u2")
            )
    return store


def test_get_only_root_debian(fixture_store):
    got = RootIOGetter("debian", fixture_store).get(GetParams(release="11", pkg_name="openssl"))
    assert got == [
        Advisory(
            vulnerability_id="CVE-2023-0464",
            vulnerable_versions=[">=1.1.1, <1.1.1t"],
            patched_versions=["1.1.1t-1+deb11u2"],
            data_source=_root_source("debian"),
        )
    ]


def test_get_root_with_two_ranges(fixture_store):
    got = RootIOGetter("debian", fixture_store).get(GetParams(release="12", pkg_name="openssl"))
    assert got == [
        Advisory(
            vulnerability_id="CVE-2024-13176",
            vulnerable_versions=["<3.0.15-1~deb12u1.root.io.1", ">3.0.15-1~deb12u1.root.io.1 <3.0.16-1~deb12u1"],
            patched_versions=["3.0.15-1~deb12u1.root.io.1", "3.0.16-1~deb12u1"],
            data_source=_root_source("debian"),
        )
    ]


def test_get_only_root_ubuntu(fixture_store):
    got = RootIOGetter("ubuntu", fixture_store).get(GetParams(release="20.04", pkg_name="nginx"))
    assert got == [
        Advisory(
            vulnerability_id="CVE-2023-44487",
            vulnerable_versions=["<1.22.1-9+deb12u2.root.io.1"],
            patched_versions=["1.22.1-9+deb12u2.root.io.1"],
            data_source=_root_source("ubuntu"),
        )
    ]


def test_get_only_root_alpine(fixture_store):
    got = RootIOGetter("alpine", fixture_store).get(GetParams(release="3.19", pkg_name="less"))
    assert got == [
        Advisory(
            vulnerability_id="CVE-2024-32487",
            vulnerable_versions=["<643-r00072"],
            patched_versions=["643-r00072"],
            data_source=_root_source("alpine"),
        )
    ]


def test_get_root_overrides_debian(fixture_store):
    got = RootIOGetter("debian", fixture_store).get(GetParams(release="11", pkg_name="pam"))
    assert got == [
        Advisory(
            vulnerability_id="CVE-2024-10041",
            vulnerable_versions=["<1.5.2-6+deb12u1.root.io.3"],
            patched_versions=["1.5.2-6+deb12u1.root.io.3"],
            severity=Severity.MEDIUM,
            data_source=_root_source("debian"),
        ),
        Advisory(
            vulnerability_id="CVE-2024-22365",
            vulnerable_versions=["<1.5.2-6+deb12u1.root.io.3"],
            patched_versions=["1.5.2-6+deb12u1.root.io.3"],
            data_source=_root_source("debian"),
        ),
    ]


def test_get_only_debian(fixture_store):
    got = RootIOGetter("debian", fixture_store).get(GetParams(release="10", pkg_name="pam"))
    assert got == [
        Advisory(
            vulnerability_id="CVE-2024-10041",
            status=Status.AFFECTED,
            severity=Severity.LOW,
            data_source=DEBIAN_SOURCE,
        ),
        Advisory(
            vulnerability_id="CVE-2024-22365",
            vulnerable_versions=["<1.5.2-6+deb12u2"],
            patched_versions=["1.5.2-6+deb12u2"],
            data_source=DEBIAN_SOURCE,
        ),
    ]


@pytest.fixture
def broken_store(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"root.io debian 11": {"openssl": {"CVE-2023-0464": "[]"}}}), encoding="utf-8")
    return Store(path)


def test_get_no_advisories(broken_store):
    assert RootIOGetter("debian", broken_store).get(GetParams(release="12", pkg_name="openssl")) == []


def test_get_broken_bucket(broken_store):
    with pytest.raises(StoreError, match="failed to get advisories"):
        RootIOGetter("debian", broken_store).get(GetParams(release="11", pkg_name="openssl"))


def test_getter_rejects_unknown_base_os():
    with pytest.raises(ValueError, match="unsupported base OS"):
        RootIOGetter("centos", Store())