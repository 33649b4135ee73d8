import json
from datetime import datetime, timezone

import pytest

from vulnfeeds.store import RawAdvisory, Store, StoreError
from vulnfeeds.types import Advisories, Advisory, DataSource, Severity, VulnerabilityDetail

SOURCE = DataSource(id="rocky", name="Rocky Linux updateinfo", url="https://download.rockylinux.org/pub/rocky/")


def test_data_source_round_trip():
    store = Store()
    store.put_data_source("rocky 8", SOURCE)
    assert store.get_data_source("rocky 8") == SOURCE
    assert store.get(["data-source", "rocky 8"]) == SOURCE.to_dict()


def test_missing_data_source_is_empty():
    assert Store().get_data_source("nowhere") == DataSource()


def test_advisory_detail_is_recorded_and_indexed():
    store = Store()
    advisory = Advisory(fixed_version="2.39-r1")
    store.put_data_source("wolfi", SOURCE)
    store.put_advisory_detail("CVE-2022-38126", "binutils", ["wolfi"], advisory)

    assert store.get(["advisory-detail", "CVE-2022-38126", "wolfi", "binutils"]) == advisory.to_dict()
    got = store.get_advisories("wolfi", "binutils")
    assert got == [Advisory(vulnerability_id="CVE-2022-38126", fixed_version="2.39-r1", data_source=SOURCE)]


def test_advisories_without_data_source_have_none():
    store = Store()
    store.put_advisory_detail("CVE-1", "bind", ["openSUSE Leap 13.1"], Advisory(fixed_version="1.0"))
    [advisory] = store.get_advisories("openSUSE Leap 13.1", "bind")
    assert advisory.data_source is None
    assert advisory.vulnerability_id == "CVE-1"


def test_advisories_are_sorted_by_id():
    store = Store()
    for vuln_id in ["CVE-3", "CVE-1", "CVE-2"]:
        store.put_advisory_detail(vuln_id, "pkg", ["plat"], Advisory(fixed_version="1"))
    assert [a.vulnerability_id for a in store.get_advisories("plat", "pkg")] == ["CVE-1", "CVE-2", "CVE-3"]


def test_unknown_package_has_no_advisories():
    assert Store().get_advisories("plat", "pkg") == []


def test_for_each_advisory_returns_raw_content():
    store = Store()
    store.put_data_source("rocky 9", SOURCE)
    advisories = Advisories(fixed_version="1", entries=[Advisory(fixed_version="1", arches=["x86_64"])])
    store.put_advisory_detail("CVE-2022-0396", "bind", ["rocky 9"], advisories)

    raw = store.for_each_advisory(["rocky 9"], "bind")
    assert list(raw) == ["CVE-2022-0396"]
    entry = raw["CVE-2022-0396"]
    assert isinstance(entry, RawAdvisory)
    assert entry.source == SOURCE
    assert Advisories.from_dict(json.loads(entry.content)) == advisories


def test_vulnerability_id_is_empty_mapping():
    store = Store()
    store.put_vulnerability_id("CVE-2021-25215")
    assert store.get(["vulnerability-id", "CVE-2021-25215"]) == {}


def test_vulnerability_detail_round_trip():
    store = Store()
    detail = VulnerabilityDetail(
        severity=Severity.HIGH,
        title="Important: bind security update",
        published_date=datetime(2001, 1, 1, 1, 2, 3, tzinfo=timezone.utc),
    )
    store.put_vulnerability_detail("CVE-2021-25215", "rocky", detail)
    assert store.get_vulnerability_detail("CVE-2021-25215") == {"rocky": detail}
    assert store.get_vulnerability_detail("CVE-0000-0000") == {}


def test_batch_update_rolls_back_on_error():
    store = Store()
    with pytest.raises(RuntimeError):
        with store.batch_update():
            store.put_vulnerability_id("CVE-1")
            raise RuntimeError("boom")
    assert not store.has_bucket(["vulnerability-id"])


def test_batch_update_persists_to_file(tmp_path):
    path = tmp_path / "db.json"
    store = Store(path)
    with store.batch_update():
        store.put_data_source("wolfi", SOURCE)
    assert Store(path).get_data_source("wolfi") == SOURCE


def test_broken_content_raises_store_error(tmp_path):
    path = tmp_path / "db.json"
    path.write_text(json.dumps({"rocky 9": {"bind": {"CVE-2022-0396": '"broken"'}}}))
    with pytest.raises(StoreError, match="json unmarshal error"):
        Store(path).get_advisories("rocky 9", "bind")


def test_invalid_store_file_raises(tmp_path):
    path = tmp_path / "db.json"
    path.write_text(json.dumps({"bucket": [1, 2]}))
    with pytest.raises(StoreError):
        Store(path)


def test_has_bucket_and_missing_keys():
    store = Store()
    store.put_vulnerability_id("CVE-1")
    assert store.has_bucket(["vulnerability-id"])
    assert not store.has_bucket(["vulnerability-id", "CVE-1"])
    with pytest.raises(KeyError):
        store.get(["vulnerability-id", "CVE-2"])


def test_value_cannot_replace_bucket():
    store = Store()
    store.put_advisory_detail("CVE-1", "pkg", ["plat"], Advisory())
    with pytest.raises(StoreError, match="incompatible value"):
        store.put_data_source("x", SOURCE) or store._put([], "plat", {})