"""A bucketed key/value store holding advisories and vulnerability details."""

from __future__ import annotations

import copy
import json
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, NamedTuple, Sequence

from .types import Advisory, DataSource, VulnerabilityDetail

DATA_SOURCE_BUCKET = "data-source"
ADVISORY_DETAIL_BUCKET = "advisory-detail"
VULNERABILITY_DETAIL_BUCKET = "vulnerability-detail"
VULNERABILITY_ID_BUCKET = "vulnerability-id"


class StoreError(Exception):
    """Raised when the store cannot read or write a value."""


@dataclass(frozen=True)
class GetParams:
    """What a source is asked to look up."""

    release: str = ""
    pkg_name: str = ""
    arch: str = ""


class RawAdvisory(NamedTuple):
    """An undecoded advisory together with the data source of its bucket."""

    source: DataSource
    content: str


def _decode(content: str, decoder: Any) -> Any:
    try:
        return decoder(json.loads(content))
    except (ValueError, TypeError) as exc:
        raise StoreError(f"json unmarshal error: {exc}") from exc


def _check_tree(node: Any, path: list[str]) -> None:
    if isinstance(node, str):
        return
    if not isinstance(node, dict):
        raise StoreError(f"invalid store content at {'/'.join(path) or '/'}")
    for key, child in node.items():
        _check_tree(child, [*path, key])


class Store:
    """Nested buckets of JSON values, optionally saved to a file.

    Buckets are dictionaries; values are JSON texts. When a path is given,
    the store is loaded from it and written back after each successful batch.
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._root: dict[str, Any] = {}
        if self._path is not None and self._path.exists():
            self._root = self._load(self._path)

    @staticmethod
    def _load(path: Path) -> dict[str, Any]:
        try:
            with path.open(encoding="utf-8") as handle:
                tree = json.load(handle)
        except (OSError, ValueError) as exc:
            raise StoreError(f"failed to load store {path}: {exc}") from exc
        if not isinstance(tree, dict):
            raise StoreError(f"invalid store content in {path}")
        _check_tree(tree, [])
        return tree

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._root, handle, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @contextmanager
    def batch_update(self) -> Iterator["Store"]:
        """Apply writes atomically: roll back on error, save on success."""
        snapshot = copy.deepcopy(self._root)
        try:
            yield self
        except BaseException:
            self._root = snapshot
            raise
        self._save()

    def _find_bucket(self, keys: Sequence[str]) -> dict[str, Any] | None:
        node: Any = self._root
        for key in keys:
            node = node.get(key) if isinstance(node, dict) else None
            if not isinstance(node, dict):
                return None
        return node

    def _create_bucket(self, keys: Sequence[str]) -> dict[str, Any]:
        node = self._root
        for key in keys:
            child = node.setdefault(key, {})
            if not isinstance(child, dict):
                raise StoreError(f"incompatible value: {key!r} is not a bucket")
            node = child
        return node

    def _put(self, bucket_keys: Sequence[str], key: str, value: Any) -> None:
        bucket = self._create_bucket(bucket_keys)
        if isinstance(bucket.get(key), dict):
            raise StoreError(f"incompatible value: {key!r} is a bucket")
        bucket[key] = json.dumps(value, separators=(",", ":"))

    def _raw(self, keys: Sequence[str]) -> str | None:
        bucket = self._find_bucket(keys[:-1])
        if bucket is None:
            return None
        value = bucket.get(keys[-1])
        return value if isinstance(value, str) else None

    def put_data_source(self, bucket: str, source: DataSource) -> None:
        self._put([DATA_SOURCE_BUCKET], bucket, source.to_dict())

    def get_data_source(self, bucket: str) -> DataSource:
        """Return the data source of a bucket, or an empty one if none is recorded."""
        content = self._raw([DATA_SOURCE_BUCKET, bucket])
        if content is None:
            return DataSource()
        return _decode(content, DataSource.from_dict)

    def put_advisory_detail(
        self, vuln_id: str, pkg_name: str, nested_buckets: Sequence[str], advisory: Any
    ) -> None:
        """Record an advisory under advisory-detail and index it by platform and package."""
        value = advisory.to_dict()
        self._put([ADVISORY_DETAIL_BUCKET, vuln_id, *nested_buckets], pkg_name, value)
        self._put([*nested_buckets, pkg_name], vuln_id, value)

    def put_vulnerability_detail(self, vuln_id: str, source_id: str, detail: VulnerabilityDetail) -> None:
        self._put([VULNERABILITY_DETAIL_BUCKET, vuln_id], source_id, detail.to_dict())

    def put_vulnerability_id(self, vuln_id: str) -> None:
        self._put([VULNERABILITY_ID_BUCKET], vuln_id, {})

    def get_vulnerability_detail(self, vuln_id: str) -> dict[str, VulnerabilityDetail]:
        bucket = self._find_bucket([VULNERABILITY_DETAIL_BUCKET, vuln_id]) or {}
        return {
            source_id: _decode(content, VulnerabilityDetail.from_dict)
            for source_id, content in bucket.items()
            if isinstance(content, str)
        }

    def for_each_advisory(self, platforms: Sequence[str], pkg_name: str) -> dict[str, RawAdvisory]:
        """Return the raw advisories of a package, keyed by vulnerability ID."""
        bucket = self._find_bucket([*platforms, pkg_name])
        if bucket is None:
            return {}
        source = self.get_data_source(platforms[0])
        return {
            vuln_id: RawAdvisory(source, content)
            for vuln_id, content in bucket.items()
            if isinstance(content, str)
        }

    def get_advisories(self, platform: str, pkg_name: str) -> list[Advisory]:
        """Return the decoded advisories of a package, sorted by vulnerability ID."""
        advisories = []
        for vuln_id, raw in sorted(self.for_each_advisory([platform], pkg_name).items()):
            advisory = _decode(raw.content, Advisory.from_dict)
            advisory.vulnerability_id = vuln_id
            advisory.data_source = raw.source if raw.source != DataSource() else None
            advisories.append(advisory)
        return advisories

    def get(self, keys: Sequence[str]) -> Any:
        """Return the decoded JSON value stored at a key path."""
        content = self._raw(keys) if keys else None
        if content is None:
            raise KeyError("/".join(keys))
        return _decode(content, lambda value: value)

    def has_bucket(self, keys: Sequence[str]) -> bool:
        return bool(keys) and self._find_bucket(keys) is not None