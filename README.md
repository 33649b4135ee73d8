# vulnfeeds

Build and query a vulnerability advisory database from vendor security
feeds that are already on disk. Each feed reads its files from a
`vuln-list` directory and writes them to a shared `Store`. The store
holds nested buckets of JSON values. The top-level buckets are
`data-source`, `advisory-detail`, `vulnerability-detail` and
`vulnerability-id`, and each advisory is also indexed under its
platform and package name. The feeds then read advisories back for a
platform and package.

## Feeds

| Module                | Class                     | Reads                                         |
|-----------------------|---------------------------|-----------------------------------------------|
| `vulnfeeds.rocky`     | `Rocky`                   | `vuln-list/rocky/<ver>/<repo>/<arch>/...`     |
| `vulnfeeds.wolfi`     | `Wolfi`                   | `vuln-list/wolfi/...`                         |
| `vulnfeeds.suse_cvrf` | `SuseCVRF(Distribution)`  | `vuln-list/cvrf/suse/{suse,opensuse}/...`     |
| `vulnfeeds.ubuntu`    | `Ubuntu`                  | `vuln-list/ubuntu/...`                        |
| `vulnfeeds.rootio`    | `RootIO`                  | `vuln-list/rootio/cve_feed.json`              |

Each class has `name()`, `update(directory)` and, except for `RootIO`,
`get(params)`. The lookup classes are described below:

- `vulnfeeds.rootio.RootIOGetter(base_os, store)` reads advisories for
  `"debian"`, `"ubuntu"` or `"alpine"` and merges them with Root.io's
  patches. Where both have an advisory for the same vulnerability,
  Root.io's advisory is kept. The result is sorted by vulnerability ID.
- `vulnfeeds.seal.SealGetter(base_ecosystem, store)` reads Seal
  advisories laid over Alpine, Debian or Red Hat buckets. It splits
  advisories that have several vulnerable ranges into one advisory per
  range. `resolve_bucket`, `new_bucket` and `split_advisories_by_ranges`
  are available on their own.

`vulnfeeds.sources.all_sources(store)` returns the loading feeds, in
update order, all writing to the same store: Ubuntu, Rocky, SUSE
Enterprise Linux, openSUSE, Wolfi and Root.io.

## Installation

```
pip install .
```

Install the test extra with `pip install .[test]`, then run the tests
with `pytest`.

## Usage

```python
from vulnfeeds.store import Store, GetParams
from vulnfeeds.rocky import Rocky

store = Store()  # in memory; Store("db.json") loads and saves a file
rocky = Rocky(store)
rocky.update("cache")  # reads cache/vuln-list/rocky/...

for adv in rocky.get(GetParams(release="8", pkg_name="bind", arch="x86_64")):
    print(adv.vulnerability_id, adv.fixed_version)
```

To load every feed:

```python
from vulnfeeds.sources import all_sources

for source in all_sources(store):
    source.update("cache")
```

Writes happen inside `Store.batch_update()`. If the batch fails, the
writes are rolled back. If the store was given a path, the file is
written after each batch that succeeds. To read raw values, use
`Store.get(keys)` and `Store.has_bucket(keys)`.

To merge the details stored for one vulnerability into a single record,
use `DetailResolver` from `vulnfeeds.vulnerability`:

```python
from vulnfeeds.vulnerability import DetailResolver

resolver = DetailResolver(store)
details = resolver.get_details("CVE-2021-25215")
if details and not resolver.is_rejected(details):
    vuln = resolver.normalize("CVE-2021-25215", details)
    print(vuln.severity, vuln.title)
```

## Errors

- A missing feed directory or feed file raises `FileNotFoundError`.
- A file that is not valid JSON, or that has the wrong shape, raises
  `ValueError`. The message names the file.
- A stored record that cannot be decoded, or a store file that cannot
  be loaded, raises `vulnfeeds.store.StoreError`.
- In `SealGetter.get`, ranges that do not pair up with their patched
  versions raise `ValueError`.

## What it does not do

- There is no command-line tool.
- Feeds are not downloaded. The `vuln-list` directory must already
  exist.
- There is no loader for Seal data. Seal advisories can only be read
  from a store that already holds them.
- Only the feeds listed above are covered.