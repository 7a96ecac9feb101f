# cargoguard

cargoguard checks the crates in a Cargo dependency graph against security
advisory databases. It also checks whether any of them have been yanked from
their registry. Results are returned as `Pack` objects that hold `Diagnostic`
values. Nothing is printed.

## What it does

- **Advisory databases.** A database is a git repository of advisories written
  as TOML or as Markdown with TOML front matter. Advisories are read from its
  `crates` and `rust` directories (`load_advisories`).
  - `DbSet.load` fetches each database with the `git` executable (clone, or
    fetch and hard reset) and loads it. It can also open databases that are
    already on disk, depending on the `Fetch` / `FetchMode` you pass.
  - Each database is stored under the root directory in a folder named by
    `url_to_db_path`.
  - A lock file (`db.lock`) under the root keeps concurrent runs apart.
- **Staleness.** When fetching is disallowed, a database is rejected if its
  last fetch is older than the allowed staleness. The last fetch time comes
  from `get_fetch_time`: the FETCH_HEAD modification time, falling back to the
  HEAD commit time.
- **Advisory matching.** `Report.generate` pairs each crate with every
  advisory that affects its version. Withdrawn advisories and advisories
  outside the `crates` collection are skipped.
- **Unmaintained crates by scope.** `Scope` controls which crates are reported
  for unmaintained advisories:
  - `ALL` reports every crate and `NONE` reports none.
  - `WORKSPACE` reports crates that a workspace member depends on directly.
  - `TRANSITIVE` reports crates whose direct dependents are not workspace
    members.
- **Yank detection.** `Indices.load` reads the index entry for each
  registry crate through a callable you supply. `Indices.is_yanked` then
  answers from that cache.
- **Ignore lists.**
  - Ignored advisories are still reported, as notes.
  - An ignore entry that matched nothing produces a warning.
  - An advisory ID that no database knows produces a warning.
  - An ignored yanked crate that was never seen produces a warning.
- **Configuration.** `load_config` parses the `[advisories]` table of a TOML
  document. It raises `ConfigError` with every problem found.
  `Config.validate` does the following:
  - removes duplicate entries, with a warning for each;
  - checks that database URLs have a domain name;
  - expands `~`, `$VAR` and `${VAR:-default}` in `db-path` (`shellexpand`);
  - defaults the path to `$CARGO_HOME/advisory-dbs`.

## Installation

```
pip install cargoguard
```

`DbSet.load` runs `git`, so `git` must be on `PATH` to fetch databases.

## Usage

```python
from cargoguard.krates import Krate, KrateGraph, Source, SourceKind
from cargoguard.advisories_config import load_config
from cargoguard.advisory_db import DbSet, Fetch, FetchMode
from cargoguard.yank_index import Indices
from cargoguard.advisories import CheckContext, check

config = load_config("""
[advisories]
ignore = ["RUSTSEC-2020-0001", "some-crate@=1.0.0"]
unmaintained = "workspace"
maximum-db-staleness = "P30D"
""")
valid, config_diagnostics = config.validate(cfg_id=0)

graph = KrateGraph()
app = graph.add(Krate("app", "0.1.0"), workspace_member=True)
dep = graph.add(Krate("smallvec", "0.6.9", Source(SourceKind.CRATES_IO)))
graph.add_dependency(app.id, dep.id)

dbs = DbSet.load(valid.db_path, valid.db_urls, Fetch(FetchMode.ALLOW))

# read_versions returns (version, yanked) pairs, or None if the crate is unknown
indices = Indices.load(graph, read_versions=lambda name, source: [("0.6.9", False)])

ctx = CheckContext(cfg=valid, krates=graph)
for pack in check(ctx, dbs, reporter=None, indices=indices):
    for diagnostic in pack:
        print(diagnostic.severity.name, diagnostic.code, diagnostic.message)
```

To use databases that are already on disk without fetching, pass
`Fetch(FetchMode.DISALLOW, max_staleness=valid.maximum_db_staleness)`.

If `check` is given a `reporter` callable, the callable receives one
audit-compatible JSON report (a `dict`) per database.

## Durations

`maximum-db-staleness` takes a subset of the RFC 3339 duration grammar:

- A month counts as 30.43 days and a year as 365 days.
- Hours, minutes and seconds must follow a `T`.
- Use `.` as the decimal separator; `,` is rejected with `DurationError`.

```python
from cargoguard.duration import parse_rfc3339_duration

parse_rfc3339_duration("P1DT12H")  # timedelta(days=1, hours=12)
```

## What it does not do

- There is no command-line program. cargoguard is a library only.
- It does not read `Cargo.lock` or run `cargo metadata`. You build the
  `KrateGraph` yourself, along with any lockfile spans in `CheckContext`.
- It does not read registry indices itself. `Indices.load` calls the
  `read_versions` function you give it.
- It does not render diagnostics as text.
- It checks advisories and yanked crates only. It has no checks for licences,
  banned crates or crate sources.

## Running the tests

```
pip install -e ".[test]"
pytest
```