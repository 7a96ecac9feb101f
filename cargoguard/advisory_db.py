"""Advisory databases: fetching, freshness checks and loading of advisories."""

from __future__ import annotations

import enum
import logging
import subprocess
import time
import tomllib
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from datetime import time as clock_time
from pathlib import Path
from typing import Any, Iterable, Iterator
from urllib.parse import urlsplit

from .dbpath import url_to_db_path
from .krates import VersionReq

try:
    import fcntl
except ImportError:  # pragma: no cover - platforms without flock
    fcntl = None

__all__ = [
    "DEFAULT_URL",
    "FetchMode",
    "Fetch",
    "Versions",
    "Advisory",
    "AdvisoryDb",
    "DbSet",
    "FetchError",
    "fetch_via_cli",
    "get_fetch_time",
    "load_advisories",
    "load_db",
]

log = logging.getLogger(__name__)

DEFAULT_URL = "https://github.com/RustSec/advisory-db"
_LOCK_TIMEOUT = 60.0
_COLLECTIONS = ("crates", "rust")
_WARNING_KINDS = ("notice", "unmaintained", "unsound")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class FetchError(RuntimeError):
    """Raised when an advisory database cannot be fetched, opened or loaded."""


class FetchMode(enum.Enum):
    """Whether, and how, databases are fetched before use."""

    ALLOW = "allow"
    ALLOW_WITH_GIT_CLI = "allow-with-git-cli"
    DISALLOW = "disallow"


@dataclass(frozen=True)
class Fetch:
    """The fetch mode; when fetching is disallowed, how stale a database may be."""

    mode: FetchMode
    max_staleness: timedelta | None = None

    def __post_init__(self) -> None:
        if self.mode is FetchMode.DISALLOW and self.max_staleness is None:
            raise ValueError("a maximum staleness is required when fetching is disallowed")


@dataclass(frozen=True)
class Versions:
    """The version ranges an advisory declares patched or never affected."""

    patched: tuple[VersionReq, ...] = ()
    unaffected: tuple[VersionReq, ...] = ()

    def is_vulnerable(self, version: Any) -> bool:
        """True if the version is neither patched nor unaffected."""
        return not any(req.matches(version) for req in self.patched) and not any(
            req.matches(version) for req in self.unaffected
        )

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "patched": [str(req) for req in self.patched],
            "unaffected": [str(req) for req in self.unaffected],
        }


@dataclass(frozen=True)
class Advisory:
    """One advisory about a package."""

    id: str
    package: str
    title: str = ""
    description: str = ""
    url: str | None = None
    informational: str | None = None
    withdrawn: str | None = None
    collection: str | None = None
    source: str | None = None
    versions: Versions = field(default_factory=Versions)
    affected: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_unmaintained(self) -> bool:
        return self.informational == "unmaintained"

    @property
    def warning_kind(self) -> str | None:
        """The audit warning kind of an informational advisory, if it has one."""
        return self.informational if self.informational in _WARNING_KINDS else None


def _plain(value: Any) -> Any:
    """Convert TOML values into JSON-friendly ones."""
    match value:
        case dict():
            return {k: _plain(v) for k, v in value.items()}
        case list():
            return [_plain(v) for v in value]
        case datetime() | date() | clock_time():
            return value.isoformat()
    return value


def _split_markdown(text: str, path: Path) -> tuple[str, str, str]:
    lines = text.splitlines()
    stripped = [line.strip() for line in lines]
    if not stripped or stripped[0] != "```toml":
        raise ValueError(f"{path}: advisory is missing TOML front matter")
    try:
        end = stripped.index("```", 1)
    except ValueError:
        raise ValueError(f"{path}: TOML front matter is not closed") from None

    front = "\n".join(lines[1:end])
    body = lines[end + 1 :]
    title = ""
    rest: list[str] = []
    for position, line in enumerate(body):
        if line.startswith("# "):
            title = line[2:].strip()
            rest = body[position + 1 :]
            break
    return front, title, "\n".join(rest).strip()


def _parse_reqs(raw: Any, key: str, path: Path) -> tuple[VersionReq, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(r, str) for r in raw):
        raise ValueError(f"{path}: '{key}' must be an array of strings")
    try:
        return tuple(VersionReq.parse(r) for r in raw)
    except ValueError as err:
        raise ValueError(f"{path}: {err}") from err


def _parse_advisory(path: Path, collection: str) -> Advisory:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".md":
        front, title, description = _split_markdown(text, path)
    else:
        front, title, description = text, "", ""

    try:
        document = tomllib.loads(front)
    except tomllib.TOMLDecodeError as err:
        raise ValueError(f"{path}: invalid TOML: {err}") from err

    table = document.get("advisory")
    if not isinstance(table, dict):
        raise ValueError(f"{path}: missing [advisory] table")
    for key in ("id", "package"):
        if not isinstance(table.get(key), str):
            raise ValueError(f"{path}: [advisory] requires a string '{key}'")

    title = title or str(table.get("title", ""))
    description = description or str(table.get("description", "")).strip()

    versions_table = document.get("versions", {})
    if not isinstance(versions_table, dict):
        raise ValueError(f"{path}: [versions] must be a table")
    versions = Versions(
        _parse_reqs(versions_table.get("patched"), "patched", path),
        _parse_reqs(versions_table.get("unaffected"), "unaffected", path),
    )

    metadata = _plain(table)
    metadata["collection"] = collection
    metadata["title"] = title
    metadata["description"] = description
    affected = document.get("affected")

    withdrawn = table.get("withdrawn")
    return Advisory(
        id=table["id"],
        package=table["package"],
        title=title,
        description=description,
        url=table.get("url"),
        informational=table.get("informational"),
        withdrawn=None if withdrawn is None else _plain(withdrawn),
        collection=collection,
        source=table.get("source"),
        versions=versions,
        affected=_plain(affected) if isinstance(affected, dict) else None,
        metadata=metadata,
    )


def load_advisories(path: Path | str) -> dict[str, Advisory]:
    """Read every advisory under the ``crates`` and ``rust`` directories of a database."""
    root = Path(path)
    advisories: dict[str, Advisory] = {}
    for collection in _COLLECTIONS:
        directory = root / collection
        if not directory.is_dir():
            continue
        for file in sorted(directory.rglob("*")):
            if file.suffix in (".md", ".toml") and file.is_file():
                advisory = _parse_advisory(file, collection)
                advisories[advisory.id] = advisory
    return advisories


@dataclass
class AdvisoryDb:
    """A loaded advisory database and where it came from."""

    url: str
    advisories: dict[str, Advisory]
    path: Path
    fetch_time: datetime

    def get(self, advisory_id: Any) -> Advisory | None:
        return self.advisories.get(str(advisory_id))

    def __iter__(self) -> Iterator[Advisory]:
        return iter(self.advisories.values())

    def __len__(self) -> int:
        return len(self.advisories)


@contextmanager
def _db_lock(path: Path) -> Iterator[None]:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a+") as handle:
        if fcntl is None:
            yield
            return
        deadline = time.monotonic() + _LOCK_TIMEOUT
        waiting = False
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError as err:
                if not waiting:
                    log.info("waiting on advisory db lock '%s'", path)
                    waiting = True
                if time.monotonic() >= deadline:
                    raise FetchError("failed to acquire advisory database lock") from err
                time.sleep(0.1)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@dataclass
class DbSet:
    """A collection of advisory databases queried together."""

    dbs: list[AdvisoryDb] = field(default_factory=list)

    @classmethod
    def load(cls, root: Path | str, urls: Iterable[str], fetch: Fetch) -> DbSet:
        """Fetch (if allowed) and load each database under ``root``."""
        urls = list(urls)
        if not urls:
            log.info("No advisory database configured, falling back to default '%s'", DEFAULT_URL)
            urls.append(DEFAULT_URL)
        root = Path(root)

        with _db_lock(root / "db.lock"), ThreadPoolExecutor() as pool:
            dbs = list(pool.map(lambda url: load_db(url, root, fetch), urls))
        return cls(dbs)

    def has_advisory(self, advisory_id: Any) -> bool:
        return any(db.get(advisory_id) is not None for db in self.dbs)

    def __iter__(self) -> Iterator[AdvisoryDb]:
        return iter(self.dbs)


def _run_git(args: list[str]) -> str:
    try:
        output = subprocess.run(["git", *args], capture_output=True, check=False)
    except OSError as err:
        raise FetchError(f"failed to spawn git: {err}") from err
    if output.returncode == 0:
        try:
            return output.stdout.decode("utf-8")
        except UnicodeDecodeError:
            return "git command succeeded but gave non-utf8 output"
    try:
        stderr = output.stderr.decode("utf-8")
    except UnicodeDecodeError:
        raise FetchError("git command failed and gave non-utf8 output") from None
    raise FetchError(stderr.strip() or f"git exited with status {output.returncode}")


def fetch_via_cli(url: str, db_path: Path | str) -> None:
    """Clone, or fetch and hard-reset, the database with the git executable."""
    db_path = Path(db_path)
    parent = db_path.parent
    if parent == db_path:
        raise FetchError(f"invalid directory: {db_path}")
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise FetchError(f"failed to create advisory database directory {parent}") from err

    if db_path.exists():
        # A failed reset may still leave the repository usable
        try:
            _run_git(["-C", str(db_path), "reset", "--hard"])
            log.debug("reset %s", url)
        except FetchError as err:
            log.error("failed to reset %s: %s", url, err)

        try:
            _run_git(["-C", str(db_path), "fetch"])
        except FetchError as err:
            raise FetchError(f"failed to fetch latest changes: {err}") from err
        log.debug("fetched %s", url)

        try:
            _run_git(["-C", str(db_path), "reset", "--hard", "FETCH_HEAD"])
        except FetchError as err:
            raise FetchError(f"failed to reset to FETCH_HEAD: {err}") from err
    else:
        try:
            _run_git(["clone", url, str(db_path)])
        except FetchError as err:
            raise FetchError(f"failed to clone: {err}") from err
        log.debug("cloned %s", url)


def _fetch_via_git(url: str, db_path: Path) -> None:
    scheme = urlsplit(url).scheme
    if scheme not in ("https", "ssh"):
        raise FetchError(f"expected '{url}' to be an `https` or `ssh` url")
    db_path.parent.mkdir(parents=True, exist_ok=True)
    # An existing but empty directory would make the clone fail
    if db_path.is_dir() and not any(db_path.iterdir()):
        db_path.rmdir()
    fetch_via_cli(url, db_path)


def _git_dir(repo_path: Path) -> Path:
    dot_git = repo_path / ".git"
    if dot_git.is_dir():
        return dot_git
    if (repo_path / "HEAD").is_file() and (repo_path / "objects").is_dir():
        return repo_path
    raise FetchError(f"failed to open advisory database: '{repo_path}' is not a git repository")


def _file_timestamp(git_dir: Path, name: str) -> datetime:
    try:
        mtime = (git_dir / name).stat().st_mtime
    except OSError as err:
        raise OSError(f"failed to get '{name}' metadata: {err}") from err
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


def _commit_timestamp(repo_path: Path) -> datetime:
    try:
        output = _run_git(["-C", str(repo_path), "log", "-1", "--format=%ct"])
    except FetchError as err:
        raise FetchError(f"failed to get HEAD commit: {err}") from err
    try:
        return datetime.fromtimestamp(int(output.strip()), tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as err:
        raise FetchError("unix timestamp for HEAD was out of range") from err


def get_fetch_time(repo_path: Path | str) -> datetime:
    """When the repository was last fetched.

    Uses the modification time of FETCH_HEAD, falling back to the later of the
    HEAD commit time and the modification time of HEAD.
    """
    repo_path = Path(repo_path)
    git_dir = _git_dir(repo_path)
    try:
        return _file_timestamp(git_dir, "FETCH_HEAD")
    except OSError as fh_err:
        try:
            commit_ts = _commit_timestamp(repo_path)
        except FetchError as hc_err:
            raise FetchError(f"{fh_err}: {hc_err}") from hc_err
        try:
            head_ts = _file_timestamp(git_dir, "HEAD")
        except OSError:
            head_ts = _EPOCH
        return max(commit_ts, head_ts)


def load_db(url: str, root: Path | str, fetch: Fetch) -> AdvisoryDb:
    """Fetch the database at ``url`` as allowed, check its freshness and load it."""
    db_path = url_to_db_path(root, url)
    started = time.monotonic()

    match fetch.mode:
        case FetchMode.ALLOW:
            log.debug("Fetching advisory database from '%s'", url)
            try:
                _fetch_via_git(url, db_path)
            except (FetchError, OSError) as err:
                raise FetchError(f"failed to fetch advisory database {url}: {err}") from err
        case FetchMode.ALLOW_WITH_GIT_CLI:
            log.debug("Fetching advisory database with git cli from '%s'", url)
            try:
                fetch_via_cli(url, db_path)
            except FetchError as err:
                raise FetchError(
                    f"failed to fetch advisory database {url} with cli: {err}"
                ) from err
        case FetchMode.DISALLOW:
            log.debug("Opening advisory database at '%s'", db_path)

    fetch_time = get_fetch_time(db_path)

    if fetch.mode is FetchMode.DISALLOW:
        try:
            oldest = datetime.now(timezone.utc) - fetch.max_staleness
        except OverflowError as err:
            raise FetchError("unable to compute oldest allowable update timestamp") from err
        if not fetch_time > oldest:
            raise FetchError(f"repository is stale (last update: {fetch_time})")
    else:
        log.info(
            "advisory database %s fetched in %.3fs", url, time.monotonic() - started
        )

    log.debug("loading advisory database from %s", db_path)
    try:
        advisories = load_advisories(db_path)
    except (OSError, ValueError) as err:
        raise FetchError(f"failed to load advisory database: {err}") from err
    log.debug("finished loading advisory database from %s", db_path)

    return AdvisoryDb(url=url, advisories=advisories, path=db_path, fetch_time=fetch_time)