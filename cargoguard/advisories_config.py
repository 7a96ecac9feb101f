"""The ``[advisories]`` section of the configuration: parsing and validation."""

from __future__ import annotations

import enum
import ipaddress
import tomllib
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar
from urllib.parse import urlsplit

from .diagnostics import Diagnostic, Label, LintLevel, Scope, Severity, Span
from .duration import DurationError, parse_rfc3339_duration
from .krates import PackageSpec
from .shellexpand import Expander, ExpansionError, Var, normal_expand, shellexpand

__all__ = [
    "IdKind",
    "AdvisoryId",
    "IgnoreId",
    "IgnoreYanked",
    "Config",
    "ValidConfig",
    "ConfigError",
    "detect_id_kind",
    "load_config",
]

# Location used where the position of a value in its file is not known
_NO_SPAN: Span = (0, 0)
_DEFAULT_DB_STALENESS = timedelta(seconds=90.0 * 24.0 * 60.0 * 60.0 * 60.0)
_SEVERITIES = ("none", "low", "medium", "high", "critical")
_MISSING = object()

T = TypeVar("T")
E = TypeVar("E", bound=enum.Enum)


class ConfigError(ValueError):
    """Raised when the configuration cannot be deserialized; holds every error found."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class IdKind(enum.Enum):
    """The family an advisory identifier belongs to, detected from its prefix."""

    RUSTSEC = "RUSTSEC-"
    CVE = "CVE-"
    TALOS = "TALOS-"
    GHSA = "GHSA-"
    OTHER = ""


def detect_id_kind(value: str) -> IdKind:
    """Detect the kind of an advisory identifier from its prefix."""
    for kind in IdKind:
        if kind is not IdKind.OTHER and value.startswith(kind.value):
            return kind
    return IdKind.OTHER


@dataclass(frozen=True, order=True)
class AdvisoryId:
    """An advisory identifier; ordered and compared by its text."""

    value: str
    kind: IdKind = field(default=IdKind.OTHER, compare=False)
    year: int | None = field(default=None, compare=False)
    span: Span = field(default=_NO_SPAN, compare=False)

    @classmethod
    def parse(cls, value: str) -> AdvisoryId:
        """Parse an identifier; known kinds that carry a year must have a valid one."""
        if not value:
            raise ValueError("advisory id cannot be empty")
        kind = detect_id_kind(value)
        year = None
        if kind in (IdKind.RUSTSEC, IdKind.CVE, IdKind.TALOS):
            parts = value.split("-")
            if len(parts) < 2 or not (parts[1].isascii() and parts[1].isdigit()):
                raise ValueError(f"invalid year in advisory id '{value}'")
            year = int(parts[1])
        return cls(value, kind, year)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class IgnoreId:
    """An advisory the user chose to ignore, with an optional reason."""

    id: AdvisoryId
    reason: str | None = field(default=None, compare=False)
    reason_span: Span = field(default=_NO_SPAN, compare=False)
    span: Span = field(default=_NO_SPAN, compare=False)


@dataclass(frozen=True)
class IgnoreYanked:
    """A crate whose yanked versions the user chose to ignore."""

    spec: PackageSpec
    reason: str | None = field(default=None, compare=False)
    span: Span = field(default=_NO_SPAN, compare=False)


def _type_str(value: Any) -> str:
    match value:
        case bool():
            return "boolean"
        case int():
            return "integer"
        case float():
            return "float"
        case str():
            return "string"
        case list():
            return "array"
        case dict():
            return "table"
        case datetime() | date() | time():
            return "datetime"
    return type(value).__name__


class _Table:
    """Takes keys out of a TOML table, recording errors instead of stopping."""

    def __init__(self, value: Any, errors: list[str], what: str) -> None:
        self.errors = errors
        self.what = what
        if isinstance(value, dict):
            self.items: dict[str, Any] = dict(value)
        else:
            errors.append(f"expected a table for {what}, found {_type_str(value)}")
            self.items = {}

    def take(self, key: str) -> Any:
        return self.items.pop(key, _MISSING)

    def get(self, key: str, kind: type[T], expected: str, required: bool = False) -> T | None:
        value = self.take(key)
        if value is _MISSING:
            if required:
                self.errors.append(f"missing required key '{key}' in {self.what}")
            return None
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            self.errors.append(f"expected {expected} for '{key}', found {_type_str(value)}")
            return None
        return value

    def finalize(self) -> None:
        if self.items:
            keys = ", ".join(f"'{k}'" for k in self.items)
            self.errors.append(f"unexpected keys in {self.what}: {keys}")


def _parse_enum(enum_cls: type[E], raw: Any, key: str, errors: list[str]) -> E | None:
    if raw is _MISSING:
        return None
    if not isinstance(raw, str):
        errors.append(f"expected a string for '{key}', found {_type_str(raw)}")
        return None
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        errors.append(f"'{raw}' is not a valid value for '{key}', expected one of {allowed}")
        return None


def _parse_url(raw: Any, errors: list[str]) -> str | None:
    if not isinstance(raw, str):
        errors.append(f"expected a url string, found {_type_str(raw)}")
        return None
    try:
        parts = urlsplit(raw)
    except ValueError as err:
        errors.append(f"failed to parse url '{raw}': {err}")
        return None
    if not parts.scheme:
        errors.append(f"failed to parse url '{raw}': relative URL without a base")
        return None
    return raw


def _parse_ignore_id(raw: dict[str, Any], errors: list[str]) -> IgnoreId | None:
    table = _Table(raw, errors, "ignore entry")
    id_text = table.get("id", str, "a string", required=True)
    reason = table.get("reason", str, "a string")
    table.finalize()
    if id_text is None:
        return None
    try:
        advisory_id = AdvisoryId.parse(id_text)
    except ValueError as err:
        errors.append(f"failed to parse advisory id: {err}")
        return None
    return IgnoreId(advisory_id, reason)


def _parse_spec_table(raw: dict[str, Any], errors: list[str]) -> IgnoreYanked | None:
    table = _Table(raw, errors, "package spec")
    spec: PackageSpec | None = None
    if "crate" in raw:
        text = table.get("crate", str, "a string")
        if text is not None:
            try:
                spec = PackageSpec.parse(text)
            except ValueError as err:
                errors.append(str(err))
    else:
        name = table.get("name", str, "a string", required=True)
        version = table.get("version", str, "a string")
        if name is not None:
            try:
                spec = PackageSpec.parse(f"{name}@{version}" if version else name)
            except ValueError as err:
                errors.append(str(err))
    reason = table.get("reason", str, "a string")
    table.finalize()
    return None if spec is None else IgnoreYanked(spec, reason)


def _parse_ignore(raw: Any, errors: list[str]) -> tuple[list[IgnoreId], list[IgnoreYanked]]:
    ids: list[IgnoreId] = []
    yanked: list[IgnoreYanked] = []
    if raw is _MISSING:
        return ids, yanked
    if not isinstance(raw, list):
        errors.append(f"expected an array for 'ignore', found {_type_str(raw)}")
        return ids, yanked

    for item in raw:
        match item:
            case str():
                # Any string parses as an id, so only try ids of a known kind
                if detect_id_kind(item) is not IdKind.OTHER:
                    try:
                        ids.append(IgnoreId(AdvisoryId.parse(item)))
                        continue
                    except ValueError:
                        pass
                try:
                    yanked.append(IgnoreYanked(PackageSpec.parse(item)))
                except ValueError as err:
                    errors.append(str(err))
            case dict() if "id" in item:
                if (iid := _parse_ignore_id(item, errors)) is not None:
                    ids.append(iid)
            case dict():
                if (entry := _parse_spec_table(item, errors)) is not None:
                    yanked.append(entry)
            case _:
                errors.append(
                    f"expected an advisory id or package spec, found {_type_str(item)}"
                )

    ids.sort()
    return ids, yanked


def _dedup(
    items: Iterable[T],
    key: Callable[[T], Any],
    span_of: Callable[[T], Span],
    cfg_id: int,
    diagnostics: list[Diagnostic],
) -> list[T]:
    kept: list[T] = []
    for item in sorted(items, key=key):
        if kept and key(kept[-1]) == key(item):
            diagnostics.append(
                Diagnostic(
                    Severity.WARNING,
                    "duplicate items detected",
                    labels=[
                        Label.secondary(cfg_id, span_of(kept[-1]), "first entry"),
                        Label.secondary(cfg_id, span_of(item), "duplicate entry"),
                    ],
                )
            )
        else:
            kept.append(item)
    return kept


def _spec_key(entry: IgnoreYanked) -> tuple[str, str]:
    req = entry.spec.version_req
    return entry.spec.name, "" if req is None else str(req)


def _has_domain(url: str) -> bool:
    host = urlsplit(url).hostname
    if not host:
        return False
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return True
    return False


@dataclass
class ValidConfig:
    """The validated advisories configuration."""

    file_id: int
    db_path: Path
    db_urls: list[str]
    ignore: list[IgnoreId]
    unmaintained: Scope
    ignore_yanked: list[IgnoreYanked]
    yanked: LintLevel
    git_fetch_with_cli: bool
    disable_yank_checking: bool
    maximum_db_staleness: timedelta
    yanked_span: Span = _NO_SPAN


@dataclass
class Config:
    """The advisories configuration as written by the user."""

    db_path: str | None = None
    db_urls: list[str] = field(default_factory=list)
    yanked: LintLevel = LintLevel.WARN
    ignore: list[IgnoreId] = field(default_factory=list)
    unmaintained: Scope = Scope.ALL
    ignore_yanked: list[IgnoreYanked] = field(default_factory=list)
    git_fetch_with_cli: bool | None = None
    disable_yank_checking: bool = False
    maximum_db_staleness: timedelta = _DEFAULT_DB_STALENESS
    deprecated: list[str] = field(default_factory=list)

    @classmethod
    def from_table(cls, table: dict[str, Any]) -> Config:
        """Build the configuration from a parsed TOML table, raising ConfigError."""
        errors: list[str] = []
        t = _Table(table, errors, "[advisories]")

        t.get("version", int, "an integer")
        db_path = t.get("db-path", str, "a string")

        db_urls: list[str] = []
        raw = t.take("db-urls")
        if raw is not _MISSING:
            if isinstance(raw, list):
                db_urls = [u for u in (_parse_url(item, errors) for item in raw) if u]
            else:
                errors.append(f"expected an array for 'db-urls', found {_type_str(raw)}")
            db_urls.sort()

        deprecated: list[str] = []
        for key in ("vulnerability", "unsound", "notice"):
            raw = t.take(key)
            if raw is not _MISSING:
                deprecated.append(key)
                _parse_enum(LintLevel, raw, key, errors)

        unmaintained = _parse_enum(Scope, t.take("unmaintained"), "unmaintained", errors)
        yanked = _parse_enum(LintLevel, t.take("yanked"), "yanked", errors)
        ignore, ignore_yanked = _parse_ignore(t.take("ignore"), errors)

        raw = t.take("severity-threshold")
        if raw is not _MISSING:
            deprecated.append("severity-threshold")
            if not isinstance(raw, str):
                errors.append(
                    f"expected a string for 'severity-threshold', found {_type_str(raw)}"
                )
            elif raw.lower() not in _SEVERITIES:
                errors.append(f"failed to parse advisory severity: unknown severity '{raw}'")

        git_fetch_with_cli = t.get("git-fetch-with-cli", bool, "a boolean")
        disable_yank_checking = t.get("disable-yank-checking", bool, "a boolean")

        staleness = _DEFAULT_DB_STALENESS
        text = t.get("maximum-db-staleness", str, "an RFC3339 time duration")
        if text is not None:
            try:
                staleness = parse_rfc3339_duration(text)
            except DurationError as err:
                errors.append(str(err))

        t.finalize()
        if errors:
            raise ConfigError(errors)

        return cls(
            db_path=db_path,
            db_urls=db_urls,
            yanked=yanked or LintLevel.WARN,
            ignore=ignore,
            unmaintained=unmaintained or Scope.ALL,
            ignore_yanked=ignore_yanked,
            git_fetch_with_cli=git_fetch_with_cli,
            disable_yank_checking=bool(disable_yank_checking),
            maximum_db_staleness=staleness,
            deprecated=deprecated,
        )

    def validate(
        self, cfg_id: int = 0, expand: Expander = normal_expand
    ) -> tuple[ValidConfig, list[Diagnostic]]:
        """Deduplicate, check urls and resolve the database path.

        Returns the validated configuration and the diagnostics produced.
        """
        diagnostics: list[Diagnostic] = []

        ignore = _dedup(self.ignore, lambda i: i.id.value, lambda i: i.span, cfg_id, diagnostics)
        ignore_yanked = _dedup(
            self.ignore_yanked, _spec_key, lambda i: i.span, cfg_id, diagnostics
        )
        db_urls = _dedup(self.db_urls, lambda u: u, lambda _u: _NO_SPAN, cfg_id, diagnostics)

        for url in db_urls:
            if not _has_domain(url):
                diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        "advisory database url doesn't have a domain name",
                        labels=[Label.secondary(cfg_id, _NO_SPAN)],
                    )
                )

        db_path: Path | None = None
        if self.db_path is not None:
            try:
                db_path = Path(shellexpand(self.db_path, _NO_SPAN, expand))
            except ExpansionError as err:
                labels = [Label.primary(cfg_id, err.span)] if err.span else []
                diagnostics.append(Diagnostic(Severity.ERROR, err.message, labels=labels))
        else:
            try:
                cargo_home = expand(Var("CARGO_HOME"))
                if cargo_home is None:
                    raise LookupError("failed to resolve CARGO_HOME or HOME")
                db_path = Path(cargo_home) / "advisory-dbs"
            except Exception as err:
                diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        f"unable to obtain default advisory-dbs directory: {err}",
                        notes=[
                            "the default directory is determined by $CARGO_HOME -> $HOME/.cargo"
                        ],
                    )
                )

        for key in self.deprecated:
            diagnostics.append(
                Diagnostic(
                    Severity.WARNING,
                    f"'{key}' is deprecated and has been removed",
                    notes=["this key no longer has any effect"],
                )
            )

        valid = ValidConfig(
            file_id=cfg_id,
            db_path=db_path if db_path is not None else Path(""),
            db_urls=db_urls,
            ignore=ignore,
            unmaintained=self.unmaintained,
            ignore_yanked=ignore_yanked,
            yanked=self.yanked,
            git_fetch_with_cli=bool(self.git_fetch_with_cli),
            disable_yank_checking=self.disable_yank_checking,
            maximum_db_staleness=self.maximum_db_staleness,
        )
        return valid, diagnostics


def load_config(text: str) -> Config:
    """Parse a configuration document and return its ``[advisories]`` section."""
    try:
        document = tomllib.loads(text)
    except tomllib.TOMLDecodeError as err:
        raise ConfigError([f"invalid TOML: {err}"]) from err
    return Config.from_table(document.get("advisories", {}))