"""Diagnostic primitives shared by the checks: severities, lint levels, labels and packs."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

Span = tuple[int, int]


class Severity(enum.IntEnum):
    """How serious a diagnostic is; higher values are more severe."""

    HELP = 1
    NOTE = 2
    WARNING = 3
    ERROR = 4
    BUG = 5


class LintLevel(enum.Enum):
    """The level a user configures for a lint."""

    ALLOW = "allow"
    WARN = "warn"
    DENY = "deny"

    def severity(self) -> Severity:
        """The diagnostic severity this lint level produces."""
        return _LINT_SEVERITY[self]


_LINT_SEVERITY = {
    LintLevel.ALLOW: Severity.NOTE,
    LintLevel.WARN: Severity.WARNING,
    LintLevel.DENY: Severity.ERROR,
}


class Scope(enum.Enum):
    """Which crates in the graph a lint applies to."""

    ALL = "all"
    WORKSPACE = "workspace"
    TRANSITIVE = "transitive"
    NONE = "none"


class Check(enum.Enum):
    """The check that produced a pack of diagnostics."""

    ADVISORIES = "advisories"
    BANS = "bans"
    LICENSES = "licenses"
    SOURCES = "sources"


class Code(enum.StrEnum):
    """Codes of the diagnostics emitted by the advisories check."""

    VULNERABILITY = "vulnerability"
    NOTICE = "notice"
    UNMAINTAINED = "unmaintained"
    UNSOUND = "unsound"
    YANKED = "yanked"
    ADVISORY_IGNORED = "advisory-ignored"
    YANKED_IGNORED = "yanked-ignored"
    INDEX_FAILURE = "index-failure"
    INDEX_CACHE_LOAD_FAILURE = "index-cache-load-failure"
    ADVISORY_NOT_DETECTED = "advisory-not-detected"
    YANKED_NOT_DETECTED = "yanked-not-detected"
    UNKNOWN_ADVISORY = "unknown-advisory"


@dataclass(frozen=True)
class Label:
    """A span in a file that a diagnostic points at."""

    file_id: int
    span: Span
    message: str = ""
    is_primary: bool = True

    def __post_init__(self) -> None:
        start, end = (int(part) for part in self.span)
        if end < start:
            raise ValueError(f"label span end {end} precedes start {start}")
        object.__setattr__(self, "span", (start, end))

    @classmethod
    def primary(cls, file_id: int, span: Span, message: str = "") -> Label:
        return cls(file_id, span, message, True)

    @classmethod
    def secondary(cls, file_id: int, span: Span, message: str = "") -> Label:
        return cls(file_id, span, message, False)


@dataclass
class Diagnostic:
    """A single message about a crate or configuration entry."""

    severity: Severity
    message: str = ""
    code: Code | None = None
    labels: list[Label] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    extra: tuple[str, Any] | None = None


@dataclass
class Pack:
    """Diagnostics from one check, optionally tied to one crate id."""

    check: Check
    kid: str | None = None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def push(self, diagnostic: Diagnostic) -> Diagnostic:
        """Append a diagnostic and return it so it can be amended."""
        self.diagnostics.append(diagnostic)
        return diagnostic

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        self.diagnostics.extend(diagnostics)

    def __len__(self) -> int:
        return len(self.diagnostics)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.diagnostics)