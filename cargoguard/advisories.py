"""The advisories check: vulnerable, unmaintained, unsound and yanked crates."""

from __future__ import annotations

import bisect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from .advisories_config import IgnoreId, IgnoreYanked, ValidConfig
from .advisory_db import Advisory, DbSet
from .diagnostics import Check, Code, Diagnostic, Label, LintLevel, Pack, Scope, Severity, Span
from .krates import Krate, KrateGraph, match_krate
from .report import Report
from .yank_index import Indices

__all__ = ["CheckContext", "get_notes_from_advisory", "check"]

log = logging.getLogger(__name__)

Reporter = Callable[[dict[str, Any]], None]

_ADVISORY_TYPES: dict[str | None, tuple[str, Code]] = {
    None: ("security vulnerability detected", Code.VULNERABILITY),
    "notice": ("notice advisory detected", Code.NOTICE),
    "unmaintained": ("unmaintained advisory detected", Code.UNMAINTAINED),
    "unsound": ("unsound advisory detected", Code.UNSOUND),
}


def _ignore_labels(ignore: IgnoreId, file_id: int, message: str) -> list[Label]:
    labels = [Label.primary(file_id, ignore.id.span, message)]
    if ignore.reason is not None:
        labels.append(Label.secondary(file_id, ignore.reason_span, "ignore reason"))
    return labels


def _yanked_labels(entry: IgnoreYanked, file_id: int, message: str) -> list[Label]:
    labels = [Label.primary(file_id, entry.span, message)]
    if entry.reason is not None:
        labels.append(Label.secondary(file_id, entry.span, "reason"))
    return labels


def get_notes_from_advisory(advisory: Advisory) -> list[str]:
    """The notes attached to every diagnostic about an advisory."""
    notes = [f"ID: {advisory.id}", advisory.description]
    if advisory.url:
        notes.append(f"Announcement: {advisory.url}")
    return notes


@dataclass
class CheckContext:
    """What the advisories check needs: configuration, crate graph and lockfile spans."""

    cfg: ValidConfig
    krates: KrateGraph
    lock_id: int = 0
    lock_spans: Mapping[str, Span] = field(default_factory=dict)
    serialize_extra: bool = False

    def lock_span(self, krate: Krate) -> Span:
        return self.lock_spans.get(krate.id, (0, 0))

    def diag_for_advisory(
        self,
        krate: Krate,
        advisory: Advisory,
        on_ignore: Callable[[int], None] | None = None,
    ) -> Pack:
        """A pack about an advisory affecting a crate, honouring ignores."""
        if advisory.informational not in _ADVISORY_TYPES:
            raise ValueError(
                f"unsupported informational advisory kind '{advisory.informational}'"
            )
        message, code = _ADVISORY_TYPES[advisory.informational]

        pack = Pack(Check.ADVISORIES, krate.id)
        ignore = self.cfg.ignore
        index = bisect.bisect_left(ignore, advisory.id, key=lambda i: i.id.value)
        if index < len(ignore) and ignore[index].id.value == advisory.id:
            # Ignored advisories are still reported so they don't vanish silently
            if on_ignore is not None:
                on_ignore(index)
            pack.push(
                Diagnostic(
                    Severity.NOTE,
                    "advisory ignored",
                    code=Code.ADVISORY_IGNORED,
                    labels=_ignore_labels(
                        ignore[index], self.cfg.file_id, "advisory ignored here"
                    ),
                )
            )
            severity = LintLevel.ALLOW.severity()
        else:
            severity = LintLevel.DENY.severity()

        notes = get_notes_from_advisory(advisory)
        patched = advisory.versions.patched
        if not patched:
            notes.append("Solution: No safe upgrade is available!")
        else:
            upgrades = " OR ".join(str(req) for req in patched)
            notes.append(
                f"Solution: Upgrade to {upgrades} (try `cargo update -p {krate.name}`)"
            )

        diag = pack.push(
            Diagnostic(
                severity,
                advisory.title,
                code=code,
                labels=[Label.primary(self.lock_id, self.lock_span(krate), message)],
                notes=notes,
            )
        )
        if self.serialize_extra:
            diag.extra = ("advisory", advisory.metadata)
        return pack

    def diag_for_yanked(self, krate: Krate) -> Pack:
        pack = Pack(Check.ADVISORIES, krate.id)
        pack.push(
            Diagnostic(
                self.cfg.yanked.severity(),
                f"detected yanked crate (try `cargo update -p {krate.name}`)",
                code=Code.YANKED,
                labels=[Label.primary(self.lock_id, self.lock_span(krate), "yanked version")],
            )
        )
        return pack

    def diag_for_yanked_ignore(self, krate: Krate, index: int) -> Pack:
        pack = Pack(Check.ADVISORIES, krate.id)
        pack.push(
            Diagnostic(
                Severity.NOTE,
                f"yanked crate '{krate}' detected, but ignored",
                code=Code.YANKED_IGNORED,
                labels=_yanked_labels(
                    self.cfg.ignore_yanked[index], self.cfg.file_id, "yanked ignore"
                ),
            )
        )
        return pack

    def diag_for_index_failure(self, krate: Krate, error: object) -> Pack:
        labels = [
            Label.secondary(
                self.lock_id,
                self.lock_span(krate),
                "crate whose registry we failed to query",
            )
        ]
        # A default lint level has no location worth pointing at
        start, end = self.cfg.yanked_span
        if end > start:
            labels.append(
                Label.primary(self.cfg.file_id, self.cfg.yanked_span, "lint level defined here")
            )
        pack = Pack(Check.ADVISORIES, krate.id)
        pack.push(
            Diagnostic(
                Severity.WARNING,
                "unable to check for yanked crates",
                code=Code.INDEX_FAILURE,
                labels=labels,
                notes=[str(error)],
            )
        )
        return pack

    def diag_for_index_load_failure(self, error: object) -> Pack:
        pack = Pack(Check.ADVISORIES)
        pack.push(
            Diagnostic(
                Severity.ERROR,
                "failed to load index cache",
                code=Code.INDEX_CACHE_LOAD_FAILURE,
                notes=[str(error)],
            )
        )
        return pack

    def diag_for_advisory_not_encountered(self, not_hit: IgnoreId) -> Pack:
        pack = Pack(Check.ADVISORIES)
        pack.push(
            Diagnostic(
                Severity.WARNING,
                "advisory was not encountered",
                code=Code.ADVISORY_NOT_DETECTED,
                labels=_ignore_labels(
                    not_hit, self.cfg.file_id, "no crate matched advisory criteria"
                ),
            )
        )
        return pack

    def diag_for_ignored_yanked_not_encountered(self, not_hit: IgnoreYanked) -> Pack:
        pack = Pack(Check.ADVISORIES)
        pack.push(
            Diagnostic(
                Severity.WARNING,
                "yanked crate was not encountered",
                code=Code.YANKED_NOT_DETECTED,
                labels=_yanked_labels(not_hit, self.cfg.file_id, "yanked crate not detected"),
            )
        )
        return pack

    def diag_for_unknown_advisory(self, unknown: IgnoreId) -> Pack:
        pack = Pack(Check.ADVISORIES)
        pack.push(
            Diagnostic(
                Severity.WARNING,
                "advisory not found in any advisory database",
                code=Code.UNKNOWN_ADVISORY,
                labels=_ignore_labels(unknown, self.cfg.file_id, "unknown advisory"),
            )
        )
        return pack


def _yank_status(ctx: CheckContext, indices: Indices | None) -> list[tuple[Krate, Exception | None]]:
    if indices is None:
        return []
    found: list[tuple[Krate, Exception | None]] = []
    for krate in ctx.krates:
        try:
            if indices.is_yanked(krate):
                found.append((krate, None))
        except LookupError as err:
            found.append((krate, err))
    return found


def _unmaintained_applies(ctx: CheckContext, krate: Krate, ws_ids: set[str]) -> bool:
    scope = ctx.cfg.unmaintained
    if scope is Scope.ALL:
        return True
    if scope is Scope.NONE:
        return False
    transitive = scope is Scope.TRANSITIVE
    return any(
        (dependent.id in ws_ids) ^ transitive
        for dependent in ctx.krates.direct_dependents(krate.id)
    )


def check(
    ctx: CheckContext,
    dbs: DbSet,
    reporter: Reporter | None = None,
    indices: Indices | None = None,
) -> list[Pack]:
    """Check the crates against the advisory databases and the registry indices.

    Returns the packs of diagnostics in the order they were produced. When a
    reporter is given it receives one audit-compatible report per database.
    """
    cfg = ctx.cfg
    sink: list[Pack] = []

    report = Report.generate(dbs, ctx.krates, reporter is not None)
    yanked = _yank_status(ctx, indices)

    ignore_hits = [False] * len(cfg.ignore)
    ignore_yanked_hits = [False] * len(cfg.ignore_yanked)

    ws_ids: set[str] = set()
    if cfg.unmaintained in (Scope.WORKSPACE, Scope.TRANSITIVE):
        ws_ids = {member.id for member in ctx.krates.workspace_members()}

    def mark_ignored(index: int) -> None:
        ignore_hits[index] = True

    for krate, advisory in report.advisories:
        if advisory.is_unmaintained and not _unmaintained_applies(ctx, krate, ws_ids):
            continue
        sink.append(ctx.diag_for_advisory(krate, advisory, mark_ignored))

    for krate, error in yanked:
        if error is not None:
            if cfg.yanked is not LintLevel.ALLOW:
                sink.append(ctx.diag_for_index_failure(krate, error))
            continue
        position = next(
            (i for i, iy in enumerate(cfg.ignore_yanked) if match_krate(krate, iy.spec)),
            None,
        )
        if position is not None:
            sink.append(ctx.diag_for_yanked_ignore(krate, position))
            ignore_yanked_hits[position] = True
        else:
            sink.append(ctx.diag_for_yanked(krate))

    for ignored in cfg.ignore:
        if not dbs.has_advisory(ignored.id.value):
            sink.append(ctx.diag_for_unknown_advisory(ignored))

    for hit, ignored in zip(ignore_hits, cfg.ignore):
        if not hit:
            sink.append(ctx.diag_for_advisory_not_encountered(ignored))

    for hit, entry in zip(ignore_yanked_hits, cfg.ignore_yanked):
        if not hit:
            sink.append(ctx.diag_for_ignored_yanked_not_encountered(entry))

    if reporter is not None:
        for serialized in report.serialized_reports:
            reporter(serialized)

    return sink