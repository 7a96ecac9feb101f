"""Matching of crates against advisories, with optional audit-compatible reports."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .advisory_db import Advisory, DbSet
from .krates import Krate, KrateGraph, Source, SourceKind

__all__ = ["Report"]

log = logging.getLogger(__name__)


def _source_matches(source: Source, advisory_source: str | None) -> bool:
    """Whether a crate's source is the one an advisory is about."""
    if advisory_source is None:
        return source.kind is SourceKind.CRATES_IO
    return advisory_source in (str(source), source.url)


def _package(krate: Krate) -> dict[str, Any]:
    return {
        "name": krate.name,
        "version": str(krate.version),
        "source": None if krate.source is None else str(krate.source),
        "checksum": None,
        "dependencies": [],
        "replace": None,
    }


def _serialize(matches: list[tuple[Krate, Advisory]], dependency_count: int) -> dict[str, Any]:
    warnings: dict[str, list[dict[str, Any]]] = {}
    vulnerabilities: list[dict[str, Any]] = []

    for krate, advisory in matches:
        package = _package(krate)
        kind = advisory.warning_kind
        if kind is not None:
            warnings.setdefault(kind, []).append(
                {
                    "kind": kind,
                    "package": package,
                    "advisory": advisory.metadata,
                    "versions": advisory.versions.to_dict(),
                    "affected": advisory.affected,
                }
            )
        else:
            vulnerabilities.append(
                {
                    "advisory": advisory.metadata,
                    "versions": advisory.versions.to_dict(),
                    "affected": advisory.affected,
                    "package": package,
                }
            )

    return {
        "settings": {
            "target_arch": [],
            "target_os": [],
            "severity": None,
            "ignore": [],
            "informational_warnings": ["notice", "unmaintained", "unsound"],
        },
        "lockfile": {"dependency-count": dependency_count},
        "vulnerabilities": {
            "found": bool(vulnerabilities),
            "count": len(vulnerabilities),
            "list": vulnerabilities,
        },
        "warnings": dict(sorted(warnings.items())),
    }


def _is_candidate(advisory: Advisory) -> bool:
    if advisory.withdrawn is not None:
        log.debug("ignoring advisory '%s', withdrawn %s", advisory.id, advisory.withdrawn)
        return False
    # Advisories about the standard library are not checked
    return advisory.collection is None or advisory.collection == "crates"


@dataclass
class Report:
    """The crates in a graph that are affected by advisories."""

    advisories: list[tuple[Krate, Advisory]] = field(default_factory=list)
    serialized_reports: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def generate(cls, dbs: DbSet, krates: KrateGraph, serialize_reports: bool = False) -> Report:
        """Match every crate against every database.

        With ``serialize_reports`` one audit-compatible report is produced per
        database.
        """
        advisories: list[tuple[Krate, Advisory]] = []
        serialized: list[dict[str, Any]] = []

        for db in dbs:
            matches = [
                (krate, advisory)
                for advisory in db
                if _is_candidate(advisory)
                for krate in krates.krates_by_name(advisory.package)
                if krate.source is not None
                and _source_matches(krate.source, advisory.source)
                and advisory.versions.is_vulnerable(krate.version)
            ]

            if serialize_reports:
                serialized.append(_serialize(matches, len(krates)))

            advisories.extend(matches)

        advisories.sort(key=lambda pair: pair[0])
        return cls(advisories, serialized)