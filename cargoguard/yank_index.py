"""Cached registry index entries used to tell whether crate versions are yanked."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

import semver

from .krates import Krate, KrateGraph, Source

__all__ = ["Entry", "Indices"]

ReadVersions = Callable[[str, Source], "Iterable[tuple[str, bool]] | None"]


@dataclass(frozen=True)
class Entry:
    """The known versions of one crate in one registry, or why they are unknown."""

    versions: tuple[tuple[semver.Version, bool], ...] | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if (self.versions is None) == (self.error is None):
            raise ValueError("an entry holds either versions or an error")


def _read_entry(read_versions: ReadVersions, name: str, source: Source) -> Entry:
    try:
        listing = read_versions(name, source)
    except Exception as err:
        return Entry(error=str(err))
    if listing is None:
        return Entry(error="unable to locate index entry for crate")

    versions = []
    for text, yanked in listing:
        try:
            versions.append((semver.Version.parse(text), bool(yanked)))
        except (ValueError, TypeError):
            continue
    return Entry(versions=tuple(versions))


class Indices:
    """Index entries for every registry crate in a graph, read once up front."""

    def __init__(self, cache: dict[tuple[str, Source], Entry]) -> None:
        self.cache = cache

    @classmethod
    def load(cls, krates: KrateGraph | Iterable[Krate], read_versions: ReadVersions) -> Indices:
        """Read the index entry of each distinct (name, registry source) pair.

        ``read_versions`` returns ``(version, yanked)`` pairs, or ``None`` when
        the index has no entry for the crate; any exception it raises is kept
        as the entry's error.
        """
        keys = sorted(
            {
                (krate.name, krate.source)
                for krate in krates
                if krate.source is not None and krate.source.is_registry()
            }
        )
        return cls({key: _read_entry(read_versions, *key) for key in keys})

    def is_yanked(self, krate: Krate) -> bool:
        """Whether the crate's version is yanked; raises LookupError if unknown."""
        # Crates from git or local paths may share names with registry crates
        source = krate.source
        if source is None or not source.is_registry():
            return False

        entry = self.cache.get((krate.name, source))
        if entry is None:
            raise RuntimeError(f"no index cache entry was loaded for {krate}")
        if entry.error is not None:
            raise LookupError(entry.error)

        for version, yanked in entry.versions or ():
            if version == krate.version:
                return yanked
        raise LookupError(f"unable to locate version '{krate.version}'")