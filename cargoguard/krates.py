"""Crates, their sources, version requirements, package specs and the crate graph."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Iterator

import semver

__all__ = [
    "SourceKind",
    "Source",
    "VersionReq",
    "PackageSpec",
    "Krate",
    "KrateGraph",
    "match_req",
    "match_krate",
]


def _as_version(version: semver.Version | str) -> semver.Version:
    if isinstance(version, semver.Version):
        return version
    return semver.Version.parse(version)


def _pre_key(pre: str | None) -> semver.Version:
    # An empty pre-release sorts after any non-empty one
    return semver.Version(0, 0, 0, prerelease=pre or None)


class _Op(enum.Enum):
    EXACT = "="
    GREATER = ">"
    GREATER_EQ = ">="
    LESS = "<"
    LESS_EQ = "<="
    TILDE = "~"
    CARET = "^"


_PART = r"(?:\d+|[*xX])"
_COMPARATOR = re.compile(
    rf"^(?P<op>>=|<=|=|>|<|~|\^)?\s*"
    rf"(?P<major>{_PART})(?:\.(?P<minor>{_PART}))?(?:\.(?P<patch>{_PART}))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)
_WILDCARDS = {"*", "x", "X"}


@dataclass(frozen=True)
class _Comparator:
    op: _Op
    major: int
    minor: int | None
    patch: int | None
    pre: str | None

    @classmethod
    def parse(cls, text: str) -> _Comparator:
        found = _COMPARATOR.match(text.strip())
        if found is None:
            raise ValueError(f"invalid version requirement: {text!r}")

        numbers: list[int | None] = []
        wildcard = False
        for part in (found["major"], found["minor"], found["patch"]):
            if part is None or part in _WILDCARDS:
                wildcard = wildcard or part is not None
                numbers.append(None)
            elif numbers and numbers[-1] is None:
                raise ValueError(f"unexpected version component after wildcard in {text!r}")
            else:
                numbers.append(int(part))

        major, minor, patch = numbers
        if major is None:
            raise ValueError(f"major version cannot be a wildcard in {text!r}")
        pre = found["pre"]
        if pre is not None and patch is None:
            raise ValueError(f"pre-release requires a full version in {text!r}")

        if found["op"]:
            op = _Op(found["op"])
        else:
            op = _Op.EXACT if wildcard else _Op.CARET
        return cls(op, major, minor, patch, pre)

    def _exact(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return False
        return _pre_key(v.prerelease) == _pre_key(self.pre)

    def _greater(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return v.major > self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor > self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.prerelease) > _pre_key(self.pre)

    def _less(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return v.major < self.major
        if self.minor is None:
            return False
        if v.minor != self.minor:
            return v.minor < self.minor
        if self.patch is None:
            return False
        if v.patch != self.patch:
            return v.patch < self.patch
        return _pre_key(v.prerelease) < _pre_key(self.pre)

    def _tilde(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return False
        if self.minor is not None and v.minor != self.minor:
            return False
        if self.patch is not None and v.patch != self.patch:
            return v.patch > self.patch
        return _pre_key(v.prerelease) >= _pre_key(self.pre)

    def _caret(self, v: semver.Version) -> bool:
        if v.major != self.major:
            return False
        minor = self.minor
        if minor is None:
            return True
        patch = self.patch
        if patch is None:
            return v.minor >= minor if self.major > 0 else v.minor == minor
        if self.major > 0:
            if v.minor != minor:
                return v.minor > minor
            if v.patch != patch:
                return v.patch > patch
        elif minor > 0:
            if v.minor != minor:
                return False
            if v.patch != patch:
                return v.patch > patch
        elif v.minor != minor or v.patch != patch:
            return False
        return _pre_key(v.prerelease) >= _pre_key(self.pre)

    def matches(self, v: semver.Version) -> bool:
        match self.op:
            case _Op.EXACT:
                return self._exact(v)
            case _Op.GREATER:
                return self._greater(v)
            case _Op.GREATER_EQ:
                return self._exact(v) or self._greater(v)
            case _Op.LESS:
                return self._less(v)
            case _Op.LESS_EQ:
                return self._exact(v) or self._less(v)
            case _Op.TILDE:
                return self._tilde(v)
            case _Op.CARET:
                return self._caret(v)


@dataclass(frozen=True)
class VersionReq:
    """A cargo-style version requirement, e.g. ``^1.2``, ``>=1, <2`` or ``*``."""

    comparators: tuple[_Comparator, ...] = ()
    text: str = field(default="*", compare=False)

    @classmethod
    def parse(cls, text: str) -> VersionReq:
        stripped = text.strip()
        if not stripped:
            raise ValueError("empty version requirement")
        if stripped in _WILDCARDS:
            return cls((), stripped)
        return cls(tuple(_Comparator.parse(part) for part in stripped.split(",")), stripped)

    def matches(self, version: semver.Version | str) -> bool:
        """True if the version satisfies every comparator.

        A pre-release version only matches if some comparator names the same
        major.minor.patch with a pre-release of its own.
        """
        v = _as_version(version)
        if not all(c.matches(v) for c in self.comparators):
            return False
        if not v.prerelease:
            return True
        return any(
            c.major == v.major and c.minor == v.minor and c.patch == v.patch and c.pre
            for c in self.comparators
        )

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class PackageSpec:
    """A crate name with an optional version requirement, written ``name[@req]``."""

    name: str
    version_req: VersionReq | None = None

    @classmethod
    def parse(cls, text: str) -> PackageSpec:
        name, sep, req = text.strip().partition("@")
        if not name or any(c.isspace() for c in name):
            raise ValueError(f"invalid package name in spec {text!r}")
        if sep and not req.strip():
            raise ValueError(f"missing version requirement in spec {text!r}")
        return cls(name, VersionReq.parse(req) if sep else None)

    def __str__(self) -> str:
        return f"{self.name}@{self.version_req}" if self.version_req else self.name


def match_req(version: semver.Version | str, req: VersionReq | None) -> bool:
    """True if there is no requirement or the version satisfies it."""
    return req is None or req.matches(version)


def match_krate(krate: Krate, spec: PackageSpec) -> bool:
    """True if the crate's name and version match the spec."""
    return krate.name == spec.name and match_req(krate.version, spec.version_req)


class SourceKind(enum.StrEnum):
    CRATES_IO = "crates-io"
    SPARSE = "sparse"
    REGISTRY = "registry"
    GIT = "git"


@dataclass(frozen=True, order=True)
class Source:
    """Where a crate was obtained from."""

    kind: SourceKind
    url: str = ""

    def is_registry(self) -> bool:
        return self.kind is not SourceKind.GIT

    def __str__(self) -> str:
        return f"{self.kind}+{self.url}" if self.url else str(self.kind)


@dataclass(frozen=True, order=True)
class Krate:
    """A resolved package in the dependency graph."""

    name: str
    version: semver.Version
    source: Source | None = field(default=None, compare=False)
    id: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.version, semver.Version):
            object.__setattr__(self, "version", _as_version(self.version))
        if not self.id:
            suffix = f" ({self.source})" if self.source else ""
            object.__setattr__(self, "id", f"{self.name} {self.version}{suffix}")

    def is_git_source(self) -> bool:
        return self.source is not None and self.source.kind is SourceKind.GIT

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


class KrateGraph:
    """Crates keyed by id, with dependency edges and workspace membership."""

    def __init__(self) -> None:
        self._krates: dict[str, Krate] = {}
        self._dependencies: dict[str, list[str]] = {}
        self._dependents: dict[str, list[str]] = {}
        self._workspace: set[str] = set()

    def add(self, krate: Krate, workspace_member: bool = False) -> Krate:
        if krate.id in self._krates:
            raise ValueError(f"crate '{krate.id}' is already in the graph")
        self._krates[krate.id] = krate
        self._dependencies[krate.id] = []
        self._dependents[krate.id] = []
        if workspace_member:
            self._workspace.add(krate.id)
        return krate

    def add_dependency(self, parent_id: str, child_id: str) -> None:
        for kid in (parent_id, child_id):
            if kid not in self._krates:
                raise KeyError(f"unknown crate id '{kid}'")
        if child_id not in self._dependencies[parent_id]:
            self._dependencies[parent_id].append(child_id)
            self._dependents[child_id].append(parent_id)

    def krates_by_name(self, name: str) -> list[Krate]:
        return [krate for krate in self if krate.name == name]

    def direct_dependents(self, krate_id: str) -> list[Krate]:
        if krate_id not in self._krates:
            raise KeyError(f"unknown crate id '{krate_id}'")
        return [self._krates[parent] for parent in self._dependents[krate_id]]

    def workspace_members(self) -> list[Krate]:
        return [krate for krate in self if krate.id in self._workspace]

    def __iter__(self) -> Iterator[Krate]:
        return iter(sorted(self._krates.values()))

    def __len__(self) -> int:
        return len(self._krates)

    def __getitem__(self, krate_id: str) -> Krate:
        try:
            return self._krates[krate_id]
        except KeyError:
            raise KeyError(f"unknown crate id '{krate_id}'") from None