"""Mapping of advisory database URLs to unique local directories."""

from __future__ import annotations

import struct
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

__all__ = ["xxh64", "url_to_db_path"]

_MASK = (1 << 64) - 1
_P1 = 11400714785074694791
_P2 = 14029467366897019727
_P3 = 1609587929392839161
_P4 = 9650029242287828579
_P5 = 2870177450012600261

_URL_SEED = 0xCA80DE71
_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}
_SPECIAL_SCHEMES = set(_DEFAULT_PORTS) | {"file"}


def _rotl(value: int, bits: int) -> int:
    return ((value << bits) | (value >> (64 - bits))) & _MASK


def _round(acc: int, lane: int) -> int:
    acc = (acc + lane * _P2) & _MASK
    return (_rotl(acc, 31) * _P1) & _MASK


def _merge(acc: int, value: int) -> int:
    acc ^= _round(0, value)
    return (acc * _P1 + _P4) & _MASK


def xxh64(data: bytes, seed: int = 0) -> int:
    """The 64-bit xxHash of ``data``."""
    seed &= _MASK
    length = len(data)
    view = memoryview(data)
    offset = 0

    if length >= 32:
        v1 = (seed + _P1 + _P2) & _MASK
        v2 = (seed + _P2) & _MASK
        v3 = seed
        v4 = (seed - _P1) & _MASK
        stripes = length - length % 32
        for a, b, c, d in struct.iter_unpack("<4Q", view[:stripes]):
            v1 = _round(v1, a)
            v2 = _round(v2, b)
            v3 = _round(v3, c)
            v4 = _round(v4, d)
        offset = stripes
        h = (_rotl(v1, 1) + _rotl(v2, 7) + _rotl(v3, 12) + _rotl(v4, 18)) & _MASK
        for v in (v1, v2, v3, v4):
            h = _merge(h, v)
    else:
        h = (seed + _P5) & _MASK

    h = (h + length) & _MASK

    while length - offset >= 8:
        (lane,) = struct.unpack_from("<Q", view, offset)
        h ^= _round(0, lane)
        h = (_rotl(h, 27) * _P1 + _P4) & _MASK
        offset += 8

    if length - offset >= 4:
        (word,) = struct.unpack_from("<I", view, offset)
        h ^= (word * _P1) & _MASK
        h = (_rotl(h, 23) * _P2 + _P3) & _MASK
        offset += 4

    for byte in view[offset:]:
        h ^= (byte * _P5) & _MASK
        h = (_rotl(h, 11) * _P1) & _MASK

    h ^= h >> 33
    h = (h * _P2) & _MASK
    h ^= h >> 29
    h = (h * _P3) & _MASK
    h ^= h >> 32
    return h


def _normalize(url: str) -> tuple[str, str | None]:
    """Return the serialized URL and its last path segment, if it has a path."""
    parts = urlsplit(url)
    if not parts.scheme:
        raise ValueError(f"relative URL without a base: {url!r}")
    scheme = parts.scheme.lower()
    netloc = parts.netloc
    path = parts.path

    if scheme in _SPECIAL_SCHEMES:
        host, _, port = netloc.rpartition(":")
        if host and port.isdigit() and int(port) == _DEFAULT_PORTS.get(scheme):
            netloc = host
        if not path:
            path = "/"
    elif not netloc and not path.startswith("/"):
        # Opaque URL such as mailto:, which has no path segments
        return urlunsplit((scheme, netloc, path, parts.query, parts.fragment)), None

    serialized = urlunsplit((scheme, netloc, path, parts.query, parts.fragment))
    if not netloc and path.startswith("/"):
        serialized = f"{scheme}:{path}"
        if parts.query:
            serialized += f"?{parts.query}"
        if parts.fragment:
            serialized += f"#{parts.fragment}"
    return serialized, path.rsplit("/", 1)[-1]


def url_to_db_path(root: Path | str, url: str) -> Path:
    """The directory under ``root`` where the database at ``url`` is stored.

    The last path segment serves as a readable name, and a hash of the
    lowercased URL keeps the directory unique.
    """
    serialized, last_segment = _normalize(url.lower())
    name = "empty_" if last_segment is None else last_segment
    digest = xxh64(serialized.encode("utf-8"), _URL_SEED)
    return Path(root) / f"{name}-{digest:016x}"