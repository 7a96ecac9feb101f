"""Basic shell-style expansion of ``~``, ``$VAR`` and ``${VAR:-default}`` in paths."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .diagnostics import Span

__all__ = ["Home", "Var", "ExpansionError", "normal_expand", "shellexpand"]


@dataclass(frozen=True)
class Home:
    """A request for the user's home directory."""


@dataclass(frozen=True)
class Var:
    """A request for the value of an environment variable."""

    name: str


Request = Home | Var
Expander = Callable[[Request], "str | None"]


class ExpansionError(ValueError):
    """Raised when a path cannot be expanded; ``span`` locates the offending text."""

    def __init__(self, message: str, span: Span | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.span = span


def _cargo_home() -> str:
    configured = os.environ.get("CARGO_HOME")
    if configured:
        return str(Path.cwd() / configured) if not os.path.isabs(configured) else configured
    return str(_home_dir() / ".cargo")


def _home_dir() -> Path:
    try:
        return Path.home()
    except (RuntimeError, KeyError) as err:
        raise LookupError("HOME directory could not be obtained from the OS") from err


def normal_expand(request: Request) -> str | None:
    """Resolve an expansion request against the running environment."""
    match request:
        case Home():
            return str(_home_dir())
        case Var(name="CARGO_HOME"):
            try:
                return _cargo_home()
            except LookupError as err:
                raise LookupError("unable to determine CARGO_HOME") from err
        case Var(name=name):
            return os.environ.get(name)
    raise TypeError(f"unknown expansion request {request!r}")


def _is_name_char(c: str) -> bool:
    return c.isalnum() or c == "_"


def shellexpand(to_expand: str, span: Span, expand: Expander = normal_expand) -> str:
    """Expand a leading ``~`` and every ``$NAME`` / ``${NAME[:-default]}`` in a path.

    ``span`` is the location of the value in its file; error spans are given
    relative to it.
    """
    start, end = span
    te = to_expand

    if "~" not in te and "$" not in te:
        return te

    parts: list[str] = []
    cursor = 0

    if te.startswith("~"):
        try:
            home = expand(Home())
        except Exception as err:
            raise ExpansionError(f"unable to obtain $HOME: {err}", (start, start + 1)) from err
        if home is None:
            raise ExpansionError("unable to obtain $HOME", (start, start + 1))
        parts.append(home)
        cursor = 1

    while (dollar := te.find("$", cursor)) != -1:
        parts.append(te[cursor:dollar])
        var_start = start + dollar
        cursor = dollar
        default: str | None = None

        if te.startswith("${", cursor):
            close = te.find("}", cursor)
            if close == -1:
                raise ExpansionError("opening `{` is unbalanced", (var_start, end))
            inner = te[cursor + 2 : close]
            var_name, sep, fallback = inner.partition(":-")
            if sep:
                default = fallback
            if not all(_is_name_char(c) for c in var_name):
                raise ExpansionError("variable name is invalid", (var_start, start + close + 1))
            following = close + 1
        else:
            cursor += 1
            following = next(
                (i for i in range(cursor, len(te)) if not _is_name_char(te[i])), len(te)
            )
            var_name = te[cursor:following]

        error_span = (var_start, start + following)
        if not var_name:
            raise ExpansionError("variable name cannot be empty", error_span)

        try:
            value = expand(Var(var_name))
        except Exception as err:
            raise ExpansionError(f"failed to expand variable: {err}", error_span) from err

        if value is not None:
            parts.append(value)
        elif default is not None:
            parts.append(default)
        else:
            raise ExpansionError("failed to find variable", error_span)

        cursor = following

    parts.append(te[cursor:])
    return "".join(parts)