import pytest

from cargoguard.diagnostics import (
    Check,
    Code,
    Diagnostic,
    Label,
    LintLevel,
    Pack,
    Scope,
    Severity,
)


def test_lint_level_severity_mapping():
    assert LintLevel.DENY.severity() is Severity.ERROR
    assert LintLevel.WARN.severity() is Severity.WARNING
    assert LintLevel.ALLOW.severity() < LintLevel.WARN.severity()


def test_severity_ordering():
    assert Severity.BUG > LintLevel.DENY.severity()
    assert LintLevel.DENY.severity() > LintLevel.WARN.severity()
    assert LintLevel.WARN.severity() > Severity.NOTE > Severity.HELP


def test_lint_level_and_scope_parse_from_config_values():
    assert LintLevel("warn") is LintLevel.WARN
    assert Scope("workspace") is Scope.WORKSPACE
    with pytest.raises(ValueError):
        Scope("everything")


def test_code_kebab_case():
    assert Code("advisory-ignored") is Code.ADVISORY_IGNORED
    assert str(Code("yanked-not-detected")) == "yanked-not-detected"


@pytest.mark.parametrize("code", list(Code))
def test_code_round_trips_through_string(code):
    assert Code(str(code)) is code


def test_label_constructors():
    primary = Label.primary(3, (10, 20), "here")
    secondary = Label.secondary(3, (1, 2))
    assert primary.is_primary
    assert not secondary.is_primary
    assert primary.span == (10, 20)
    assert primary.message == "here"
    assert secondary.message == ""
    assert primary.file_id == secondary.file_id == 3


def test_label_accepts_range_like_span():
    label = Label.primary(0, range(4, 9))
    assert label.span == (4, 9)


def test_label_rejects_inverted_span():
    with pytest.raises(ValueError):
        Label.primary(0, (5, 2))


def test_pack_push_returns_same_diagnostic():
    pack = Pack(Check.ADVISORIES, "krate 1.0.0")
    diag = Diagnostic(Severity.ERROR, "boom")
    pushed = pack.push(diag)
    assert pushed is diag
    pushed.notes.append("a note")
    assert list(pack)[0].notes == ["a note"]


def test_pack_extend_len_and_order():
    pack = Pack(Check.BANS)
    first = Diagnostic(Severity.NOTE, "first")
    second = Diagnostic(Severity.WARNING, "second")
    third = Diagnostic(Severity.ERROR, "third")
    pack.push(first)
    pack.extend([second, third])
    assert len(pack) == 3
    assert [d.message for d in pack] == ["first", "second", "third"]
    assert pack.kid is None


def test_empty_pack_is_falsy():
    pack = Pack(Check.ADVISORIES)
    assert not pack
    pack.push(Diagnostic(Severity.HELP))
    assert pack