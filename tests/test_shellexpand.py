import pytest

from cargoguard.shellexpand import ExpansionError, Home, Var, normal_expand, shellexpand


def _span(text, start=0):
    return (start, start + len(text))


def _var(expected, value):
    def expander(request):
        assert request == Var(expected)
        return value

    return expander


def _never(request):
    raise AssertionError("expander should not be called")


def test_home_unavailable():
    def expander(request):
        raise LookupError("HOME directory could not be obtained from the OS")

    with pytest.raises(ExpansionError) as info:
        shellexpand("~/nope", _span("~/nope", 5), expander)
    assert info.value.message == (
        "unable to obtain $HOME: HOME directory could not be obtained from the OS"
    )
    assert info.value.span == (5, 6)


def test_home_not_utf8():
    def expander(request):
        raise ValueError("'Überraschung' is not utf-8")

    with pytest.raises(ExpansionError, match="unable to obtain \\$HOME"):
        shellexpand("~/not-utf8", _span("~/not-utf8"), expander)


def test_home_expands():
    def expander(request):
        assert request == Home()
        return "/this-home"

    assert shellexpand("~/works", _span("~/works"), expander) == "/this-home/works"


def test_plain_variable():
    text = "$CARGO_HOME/advisory-dbs"
    result = shellexpand(text, _span(text), _var("CARGO_HOME", "/default/.works"))
    assert result == "/default/.works/advisory-dbs"


def test_braced_variable():
    text = "${CARGO_HOME2}/advisory-dbs"
    result = shellexpand(text, _span(text), _var("CARGO_HOME2", "/this-also/.works"))
    assert result == "/this-also/.works/advisory-dbs"


def test_unbalanced_brace():
    text = "${no-end"
    with pytest.raises(ExpansionError) as info:
        shellexpand(text, _span(text, 10), _never)
    assert info.value.message == "opening `{` is unbalanced"
    assert info.value.span == (10, 10 + len(text))


def test_default_value_used():
    text = "/missing/${NOPE:-but i have a default}/"
    result = shellexpand(text, _span(text), _var("NOPE", None))
    assert result == "/missing/but i have a default/"


def test_expander_failure():
    def expander(request):
        assert request == Var("NON_UTF8")
        raise ValueError("'Überraschung' is not utf-8")

    text = "/non-utf8/$NON_UTF8"
    with pytest.raises(ExpansionError) as info:
        shellexpand(text, _span(text), expander)
    assert info.value.message.startswith("failed to expand variable: ")
    assert "is not utf-8" in info.value.message


def test_empty_variable_name():
    with pytest.raises(ExpansionError) as info:
        shellexpand("$/empty", _span("$/empty"), _never)
    assert info.value.message == "variable name cannot be empty"
    assert info.value.span == (0, 1)


def test_empty_braced_variable_name():
    text = "/also-empty/${}"
    with pytest.raises(ExpansionError, match="variable name cannot be empty"):
        shellexpand(text, _span(text), _never)


def test_trailing_variable():
    text = "/has-trailing/$TRAILING"
    assert shellexpand(text, _span(text), _var("TRAILING", "trail")) == "/has-trailing/trail"


def test_windows_style_path():
    text = "C:/Users/me/$WINDOWS/works"
    assert shellexpand(text, _span(text), _var("WINDOWS", "windows")) == "C:/Users/me/windows/works"


def test_bang_is_empty_name():
    with pytest.raises(ExpansionError, match="variable name cannot be empty"):
        shellexpand("$!", _span("$!"), _never)


def test_bang_in_braces_is_invalid():
    with pytest.raises(ExpansionError) as info:
        shellexpand("${!}", _span("${!}"), _never)
    assert info.value.message == "variable name is invalid"
    assert info.value.span == (0, 4)


def test_variable_in_middle():
    text = "/expands/stuff-${IN_MID}-like-this"
    result = shellexpand(text, _span(text), _var("IN_MID", "in-the-middle"))
    assert result == "/expands/stuff-in-the-middle-like-this"


def test_multiple_variables():
    values = {"FIRST": "first", "SECOND": "second"}

    def expander(request):
        return values[request.name]

    text = "/expands/$FIRST-item/${SECOND}-item/multiple"
    assert shellexpand(text, _span(text), expander) == "/expands/first-item/second-item/multiple"


def test_missing_variable_without_default():
    with pytest.raises(ExpansionError, match="failed to find variable"):
        shellexpand("/x/$NOPE", _span("/x/$NOPE"), _var("NOPE", None))


def test_nothing_to_expand_returns_input():
    assert shellexpand("/plain/path", _span("/plain/path"), _never) == "/plain/path"


def test_normal_expand_env_var(monkeypatch):
    monkeypatch.setenv("CARGOGUARD_TEST_VAR", "value-here")
    monkeypatch.delenv("CARGOGUARD_MISSING_VAR", raising=False)
    assert normal_expand(Var("CARGOGUARD_TEST_VAR")) == "value-here"
    assert normal_expand(Var("CARGOGUARD_MISSING_VAR")) is None


def test_normal_expand_cargo_home(monkeypatch, tmp_path):
    monkeypatch.setenv("CARGO_HOME", str(tmp_path))
    assert normal_expand(Var("CARGO_HOME")) == str(tmp_path)


def test_normal_expand_home(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    assert normal_expand(Home()) == str(tmp_path)


def test_shellexpand_with_normal_expand(monkeypatch):
    monkeypatch.setenv("CARGOGUARD_DIR", "/opt/dbs")
    assert shellexpand("$CARGOGUARD_DIR/x", (0, 17)) == "/opt/dbs/x"