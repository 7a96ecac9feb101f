from datetime import timedelta
from pathlib import Path

import pytest

from cargoguard.advisories_config import (
    AdvisoryId,
    Config,
    ConfigError,
    IdKind,
    detect_id_kind,
    load_config,
)
from cargoguard.diagnostics import LintLevel, Scope, Severity
from cargoguard.krates import PackageSpec
from cargoguard.shellexpand import Home, Var


def fake_expand(request):
    match request:
        case Home():
            return "/home/you"
        case Var(name="CARGO_HOME"):
            return "/cargo"
    return None


DUPES = """
[advisories]
db-urls = [
    "https://github.com/rust-lang/crates.io-index",
    "https://one.reg",
    "https://one.reg",
]
ignore = [
    "RUSTSEC-0000-0001",
    { crate = "boop" },
    "RUSTSEC-0000-0001",
    "boop",
]
"""


def test_warns_on_duplicates():
    cfg = load_config(DUPES)
    valid, diags = cfg.validate(0, fake_expand)
    assert valid.db_urls == ["https://github.com/rust-lang/crates.io-index", "https://one.reg"]
    assert [i.id.value for i in valid.ignore] == ["RUSTSEC-0000-0001"]
    assert [i.spec.name for i in valid.ignore_yanked] == ["boop"]
    dupes = [d for d in diags if d.message == "duplicate items detected"]
    assert len(dupes) == 3
    assert all(d.severity is Severity.WARNING for d in dupes)


def test_defaults():
    cfg = load_config("")
    assert cfg.yanked is LintLevel.WARN
    assert cfg.unmaintained is Scope.ALL
    assert cfg.maximum_db_staleness == timedelta(seconds=90.0 * 24.0 * 60.0 * 60.0 * 60.0)
    valid, diags = cfg.validate(0, fake_expand)
    assert valid.db_path == Path("/cargo/advisory-dbs")
    assert valid.git_fetch_with_cli is False
    assert diags == []


def test_db_path_expanded():
    cfg = load_config('[advisories]\ndb-path = "~/dbs"\n')
    valid, _ = cfg.validate(0, fake_expand)
    assert valid.db_path == Path("/home/you/dbs")


def test_db_path_expansion_failure_reported():
    cfg = load_config('[advisories]\ndb-path = "$NOPE/dbs"\n')
    valid, diags = cfg.validate(0, fake_expand)
    assert valid.db_path == Path("")
    assert [d.message for d in diags] == ["failed to find variable"]


def test_default_path_failure_reported():
    def failing(request):
        raise LookupError("no home")

    valid, diags = load_config("").validate(0, failing)
    assert valid.db_path == Path("")
    assert diags[0].severity is Severity.ERROR
    assert "unable to obtain default advisory-dbs directory" in diags[0].message


def test_domainless_url_is_error():
    cfg = load_config('[advisories]\ndb-urls = ["file:///tmp/db"]\n')
    _, diags = cfg.validate(0, fake_expand)
    assert any(
        d.message == "advisory database url doesn't have a domain name" for d in diags
    )


def test_ignore_table_with_reason():
    cfg = load_config(
        '[advisories]\nignore = [{ id = "RUSTSEC-2019-0001", reason = "not used" }]\n'
    )
    assert cfg.ignore[0].id.value == "RUSTSEC-2019-0001"
    assert cfg.ignore[0].reason == "not used"


def test_ignore_spec_with_version():
    cfg = load_config('[advisories]\nignore = [{ crate = "boop@1.0", reason = "why" }]\n')
    assert cfg.ignore_yanked[0].spec == PackageSpec.parse("boop@1.0")
    assert cfg.ignore_yanked[0].reason == "why"


def test_bad_year_falls_back_to_spec():
    cfg = load_config('[advisories]\nignore = ["RUSTSEC-abc-0001"]\n')
    assert cfg.ignore == []
    assert cfg.ignore_yanked[0].spec.name == "RUSTSEC-abc-0001"


def test_ignore_wrong_type():
    with pytest.raises(ConfigError) as info:
        load_config("[advisories]\nignore = [1]\n")
    assert "an advisory id or package spec" in str(info.value)


def test_unknown_key_rejected():
    with pytest.raises(ConfigError) as info:
        load_config('[advisories]\nbogus = "x"\n')
    assert "bogus" in str(info.value)


def test_ignore_table_unknown_key_rejected():
    with pytest.raises(ConfigError):
        load_config('[advisories]\nignore = [{ id = "RUSTSEC-2019-0001", nope = 1 }]\n')


def test_staleness_parsed_and_invalid():
    cfg = load_config('[advisories]\nmaximum-db-staleness = "P30D"\n')
    assert cfg.maximum_db_staleness == timedelta(days=30)
    with pytest.raises(ConfigError):
        load_config('[advisories]\nmaximum-db-staleness = "bogus"\n')


def test_scope_and_lint_levels():
    cfg = load_config('[advisories]\nunmaintained = "workspace"\nyanked = "deny"\n')
    assert cfg.unmaintained is Scope.WORKSPACE
    assert cfg.yanked is LintLevel.DENY
    with pytest.raises(ConfigError):
        load_config('[advisories]\nunmaintained = "sometimes"\n')


def test_deprecated_keys_warned():
    cfg = load_config('[advisories]\nvulnerability = "deny"\nseverity-threshold = "low"\n')
    assert cfg.deprecated == ["vulnerability", "severity-threshold"]
    _, diags = cfg.validate(0, fake_expand)
    assert sum("vulnerability" in d.message for d in diags) == 1


def test_invalid_severity_threshold():
    with pytest.raises(ConfigError):
        load_config('[advisories]\nseverity-threshold = "apocalyptic"\n')


def test_invalid_toml():
    with pytest.raises(ConfigError):
        load_config("[advisories\n")


@pytest.mark.parametrize(
    ("value", "kind"),
    [
        ("RUSTSEC-2019-0001", IdKind.RUSTSEC),
        ("CVE-2021-1234", IdKind.CVE),
        ("GHSA-abcd-efgh-ijkl", IdKind.GHSA),
        ("TALOS-2020-1000", IdKind.TALOS),
        ("boop", IdKind.OTHER),
    ],
)
def test_detect_id_kind(value, kind):
    assert detect_id_kind(value) is kind


def test_advisory_id_parse():
    parsed = AdvisoryId.parse("RUSTSEC-2019-0001")
    assert parsed.year == 2019
    assert parsed.kind is IdKind.RUSTSEC
    with pytest.raises(ValueError):
        AdvisoryId.parse("CVE-abcd-1")
    assert AdvisoryId.parse("RUSTSEC-2019-0001") < AdvisoryId.parse("RUSTSEC-2020-0001")