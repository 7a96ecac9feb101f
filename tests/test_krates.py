import pytest
import semver

from cargoguard.krates import (
    Krate,
    KrateGraph,
    PackageSpec,
    Source,
    SourceKind,
    VersionReq,
    match_krate,
    match_req,
)


def test_bare_version_is_caret():
    req = VersionReq.parse("1.2.3")
    assert req.matches("1.9.0")
    assert req.matches("1.2.3")
    assert not req.matches("1.2.2")
    assert not req.matches("2.0.0")


def test_exact_requirement():
    req = VersionReq.parse("=0.7.0")
    assert req.matches("0.7.0")
    assert not req.matches("0.7.1")


def test_prerelease_range():
    req = VersionReq.parse(">= 0.10.0-alpha.1, < 0.10.0-alpha.4")
    assert req.matches("0.10.0-alpha.3")
    assert not req.matches("0.10.0-alpha.4")
    assert not req.matches("0.10.0")


def test_exact_prerelease():
    req = VersionReq.parse("=0.3.0-rc.2")
    assert req.matches("0.3.0-rc.2")
    assert not req.matches("0.3.0-rc.1")


def test_star_rejects_prereleases():
    req = VersionReq.parse("*")
    assert req.matches("3.0.0")
    assert not req.matches("1.0.0-rc.1")


def test_caret_prerelease_does_not_leak_to_other_versions():
    req = VersionReq.parse("0.20.0-alpha.3")
    assert req.matches("0.20.0-alpha.5")
    assert req.matches("0.20.1")
    assert not req.matches("0.20.1-alpha.1")


def test_tilde_and_caret_zero():
    assert VersionReq.parse("~1.2").matches("1.2.9")
    assert not VersionReq.parse("~1.2").matches("1.3.0")
    assert VersionReq.parse("^0.3").matches("0.3.5")
    assert not VersionReq.parse("^0.3").matches("0.4.0")


def test_wildcard_component():
    req = VersionReq.parse("1.*")
    assert req.matches("1.7.0")
    assert not req.matches("2.0.0")


def test_accepts_version_objects():
    assert VersionReq.parse("<2").matches(semver.Version(1, 9, 9))


@pytest.mark.parametrize("bad", ["", "abc", "1.*.3", "1.2-pre", ">=*"])
def test_invalid_requirements(bad):
    with pytest.raises(ValueError):
        VersionReq.parse(bad)


def test_package_spec_parse():
    spec = PackageSpec.parse("ammonia@=0.7.0")
    assert spec.name == "ammonia"
    assert spec.version_req.matches("0.7.0")
    assert PackageSpec.parse("dirs").version_req is None


@pytest.mark.parametrize("bad", ["", "@1.0", "name@", "two words"])
def test_invalid_package_specs(bad):
    with pytest.raises(ValueError):
        PackageSpec.parse(bad)


def test_match_req_and_krate():
    krate = Krate("lettre", "0.10.0-alpha.3", Source(SourceKind.CRATES_IO))
    assert match_req(krate.version, None)
    assert match_krate(krate, PackageSpec.parse("lettre"))
    assert match_krate(krate, PackageSpec.parse("lettre@>=0.10.0-alpha.1, <0.10.0-alpha.4"))
    assert not match_krate(krate, PackageSpec.parse("failure"))


def test_sources():
    git = Source(SourceKind.GIT, "https://example.com/repo.git")
    assert not git.is_registry()
    assert Source(SourceKind.SPARSE, "https://example.com/index/").is_registry()
    assert Krate("bitflags", "1.2.1", git).is_git_source()
    assert not Krate("log", "0.4.8", Source(SourceKind.CRATES_IO)).is_git_source()
    assert not Krate("shared", "0.1.0").is_git_source()


def test_krate_ids_are_unique_per_version():
    a = Krate("dirs", "4.0.0")
    b = Krate("dirs", "5.0.0")
    assert a.id != b.id
    assert a < b
    assert isinstance(a.version, semver.Version) and a.version.major == 4


def _graph():
    graph = KrateGraph()
    root = graph.add(Krate("root", "0.1.0"), workspace_member=True)
    new = graph.add(Krate("ammonia", "2.1.0"))
    old = graph.add(Krate("ammonia", "1.2.0"))
    mid = graph.add(Krate("artifact_serde", "0.3.1"))
    graph.add_dependency(root.id, new.id)
    graph.add_dependency(root.id, mid.id)
    graph.add_dependency(mid.id, old.id)
    return graph, root, new, old, mid


def test_graph_iteration_is_sorted():
    graph, root, new, old, mid = _graph()
    assert len(graph) == 4
    assert list(graph) == [old, new, mid, root]


def test_graph_queries():
    graph, root, new, old, mid = _graph()
    assert graph.krates_by_name("ammonia") == [old, new]
    assert graph.direct_dependents(old.id) == [mid]
    assert graph.direct_dependents(root.id) == []
    assert graph.workspace_members() == [root]
    assert graph[new.id] is new


def test_graph_duplicate_edge_is_ignored():
    graph, root, new, *_ = _graph()
    graph.add_dependency(root.id, new.id)
    assert graph.direct_dependents(new.id) == [root]


def test_graph_errors():
    graph, root, *_ = _graph()
    with pytest.raises(ValueError):
        graph.add(Krate("root", "0.1.0"))
    with pytest.raises(KeyError):
        graph["missing"]
    with pytest.raises(KeyError):
        graph.add_dependency(root.id, "missing")
    with pytest.raises(KeyError):
        graph.direct_dependents("missing")