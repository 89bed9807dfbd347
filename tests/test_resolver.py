from __future__ import annotations

from pathlib import Path

import pytest

from j_build.config import BuildConfig
from j_build.descriptor import load_project
from j_build.exceptions import MissingDependencyError
from j_build.resolver import DependencyResolver
from j_build.session import ResolutionSession


def _names(nodes) -> list[str]:
    return [n.artifact_id for n in nodes]


def test_test_scope_is_filtered(tmp_path: Path, session, write_pom, install, dep, deps) -> None:
    install("c")
    install("t")
    pom = write_pom(
        tmp_path / "p",
        "p",
        deps(dep("com.acme", "t", "1.0", scope="test"), dep("com.acme", "c", "1.0")),
    )
    node = load_project(pom, session)
    resolver = DependencyResolver(session)

    filtered = resolver.resolve(node, exclude_optionals=True, auto_download=False, exclude_scopes=["test"])
    assert _names(filtered) == ["c"]
    assert _names(resolver.resolve(node)) == ["c", "t"]


def test_resolution_is_transitive_and_sorted(tmp_path: Path, session, write_pom, install, dep, deps) -> None:
    install("b", body=deps(dep("com.acme", "a", "1.0")))
    install("a", body=deps(dep("org.other", "z", "2.0")))
    install("z", version="2.0", group_id="org.other")
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "b", "1.0"))), session)

    result = DependencyResolver(session).resolve(node)

    assert [n.coordinate.compact() for n in result] == ["com.acme:a:1.0", "com.acme:b:1.0", "org.other:z:2.0"]
    assert not any(n.build_from_source for n in result)


def test_resolution_is_deterministic(tmp_path: Path, session, write_pom, install, dep, deps) -> None:
    install("b", body=deps(dep("com.acme", "a", "1.0")))
    install("a")
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "b", "1.0"))), session)
    resolver = DependencyResolver(session)

    first = resolver.resolve(node, exclude_optionals=True, exclude_scopes=["test"])
    second = resolver.resolve(node, exclude_optionals=True, exclude_scopes=["test"])
    assert first == second
    assert all(a is b for a, b in zip(first, second))


def test_exclusion_hides_artifact_reachable_only_through_excluding_dependency(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    install("d", body=deps(dep("org.x", "x", "1.0")))
    install("x", group_id="org.x")
    node = load_project(
        write_pom(tmp_path / "p", "p", deps(dep("com.acme", "d", "1.0", exclusions=("org.x:x",)))),
        session,
    )
    resolver = DependencyResolver(session)

    assert _names(resolver.resolve(node)) == ["d"]
    d = resolver.resolve(node)[0]
    assert _names(resolver.resolve(d)) == ["x"]


def test_exclusions_do_not_leak_into_siblings(tmp_path: Path, session, write_pom, install, dep, deps) -> None:
    install("d", body=deps(dep("org.x", "x", "1.0")))
    install("f", body=deps(dep("org.x", "x", "1.0")))
    install("x", group_id="org.x")
    node = load_project(
        write_pom(
            tmp_path / "p",
            "p",
            deps(dep("com.acme", "d", "1.0", exclusions=("org.x:x",)), dep("com.acme", "f", "1.0")),
        ),
        session,
    )
    assert _names(DependencyResolver(session).resolve(node)) == ["d", "f", "x"]


def test_exclusions_from_dependency_management(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    install("d", body=deps(dep("org.x", "x", "1.0")))
    install("x", group_id="org.x")
    body = (
        "  <dependencyManagement><dependencies>"
        + dep("com.acme", "d", "1.0", exclusions=("org.x:x",))
        + "</dependencies></dependencyManagement>\n"
        + deps(dep("com.acme", "d"))
    )
    node = load_project(write_pom(tmp_path / "p", "p", body), session)
    assert _names(DependencyResolver(session).resolve(node)) == ["d"]


def test_dependency_management_pins_transitive_version(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    install("d", version="0.9")
    install("d", version="1.0")
    install("e", body=deps(dep("com.acme", "d")))
    body = (
        "  <dependencyManagement><dependencies>"
        + dep("com.acme", "d", "1.0")
        + "</dependencies></dependencyManagement>\n"
        + deps(dep("com.acme", "e", "1.0"), dep("com.acme", "d", "1.0"))
    )
    node = load_project(write_pom(tmp_path / "p", "p", body), session)

    result = DependencyResolver(session).resolve(node)

    assert [n.coordinate.compact() for n in result] == ["com.acme:d:1.0", "com.acme:e:1.0"]


def test_nearest_declaration_wins_over_transitive_version(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    install("d", version="0.9")
    install("d", version="1.0")
    install("e", body=deps(dep("com.acme", "d", "0.9")))
    node = load_project(
        write_pom(tmp_path / "p", "p", deps(dep("com.acme", "d", "1.0"), dep("com.acme", "e", "1.0"))),
        session,
    )
    result = DependencyResolver(session).resolve(node)
    assert [n.coordinate.compact() for n in result] == ["com.acme:d:1.0", "com.acme:e:1.0"]


def test_nearer_ancestor_management_selects_version(
    tmp_path: Path, session, write_pom, install, parent, dep, deps
) -> None:
    install("d", version="1.0")
    install("d", version="2.0")

    def managed(version: str) -> str:
        return (
            "  <dependencyManagement><dependencies>"
            + dep("com.acme", "d", version)
            + "</dependencies></dependencyManagement>\n"
        )

    write_pom(
        tmp_path, "gp", "  <packaging>pom</packaging>\n  <modules><module>pa</module></modules>\n" + managed("1.0")
    )
    write_pom(
        tmp_path / "pa",
        "pa",
        parent("gp") + "  <packaging>pom</packaging>\n  <modules><module>c</module></modules>\n" + managed("2.0"),
    )
    write_pom(tmp_path / "pa" / "c", "c", parent("pa") + deps(dep("com.acme", "d")))

    child = load_project(tmp_path / "pa" / "c", session)
    (d,) = DependencyResolver(session).resolve(child)
    assert d.version == "2.0"


def test_cycle_resolves_once_each(tmp_path: Path, local_repo: Path, write_pom, dep, deps) -> None:
    workspace = tmp_path / "ws"
    write_pom(workspace / "a", "a", deps(dep("com.acme", "b", "1.0")))
    write_pom(workspace / "b", "b", deps(dep("com.acme", "a", "1.0")))
    session = ResolutionSession(
        BuildConfig(local_repository=local_repo, repositories=[], offline_mode=True, workspace_roots=[workspace])
    )
    a = load_project(workspace / "a", session)

    result = DependencyResolver(session).resolve(a)

    assert sorted(_names(result)) == ["a", "b"]
    assert len(result) == 2
    assert all(n.build_from_source for n in result)


def test_missing_dependency_names_coordinate_and_dependent(
    tmp_path: Path, session, write_pom, dep, deps
) -> None:
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "ghost", "1.0"))), session)

    with pytest.raises(MissingDependencyError) as excinfo:
        DependencyResolver(session).resolve(node)

    assert excinfo.value.coordinate == "com.acme:ghost:1.0"
    assert excinfo.value.dependent == "com.acme:p:1.0"


def test_missing_dependency_tolerated_or_optional(tmp_path: Path, session, write_pom, install, dep, deps) -> None:
    install("real")
    node = load_project(
        write_pom(
            tmp_path / "p",
            "p",
            deps(
                dep("com.acme", "ghost", "1.0"),
                dep("com.acme", "maybe", "1.0", optional=True),
                dep("com.acme", "container", scope="provided"),
                dep("com.acme", "real", "1.0"),
            ),
        ),
        session,
    )
    resolver = DependencyResolver(session)

    assert _names(resolver.resolve(node, tolerate_missing=True)) == ["real"]
    with pytest.raises(MissingDependencyError):
        resolver.resolve(node, exclude_optionals=True)


def test_optional_dependencies_are_skipped_when_requested(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    install("opt")
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "opt", "1.0", optional=True))), session)
    resolver = DependencyResolver(session)

    assert _names(resolver.resolve(node)) == ["opt"]
    assert resolver.resolve(node, exclude_optionals=True) == []


def test_system_path_dependency(tmp_path: Path, session, write_pom) -> None:
    jar = tmp_path / "lib" / "tools.jar"
    jar.parent.mkdir()
    jar.write_bytes(b"PK")
    body = f"""  <dependencies>
    <dependency>
      <groupId>com.sun</groupId>
      <artifactId>tools</artifactId>
      <version>1.8</version>
      <scope>system</scope>
      <systemPath>{jar}</systemPath>
    </dependency>
  </dependencies>"""
    node = load_project(write_pom(tmp_path / "p", "p", body), session)

    (tools,) = DependencyResolver(session).resolve(node)

    assert tools.artifact_path == jar
    assert tools.classpath_entry() == jar
    assert not tools.build_from_source


def test_workspace_project_wins_over_repository(
    tmp_path: Path, local_repo: Path, write_pom, install, dep, deps
) -> None:
    install("lib")
    workspace = tmp_path / "ws"
    write_pom(workspace / "lib", "lib")
    app = write_pom(tmp_path / "app", "app", deps(dep("com.acme", "lib", "1.0")))
    session = ResolutionSession(
        BuildConfig(local_repository=local_repo, repositories=[], offline_mode=True, workspace_roots=[workspace])
    )
    node = load_project(app, session)

    (lib,) = DependencyResolver(session).resolve(node)

    assert lib.build_from_source
    assert lib.classpath_entry() == (workspace / "lib").resolve() / "target" / "classes"


def test_version_range_picks_highest_installed(tmp_path: Path, session, write_pom, install, dep, deps) -> None:
    for version in ("1.0", "1.5", "2.0"):
        install("d", version=version)
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "d", "[1.0,2.0)"))), session)

    (d,) = DependencyResolver(session).resolve(node)

    assert d.version == "1.5"
    assert d.artifact_path.name == "d-1.5.jar"


def test_version_range_uses_local_metadata(
    tmp_path: Path, session, local_repo: Path, write_pom, install, dep, deps
) -> None:
    install("d", version="1.0")
    install("d", version="1.2")
    (local_repo / "com" / "acme" / "d" / "maven-metadata-local.xml").write_text(
        """<metadata><groupId>com.acme</groupId><artifactId>d</artifactId>
<versioning><versions><version>1.0</version><version>1.2</version><version>3.0</version></versions></versioning>
</metadata>""",
        encoding="utf-8",
    )
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "d", "[1.0,2.0)"))), session)

    (d,) = DependencyResolver(session).resolve(node)
    assert d.version == "1.2"


def test_unmatched_range_is_missing(tmp_path: Path, session, write_pom, install, dep, deps) -> None:
    install("d", version="1.0")
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "d", "[2.0,)"))), session)

    with pytest.raises(MissingDependencyError):
        DependencyResolver(session).resolve(node)


def test_snapshot_pins_timestamped_build(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    directory = install("d", version="1.0-SNAPSHOT", file_version="1.0-20240101.120000-3")
    (directory / "maven-metadata.xml").write_text(
        """<metadata>
  <groupId>com.acme</groupId><artifactId>d</artifactId><version>1.0-SNAPSHOT</version>
  <versioning><snapshot><timestamp>20240101.120000</timestamp><buildNumber>3</buildNumber></snapshot></versioning>
</metadata>""",
        encoding="utf-8",
    )
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "d", "1.0-SNAPSHOT"))), session)

    (d,) = DependencyResolver(session).resolve(node)

    assert d.coordinate.version == "1.0-SNAPSHOT"
    assert d.version == "1.0-20240101.120000-3"
    assert d.artifact_path == directory / "d-1.0-20240101.120000-3.jar"


def test_locally_installed_snapshot_without_metadata(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    directory = install("d", version="1.0-SNAPSHOT")
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "d", "1.0-SNAPSHOT"))), session)

    (d,) = DependencyResolver(session).resolve(node)
    assert d.artifact_path == directory / "d-1.0-SNAPSHOT.jar"


def test_depth_limit(tmp_path: Path, session, write_pom, install, dep, deps, monkeypatch) -> None:
    import j_build.resolver as resolver_module

    monkeypatch.setattr(resolver_module, "MAX_GRAPH_DEPTH", 2)
    install("l1", body=deps(dep("com.acme", "l2", "1.0")))
    install("l2", body=deps(dep("com.acme", "l3", "1.0")))
    install("l3", body=deps(dep("com.acme", "l4", "1.0")))
    install("l4")
    node = load_project(write_pom(tmp_path / "p", "p", deps(dep("com.acme", "l1", "1.0"))), session)

    with pytest.raises(resolver_module.ResolutionError):
        DependencyResolver(session).resolve(node)


def test_direct_dependencies_keep_declaration_order(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    install("z")
    install("a")
    node = load_project(
        write_pom(tmp_path / "p", "p", deps(dep("com.acme", "z", "1.0"), dep("com.acme", "a", "1.0", scope="runtime"))),
        session,
    )
    pairs = list(DependencyResolver(session).direct_dependencies(node))

    assert [(c.artifact_id, c.effective_scope(), n.artifact_id) for c, n in pairs] == [
        ("z", "compile", "z"),
        ("a", "runtime", "a"),
    ]


def test_direct_dependencies_apply_carried_exclusions(
    tmp_path: Path, session, write_pom, install, dep, deps
) -> None:
    install("x")
    install("y")
    node = load_project(
        write_pom(tmp_path / "p", "p", deps(dep("com.acme", "x", "1.0"), dep("com.acme", "y", "1.0"))), session
    )

    pairs = list(DependencyResolver(session).direct_dependencies(node, exclusions={"com.acme:x"}))

    assert [n.artifact_id for _, n in pairs] == ["y"]


def test_classifiers_resolve_to_separate_artifacts(tmp_path: Path, session, write_pom, install, dep, deps) -> None:
    directory = install("foo")
    (directory / "foo-1.0-natives.jar").write_bytes(b"PK")
    node = load_project(
        write_pom(
            tmp_path / "p",
            "p",
            deps(dep("com.acme", "foo", "1.0"), dep("com.acme", "foo", "1.0", classifier="natives")),
        ),
        session,
    )

    plain, natives = DependencyResolver(session).resolve(node)

    assert (plain.coordinate.classifier, natives.coordinate.classifier) == (None, "natives")
    assert plain.artifact_path == directory / "foo-1.0.jar"
    assert natives.artifact_path == directory / "foo-1.0-natives.jar"
    assert natives.classpath_entry() == directory / "foo-1.0-natives.jar"


def _workspace_session(local_repo: Path, workspace: Path) -> ResolutionSession:
    return ResolutionSession(
        BuildConfig(local_repository=local_repo, repositories=[], offline_mode=True, workspace_roots=[workspace])
    )


def test_newer_workspace_project_satisfies_older_request(tmp_path: Path, local_repo: Path, write_pom, dep, deps) -> None:
    workspace = tmp_path / "ws"
    write_pom(workspace / "b", "b", version="1.1")
    session = _workspace_session(local_repo, workspace)
    a = load_project(write_pom(tmp_path / "a", "a", deps(dep("com.acme", "b", "1.0"))), session)

    (b,) = DependencyResolver(session).resolve(a)

    assert b.build_from_source
    assert b.version == "1.1"


def test_older_workspace_project_does_not_satisfy_request(
    tmp_path: Path, local_repo: Path, write_pom, dep, deps
) -> None:
    workspace = tmp_path / "ws"
    write_pom(workspace / "b", "b", version="0.9")
    session = _workspace_session(local_repo, workspace)
    a = load_project(write_pom(tmp_path / "a", "a", deps(dep("com.acme", "b", "1.0"))), session)

    with pytest.raises(MissingDependencyError):
        DependencyResolver(session).resolve(a)
