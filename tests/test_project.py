from __future__ import annotations

from pathlib import Path

import pytest

from j_build.config import BuildConfig
from j_build.descriptor import load_project
from j_build.exceptions import PropertyExpansionError
from j_build.session import ResolutionSession


def _modules(*names: str) -> str:
    return "  <packaging>pom</packaging>\n  <modules>" + "".join(f"<module>{n}</module>" for n in names) + "</modules>\n"


def test_expand_resolves_own_and_parent_properties(tmp_path: Path, session, write_pom, parent) -> None:
    write_pom(
        tmp_path,
        "parent",
        _modules("child")
        + """
  <properties>
    <lib.version>2.3.4</lib.version>
    <lib.name>lib</lib.name>
  </properties>
""",
    )
    write_pom(
        tmp_path / "child",
        "child",
        parent("parent") + "  <properties><lib.name>child-lib</lib.name></properties>",
    )
    root = load_project(tmp_path, session)
    (child,) = root.children

    assert child.expand("${lib.name}-${lib.version}") == "child-lib-2.3.4"
    assert root.expand("${lib.name}") == "lib"
    assert child.expand("${project.artifactId}:${project.version}") == "child:1.0"
    assert child.expand("${project.basedir}") == str(tmp_path.resolve() / "child")


def test_expand_unresolved_references(tmp_path: Path, session, write_pom) -> None:
    node = load_project(write_pom(tmp_path, "demo"), session)

    assert node.expand("${missing}") is None
    assert node.expand("a-${missing}-b") == "a--b"
    assert node.expand(None) is None
    assert node.expand("plain") == "plain"


def test_expand_rejects_unterminated_reference(tmp_path: Path, session, write_pom) -> None:
    node = load_project(write_pom(tmp_path, "demo"), session)
    with pytest.raises(PropertyExpansionError):
        node.expand("${oops")


def test_expand_rejects_self_reference(tmp_path: Path, session, write_pom) -> None:
    node = load_project(
        write_pom(tmp_path, "demo", "  <properties><loop>x${loop}</loop></properties>"),
        session,
    )
    with pytest.raises(PropertyExpansionError):
        node.expand("${loop}")


def test_overrides_win_over_descriptor_properties(tmp_path: Path, local_repo: Path, write_pom) -> None:
    config = BuildConfig(
        local_repository=local_repo, repositories=[], offline_mode=True, property_overrides={"lib.version": "9"}
    )
    session = ResolutionSession(config)
    node = load_project(
        write_pom(tmp_path, "demo", "  <properties><lib.version>1</lib.version></properties>"), session
    )
    assert node.get_property("lib.version") == "9"


def test_rootdir_is_topmost_directory_with_descriptor(tmp_path: Path, session, write_pom, parent) -> None:
    write_pom(tmp_path, "parent", _modules("child"))
    write_pom(tmp_path / "child", "child", parent("parent"))
    child = load_project(tmp_path / "child", session)

    assert child.parent is not None and child.parent.artifact_id == "parent"
    assert child.get_property("rootdir") == str(tmp_path.resolve())


def test_find_version_nearest_ancestor_wins(tmp_path: Path, session, write_pom, parent, dep) -> None:
    def managed(version: str) -> str:
        return (
            "  <dependencyManagement><dependencies>"
            + dep("com.acme", "d", version)
            + "</dependencies></dependencyManagement>\n"
        )

    write_pom(tmp_path, "gp", _modules("pa") + managed("1.0"))
    write_pom(tmp_path / "pa", "pa", parent("gp") + _modules("c") + managed("2.0"))
    write_pom(tmp_path / "pa" / "c", "c", parent("pa"))

    child = load_project(tmp_path / "pa" / "c", session)

    assert [a.artifact_id for a in child.ancestors()] == ["pa", "gp"]
    assert child.find_version("com.acme", "d") == "2.0"
    assert child.root().find_version("com.acme", "d") == "1.0"
    assert child.find_version("com.acme", "unknown") is None


def test_own_dependency_management_beats_ancestors(tmp_path: Path, session, write_pom, parent, dep) -> None:
    write_pom(
        tmp_path,
        "parent",
        _modules("c") + "  <dependencies>" + dep("com.acme", "d", "1.0") + "</dependencies>\n",
    )
    write_pom(
        tmp_path / "c",
        "c",
        parent("parent")
        + "  <dependencyManagement><dependencies>"
        + dep("com.acme", "d", "${d.version}")
        + "</dependencies></dependencyManagement>\n"
        + "  <properties><d.version>3.0</d.version></properties>\n",
    )
    child = load_project(tmp_path / "c", session)
    assert child.find_version("com.acme", "d") == "3.0"


def test_ancestor_dependencies_supply_versions(tmp_path: Path, session, write_pom, parent, dep) -> None:
    write_pom(
        tmp_path,
        "parent",
        _modules("c") + "  <dependencies>" + dep("com.acme", "d", "1.0") + "</dependencies>\n",
    )
    write_pom(tmp_path / "c", "c", parent("parent"))
    child = load_project(tmp_path / "c", session)
    assert child.find_version("com.acme", "d") == "1.0"


def test_managed_exclusions_accumulate(tmp_path: Path, session, write_pom, parent, dep) -> None:
    write_pom(
        tmp_path,
        "parent",
        _modules("c")
        + "  <dependencyManagement><dependencies>"
        + dep("com.acme", "d", "1.0", exclusions=("org.x:x",))
        + "</dependencies></dependencyManagement>\n",
    )
    write_pom(
        tmp_path / "c",
        "c",
        parent("parent")
        + "  <dependencyManagement><dependencies>"
        + dep("com.acme", "d", exclusions=("org.y:y",))
        + "</dependencies></dependencyManagement>\n",
    )
    child = load_project(tmp_path / "c", session)
    assert child.managed_exclusions("com.acme", "d") == {"org.x:x", "org.y:y"}
    assert child.find_version("com.acme", "d") == "1.0"


def test_source_and_target_versions_inherit(tmp_path: Path, session, write_pom, parent) -> None:
    write_pom(
        tmp_path,
        "parent",
        _modules("c")
        + """
  <build><plugins><plugin>
    <artifactId>maven-compiler-plugin</artifactId>
    <configuration><source>1.8</source><target>1.8</target></configuration>
  </plugin></plugins></build>
""",
    )
    write_pom(tmp_path / "c", "c", parent("parent"))
    child = load_project(tmp_path / "c", session)

    assert child.effective_source_version() == "1.8"
    assert child.effective_target_version() == "1.8"
    assert child.source_path() == tmp_path.resolve() / "c" / "src" / "main" / "java"
    assert child.resources_path() == tmp_path.resolve() / "c" / "src" / "main" / "resources"
