"""Pytest configuration and fixtures for j-build tests."""
from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from j_build.config import BuildConfig
from j_build.session import ResolutionSession


POM_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="http://maven.apache.org/POM/4.0.0">
  <modelVersion>4.0.0</modelVersion>
{coordinates}
{body}
</project>
"""


def render_pom(artifact_id: str, body: str = "", group_id: str | None = "com.acme", version: str | None = "1.0") -> str:
    lines = []
    if group_id is not None:
        lines.append(f"  <groupId>{group_id}</groupId>")
    lines.append(f"  <artifactId>{artifact_id}</artifactId>")
    if version is not None:
        lines.append(f"  <version>{version}</version>")
    return POM_TEMPLATE.format(coordinates="\n".join(lines), body=body)


def render_dependency(
    group_id: str,
    artifact_id: str,
    version: str | None = None,
    scope: str | None = None,
    optional: bool = False,
    exclusions: tuple[str, ...] = (),
    classifier: str | None = None,
) -> str:
    parts = [f"<groupId>{group_id}</groupId>", f"<artifactId>{artifact_id}</artifactId>"]
    if version is not None:
        parts.append(f"<version>{version}</version>")
    if classifier is not None:
        parts.append(f"<classifier>{classifier}</classifier>")
    if scope is not None:
        parts.append(f"<scope>{scope}</scope>")
    if optional:
        parts.append("<optional>true</optional>")
    if exclusions:
        excl = "".join(
            f"<exclusion><groupId>{e.split(':')[0]}</groupId><artifactId>{e.split(':')[1]}</artifactId></exclusion>"
            for e in exclusions
        )
        parts.append(f"<exclusions>{excl}</exclusions>")
    return "<dependency>" + "".join(parts) + "</dependency>"


def dependencies_section(*deps: str) -> str:
    return "  <dependencies>\n    " + "\n    ".join(deps) + "\n  </dependencies>"


@pytest.fixture
def local_repo(tmp_path: Path) -> Path:
    repo = tmp_path / "m2"
    repo.mkdir()
    return repo


@pytest.fixture
def config(local_repo: Path) -> BuildConfig:
    return BuildConfig(local_repository=local_repo, repositories=[], offline_mode=True)


@pytest.fixture
def session(config: BuildConfig) -> ResolutionSession:
    return ResolutionSession(config)


@pytest.fixture
def write_pom() -> Callable[..., Path]:
    """Write `<directory>/pom.xml` and return its path."""

    def _write(directory: Path, artifact_id: str, body: str = "", **coordinates) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / "pom.xml"
        path.write_text(render_pom(artifact_id, body, **coordinates), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def install(local_repo: Path) -> Callable[..., Path]:
    """Install a pom (and by default a jar) into the local repository; returns the version directory."""

    def _install(
        artifact_id: str,
        version: str = "1.0",
        body: str = "",
        group_id: str = "com.acme",
        jar: bool = True,
        file_version: str | None = None,
    ) -> Path:
        directory = local_repo.joinpath(*group_id.split("."), artifact_id, version)
        directory.mkdir(parents=True, exist_ok=True)
        stem = f"{artifact_id}-{file_version or version}"
        (directory / f"{stem}.pom").write_text(
            render_pom(artifact_id, body, group_id=group_id, version=version), encoding="utf-8"
        )
        if jar:
            (directory / f"{stem}.jar").write_bytes(b"PK\x05\x06" + b"\x00" * 18)
        return directory

    return _install


@pytest.fixture
def dep() -> Callable[..., str]:
    return render_dependency


@pytest.fixture
def deps() -> Callable[..., str]:
    return dependencies_section


@pytest.fixture
def parent() -> Callable[..., str]:
    """Render a `<parent>` element."""

    def _parent(artifact_id: str, group_id: str = "com.acme", version: str = "1.0", relative_path: str | None = None) -> str:
        extra = f"<relativePath>{relative_path}</relativePath>" if relative_path is not None else ""
        return (
            f"  <parent><groupId>{group_id}</groupId><artifactId>{artifact_id}</artifactId>"
            f"<version>{version}</version>{extra}</parent>\n"
        )

    return _parent


@pytest.fixture
def pom() -> Callable[..., str]:
    return render_pom
