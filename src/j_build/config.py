"""Build configuration module.

Configuration is read from environment variables and may be overridden by CLI options.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_REPOSITORIES: tuple[str, ...] = (
    "https://repo1.maven.org/maven2/",
    "https://maven.scijava.org/content/groups/public/",
)


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_overrides(raw: str | None) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            overrides[key.strip()] = value.strip()
    return overrides


@dataclass
class BuildConfig:
    """Build configuration container.

    Attributes:
        offline_mode: Never touch the network.
        download_automatically: Fetch missing artifacts from remote repositories.
        local_repository: Root of the local Maven repository layout.
        repositories: Remote repository URLs in priority order.
        workspace_roots: Directories scanned for multi-project checkouts.
        jobs: Worker pool size for concurrent builds.
        verbose: Diagnostic logging (no behavioral effect).
        debug: Even more diagnostic logging (no behavioral effect).
        property_overrides: Properties taking precedence over every descriptor.
        tolerate_missing: Log and skip unresolvable required dependencies.
        db_path: SQLite file used by `record` (optional persisted resolution record).
    """

    offline_mode: bool = False
    download_automatically: bool = False
    local_repository: Path = field(default_factory=lambda: Path.home() / ".m2" / "repository")
    repositories: list[str] = field(default_factory=lambda: list(DEFAULT_REPOSITORIES))
    workspace_roots: list[Path] = field(default_factory=list)
    jobs: int = 1
    verbose: bool = False
    debug: bool = False
    property_overrides: dict[str, str] = field(default_factory=dict)
    tolerate_missing: bool = False
    db_path: Path = field(default_factory=lambda: Path("resolution.db"))

    @classmethod
    def from_env(cls) -> "BuildConfig":
        """Create configuration from environment variables.

        Environment variables:
            JBUILD_OFFLINE: "true" to suppress network fetches (default: false)
            JBUILD_DOWNLOAD: "true" to download missing artifacts (default: false)
            JBUILD_LOCAL_REPO: Local repository (default: ~/.m2/repository)
            JBUILD_REPOSITORIES: Comma separated remote repository URLs
            JBUILD_WORKSPACE: os.pathsep separated workspace roots
            JBUILD_JOBS: Worker pool size (default: 1)
            JBUILD_VERBOSE / JBUILD_DEBUG: Diagnostic logging
            JBUILD_PROPERTIES: Comma separated key=value property overrides
            JBUILD_DB_PATH: SQLite path for the resolution record (default: resolution.db)
        """
        local_repo = os.getenv("JBUILD_LOCAL_REPO")
        repositories = [u.strip() for u in os.getenv("JBUILD_REPOSITORIES", "").split(",") if u.strip()]
        workspace = [Path(p) for p in os.getenv("JBUILD_WORKSPACE", "").split(os.pathsep) if p]

        config = cls(
            offline_mode=_bool_env("JBUILD_OFFLINE", False),
            download_automatically=_bool_env("JBUILD_DOWNLOAD", False),
            workspace_roots=workspace,
            jobs=int(os.getenv("JBUILD_JOBS", "1")),
            verbose=_bool_env("JBUILD_VERBOSE", False),
            debug=_bool_env("JBUILD_DEBUG", False),
            property_overrides=_parse_overrides(os.getenv("JBUILD_PROPERTIES")),
            db_path=Path(os.getenv("JBUILD_DB_PATH", "resolution.db")).resolve(),
        )
        if local_repo:
            config.local_repository = Path(local_repo).expanduser()
        if repositories:
            config.repositories = repositories
        return config

    def validate(self) -> None:
        """Validate the configuration.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.jobs < 1:
            raise ValueError("JBUILD_JOBS must be at least 1")
        if self.download_automatically and not self.offline_mode and not self.repositories:
            raise ValueError("JBUILD_REPOSITORIES is required when downloading automatically")
