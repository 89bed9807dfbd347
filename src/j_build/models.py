"""Pydantic models for Maven coordinates."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from j_build.versions import compare_version, is_range, is_snapshot


DEFAULT_SCOPE = "compile"
SCOPES = ("compile", "runtime", "test", "provided", "system")


class CheckKind(str, Enum):
    """What an up-to-date check covers."""

    COMPILED = "compiled"
    PACKAGED = "packaged"


class Freshness(Enum):
    """Tri-state verdict cached per node and check kind."""

    UNKNOWN = "unknown"
    FRESH = "fresh"
    STALE = "stale"


class BuildState(Enum):
    UNBUILT = "unbuilt"
    COMPILING = "compiling"
    BUILT = "built"
    FRESH = "fresh"
    FAILED = "failed"


class Coordinate(BaseModel):
    """Maven coordinates plus the dependency attributes that travel with them.

    Fields may still contain `${...}` placeholders; `ProjectNode.expand_coordinate`
    returns a copy with every field expanded.
    """

    model_config = ConfigDict(frozen=True)

    group_id: str | None = None
    artifact_id: str | None = None
    version: str | None = None
    classifier: str | None = None
    scope: str | None = None
    optional: bool = False
    system_path: str | None = None
    exclusions: frozenset[str] = Field(default_factory=frozenset)
    # Concrete version pinned from repository metadata for ranges and snapshots.
    snapshot_version: str | None = None

    def effective_version(self) -> str | None:
        """Return the pinned version if there is one, otherwise the declared version."""
        return self.snapshot_version or self.version

    def effective_scope(self) -> str:
        return self.scope or DEFAULT_SCOPE

    def is_snapshot(self) -> bool:
        return is_snapshot(self.version)

    def is_range(self) -> bool:
        return is_range(self.version)

    def ga(self) -> str:
        """Return `groupId:artifactId`, the form used by exclusions."""
        return f"{self.group_id}:{self.artifact_id}"

    def key(self) -> str:
        """Return the memo key `groupId:artifactId:version[:classifier]`."""
        k = f"{self.group_id}:{self.artifact_id}:{self.version}"
        if self.classifier:
            k += f":{self.classifier}"
        return k

    def artifact_key(self) -> str:
        """Return `groupId:artifactId[:classifier]`, the key of every version of an artifact."""
        k = self.ga()
        if self.classifier:
            k += f":{self.classifier}"
        return k

    def identity(self) -> tuple[str | None, str | None, str | None]:
        """Return the de-duplication key of a resolved set: (artifactId, groupId, classifier)."""
        return (self.artifact_id, self.group_id, self.classifier)

    def pinned(self, version: str) -> Coordinate:
        return self.model_copy(update={"snapshot_version": version})

    def jar_name(self) -> str:
        return self._file_name("jar")

    def pom_name(self) -> str:
        return f"{self.artifact_id}-{self.effective_version()}.pom"

    def _file_name(self, extension: str) -> str:
        name = f"{self.artifact_id}-{self.effective_version()}"
        if self.classifier:
            name += f"-{self.classifier}"
        return f"{name}.{extension}"

    def compare(self, other: Coordinate) -> int:
        """Compare by (artifactId, groupId, version, classifier)."""
        a, b = self.artifact_id or "", other.artifact_id or ""
        if a != b:
            return -1 if a < b else 1
        if self.group_id is not None and other.group_id is not None and self.group_id != other.group_id:
            return -1 if self.group_id < other.group_id else 1
        result = compare_version(self.effective_version(), other.effective_version())
        if result != 0:
            return result
        if self.classifier == other.classifier:
            return 0
        if self.classifier is None:
            return -1
        if other.classifier is None:
            return 1
        return -1 if self.classifier < other.classifier else 1

    def compact(self) -> str:
        """Return a compact string representation.

        Returns:
            A string like `groupId:artifactId:version`.
        """
        return f"{self.group_id}:{self.artifact_id}:{self.effective_version()}"

    def label(self) -> str:
        """Return a user-facing label for the dependency.

        Returns:
            A formatted string including GAV and scope when present.
        """
        parts: list[str] = [self.compact()]
        if self.classifier:
            parts.append(f"(classifier={self.classifier})")
        if self.scope and self.scope != DEFAULT_SCOPE:
            parts.append(f"(scope={self.scope})")
        if self.optional:
            parts.append("(optional)")
        return " ".join(parts)
