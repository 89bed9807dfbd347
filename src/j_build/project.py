"""Project nodes, the arena that owns them, and property/version resolution."""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from functools import cmp_to_key
from pathlib import Path

from j_build.exceptions import PropertyExpansionError
from j_build.models import BuildState, CheckKind, Coordinate, Freshness


DESCRIPTOR_NAME = "pom.xml"
DEFAULT_SOURCE_DIRECTORY = "src/main/java"
JAR_PACKAGINGS = ("jar", "bundle")

# Upper bound on substitutions in a single expand() call; only reached by
# properties that reference themselves.
MAX_EXPANSIONS = 100


@dataclass(eq=False)
class ProjectNode:
    """One build unit: a parsed pom.xml, either from source or from a repository.

    Nodes never point at each other directly. The parent and children are stored as
    arena ids and looked up through `arena`.
    """

    id: int
    arena: NodeArena = field(repr=False)
    coordinate: Coordinate
    directory: Path
    output_directory: Path
    artifact_path: Path
    packaging: str = "jar"
    properties: dict[str, str] = field(default_factory=dict)
    dependencies: list[Coordinate] = field(default_factory=list)
    dependency_management: list[Coordinate] = field(default_factory=list)
    repositories: list[str] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)
    source_directory: str = DEFAULT_SOURCE_DIRECTORY
    source_version: str | None = None
    target_version: str | None = None
    main_class: str | None = None
    parent_coordinate: Coordinate | None = None
    parent_id: int | None = None
    child_ids: list[int] = field(default_factory=list)
    build_from_source: bool = False
    built: bool = False
    state: BuildState = BuildState.UNBUILT
    freshness: dict[CheckKind, Freshness] = field(
        default_factory=lambda: {kind: Freshness.UNKNOWN for kind in CheckKind}
    )
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    # -- tree ------------------------------------------------------------

    @property
    def parent(self) -> ProjectNode | None:
        return None if self.parent_id is None else self.arena.get(self.parent_id)

    @property
    def children(self) -> list[ProjectNode]:
        return [self.arena.get(i) for i in self.child_ids]

    def ancestors(self) -> Iterator[ProjectNode]:
        """Yield the parent chain, nearest first."""
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def root(self) -> ProjectNode:
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def walk(self) -> Iterator[ProjectNode]:
        """Yield this node and its module tree, depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()

    # -- identity ----------------------------------------------------------

    @property
    def group_id(self) -> str | None:
        return self.coordinate.group_id

    @property
    def artifact_id(self) -> str | None:
        return self.coordinate.artifact_id

    @property
    def version(self) -> str | None:
        return self.coordinate.effective_version()

    def key(self) -> str:
        return self.coordinate.key()

    def is_jar(self) -> bool:
        return self.packaging in JAR_PACKAGINGS

    def classpath_entry(self) -> Path:
        """Where this node's classes live for a dependent's classpath."""
        return self.output_directory if self.build_from_source else self.artifact_path

    def __repr__(self) -> str:
        return f"ProjectNode({self.coordinate.compact()})"

    # -- properties ----------------------------------------------------------

    def get_property(self, key: str) -> str | None:
        """Return the value of a property.

        Lookup order: the session overrides, the node's own properties, the built-in
        properties, then the parent chain.
        """
        override = self.arena.overrides.get(key)
        if override is not None:
            return override
        node: ProjectNode | None = self
        while node is not None:
            if key in node.properties:
                return node.properties[key]
            builtin = node._builtin_property(key)
            if builtin is not None:
                return builtin
            node = node.parent
        return None

    def _builtin_property(self, key: str) -> str | None:
        if key == "project.basedir" or key == "basedir":
            return str(self.directory)
        if key == "rootdir":
            directory = self.directory
            while directory.parent != directory and (directory.parent / DESCRIPTOR_NAME).exists():
                directory = directory.parent
            return str(directory)
        if key in ("project.groupId", "pom.groupId"):
            return self.coordinate.group_id
        if key in ("project.artifactId", "pom.artifactId"):
            return self.coordinate.artifact_id
        if key in ("project.version", "pom.version"):
            return self.coordinate.version
        return None

    def expand(self, value: str | None) -> str | None:
        """Expand `${name}` references.

        A reference spanning the whole string that cannot be resolved yields None; an
        unresolved reference inside a larger string expands to the empty string.

        Raises:
            PropertyExpansionError: On `${` without a closing `}`, or on a property
                that keeps referencing itself.
        """
        if value is None:
            return None
        result = value
        for _ in range(MAX_EXPANSIONS):
            start = result.find("${")
            if start < 0:
                return result
            end = result.find("}", start + 2)
            if end < 0:
                raise PropertyExpansionError(f"Invalid string: {value}")
            replacement = self.get_property(result[start + 2 : end])
            if replacement is None:
                if start == 0 and end == len(result) - 1:
                    return None
                replacement = ""
            result = result[:start] + replacement + result[end + 1 :]
        raise PropertyExpansionError(f"Recursive property reference in: {value}")

    # -- dependency management ---------------------------------------------

    def managed_entries(self) -> Iterator[tuple[ProjectNode, Coordinate]]:
        """Yield `(owner, coordinate)` candidates in nearest-wins order.

        Own dependency management first, then for each ancestor (nearest first) its
        direct dependencies followed by its dependency management.
        """
        for coordinate in self.dependency_management:
            yield self, coordinate
        for ancestor in self.ancestors():
            for coordinate in ancestor.dependencies:
                yield ancestor, coordinate
            for coordinate in ancestor.dependency_management:
                yield ancestor, coordinate

    def _matches(self, owner: ProjectNode, coordinate: Coordinate, group_id: str, artifact_id: str) -> bool:
        return (
            group_id == owner.expand(coordinate.group_id)
            and artifact_id == owner.expand(coordinate.artifact_id)
        )

    def find_version(self, group_id: str | None, artifact_id: str | None) -> str | None:
        if group_id is None or artifact_id is None:
            return None
        return next(
            (
                owner.expand(c.version)
                for owner, c in self.managed_entries()
                if c.version is not None and self._matches(owner, c, group_id, artifact_id)
            ),
            None,
        )

    def managed_exclusions(self, group_id: str | None, artifact_id: str | None) -> set[str]:
        """Collect exclusions from every matching dependency-management entry."""
        exclusions: set[str] = set()
        if group_id is None or artifact_id is None:
            return exclusions
        for owner, c in self.managed_entries():
            if c.exclusions and self._matches(owner, c, group_id, artifact_id):
                exclusions.update(c.exclusions)
        return exclusions

    def expand_coordinate(self, dependency: Coordinate) -> Coordinate:
        """Expand every field of `dependency`, defaulting the version from dependency management."""
        group_id = self.expand(dependency.group_id)
        artifact_id = self.expand(dependency.artifact_id)
        version = self.expand(dependency.version)
        if version is None:
            version = self.find_version(group_id, artifact_id)
        return dependency.model_copy(
            update={
                "group_id": group_id,
                "artifact_id": artifact_id,
                "version": version,
                "scope": self.expand(dependency.scope),
                "classifier": self.expand(dependency.classifier),
                "system_path": self.expand(dependency.system_path),
            }
        )

    def direct_coordinates(self) -> list[Coordinate]:
        return [self.expand_coordinate(c) for c in self.dependencies]

    # -- build settings ------------------------------------------------------

    def source_path(self) -> Path:
        path = Path(self.expand(self.source_directory) or DEFAULT_SOURCE_DIRECTORY)
        return path if path.is_absolute() else self.directory / path

    def resources_path(self) -> Path:
        return self.source_path().parent / "resources"

    def effective_source_version(self) -> str | None:
        return next((n.source_version for n in (self, *self.ancestors()) if n.source_version), None)

    def effective_target_version(self) -> str | None:
        return next((n.target_version for n in (self, *self.ancestors()) if n.target_version), None)

    def all_repositories(self) -> list[str]:
        """Repository URLs declared anywhere in this node's tree, root first."""
        urls: list[str] = []
        for node in self.root().walk():
            for url in node.repositories:
                if url not in urls:
                    urls.append(url)
        return urls


node_sort_key = cmp_to_key(lambda a, b: a.coordinate.compare(b.coordinate))


class NodeArena:
    """Owns every ProjectNode of a session and hands out integer ids."""

    def __init__(self, overrides: Mapping[str, str] | None = None) -> None:
        self.overrides: dict[str, str] = dict(overrides or {})
        self._nodes: list[ProjectNode] = []
        self._lock = threading.Lock()

    def create(
        self,
        coordinate: Coordinate,
        directory: Path,
        *,
        parent: ProjectNode | None = None,
        output_directory: Path | None = None,
        artifact_path: Path | None = None,
        **fields,
    ) -> ProjectNode:
        with self._lock:
            node = ProjectNode(
                id=len(self._nodes),
                arena=self,
                coordinate=coordinate,
                directory=directory,
                output_directory=output_directory or directory / "target" / "classes",
                artifact_path=artifact_path or directory / "target" / coordinate.jar_name(),
                parent_id=None if parent is None else parent.id,
                **fields,
            )
            self._nodes.append(node)
        return node

    def attach(self, parent: ProjectNode, child: ProjectNode) -> ProjectNode:
        child.parent_id = parent.id
        if child.id not in parent.child_ids:
            parent.child_ids.append(child.id)
        return child

    def get(self, node_id: int) -> ProjectNode:
        return self._nodes[node_id]

    def __iter__(self) -> Iterator[ProjectNode]:
        return iter(list(self._nodes))

    def __len__(self) -> int:
        return len(self._nodes)
